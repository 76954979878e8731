"""
Node Module

Defines node addresses, node descriptors and the node client capability.

A node client is the only thing that talks to the network. The cluster
core sees it through a small interface:

    send(command, *args)  -> reply
    send_raw(tokens)      -> reply   (used for the ASKING directive)
    supports(name)        -> bool
    close()

and expects it to raise NodeConnectionError, NodeTimeoutError or
CommandError. RedisNodeClient implements it on top of redis-py.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, NamedTuple, Optional, Sequence, Union
from urllib.parse import unquote, urlsplit

from redis.asyncio import Redis
from redis.asyncio.connection import DefaultParser
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.exceptions import (
    AskError,
    ClusterCrossSlotError,
    ClusterDownError,
    ConnectionError as RedisConnectionError,
    MovedError,
    ResponseError,
    TimeoutError as RedisTimeoutError,
    TryAgainError,
)

from ..config.settings import settings
from .errors import CommandError, InvalidConfig, MissingField, NodeConnectionError, NodeTimeoutError

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMES = ("redis", "rediss")

# Codes redis-py strips from errors it builds itself; order matters because
# MovedError subclasses AskError.
_STRIPPED_PREFIXES = (
    (MovedError, "MOVED"),
    (AskError, "ASK"),
    (TryAgainError, "TRYAGAIN"),
    (ClusterDownError, "CLUSTERDOWN"),
    (ClusterCrossSlotError, "CROSSSLOT"),
)


class NodeAddress(NamedTuple):
    """A (host, port) pair; str() gives the 'host:port' identity key."""

    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def parse(cls, value: Union[str, "NodeAddress"]) -> "NodeAddress":
        """
        Parse a 'host:port' string.

        The cluster bus suffix reported by CLUSTER NODES ('host:port@cport')
        is dropped. The split happens on the last colon so IPv6 hosts work.
        """
        if isinstance(value, NodeAddress):
            return value
        text = str(value).split("@", 1)[0]
        host, sep, port = text.rpartition(":")
        if not sep:
            raise InvalidConfig(f"invalid node address: {value!r}")
        try:
            return cls(host, int(port))
        except ValueError:
            raise InvalidConfig(f"invalid port in node address: {value!r}") from None


@dataclass(frozen=True)
class NodeConfig:
    """
    Connection settings for a single node.

    Attributes:
        address: Where the node listens
        ssl: True when the descriptor used the rediss:// scheme
        options: Per-node connection options taken from the URL
                 (username, password, db)
    """
    address: NodeAddress
    ssl: bool = False
    options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_descriptor(cls, descriptor: Any) -> "NodeConfig":
        """
        Build a NodeConfig from a user supplied descriptor.

        Args:
            descriptor: Either a URL ('redis://host:port[/db]') or a mapping
                        with 'host' and 'port' keys

        Raises:
            InvalidConfig: Unsupported type or URL scheme, bad port
            MissingField: Mapping without 'host' or 'port'
        """
        if isinstance(descriptor, str):
            return cls._from_url(descriptor)
        if isinstance(descriptor, Mapping):
            return cls._from_mapping(descriptor)
        raise InvalidConfig(
            f"node config must be a URL string or a host/port mapping, got {type(descriptor).__name__}"
        )

    @classmethod
    def _from_url(cls, url: str) -> "NodeConfig":
        parts = urlsplit(url)
        if parts.scheme not in SUPPORTED_SCHEMES:
            raise InvalidConfig(f"invalid uri scheme '{parts.scheme}'")

        try:
            port = parts.port or settings.DEFAULT_PORT
        except ValueError:
            raise InvalidConfig(f"invalid port in node url: {url!r}") from None

        options: Dict[str, Any] = {}
        if parts.username:
            options["username"] = unquote(parts.username)
        if parts.password:
            options["password"] = unquote(parts.password)
        db = parts.path.lstrip("/")
        if db:
            try:
                options["db"] = int(db)
            except ValueError:
                raise InvalidConfig(f"invalid database in node url: {url!r}") from None

        return cls(
            address=NodeAddress(parts.hostname or "localhost", port),
            ssl=parts.scheme == "rediss",
            options=options,
        )

    @classmethod
    def _from_mapping(cls, mapping: Mapping) -> "NodeConfig":
        # Keys may be given as any object whose str() is the field name
        normalized = {str(key): value for key, value in mapping.items()}
        for required in ("host", "port"):
            if required not in normalized:
                raise MissingField(required)

        try:
            port = int(normalized["port"])
        except (TypeError, ValueError):
            raise InvalidConfig(f"invalid port: {normalized['port']!r}") from None

        return cls(address=NodeAddress(str(normalized["host"]), port))

    def with_address(self, address: NodeAddress) -> "NodeConfig":
        """Config for another node of the same cluster (same ssl and credentials)."""
        return replace(self, address=address)


class NodeClient:
    """
    Capability interface implemented by every node connection.

    Subclasses must set `address` and implement send/send_raw.
    """

    address: NodeAddress

    async def send(self, command: str, *args: Any) -> Any:
        raise NotImplementedError

    async def send_raw(self, tokens: Sequence[Any]) -> Any:
        raise NotImplementedError

    def supports(self, command: str) -> bool:
        raise NotImplementedError

    async def close(self) -> None:
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address})"


class ServerErrorParser(DefaultParser):
    """
    Reply parser that keeps the server's error line on the exception.

    redis-py drops the leading code (ERR, NOPERM, READONLY, MOVED, ...)
    from the message of the exceptions it builds; the full line is kept
    as `server_message`.
    """

    def parse_error(self, response):
        error = super().parse_error(response)
        error.server_message = response
        return error


class RedisNodeClient(NodeClient):
    """
    Node client backed by redis.asyncio.Redis.

    redis-py errors are translated into the cluster error taxonomy so the
    dispatch engine never sees a library specific exception. redis-py's own
    retries are disabled; every retry goes through the router's budget.
    """

    def __init__(self, config: NodeConfig, shared_options: Optional[Dict[str, Any]] = None):
        self.address = config.address
        options: Dict[str, Any] = {
            "socket_connect_timeout": settings.CONNECT_TIMEOUT,
            "socket_timeout": settings.SOCKET_TIMEOUT,
            "retry": Retry(backoff=NoBackoff(), retries=0),
        }
        options.update(shared_options or {})
        options.update(config.options)
        self._redis = Redis(
            host=config.address.host,
            port=config.address.port,
            ssl=config.ssl,
            **options,
        )
        # Connections are created lazily from the pool's kwargs
        if options.get("protocol") in (None, 2, "2"):
            self._redis.connection_pool.connection_kwargs.setdefault("parser_class", ServerErrorParser)

    async def send(self, command: str, *args: Any) -> Any:
        return await self._call(command.upper(), *args)

    async def send_raw(self, tokens: Sequence[Any]) -> Any:
        return await self._call(*tokens)

    def supports(self, command: str) -> bool:
        if command.startswith("_"):
            return False
        return callable(getattr(self._redis, command, None))

    async def close(self) -> None:
        await self._redis.aclose()

    async def _call(self, *tokens: Any) -> Any:
        try:
            return await self._redis.execute_command(*tokens)
        except RedisTimeoutError as err:
            raise NodeTimeoutError(f"{self.address}: {err}") from err
        except RedisConnectionError as err:
            raise NodeConnectionError(f"{self.address}: {err}") from err
        except ResponseError as err:
            raise CommandError(_error_message(err)) from err


def _error_message(err: ResponseError) -> str:
    """The server's error line, restoring codes redis-py strips."""
    server_message = getattr(err, "server_message", None)
    if server_message is not None:
        if isinstance(server_message, bytes):
            return server_message.decode("utf-8", errors="replace")
        return server_message

    message = str(err)
    for error_class, prefix in _STRIPPED_PREFIXES:
        if isinstance(err, error_class):
            return f"{prefix} {message}" if message else prefix
    return message
