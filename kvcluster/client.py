"""
Cluster Client Module

Public entry point of the package.

Usage:
    async with Cluster(["redis://127.0.0.1:7000", {"host": "127.0.0.1", "port": 7001}]) as rc:
        await rc.set("foo", "bar")
        await rc.get("foo")
        await rc.invoke("hgetall", "{user1000}.profile")
        await rc.cluster("nodes")

Any command name is accepted: attribute access returns a coroutine
function that routes the command through the cluster.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from .cluster.discovery import TopologyDiscoverer
from .cluster.errors import UnknownCommand
from .cluster.registry import ClientFactory, NodeRegistry, build_registry
from .cluster.router import ClusterRouter
from .cluster.slots import SlotMap, key_slot
from .protocol.parser import TopologyParser

logger = logging.getLogger(__name__)


class Cluster:
    """
    Cluster-aware client.

    Construction only validates the node descriptors and prepares the
    bootstrap clients. initialize() (or `async with`) discovers the slot
    layout, then replaces the bootstrap clients with fresh clients for the
    discovered masters.

    Attributes:
        slot_map: Slot ownership cache shared by every call on this client
        parser: Parser for cluster introspection replies
    """

    def __init__(
            self,
            nodes: List[Any],
            client_factory: Optional[ClientFactory] = None,
            retry_budget: int = None,
            backoff: float = None,
            bootstrap_attempts: int = None,
            **options: Any,
    ):
        """
        Initialize the cluster client.

        Args:
            nodes: Bootstrap node descriptors (URL strings or host/port mappings)
            client_factory: Creates node clients (defaults to redis-py clients)
            retry_budget: Hops allowed per command
            backoff: Seconds to sleep after a connection failure
            bootstrap_attempts: Topology query attempts per bootstrap node
            **options: Connection options shared by every node client

        Raises:
            InvalidConfig: nodes is not a list, or a descriptor is malformed
            MissingField: A mapping descriptor lacks host or port
        """
        self._bootstrap = NodeRegistry.build_from(nodes, options, client_factory)
        self._registry = self._bootstrap
        self._options: Dict[str, Any] = options
        self._client_factory = client_factory
        self._initialized = False
        self._init_lock = asyncio.Lock()

        self.slot_map = SlotMap()
        self.parser = TopologyParser()
        self.discoverer = TopologyDiscoverer(attempts=bootstrap_attempts, backoff=backoff)
        self._router = ClusterRouter(self._registry, self.slot_map, retry_budget, backoff)

    @property
    def registry(self) -> NodeRegistry:
        return self._registry

    @property
    def router(self) -> ClusterRouter:
        return self._router

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> "Cluster":
        """
        Discover the cluster topology and build the production registry.

        Raises:
            CannotConnect: No bootstrap node answered
        """
        async with self._init_lock:
            if self._initialized:
                return self

            topology = await self.discoverer.discover(self._bootstrap)
            template = self._bootstrap.config_for(topology.source)

            # Steady-state traffic never reuses a bootstrap connection
            await self._bootstrap.close()
            registry = build_registry(
                (template.with_address(address) for address in sorted(topology.masters, key=str)),
                self._options,
                self._client_factory,
                template,
            )
            self.slot_map.replace(topology.slot_map.copy())

            self._registry = registry
            self._router.registry = registry
            self._initialized = True
            logger.info(f"Cluster ready: {len(registry)} nodes, {len(self.slot_map)} slots mapped")
            return self

    async def invoke(self, command: str, *args: Any) -> Any:
        """Route a command by its key and execute it."""
        if not self._initialized:
            await self.initialize()
        return await self._router.invoke(command, *args)

    async def execute_command(self, command: str, *args: Any) -> Any:
        return await self.invoke(command, *args)

    async def cluster(self, subcommand: str, *args: Any) -> Any:
        """
        Run a CLUSTER sub-command on any live node.

        slots, nodes, slaves and info replies are parsed into records; other
        sub-commands return the raw reply.
        """
        reply = await self.invoke("cluster", subcommand, *args)
        return self.parser.parse(subcommand, reply)

    async def asking(self) -> str:
        """
        The ASKING directive only applies to the next command on a single
        connection, which the dispatch engine issues itself when following
        an ASK redirection.
        """
        return "OK"

    def key_slot(self, key: Any) -> int:
        return key_slot(key)

    async def close(self) -> None:
        """Close every node connection held by this client."""
        await self._registry.close()
        if self._bootstrap is not self._registry:
            await self._bootstrap.close()

    async def __aenter__(self) -> "Cluster":
        return await self.initialize()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def __getattr__(self, name: str) -> Callable[..., Any]:
        if name.startswith("_"):
            raise AttributeError(name)
        if not self._registry.supports(name):
            raise UnknownCommand(f"unknown command '{name}'")

        async def command(*args: Any) -> Any:
            return await self.invoke(name, *args)

        command.__name__ = name
        return command

    def __repr__(self) -> str:
        return f"Cluster(nodes={[str(a) for a in self._registry.addresses()]}, slots={len(self.slot_map)})"
