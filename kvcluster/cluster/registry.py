"""
Node Registry Module

Owns one node client per distinct address. The router and the dispatch
engine only borrow clients from here; they never create or close them.
"""

import logging
import random
import threading
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Union

from .errors import InvalidConfig, NoNodesAvailable, UnknownNode
from .node import NodeAddress, NodeClient, NodeConfig, RedisNodeClient

logger = logging.getLogger(__name__)

ClientFactory = Callable[[NodeConfig, Dict[str, Any]], NodeClient]


class NodeRegistry:
    """
    Registry of live node clients keyed by 'host:port'.

    The registry is filled once at startup. After that it only grows, when
    a redirection names a node that was not known yet. Insertion happens
    under a lock; lookups read the dict directly.

    Attributes:
        shared_options: Connection options passed to every node client
        template: Config whose ssl flag and credentials are reused for nodes
                  learned later
    """

    def __init__(
            self,
            shared_options: Optional[Dict[str, Any]] = None,
            client_factory: Optional[ClientFactory] = None,
            template: Optional[NodeConfig] = None,
    ):
        self.shared_options = dict(shared_options or {})
        self.client_factory = client_factory or RedisNodeClient
        self.template = template
        self._nodes: Dict[str, NodeClient] = {}
        self._configs: Dict[str, NodeConfig] = {}
        self._lock = threading.Lock()

    @classmethod
    def build_from(
            cls,
            configs: Any,
            shared_options: Optional[Dict[str, Any]] = None,
            client_factory: Optional[ClientFactory] = None,
    ) -> "NodeRegistry":
        """
        Build a registry from user supplied node descriptors.

        Args:
            configs: List of URL strings and/or host/port mappings
            shared_options: Options passed through to every node client
            client_factory: Callable creating a node client from a NodeConfig

        Raises:
            InvalidConfig: configs is not a list, or an entry is malformed
            MissingField: A mapping entry lacks host or port
        """
        if not isinstance(configs, (list, tuple)):
            raise InvalidConfig("cluster node config must be a list")

        node_configs = [NodeConfig.from_descriptor(config) for config in configs]
        registry = cls(
            shared_options,
            client_factory,
            template=node_configs[0] if node_configs else None,
        )
        for config in node_configs:
            registry.add(config)
        return registry

    def add(self, config: NodeConfig) -> NodeClient:
        """Register a node; an already known address keeps its client."""
        key = str(config.address)
        with self._lock:
            client = self._nodes.get(key)
            if client is None:
                client = self.client_factory(config, self.shared_options)
                self._nodes[key] = client
                self._configs[key] = config
                logger.debug(f"Registered node {key}")
            return client

    def ensure(self, address: Union[NodeAddress, str]) -> NodeClient:
        """Return the client for an address, creating it on first sight."""
        address = NodeAddress.parse(address)
        client = self._nodes.get(str(address))
        if client is not None:
            return client
        if self.template is not None:
            config = self.template.with_address(address)
        else:
            config = NodeConfig(address=address)
        logger.info(f"Learned new node {address}")
        return self.add(config)

    def lookup(self, address: Union[NodeAddress, str]) -> NodeClient:
        """
        Get the client registered for an address.

        Raises:
            UnknownNode: The address is not registered
        """
        key = str(NodeAddress.parse(address))
        try:
            return self._nodes[key]
        except KeyError:
            raise UnknownNode(f"unknown node {key}") from None

    def config_for(self, address: Union[NodeAddress, str]) -> NodeConfig:
        key = str(NodeAddress.parse(address))
        try:
            return self._configs[key]
        except KeyError:
            raise UnknownNode(f"unknown node {key}") from None

    def random_live(self) -> NodeClient:
        """
        Pick a node uniformly at random.

        Raises:
            NoNodesAvailable: The registry is empty
        """
        nodes = list(self._nodes.values())
        if not nodes:
            raise NoNodesAvailable("no cluster nodes available")
        return random.choice(nodes)

    def random_address(self) -> NodeAddress:
        return self.random_live().address

    def addresses(self) -> List[NodeAddress]:
        return [client.address for client in self._nodes.values()]

    def supports(self, command: str) -> bool:
        """True if at least one live node recognises the command."""
        return any(client.supports(command) for client in self._nodes.values())

    async def close(self) -> None:
        """Close every node client and empty the registry."""
        with self._lock:
            clients = list(self._nodes.values())
            self._nodes = {}
            self._configs = {}
        for client in clients:
            await client.close()

    def __contains__(self, address: Union[NodeAddress, str]) -> bool:
        return str(NodeAddress.parse(address)) in self._nodes

    def __iter__(self) -> Iterator[NodeClient]:
        return iter(list(self._nodes.values()))

    def __len__(self) -> int:
        return len(self._nodes)

    def __repr__(self) -> str:
        return f"NodeRegistry(nodes={sorted(self._nodes)})"


def build_registry(
        configs: Iterable[NodeConfig],
        shared_options: Optional[Dict[str, Any]] = None,
        client_factory: Optional[ClientFactory] = None,
        template: Optional[NodeConfig] = None,
) -> NodeRegistry:
    """Build a registry from already validated node configs."""
    registry = NodeRegistry(shared_options, client_factory, template)
    for config in configs:
        registry.add(config)
    return registry
