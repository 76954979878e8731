"""
Cluster module for KV-Cluster.

This module provides the cluster routing core:
- Node addresses, descriptors and node clients
- Node registry and slot map
- Topology discovery from bootstrap nodes
- Key routing and the MOVED / ASK / retry state machine
"""

from .errors import (
    CannotConnect,
    ClusterError,
    CommandError,
    InvalidConfig,
    MissingField,
    NoNodesAvailable,
    NodeConnectionError,
    NodeError,
    NodeTimeoutError,
    UnknownCommand,
    UnknownNode,
)
from .node import NodeAddress, NodeClient, NodeConfig, RedisNodeClient
from .registry import NodeRegistry
from .slots import CLUSTER_SLOTS, SlotMap, extract_hash_tag, key_slot, slot_of
from .discovery import Topology, TopologyDiscoverer
from .router import KEYLESS_COMMANDS, ClusterRouter

__all__ = [
    'CannotConnect', 'ClusterError', 'CommandError', 'InvalidConfig', 'MissingField',
    'NoNodesAvailable', 'NodeConnectionError', 'NodeError', 'NodeTimeoutError',
    'UnknownCommand', 'UnknownNode',
    'NodeAddress', 'NodeClient', 'NodeConfig', 'RedisNodeClient',
    'NodeRegistry',
    'CLUSTER_SLOTS', 'SlotMap', 'extract_hash_tag', 'key_slot', 'slot_of',
    'Topology', 'TopologyDiscoverer',
    'KEYLESS_COMMANDS', 'ClusterRouter',
]
