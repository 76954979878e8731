"""
KV-Cluster: Cluster-Aware Routing Client

An asyncio client for sharded key-value stores that split their keyspace
into 16384 hash slots. Commands are routed to the node owning the key's
slot, and MOVED / ASK redirections and connection failures are absorbed
transparently.
"""

from .client import Cluster

__version__ = "1.0.0"
__all__ = ["Cluster"]
