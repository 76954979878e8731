"""
Topology Discovery Module

Asks bootstrap nodes for the authoritative slot layout (CLUSTER SLOTS) and
folds the answer into a SlotMap plus the set of master addresses.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set

from ..config.settings import settings
from ..protocol.parser import SlotRange, TopologyParser
from .errors import CannotConnect, NodeError, is_connection_error
from .node import NodeAddress, NodeClient
from .registry import NodeRegistry
from .slots import SlotMap

logger = logging.getLogger(__name__)


@dataclass
class Topology:
    """
    Result of a successful discovery.

    Attributes:
        slot_map: Every discovered slot mapped to its master address
        masters: Addresses of the masters owning at least one slot
        ranges: The parsed CLUSTER SLOTS reply
        source: The bootstrap node that answered
    """
    slot_map: SlotMap
    masters: Set[NodeAddress] = field(default_factory=set)
    ranges: List[SlotRange] = field(default_factory=list)
    source: Optional[NodeAddress] = None


class TopologyDiscoverer:
    """
    Discovers the cluster topology from a set of bootstrap nodes.

    Bootstrap nodes are tried in order. Each one gets a small, bounded
    number of attempts; connection errors are retried after a short sleep,
    command errors skip straight to the next node. The first node that
    answers wins.
    """

    def __init__(self, attempts: int = None, backoff: float = None):
        self.attempts = max(1, attempts if attempts is not None else settings.BOOTSTRAP_ATTEMPTS)
        self.backoff = backoff if backoff is not None else settings.RETRY_BACKOFF
        self.parser = TopologyParser()

    async def discover(self, registry: NodeRegistry) -> Topology:
        """
        Query the bootstrap nodes until one of them describes the cluster.

        Args:
            registry: Registry holding the bootstrap node clients

        Returns:
            The discovered Topology

        Raises:
            CannotConnect: No bootstrap node answered
        """
        tried = []
        for node in registry:
            tried.append(str(node.address))
            try:
                reply = await self._query(node)
            except NodeError as e:
                logger.warning(f"Skipping bootstrap node {node.address}: {e}")
                continue

            try:
                topology = self.build_topology(reply, node.address)
            except (ValueError, TypeError, IndexError) as e:
                logger.warning(f"Skipping bootstrap node {node.address}: malformed CLUSTER SLOTS reply ({e})")
                continue

            logger.info(
                f"Discovered {len(topology.masters)} masters covering "
                f"{len(topology.slot_map)} slots via {node.address}"
            )
            return topology

        raise CannotConnect(
            f"could not discover cluster topology from any of: {', '.join(tried) or 'no nodes'}"
        )

    async def _query(self, node: NodeClient):
        for attempt in range(1, self.attempts + 1):
            try:
                return await node.send("cluster", "slots")
            except NodeError as e:
                if not is_connection_error(e) or attempt == self.attempts:
                    raise
                logger.debug(f"Bootstrap attempt {attempt} on {node.address} failed: {e}")
                await asyncio.sleep(self.backoff)

    def build_topology(self, reply, source: NodeAddress) -> Topology:
        """Fold a CLUSTER SLOTS reply into a Topology."""
        ranges = self.parser.parse_slots(reply)
        slot_map = SlotMap()
        masters = set()

        for slot_range in ranges:
            master = slot_range.master.address
            # A node that does not know its own IP reports an empty host
            if not master.host:
                master = NodeAddress(source.host, master.port)
            slot_map.assign_range(slot_range.start, slot_range.end, master)
            masters.add(master)

        return Topology(slot_map=slot_map, masters=masters, ranges=ranges, source=source)
