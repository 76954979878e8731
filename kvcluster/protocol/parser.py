"""
Topology Response Parser Module

This module decodes the raw replies of the cluster introspection commands
into structured records.

    CLUSTER SLOTS          -> List[SlotRange]
    CLUSTER NODES          -> List[ClusterNodeRecord]
    CLUSTER SLAVES <id>    -> List[ClusterNodeRecord]
    CLUSTER INFO           -> Dict[str, str]

Replies may be bytes or str; all parsers are pure functions of the reply.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..cluster.node import NodeAddress


def _to_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


@dataclass(frozen=True)
class NodeInfo:
    """One node entry of a CLUSTER SLOTS range."""
    ip: str
    port: int
    id: Optional[str] = None

    @property
    def address(self) -> NodeAddress:
        return NodeAddress(self.ip, self.port)


@dataclass(frozen=True)
class SlotRange:
    """
    A closed slot range and the nodes serving it.

    Attributes:
        start: First slot of the range
        end: Last slot of the range (inclusive)
        master: The node owning the range
        replicas: Replicas of the master, possibly empty
    """
    start: int
    end: int
    master: NodeInfo
    replicas: List[NodeInfo] = field(default_factory=list)

    def __contains__(self, slot: int) -> bool:
        return self.start <= slot <= self.end


@dataclass(frozen=True)
class ClusterNodeRecord:
    """
    One line of CLUSTER NODES (or CLUSTER SLAVES) output.

    Attributes:
        node_id: 40 character node id
        address: 'ip:port@cport' as reported by the node
        flags: e.g. ['myself', 'master']
        master_node_id: Id of the master, '-' for masters
        ping_sent_at: Milliseconds timestamp of the last ping sent
        pong_received_at: Milliseconds timestamp of the last pong received
        config_epoch: Configuration epoch of the node
        link_state: 'connected' or 'disconnected'
        slot_range: First owned slot range, None when the node owns no slots
    """
    node_id: str
    address: str
    flags: List[str]
    master_node_id: str
    ping_sent_at: int
    pong_received_at: int
    config_epoch: int
    link_state: str
    slot_range: Optional[Tuple[int, int]] = None

    @property
    def is_master(self) -> bool:
        return "master" in self.flags


class TopologyParser:
    """Parser for cluster introspection replies."""

    def parse(self, subcommand: str, reply: Any) -> Any:
        """
        Parse the reply of a CLUSTER sub-command.

        Sub-commands without a dedicated parser return the raw reply.
        """
        handler = {
            "slots": self.parse_slots,
            "nodes": self.parse_nodes,
            "slaves": self.parse_slaves,
            "replicas": self.parse_slaves,
            "info": self.parse_info,
        }.get(_to_str(subcommand).lower())
        if handler is None:
            return reply
        return handler(reply)

    def parse_slots(self, reply: Any) -> List[SlotRange]:
        """
        Parse a CLUSTER SLOTS reply.

        Each entry is [start, end, master, replica...] where every node is
        [ip, port, id, ...]. Extra trailing fields are ignored.
        """
        ranges = []
        for entry in reply or []:
            start, end, master, *replicas = entry
            ranges.append(SlotRange(
                start=int(start),
                end=int(end),
                master=self._parse_slot_node(master),
                replicas=[self._parse_slot_node(node) for node in replicas],
            ))
        return ranges

    def _parse_slot_node(self, node: Any) -> NodeInfo:
        ip = _to_str(node[0])
        port = int(node[1])
        node_id = _to_str(node[2]) if len(node) > 2 else None
        return NodeInfo(ip=ip, port=port, id=node_id)

    def parse_nodes(self, reply: Any) -> List[ClusterNodeRecord]:
        """Parse a CLUSTER NODES reply (one node per line)."""
        return [
            self._parse_node_line(line)
            for line in _to_str(reply).splitlines()
            if line.strip()
        ]

    def parse_slaves(self, reply: Any) -> List[ClusterNodeRecord]:
        """Parse a CLUSTER SLAVES reply (a list of node lines)."""
        if isinstance(reply, (str, bytes)):
            return self.parse_nodes(reply)
        return [self._parse_node_line(_to_str(line)) for line in reply or []]

    def _parse_node_line(self, line: str) -> ClusterNodeRecord:
        fields = line.split()
        if len(fields) < 8:
            raise ValueError(f"malformed cluster node line: {line!r}")

        node_id, address, flags, master_id, ping, pong, epoch, link_state = fields[:8]
        return ClusterNodeRecord(
            node_id=node_id,
            address=address,
            flags=flags.split(","),
            master_node_id=master_id,
            ping_sent_at=int(ping),
            pong_received_at=int(pong),
            config_epoch=int(epoch),
            link_state=link_state,
            slot_range=self._parse_slot_range(fields[8:]),
        )

    @staticmethod
    def _parse_slot_range(tokens: List[str]) -> Optional[Tuple[int, int]]:
        for token in tokens:
            # '[slot->-id]' / '[slot-<-id]' mark migrations, not ownership
            if token.startswith("["):
                continue
            start, _, end = token.partition("-")
            return int(start), int(end or start)
        return None

    def parse_info(self, reply: Any) -> Dict[str, str]:
        """Parse a CLUSTER INFO reply into a key -> raw value mapping."""
        info = {}
        for line in _to_str(reply).splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            key, sep, value = line.partition(":")
            if sep:
                info[key] = value
        return info
