"""
Slot Map Module

The cluster keyspace is split into 16384 hash slots. A key's slot is the
CRC16 of its hash tag (or of the whole key when it has no tag) modulo
16384. The SlotMap caches which node currently owns each slot.
"""

import logging
import threading
from typing import Any, Dict, Iterator, Optional, Set, Tuple, Union

from redis.crc import REDIS_CLUSTER_HASH_SLOTS, key_slot as crc16_slot

from .node import NodeAddress

logger = logging.getLogger(__name__)

CLUSTER_SLOTS = REDIS_CLUSTER_HASH_SLOTS

KeyT = Union[str, bytes]


def slot_of(key: KeyT) -> int:
    """
    Hash a routing key into a slot in [0, 16383].

    The key is expected to be hash-tag extracted already; an extracted tag
    never contains '}', so the CRC runs over the key unchanged.
    """
    if isinstance(key, str):
        key = key.encode("utf-8")
    return crc16_slot(key)


def extract_hash_tag(key: KeyT) -> KeyT:
    """
    Return the part of the key used for slot computation.

    The tag is the text between the first '{' and the first '}' after it.
    An empty tag ('{}') still counts and yields an empty key. Keys without
    a complete tag are returned unchanged.

    Examples:
        >>> extract_hash_tag("{user1000}.following")
        'user1000'
        >>> extract_hash_tag("foo{{bar}}zap")
        '{bar'
    """
    if isinstance(key, bytes):
        open_brace, close_brace = b"{", b"}"
    else:
        open_brace, close_brace = "{", "}"

    start = key.find(open_brace)
    if start == -1:
        return key
    end = key.find(close_brace, start + 1)
    if end == -1:
        return key
    return key[start + 1:end]


def routing_key(arg: Any) -> bytes:
    """Stringify a command argument into the bytes used for routing."""
    if isinstance(arg, bytes):
        return arg
    if isinstance(arg, memoryview):
        return arg.tobytes()
    return str(arg).encode("utf-8")


def key_slot(arg: Any) -> int:
    """Slot of a command's key argument, honouring hash tags."""
    return slot_of(extract_hash_tag(routing_key(arg)))


def _check_slot(slot: int) -> int:
    if not 0 <= slot < CLUSTER_SLOTS:
        raise ValueError(f"slot {slot} out of range [0, {CLUSTER_SLOTS - 1}]")
    return slot


class SlotMap:
    """
    Partial mapping from slot id to the address of the owning node.

    Reads and single-slot writes are guarded by a lock so one map can be
    shared by concurrent callers. The map only stores addresses; node
    connections stay in the NodeRegistry.
    """

    def __init__(self, mapping: Optional[Dict[int, NodeAddress]] = None):
        self._lock = threading.RLock()
        self._slots: Dict[int, NodeAddress] = {}
        if mapping:
            self.replace(mapping)

    def get(self, slot: int) -> Optional[NodeAddress]:
        """Address owning the slot, or None if the slot is not known."""
        with self._lock:
            return self._slots.get(slot)

    def assign(self, slot: int, address: Union[NodeAddress, str]) -> None:
        """Record a single slot owner (last write wins)."""
        address = NodeAddress.parse(address)
        with self._lock:
            previous = self._slots.get(_check_slot(slot))
            self._slots[slot] = address
        if previous != address:
            logger.debug(f"Slot {slot} moved from {previous} to {address}")

    def assign_range(self, start: int, end: int, address: Union[NodeAddress, str]) -> None:
        """Assign every slot of the closed range [start, end]."""
        address = NodeAddress.parse(address)
        _check_slot(start)
        _check_slot(end)
        with self._lock:
            for slot in range(start, end + 1):
                self._slots[slot] = address

    def replace(self, mapping: Dict[int, NodeAddress]) -> None:
        """Swap in a freshly discovered mapping (bulk rebuild)."""
        fresh = {_check_slot(slot): NodeAddress.parse(addr) for slot, addr in mapping.items()}
        with self._lock:
            self._slots = fresh

    def addresses(self) -> Set[NodeAddress]:
        """Distinct addresses that own at least one slot."""
        with self._lock:
            return set(self._slots.values())

    def ranges(self) -> Iterator[Tuple[int, int, NodeAddress]]:
        """Yield contiguous (start, end, address) runs in slot order."""
        with self._lock:
            items = sorted(self._slots.items())
        run_start = run_end = None
        run_addr = None
        for slot, addr in items:
            if run_addr == addr and slot == run_end + 1:
                run_end = slot
                continue
            if run_addr is not None:
                yield run_start, run_end, run_addr
            run_start = run_end = slot
            run_addr = addr
        if run_addr is not None:
            yield run_start, run_end, run_addr

    def covers_all(self) -> bool:
        """True when every one of the 16384 slots has an owner."""
        return len(self) == CLUSTER_SLOTS

    def copy(self) -> Dict[int, NodeAddress]:
        with self._lock:
            return dict(self._slots)

    def __contains__(self, slot: int) -> bool:
        with self._lock:
            return slot in self._slots

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)

    def __repr__(self) -> str:
        return f"SlotMap(slots={len(self)}, nodes={len(self.addresses())})"
