"""
Pytest Configuration and Fixtures

This module provides shared fixtures and configuration for all tests.

FakeCluster simulates a hash-slot cluster in memory: it answers CLUSTER
SLOTS / NODES / INFO, stores keys, replies MOVED when a key is sent to
the wrong master, ASK for slots being migrated, and raises connection
errors for nodes marked as down.
"""

import asyncio
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional, Sequence, Set, Tuple

import pytest
import pytest_asyncio

from kvcluster.client import Cluster
from kvcluster.cluster.errors import CommandError, NodeConnectionError
from kvcluster.cluster.node import NodeAddress, NodeClient, NodeConfig
from kvcluster.cluster.registry import NodeRegistry
from kvcluster.cluster.router import ClusterRouter
from kvcluster.cluster.slots import SlotMap, key_slot


THREE_MASTERS = [
    (0, 5460, "127.0.0.1:7000", ["127.0.0.1:7003"]),
    (5461, 10922, "127.0.0.1:7001", ["127.0.0.1:7004"]),
    (10923, 16383, "127.0.0.1:7002", ["127.0.0.1:7005"]),
]

BOOTSTRAP_NODES = [
    "redis://127.0.0.1:7000",
    "redis://127.0.0.1:7001",
    {"host": "127.0.0.1", "port": "7002"},
]


def node_id(address: str) -> str:
    """Deterministic 40 character node id for an address."""
    return address.replace(".", "").replace(":", "").ljust(40, "0")


class FakeNode(NodeClient):
    """In-memory node client talking to a FakeCluster."""

    COMMANDS = {"get", "set", "del", "type", "exists", "ping", "info", "cluster", "hgetall"}

    def __init__(self, address: NodeAddress, cluster: "FakeCluster"):
        self.address = address
        self.cluster = cluster
        self.calls: List[Tuple[Any, ...]] = []
        self.asking = False
        self.closed = False

    async def send(self, command: str, *args: Any) -> Any:
        self.calls.append((command.lower(),) + tuple(args))
        return self.cluster.handle(self, command.lower(), args)

    async def send_raw(self, tokens: Sequence[Any]) -> Any:
        self.calls.append(tuple(tokens))
        return self.cluster.handle(self, str(tokens[0]).lower(), tuple(tokens[1:]))

    def supports(self, command: str) -> bool:
        return command in self.COMMANDS

    async def close(self) -> None:
        self.closed = True


class FakeCluster:
    """
    Simulated cluster.

    Attributes:
        ranges: (start, end, master, replicas) slot layout
        down: Addresses refusing connections
        moved: Slot ownership overrides (resharded slots)
        migrating: slot -> target address answered with ASK
        failures: address -> number of upcoming connection failures
        rejected_asking: address -> number of upcoming ASKING rejections
        created: Every node client built through factory()
    """

    def __init__(self, ranges=None):
        self.ranges = list(ranges or THREE_MASTERS)
        self.down: Set[str] = set()
        self.moved: Dict[int, str] = {}
        self.migrating: Dict[int, str] = {}
        self.failures: Dict[str, int] = {}
        self.rejected_asking: Dict[str, int] = {}
        self.data: Dict[str, Any] = {}
        self.created: List[FakeNode] = []
        self.requests = 0

    def factory(self, config: NodeConfig, shared_options: Dict[str, Any]) -> FakeNode:
        node = FakeNode(config.address, self)
        self.created.append(node)
        return node

    def owner(self, slot: int) -> Optional[str]:
        if slot in self.moved:
            return self.moved[slot]
        for start, end, master, _ in self.ranges:
            if start <= slot <= end:
                return master
        return None

    def slots_reply(self) -> List[Any]:
        reply = []
        for start, end, master, replicas in self.ranges:
            entry = [start, end]
            for address in [master] + list(replicas):
                host, port = address.rsplit(":", 1)
                entry.append([host.encode(), int(port), node_id(address).encode()])
            reply.append(entry)
        return reply

    def nodes_reply(self) -> bytes:
        lines = []
        for start, end, master, replicas in self.ranges:
            lines.append(
                f"{node_id(master)} {master}@1{master.rsplit(':', 1)[1]} master - 0 1426238317239 1 connected {start}-{end}"
            )
            for replica in replicas:
                lines.append(
                    f"{node_id(replica)} {replica}@1{replica.rsplit(':', 1)[1]} slave {node_id(master)} 0 1426238316232 1 connected"
                )
        return "\n".join(lines).encode() + b"\n"

    def handle(self, node: FakeNode, command: str, args: Tuple[Any, ...]) -> Any:
        self.requests += 1
        address = str(node.address)

        if address in self.down:
            raise NodeConnectionError(f"Error 111 connecting to {address}. Connection refused.")
        if self.failures.get(address):
            self.failures[address] -= 1
            raise NodeConnectionError(f"Connection closed by {address}.")

        if command == "asking":
            if self.rejected_asking.get(address):
                self.rejected_asking[address] -= 1
                raise CommandError("ERR ASKING rejected")
            node.asking = True
            return b"OK"
        if command == "cluster":
            return self._cluster(args)
        if command == "ping":
            return True
        if command == "info":
            return {"redis_version": "7.2.0", "cluster_enabled": 1}
        if command not in FakeNode.COMMANDS:
            raise CommandError(f"ERR unknown command '{command}'")

        slot = key_slot(args[0])
        asking, node.asking = node.asking, False
        owner = self.owner(slot)
        if slot in self.migrating:
            target = self.migrating[slot]
            if address == target and asking:
                return self._execute(command, args)
            if address == owner:
                raise CommandError(f"ASK {slot} {target}")
        if owner != address:
            raise CommandError(f"MOVED {slot} {owner}")
        return self._execute(command, args)

    def _cluster(self, args: Tuple[Any, ...]) -> Any:
        subcommand = str(args[0]).lower()
        if subcommand == "slots":
            return self.slots_reply()
        if subcommand == "nodes":
            return self.nodes_reply()
        if subcommand == "info":
            return b"cluster_state:ok\r\ncluster_slots_assigned:16384\r\ncluster_known_nodes:6\r\n"
        if subcommand == "keyslot":
            return key_slot(args[1])
        raise CommandError(f"ERR Unknown subcommand or wrong number of arguments for '{subcommand}'")

    def _execute(self, command: str, args: Tuple[Any, ...]) -> Any:
        key = args[0]
        if command == "set":
            self.data[key] = args[1]
            return True
        if command == "get":
            return self.data.get(key)
        if command == "del":
            return int(self.data.pop(key, None) is not None)
        if command == "exists":
            return int(key in self.data)
        if command == "type":
            return b"string" if key in self.data else b"none"
        raise CommandError("WRONGTYPE Operation against a key holding the wrong kind of value")


def bulk(value: str) -> bytes:
    """Encode a RESP bulk string reply."""
    data = value.encode()
    return b"$%d\r\n%s\r\n" % (len(data), data)


def error(line: str) -> bytes:
    """Encode a RESP error reply."""
    return b"-" + line.encode() + b"\r\n"


class RespServer:
    """
    Local RESP2 server for driving a real RedisNodeClient over a socket.

    Attributes:
        handler: Maps a command (list of str tokens) to raw reply bytes;
                 None means '+OK'
        drop: Close every connection as soon as it is accepted
        connections: Number of accepted connections
        commands: Commands received, connection handshake excluded
    """

    def __init__(self, handler: Optional[Callable[[List[str]], Optional[bytes]]] = None, drop: bool = False):
        self.handler = handler or (lambda command: None)
        self.drop = drop
        self.connections = 0
        self.commands: List[List[str]] = []
        self.port: Optional[int] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: List[asyncio.StreamWriter] = []

    @property
    def url(self) -> str:
        return f"redis://127.0.0.1:{self.port}"

    @property
    def address(self) -> NodeAddress:
        return NodeAddress("127.0.0.1", self.port)

    async def start(self) -> "RespServer":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def stop(self) -> None:
        for writer in self._writers:
            writer.close()
        self._server.close()
        await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.append(writer)
        if self.drop:
            writer.close()
            return

        try:
            while True:
                command = await self._read_command(reader)
                if command is None:
                    break
                if command[0].upper() == "CLIENT":
                    reply = None
                else:
                    self.commands.append(command)
                    reply = self.handler(command)
                writer.write(reply if reply is not None else b"+OK\r\n")
                await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()

    @staticmethod
    async def _read_command(reader: asyncio.StreamReader) -> Optional[List[str]]:
        line = await reader.readline()
        if not line:
            return None
        tokens = []
        for _ in range(int(line[1:])):
            size = int((await reader.readline())[1:])
            data = await reader.readexactly(size + 2)
            tokens.append(data[:-2].decode())
        return tokens


# ============================================================================
# Cluster Fixtures
# ============================================================================

@pytest.fixture
def fake_cluster() -> FakeCluster:
    """A healthy three-master cluster."""
    return FakeCluster()


@pytest.fixture
def registry(fake_cluster: FakeCluster) -> NodeRegistry:
    """Registry holding the three masters of fake_cluster."""
    return NodeRegistry.build_from(
        ["redis://127.0.0.1:7000", "redis://127.0.0.1:7001", "redis://127.0.0.1:7002"],
        client_factory=fake_cluster.factory,
    )


@pytest.fixture
def slot_map() -> SlotMap:
    """Slot map matching the three-master layout."""
    slots = SlotMap()
    for start, end, master, _ in THREE_MASTERS:
        slots.assign_range(start, end, master)
    return slots


@pytest.fixture
def router(registry: NodeRegistry, slot_map: SlotMap) -> ClusterRouter:
    """Router over fake_cluster with sleeps disabled."""
    return ClusterRouter(registry, slot_map, backoff=0)


@pytest.fixture
def cluster_factory(fake_cluster: FakeCluster):
    """
    Factory fixture building Cluster clients over fake_cluster.

    Usage:
        async def test_something(cluster_factory):
            rc = await cluster_factory().initialize()
    """
    def factory(nodes=None, **kwargs) -> Cluster:
        kwargs.setdefault("backoff", 0)
        return Cluster(
            BOOTSTRAP_NODES if nodes is None else nodes,
            client_factory=fake_cluster.factory,
            **kwargs,
        )
    return factory


# ============================================================================
# Socket Fixtures
# ============================================================================

@pytest_asyncio.fixture
async def resp_server() -> AsyncGenerator[Callable[..., Any], None]:
    """
    Factory fixture starting RespServer instances on free local ports.

    Servers are stopped after the test; close node clients first.

    Usage:
        async def test_something(resp_server):
            server = await resp_server(lambda command: b"+PONG\\r\\n")
    """
    servers: List[RespServer] = []

    async def start(handler=None, drop: bool = False) -> RespServer:
        server = await RespServer(handler, drop).start()
        servers.append(server)
        return server

    yield start

    for server in servers:
        await server.stop()


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )

