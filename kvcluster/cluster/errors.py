"""
Cluster Error Definitions

Every error raised by the cluster client derives from ClusterError.

Configuration errors (InvalidConfig, MissingField) are raised while the
client is built and are never retried. NodeConnectionError and
NodeTimeoutError are retried by the dispatch engine until the retry budget
runs out. CommandError carries the server's error message verbatim, which
is how MOVED and ASK redirections are recognised.
"""


class ClusterError(Exception):
    """Base class for all cluster client errors."""


class InvalidConfig(ClusterError, ValueError):
    """A node descriptor (or the descriptor list itself) is malformed."""


class MissingField(InvalidConfig):
    """A structured node descriptor lacks a required field."""

    def __init__(self, field_name: str):
        super().__init__(f"node config is missing required field '{field_name}'")
        self.field_name = field_name


class CannotConnect(ClusterError):
    """No bootstrap node answered the topology query."""


class NoNodesAvailable(ClusterError):
    """The node registry holds no live node."""


class UnknownNode(ClusterError, KeyError):
    """An address was looked up that the registry does not know."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class UnknownCommand(ClusterError, AttributeError):
    """No live node recognises the requested command."""


class NodeError(ClusterError):
    """Base class for errors raised by a single node client."""


class NodeConnectionError(NodeError, ConnectionError):
    """Connection refused, closed or rejected by the node."""


class NodeTimeoutError(NodeConnectionError, TimeoutError):
    """The node did not answer in time."""


class CommandError(NodeError):
    """The node answered with an error reply."""


def is_connection_error(error: BaseException) -> bool:
    """Return True for errors the dispatch engine treats as transient."""
    return isinstance(error, NodeConnectionError)
