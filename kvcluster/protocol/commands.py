"""
Command Outcome Definitions

This module defines the tagged outcome of sending one command to one node.
The dispatch engine classifies every attempt into one of:

    Success(reply)                       - the node answered
    Redirect(kind, slot, address, error) - MOVED or ASK
    Transient(error)                     - connection level, retryable
    Fatal(error)                         - anything else, never retried
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple, Union

from ..cluster.errors import CommandError, is_connection_error
from ..cluster.node import NodeAddress
from ..cluster.slots import CLUSTER_SLOTS


class RedirectKind(Enum):
    """Kinds of redirection replies."""
    MOVED = "MOVED"
    ASK = "ASK"


@dataclass(frozen=True)
class Success:
    reply: Any


@dataclass(frozen=True)
class Redirect:
    """
    A MOVED or ASK reply.

    Attributes:
        kind: MOVED (permanent) or ASK (one command, during migration)
        slot: The slot being redirected
        address: Node the command should be sent to
        error: The CommandError carrying the original message
    """
    kind: RedirectKind
    slot: int
    address: NodeAddress
    error: CommandError


@dataclass(frozen=True)
class Transient:
    error: Exception


@dataclass(frozen=True)
class Fatal:
    error: Exception


Outcome = Union[Success, Redirect, Transient, Fatal]


def parse_redirect(message: str) -> Optional[Tuple[RedirectKind, int, NodeAddress]]:
    """
    Parse a redirection error message.

    Args:
        message: Server error line, e.g. 'MOVED 3999 127.0.0.1:6381'

    Returns:
        (kind, slot, address), or None when the message is not a
        well-formed redirection
    """
    parts = message.split()
    if len(parts) != 3:
        return None

    try:
        kind = RedirectKind(parts[0])
    except ValueError:
        return None

    try:
        slot = int(parts[1])
        address = NodeAddress.parse(parts[2])
    except ValueError:
        return None
    if not 0 <= slot < CLUSTER_SLOTS:
        return None
    return kind, slot, address


def classify(error: Exception) -> Outcome:
    """Map an exception raised by a node client to an outcome."""
    if is_connection_error(error):
        return Transient(error)

    if isinstance(error, CommandError):
        message = str(error)
        if message.startswith(("MOVED", "ASK")):
            redirect = parse_redirect(message)
            if redirect is not None:
                kind, slot, address = redirect
                return Redirect(kind, slot, address, error)

    return Fatal(error)
