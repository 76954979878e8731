"""Protocol module for KV-Cluster."""

from .commands import Fatal, Outcome, Redirect, RedirectKind, Success, Transient, classify, parse_redirect
from .parser import ClusterNodeRecord, NodeInfo, SlotRange, TopologyParser

__all__ = [
    "Fatal",
    "Outcome",
    "Redirect",
    "RedirectKind",
    "Success",
    "Transient",
    "classify",
    "parse_redirect",
    "ClusterNodeRecord",
    "NodeInfo",
    "SlotRange",
    "TopologyParser",
]
