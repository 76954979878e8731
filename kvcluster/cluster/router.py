"""
Cluster Router Module

Routes commands to the node owning their key and drives the
retry/redirection state machine.

State machine (one loop iteration per hop, ttl starts at 16):

    Send --ok--------------------------------------> Done
    Send --connection error, ttl > 0--> sleep, random node, ttl - 1
    Send --MOVED slot addr--> update slot map; ttl > 0: addr, ttl - 1
    Send --ASK slot addr, ttl > 0--> ASKING on addr, addr, ttl - 1
    Send --other command error----------------------> Fatal
    any retryable condition with ttl <= 0 ----------> Fatal
"""

import asyncio
import logging
from typing import Any, Optional, Sequence

from ..config.settings import settings
from ..protocol.commands import Fatal, Outcome, Redirect, RedirectKind, Success, Transient, classify
from .errors import CommandError, NoNodesAvailable, NodeConnectionError, NodeError
from .node import NodeAddress, NodeClient
from .registry import NodeRegistry
from .slots import SlotMap, key_slot

logger = logging.getLogger(__name__)

# Commands that carry no routable key; any live node can serve them
KEYLESS_COMMANDS = frozenset({
    "info", "multi", "exec", "discard", "config", "shutdown", "slaveof",
    "replicaof", "cluster", "asking", "ping", "echo", "time", "dbsize",
    "flushall", "flushdb", "save", "bgsave", "lastsave", "client", "script",
    "randomkey", "keys", "scan", "readonly", "readwrite", "wait",
})


class ClusterRouter:
    """
    Routes commands to cluster nodes.

    Responsibilities:
    - Extract the routing key of a command and compute its slot
    - Pick the node owning the slot (or a random live node)
    - Send the command and absorb MOVED / ASK redirections and
      connection failures, bounded by a retry budget

    The router holds the slot map and registry by reference; several
    routers (and several clusters) never share state implicitly.
    """

    def __init__(
            self,
            registry: NodeRegistry,
            slot_map: SlotMap,
            retry_budget: int = None,
            backoff: float = None,
    ):
        """
        Initialize the router.

        Args:
            registry: Registry owning the node clients
            slot_map: Slot ownership cache, corrected on MOVED
            retry_budget: Hops allowed per call (default from settings)
            backoff: Seconds to sleep after a connection failure
        """
        self.registry = registry
        self.slot_map = slot_map
        self.retry_budget = retry_budget if retry_budget is not None else settings.RETRY_BUDGET
        self.backoff = backoff if backoff is not None else settings.RETRY_BACKOFF

    def route(self, command: str, args: Sequence[Any]) -> Optional[int]:
        """
        Compute the slot a command should be routed by.

        Returns:
            The slot of the command's first argument, or None for keyless
            commands (meaning "any live node")
        """
        if command.lower() in KEYLESS_COMMANDS or not args:
            return None
        return key_slot(args[0])

    def node_for(self, slot: Optional[int]) -> NodeAddress:
        """Address of the slot owner, or a random live node when unknown."""
        if slot is not None:
            address = self.slot_map.get(slot)
            if address is not None:
                return address
        return self.registry.random_address()

    def select(self, command: str, args: Sequence[Any]) -> NodeClient:
        """Pick the node client a command should be sent to first."""
        slot = self.route(command, args)
        address = self.node_for(slot)
        logger.debug(f"Routing {command} (slot {slot}) to {address}")
        # Addresses in the slot map always resolve; stale ones get a client
        return self.registry.ensure(address)

    async def invoke(self, command: str, *args: Any) -> Any:
        """Route a command and execute it with the full retry budget."""
        node = self.select(command, args)
        return await self.execute(node, command, args)

    async def attempt(self, node: NodeClient, command: str, args: Sequence[Any]) -> Outcome:
        """Send a command once and classify what happened."""
        try:
            reply = await node.send(command, *args)
        except NodeError as e:
            return classify(e)
        return Success(reply)

    async def execute(
            self,
            node: NodeClient,
            command: str,
            args: Sequence[Any],
            ttl: int = None,
    ) -> Any:
        """
        Execute a command, following redirections and retrying failures.

        Args:
            node: First node to try
            command: Command name
            args: Command arguments
            ttl: Remaining hops (default: the router's retry budget)

        Returns:
            The node's reply

        Raises:
            NodeConnectionError: Connection failures outlasted the budget
            CommandError: Non-redirection error, or redirections outlasted
                          the budget
        """
        ttl = self.retry_budget if ttl is None else ttl

        while True:
            outcome = await self.attempt(node, command, args)

            if isinstance(outcome, Success):
                return outcome.reply

            if isinstance(outcome, Fatal):
                raise outcome.error

            if isinstance(outcome, Transient):
                if ttl <= 0:
                    raise outcome.error
                logger.warning(
                    f"{command} on {node.address} failed ({outcome.error}), retrying ({ttl} left)"
                )
                await asyncio.sleep(self.backoff)
                node = self._fallback_node(node)

            elif outcome.kind is RedirectKind.MOVED:
                self.slot_map.assign(outcome.slot, outcome.address)
                if ttl <= 0:
                    raise outcome.error
                logger.debug(f"MOVED slot {outcome.slot} to {outcome.address}")
                node = self.registry.ensure(outcome.address)

            else:
                if ttl <= 0:
                    raise outcome.error
                try:
                    node = await self._asking(outcome)
                except NodeConnectionError as e:
                    logger.warning(f"ASKING on {outcome.address} failed ({e}), retrying ({ttl} left)")
                    await asyncio.sleep(self.backoff)
                    node = self._fallback_node(node)

            ttl -= 1

    def _fallback_node(self, node: NodeClient) -> NodeClient:
        try:
            return self.registry.random_live()
        except NoNodesAvailable:
            return node

    async def _asking(self, redirect: Redirect) -> NodeClient:
        """Prepare the ASK target for one command; the slot map is left alone."""
        logger.debug(f"ASK slot {redirect.slot} on {redirect.address}")
        node = self.registry.ensure(redirect.address)
        try:
            await node.send_raw(["ASKING"])
        except CommandError as e:
            raise NodeConnectionError(f"ASKING rejected by {node.address}: {e}") from e
        return node
