#!/usr/bin/env python3
"""
KV-Cluster Command Line Entry Point

Runs a single command through the cluster router and prints the reply.

Usage:
    kv-cluster GET foo                                   # Default bootstrap node
    kv-cluster --node redis://127.0.0.1:7000 SET foo bar
    kv-cluster --node redis://10.0.0.1:7000 --node redis://10.0.0.2:7000 CLUSTER NODES
    kv-cluster --debug GET foo                           # Enable debug logging

Environment Variables:
    KV_CLUSTER_NODES          - Comma separated bootstrap node URLs
    KV_CLUSTER_RETRY_BUDGET   - Hops allowed per command
    KV_CLUSTER_DEBUG          - Enable debug mode (true/false)
"""

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from typing import Any, List, Optional

from .client import Cluster
from .cluster.errors import ClusterError
from .config.settings import settings


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="KV-Cluster: send a command to a hash-slot sharded cluster",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--node",
        dest="nodes",
        action="append",
        help=f"Bootstrap node URL, repeatable (default: {','.join(settings.NODES)})",
    )

    parser.add_argument(
        "--retry-budget",
        type=int,
        default=settings.RETRY_BUDGET,
        help="Redirections and retries allowed per command",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=settings.DEBUG,
        help="Enable debug logging",
    )

    parser.add_argument("command", help="Command name, e.g. GET")
    parser.add_argument("args", nargs="*", help="Command arguments")

    args = parser.parse_args(argv)
    if not args.nodes:
        args.nodes = list(settings.NODES)
    return args


def setup_logging(debug: bool = False) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
        ]
    )


def format_reply(reply: Any) -> str:
    """Render a reply for the terminal; parsed topology records become JSON."""
    if isinstance(reply, bytes):
        return reply.decode("utf-8", errors="replace")
    if isinstance(reply, list) and reply and dataclasses.is_dataclass(reply[0]):
        return json.dumps([dataclasses.asdict(item) for item in reply], indent=2)
    if isinstance(reply, (dict, list)):
        return json.dumps(reply, indent=2, default=str)
    return str(reply)


async def run(args: argparse.Namespace) -> Any:
    async with Cluster(args.nodes, retry_budget=args.retry_budget) as rc:
        if args.command.lower() == "cluster" and args.args:
            return await rc.cluster(*args.args)
        return await rc.invoke(args.command, *args.args)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the command line client."""
    args = parse_args(argv)
    setup_logging(debug=args.debug)
    logger = logging.getLogger(__name__)

    logger.debug(f"Bootstrap nodes: {args.nodes}")

    try:
        reply = asyncio.run(run(args))
    except ClusterError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1

    print(format_reply(reply))
    return 0


if __name__ == "__main__":
    sys.exit(main())
