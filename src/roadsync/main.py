#!/usr/bin/env python3
"""
RoadSync command-line entry point.

Usage:
    # Check which stores are reachable
    roadsync probe

    # Run a full sync pass
    roadsync sync --direction both

    # Local backlog statistics
    roadsync stats

    # List unsynced local records
    roadsync unsynced --kind report
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Awaitable, Callable, List, Optional

from .config import get_config
from .logger import get_logger, get_logger_service
from .services.context import SyncContext
from .services.errors import ReconciliationUnavailableError
from .services.models import RecordKind, SyncDirection

_DIRECTIONS = {
    "both": SyncDirection.BOTH,
    "cloud-to-local": SyncDirection.CLOUD_TO_LOCAL,
    "local-to-cloud": SyncDirection.LOCAL_TO_CLOUD,
}


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


async def cmd_probe(context: SyncContext, args: argparse.Namespace) -> int:
    """Report reachability of every target."""
    health = await context.sync_manager.health_check()
    _print_json(health)
    return 0 if health["status"] == "healthy" else 1


async def cmd_sync(context: SyncContext, args: argparse.Namespace) -> int:
    """Run a full sync pass and print its report."""
    logger = get_logger("cli")
    direction = _DIRECTIONS[args.direction]
    try:
        report = await context.sync_manager.run_full_sync(direction)
    except ReconciliationUnavailableError as e:
        logger.error(f"Sync aborted: {e}")
        return 2

    _print_json(report.to_dict())
    return 0 if report.totals.errors == 0 else 1


async def cmd_stats(context: SyncContext, args: argparse.Namespace) -> int:
    """Print local backlog statistics."""
    _print_json(await context.sync_manager.get_sync_stats())
    return 0


async def cmd_unsynced(context: SyncContext, args: argparse.Namespace) -> int:
    """List unsynced local records, oldest first."""
    kind = RecordKind(args.kind) if args.kind else None
    records = await context.tracker.list_unsynced(kind)
    _print_json(
        [
            {
                "local_id": record.local_id,
                "record_id": record.record_id,
                "kind": record.kind.value,
                "owner_account_id": record.owner_account_id,
                "source": record.source.value,
                "created_at": record.created_at,
            }
            for record in records
        ]
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="roadsync",
        description="Multi-store sync core for road-issue reports",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Override LOG_LEVEL for this run",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    probe_parser = subparsers.add_parser("probe", help="Check store reachability")
    probe_parser.set_defaults(handler=cmd_probe)

    sync_parser = subparsers.add_parser("sync", help="Run a full sync pass")
    sync_parser.add_argument(
        "--direction", choices=sorted(_DIRECTIONS), default="both", help="Sync direction"
    )
    sync_parser.set_defaults(handler=cmd_sync)

    stats_parser = subparsers.add_parser("stats", help="Show local backlog statistics")
    stats_parser.set_defaults(handler=cmd_stats)

    unsynced_parser = subparsers.add_parser("unsynced", help="List unsynced local records")
    unsynced_parser.add_argument(
        "--kind", choices=[kind.value for kind in RecordKind], help="Record kind"
    )
    unsynced_parser.set_defaults(handler=cmd_unsynced)

    return parser


async def run_command(
    handler: Callable[[SyncContext, argparse.Namespace], Awaitable[int]],
    args: argparse.Namespace,
) -> int:
    """Build the context, run one command, and always shut the context down."""
    context = SyncContext.from_config(get_config())
    await context.initialize()
    try:
        return await handler(context, args)
    finally:
        await context.shutdown()


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the application.

    Returns:
        int: Exit code
    """
    args = build_parser().parse_args(argv)
    if args.log_level:
        get_logger_service().set_level(args.log_level)
    logger = get_logger("cli")

    try:
        return asyncio.run(run_command(args.handler, args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except Exception as e:
        logger.critical(f"Fatal error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
