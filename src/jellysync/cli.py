"""Command line entry point: run one sync job against one or every configured server.

    jellysync full
    jellysync items --server-id 1 --library-id 4f1c...
    jellysync recent_activities --intelligent

Settings come from the environment (JELLYSYNC_*), see jellysync.config.
"""

import argparse
import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from jellysync.domain.entities import SyncResult, SyncStatus, SyncType
from jellysync.domain.exceptions import EntityNotFoundException
from jellysync.infrastructure.lifecycle import sync_all_servers, sync_runtime

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SYNC_FAILED = 1
EXIT_UNKNOWN_SERVER = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jellysync",
        description="Sync Jellyfin users, libraries, items and activities into the database",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "sync_type",
        choices=[sync_type.value for sync_type in SyncType],
        help="Which sync job to run",
    )
    parser.add_argument(
        "--server-id",
        type=int,
        default=None,
        help="Only sync this server (default: every configured server, one at a time)",
    )
    parser.add_argument(
        "--library-id",
        default=None,
        help="items only: restrict the run to one library",
    )
    parser.add_argument(
        "--intelligent",
        action="store_true",
        help="recent_activities only: stop at the newest stored activity",
    )
    return parser


def _job_options(args: argparse.Namespace, parser: argparse.ArgumentParser) -> dict[str, Any]:
    options: dict[str, Any] = {}
    if args.library_id is not None:
        if args.sync_type != SyncType.ITEMS.value:
            parser.error("--library-id only applies to the items sync")
        options["library_id"] = args.library_id
    if args.intelligent:
        if args.sync_type != SyncType.RECENT_ACTIVITIES.value:
            parser.error("--intelligent only applies to the recent_activities sync")
        options["intelligent"] = True
    return options


async def _run(args: argparse.Namespace, options: dict[str, Any]) -> dict[int, SyncResult[Any]]:
    async with sync_runtime() as dispatcher:
        if args.server_id is None:
            return await sync_all_servers(dispatcher, args.sync_type, **options)
        result = await dispatcher.run(args.server_id, args.sync_type, **options)
        return {args.server_id: result}


def main(argv: Sequence[str] | None = None) -> int:
    """Run the CLI. Exit code 1 if any server's job ended in ERROR."""
    parser = build_parser()
    args = parser.parse_args(argv)
    options = _job_options(args, parser)

    try:
        results = asyncio.run(_run(args, options))
    except EntityNotFoundException as e:
        logger.error("cli.unknown_server", extra={"server_id": args.server_id, "error": e.message})
        return EXIT_UNKNOWN_SERVER

    for server_id, result in results.items():
        logger.info(
            "cli.sync_finished",
            extra={
                "server_id": server_id,
                "sync_type": args.sync_type,
                "status": result.status.value,
                "errors": len(result.errors),
            },
        )
    if any(result.status == SyncStatus.ERROR for result in results.values()):
        return EXIT_SYNC_FAILED
    return EXIT_OK
