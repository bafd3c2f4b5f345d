#!/usr/bin/env python3
"""
Command-line access to the local sync store: run one sync cycle, or
inspect the outbox and the cursor.
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Optional, Sequence

from .config import store_config_from_env, sync_config_from_env
from .errors import RaisyncError
from .store import CursorStore, LocalStore, Outbox
from .sync import HttpTransport, SyncOrchestrator


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="raisync", description="RaiAI offline sync client")
    parser.add_argument("--db", help="SQLAlchemy URL of the local store (env RAISYNC_DB_URL)")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Push the outbox, then pull and merge deltas")
    sync.add_argument("--api-url", help="API origin (env RAISYNC_API_URL)")
    sync.add_argument("--user", help="User id the private data belongs to (env RAISYNC_USER_ID)")
    sync.add_argument("--area", action="append", default=[], help="Area code filter (repeatable)")
    sync.add_argument("--crop", action="append", default=[], help="Crop key filter (repeatable)")
    sync.add_argument(
        "--batch-size", type=int, help="Mutations per push request (env RAISYNC_BATCH_SIZE)"
    )
    sync.add_argument(
        "--timeout",
        type=float,
        help="Request timeout in seconds, 0 for none (env RAISYNC_REQUEST_TIMEOUT_S)",
    )

    sub.add_parser("outbox", help="List queued mutations in retry order")
    sub.add_parser("cursor", help="Print the current sync cursor")
    return parser


def _environ(args: argparse.Namespace) -> dict[str, str]:
    """RAISYNC_* environment with command-line options taking precedence."""
    overrides = {
        "RAISYNC_DB_URL": args.db,
        "RAISYNC_API_URL": getattr(args, "api_url", None),
        "RAISYNC_USER_ID": getattr(args, "user", None),
        "RAISYNC_BATCH_SIZE": getattr(args, "batch_size", None),
        "RAISYNC_REQUEST_TIMEOUT_S": getattr(args, "timeout", None),
    }
    env = dict(os.environ)
    env.update({key: str(value) for key, value in overrides.items() if value is not None})
    return env


def _cmd_sync(args: argparse.Namespace, env: dict[str, str], store: LocalStore) -> int:
    config = sync_config_from_env(env)
    with HttpTransport(config.api_url, timeout_s=config.request_timeout_s) as transport:
        orchestrator = SyncOrchestrator(store, transport, config)
        try:
            report = orchestrator.sync(areas=args.area, crops=args.crop)
        except RaisyncError as exc:
            print(f"sync failed: {exc}", file=sys.stderr)
            return 1

    if report.push_error:
        print(f"push failed, mutations kept: {report.push_error}")
    print(f"pushed: {report.push.applied}  requeued: {report.push.requeued}")
    for collection, count in sorted(report.merged.items()):
        print(f"merged {collection}: {count}")
    print(f"cursor: {report.cursor}")
    return 0


def _cmd_outbox(store: LocalStore) -> int:
    pending = Outbox(store).peek()
    for mutation in pending:
        print(
            f"{mutation.mutation_id}  {mutation.client_ts}  "
            f"{mutation.entity.value}/{mutation.op.value}  user={mutation.user_id}"
        )
    print(f"{len(pending)} pending")
    return 0


def _cmd_cursor(store: LocalStore) -> int:
    print(CursorStore(store).get() or "(none)")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    env = _environ(args)
    try:
        with LocalStore(store_config_from_env(env)) as store:
            if args.command == "sync":
                return _cmd_sync(args, env, store)
            if args.command == "outbox":
                return _cmd_outbox(store)
            return _cmd_cursor(store)
    except ValueError as exc:
        parser.error(str(exc))
    except RaisyncError as exc:
        print(f"error: {exc}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
