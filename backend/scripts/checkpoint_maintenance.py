"""Housekeeping for migration checkpoints.

Rolls back checkpoints left active by crashed workers (they would otherwise
block the guest from migrating again) and deletes closed checkpoints past
the retention window.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import timedelta
from typing import Optional

from guest_migration.checkpoints import CheckpointManager
from guest_migration.config import get_settings
from guest_migration.data_store import SqlAlchemyDataStore
from guest_migration.errors import CheckpointError, RollbackError
from guest_migration.models import utcnow

LOGGER = logging.getLogger("guest_migration.checkpoint_maintenance")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Clean up guest migration checkpoints.")
    parser.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Delete confirmed/rolled-back checkpoints older than this (default: FATHOM_CHECKPOINT_RETENTION_DAYS).",
    )
    parser.add_argument(
        "--stale-after-minutes",
        type=int,
        default=int(os.getenv("FATHOM_STALE_CHECKPOINT_MINUTES", "60")),
        help="Roll back active checkpoints older than this many minutes (0 disables).",
    )
    parser.add_argument("--dry-run", action="store_true", help="Report what would change without writing.")
    return parser.parse_args(argv)


def rollback_stale_checkpoints(manager: CheckpointManager, *, stale_after: timedelta, dry_run: bool) -> int:
    cutoff = utcnow() - stale_after
    stale = [cp for cp in manager.list_checkpoints(status="active") if cp.created_at < cutoff]
    for checkpoint in stale:
        LOGGER.warning(
            "Checkpoint %s for guest %s has been active since %s",
            checkpoint.id,
            checkpoint.guest_id,
            checkpoint.created_at.isoformat(),
        )
        if dry_run:
            continue
        try:
            result = manager.execute_rollback(checkpoint.id, "stale checkpoint rolled back by maintenance")
        except (CheckpointError, RollbackError) as exc:
            LOGGER.error("Could not roll back checkpoint %s: %s", checkpoint.id, exc)
            continue
        if not result.success:
            LOGGER.error("Rollback of %s incomplete: %s", checkpoint.id, "; ".join(result.errors))
    return len(stale)


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("FATHOM_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        settings = get_settings()
        manager = CheckpointManager(SqlAlchemyDataStore(), settings=settings)
        stale = 0
        if args.stale_after_minutes > 0:
            stale = rollback_stale_checkpoints(
                manager,
                stale_after=timedelta(minutes=args.stale_after_minutes),
                dry_run=args.dry_run,
            )
        removed = 0
        if not args.dry_run:
            removed = manager.cleanup_expired_checkpoints(args.retention_days)
        print(json.dumps({"staleCheckpoints": stale, "removedCheckpoints": removed, "dryRun": args.dry_run}))
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Checkpoint maintenance failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
