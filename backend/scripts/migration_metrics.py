"""Print a one-off JSON snapshot of migration backlog and pool health."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from guest_migration.db.models import GuestProfileModel, MigrationCheckpointModel
from guest_migration.db.monitoring import get_pool_snapshot
from guest_migration.db.session import get_engine, session_scope

LOGGER = logging.getLogger("guest_migration.migration_metrics")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--include-pool",
        action="store_true",
        help="Include connection pool counters in the snapshot.",
    )
    return parser.parse_args(argv)


def collect_metrics(session: Session) -> Dict[str, Any]:
    by_status = dict(
        session.execute(
            select(MigrationCheckpointModel.status, func.count()).group_by(MigrationCheckpointModel.status)
        ).all()
    )
    pending_guests = session.execute(
        select(func.count())
        .select_from(GuestProfileModel)
        .where(GuestProfileModel.migrated_at.is_(None))
    ).scalar_one()
    migrated_guests = session.execute(
        select(func.count()).select_from(GuestProfileModel).where(GuestProfileModel.migrated_at.is_not(None))
    ).scalar_one()
    return {
        "checkpoints": {status: by_status.get(status, 0) for status in ("active", "confirmed", "rolled_back")},
        "pendingGuests": pending_guests,
        "migratedGuests": migrated_guests,
    }


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    try:
        with session_scope(commit=False) as session:
            payload: Dict[str, Any] = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                **collect_metrics(session),
            }
        if args.include_pool:
            payload["pool"] = get_pool_snapshot(get_engine())
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Failed to collect migration metrics: %s", exc)
        return 1
    print(json.dumps(payload))
    return 0


if __name__ == "__main__":
    sys.exit(main())
