"""Wait for the database and create the migration service schema.

Invoked during deploys before the API starts accepting traffic. With
``--check-only`` nothing is created; the exit code is 2 when tables the
migration engine needs are missing.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from typing import List, Optional

from sqlalchemy import inspect, text
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from guest_migration.db import models  # noqa: F401  registers the tables
from guest_migration.db.base import Base
from guest_migration.db.session import create_schema, get_engine

LOGGER = logging.getLogger("guest_migration.init_database")
DEFAULT_TIMEOUT = int(os.getenv("FATHOM_DB_INIT_TIMEOUT", "60"))
DEFAULT_POLL_INTERVAL = float(os.getenv("FATHOM_DB_INIT_POLL_INTERVAL", "3"))
EXIT_SCHEMA_INCOMPLETE = 2


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create migration tables once the database is reachable.")
    parser.add_argument("--timeout", type=int, default=DEFAULT_TIMEOUT, help="Seconds to keep probing the database.")
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=DEFAULT_POLL_INTERVAL,
        help="Pause between readiness probes, in seconds.",
    )
    parser.add_argument(
        "--check-only",
        action="store_true",
        help="Report missing migration tables without creating them.",
    )
    return parser.parse_args(argv)


def wait_for_database(*, timeout: int, poll_interval: float) -> None:
    """Probe with ``SELECT 1`` until it succeeds; give up after ``timeout`` seconds."""
    deadline = time.monotonic() + timeout
    last_error: Optional[Exception] = None
    attempts = 0
    engine = get_engine()
    while time.monotonic() < deadline:
        attempts += 1
        try:
            with engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            LOGGER.info("Database reachable after %d probe(s).", attempts)
            return
        except OperationalError as exc:
            last_error = exc
            LOGGER.warning("Database not ready (probe %d): %s", attempts, exc)
        except SQLAlchemyError as exc:
            last_error = exc
            LOGGER.error("Database error during readiness probe: %s", exc)
            break
        time.sleep(poll_interval)
    raise RuntimeError("Database did not become ready in time.") from last_error


def missing_tables() -> List[str]:
    existing = set(inspect(get_engine()).get_table_names())
    return sorted(set(Base.metadata.tables) - existing)


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=os.getenv("FATHOM_LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(argv)
    try:
        wait_for_database(timeout=args.timeout, poll_interval=args.poll_interval)
        if args.check_only:
            missing = missing_tables()
            if missing:
                LOGGER.error("Migration schema incomplete, missing: %s", ", ".join(missing))
                return EXIT_SCHEMA_INCOMPLETE
            LOGGER.info("Migration schema complete.")
            return 0
        created = create_schema()
        LOGGER.info("Schema ready, %d table(s) created.", len(created))
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Database initialisation failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
