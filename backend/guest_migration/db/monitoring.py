"""Connection pool observability for the migration database.

Every adapter call opens its own short transaction, so a connection held
for long usually means a stuck migration step. Besides the pool counters
we track how long connections stay checked out and log the slow ones.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Dict

from sqlalchemy import event
from sqlalchemy.engine import Engine

from ..telemetry import emit_event

logger = logging.getLogger(__name__)

_CHECKOUT_STARTED = "guest_migration_checkout_started"


@dataclass
class PoolTelemetryState:
    connects: int = 0
    checkouts: int = 0
    checkins: int = 0
    checked_out: int = 0
    slow_checkins: int = 0
    longest_hold_seconds: float = 0.0
    last_emit: float = 0.0

    def as_counters(self) -> Dict[str, object]:
        return {
            "connects": self.connects,
            "checkouts": self.checkouts,
            "checkins": self.checkins,
            "checkedOut": self.checked_out,
            "slowCheckins": self.slow_checkins,
            "longestHoldSeconds": round(self.longest_hold_seconds, 3),
        }


_STATE_BY_ENGINE: Dict[int, PoolTelemetryState] = {}
_TELEMETRY_INTERVAL = float(os.getenv("FATHOM_DB_TELEMETRY_INTERVAL", "30"))
_SLOW_CHECKOUT_SECONDS = float(os.getenv("FATHOM_DB_SLOW_CHECKOUT_SECONDS", "5"))


def instrument_engine(engine: Engine) -> None:
    """Attach pool listeners; calling it twice for one engine is a no-op."""
    key = id(engine)
    if key in _STATE_BY_ENGINE:
        return

    state = PoolTelemetryState()
    _STATE_BY_ENGINE[key] = state

    def maybe_emit(pool_event: str) -> None:
        now = time.monotonic()
        if _TELEMETRY_INTERVAL > 0 and state.last_emit and (now - state.last_emit) < _TELEMETRY_INTERVAL:
            return
        state.last_emit = now
        emit_event(
            "db_pool_status",
            status=_safe_pool_status(engine),
            event=pool_event,
            connects=state.connects,
            checkouts=state.checkouts,
            checkins=state.checkins,
            checked_out=state.checked_out,
            slow_checkins=state.slow_checkins,
        )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        if engine.dialect.name == "sqlite":
            # Compensating deletes rely on module/lesson cascades.
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
        state.connects += 1
        maybe_emit("db_pool_connect")

    @event.listens_for(engine, "checkout")
    def _on_checkout(dbapi_connection, connection_record, connection_proxy) -> None:  # type: ignore[no-untyped-def]
        connection_record.info[_CHECKOUT_STARTED] = time.monotonic()
        state.checkouts += 1
        state.checked_out += 1
        maybe_emit("db_pool_checkout")

    @event.listens_for(engine, "checkin")
    def _on_checkin(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
        state.checkins += 1
        state.checked_out = max(0, state.checked_out - 1)
        started = connection_record.info.pop(_CHECKOUT_STARTED, None)
        if started is not None:
            held = time.monotonic() - started
            state.longest_hold_seconds = max(state.longest_hold_seconds, held)
            if held >= _SLOW_CHECKOUT_SECONDS:
                state.slow_checkins += 1
                logger.warning("Database connection held for %.2fs before checkin", held)
        maybe_emit("db_pool_checkin")


def forget_engine(engine: Engine) -> None:
    _STATE_BY_ENGINE.pop(id(engine), None)


def get_pool_snapshot(engine: Engine) -> Dict[str, object]:
    """Counters gathered so far for ``engine`` plus the live pool status."""
    state = _STATE_BY_ENGINE.get(id(engine)) or PoolTelemetryState()
    return {"status": _safe_pool_status(engine), **state.as_counters()}


def _safe_pool_status(engine: Engine) -> str:
    try:
        return engine.pool.status()  # type: ignore[no-untyped-call]
    except Exception as exc:  # pragma: no cover - status is informational
        return f"unavailable: {exc}"


__all__ = [
    "PoolTelemetryState",
    "forget_engine",
    "get_pool_snapshot",
    "instrument_engine",
]
