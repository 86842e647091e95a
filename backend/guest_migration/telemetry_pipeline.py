"""Telemetry listener that persists migration lifecycle events to the audit trail."""

from __future__ import annotations

import logging
from typing import FrozenSet

from .db.session import session_scope
from .repositories.checkpoints import checkpoints
from .telemetry import TelemetryEvent, register_listener

logger = logging.getLogger(__name__)

_MONITORED_EVENTS: FrozenSet[str] = frozenset(
    {
        "migration_session_started",
        "migration_session_completed",
        "migration_checkpoint_created",
        "migration_checkpoint_confirmed",
        "migration_rolled_back",
    }
)


def _persist_event(event: TelemetryEvent) -> None:
    session_id = event.session_id
    if session_id is None:
        logger.debug("Skipping %s without a migration session", event.name)
        return
    try:
        with session_scope() as session:
            checkpoints.record_audit_event(
                session,
                event.name,
                {**event.payload, "emitted_at": event.emitted_at.isoformat()},
                session_id=session_id,
                guest_id=event.payload.get("guest_id"),
                account_id=event.payload.get("account_id"),
                actor="telemetry",
            )
    except Exception:  # noqa: BLE001
        logger.exception("Failed to persist telemetry event %s for session=%s", event.name, session_id)


register_listener(_persist_event, events=_MONITORED_EVENTS)

__all__ = ["_MONITORED_EVENTS"]
