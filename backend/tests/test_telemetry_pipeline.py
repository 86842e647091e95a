from __future__ import annotations

from sqlalchemy import func, select

from guest_migration.db.models import MigrationAuditEventModel
from guest_migration.db.session import session_scope
from guest_migration.repositories.checkpoints import checkpoints
from guest_migration.telemetry import TelemetryEvent, emit_event, register_listener, unregister_listener
from guest_migration.telemetry_pipeline import _MONITORED_EVENTS  # ensure module loads listener


def test_lifecycle_events_persist(database) -> None:
    session_id = "b5c1d0a4-telemetry"

    emit_event(
        "migration_rolled_back",
        session_id=session_id,
        guest_id="guest-telemetry",
        account_id="acct-telemetry",
        checkpoint_id="cp-1",
        success=True,
    )
    emit_event("migration_phase_changed", session_id=session_id, phase="validation")

    with session_scope(commit=False) as session:
        events = checkpoints.list_audit_events(session, session_id)
        assert [event.event_type for event in events] == ["migration_rolled_back"]
        assert events[0].actor == "telemetry"
        assert events[0].guest_id == "guest-telemetry"
        assert events[0].payload["checkpoint_id"] == "cp-1"
    assert "migration_phase_changed" not in _MONITORED_EVENTS


def test_events_without_session_are_ignored(database) -> None:
    emit_event("migration_session_started", guest_id="guest-telemetry")

    with session_scope(commit=False) as session:
        count = session.execute(select(func.count()).select_from(MigrationAuditEventModel)).scalar_one()
    assert count == 0


def test_listener_subscriptions_filter_by_event_name() -> None:
    received: list[TelemetryEvent] = []
    register_listener(received.append, events={"migration_rolled_back"})
    try:
        emit_event("migration_phase_changed", session_id="s-1", phase="validation")
        emit_event("migration_rolled_back", session_id="s-1", errors=("a", "b"))
    finally:
        unregister_listener(received.append)

    assert [event.name for event in received] == ["migration_rolled_back"]
    assert received[0].session_id == "s-1"
    assert received[0].payload["errors"] == ["a", "b"]


def test_failing_listener_does_not_break_emission() -> None:
    received: list[str] = []

    def broken(_: TelemetryEvent) -> None:
        raise RuntimeError("listener down")

    def recorder(event: TelemetryEvent) -> None:
        received.append(event.name)

    register_listener(broken)
    register_listener(recorder)
    try:
        emit_event("db_pool_status", connects=1)
    finally:
        unregister_listener(broken)
        unregister_listener(recorder)

    assert received == ["db_pool_status"]
