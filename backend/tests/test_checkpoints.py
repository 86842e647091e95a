from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from guest_migration.checkpoints import CheckpointManager, snapshot_digest
from guest_migration.data_store import SqlAlchemyDataStore, WriteResult
from guest_migration.db.models import MigrationCheckpointModel
from guest_migration.db.session import session_scope
from guest_migration.errors import (
    CheckpointError,
    CheckpointNotFoundError,
    MigrationInProgressError,
    RollbackError,
    RollbackNotPermittedError,
)
from guest_migration.models import (
    AccountFlashcard,
    AccountPreferences,
    AccountProgress,
    GuestDataset,
    PartialMigrationState,
    utcnow,
)
from guest_migration.repositories.checkpoints import checkpoints as checkpoint_repository
from guest_migration.telemetry import TelemetryEvent, register_listener, unregister_listener

from conftest import ACCOUNT_ID, GUEST_ID, build_guest_payload, existing_curriculum


def _dataset() -> GuestDataset:
    return GuestDataset.model_validate(build_guest_payload())


def _flashcard(card_id: str = "new-card") -> AccountFlashcard:
    return AccountFlashcard(
        id=card_id,
        account_id=ACCOUNT_ID,
        front="Front",
        back="Back",
        created_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


def test_create_checkpoint_snapshots_account(store, seed_account) -> None:
    seed_account(progress=True)
    manager = CheckpointManager(store)
    events: List[TelemetryEvent] = []
    register_listener(events.append)
    try:
        checkpoint = manager.create_checkpoint("session-1", GUEST_ID, ACCOUNT_ID, _dataset())
    finally:
        unregister_listener(events.append)

    assert checkpoint.status == "active"
    assert checkpoint.snapshot.item_counts() == {"curricula": 1, "modules": 1, "lessons": 1, "flashcards": 0}
    assert checkpoint.snapshot.progress is not None
    assert checkpoint.guest_item_counts == {"curricula": 2, "lessons": 3, "flashcards": 5}
    assert manager.get_checkpoint(checkpoint.id).snapshot == checkpoint.snapshot
    assert [event.name for event in events] == ["migration_checkpoint_created"]

    with session_scope(commit=False) as session:
        audit = checkpoint_repository.list_audit_events(session, "session-1")
        assert "checkpoint_created" in [event.event_type for event in audit]


def test_second_active_checkpoint_is_refused(store) -> None:
    manager = CheckpointManager(store)
    manager.create_checkpoint("session-1", GUEST_ID, ACCOUNT_ID, _dataset())

    with pytest.raises(CheckpointError):
        manager.create_checkpoint("session-1", "guest-2", ACCOUNT_ID, _dataset())
    with pytest.raises(MigrationInProgressError):
        manager.create_checkpoint("session-2", GUEST_ID, ACCOUNT_ID, _dataset())


def test_confirm_closes_rollback_window(store) -> None:
    manager = CheckpointManager(store)
    checkpoint = manager.create_checkpoint("session-1", GUEST_ID, ACCOUNT_ID, _dataset())

    confirmed = manager.confirm_migration_success(checkpoint.id)
    assert confirmed.confirmed
    assert manager.confirm_migration_success(checkpoint.id).status == "confirmed"
    with pytest.raises(RollbackNotPermittedError):
        manager.execute_rollback(checkpoint.id, "too late")

    # The guest may start a new migration once the previous one is confirmed.
    manager.create_checkpoint("session-2", GUEST_ID, ACCOUNT_ID, _dataset())


def test_rolled_back_checkpoint_cannot_be_confirmed(store) -> None:
    manager = CheckpointManager(store)
    checkpoint = manager.create_checkpoint("session-1", GUEST_ID, ACCOUNT_ID, _dataset())
    manager.execute_rollback(checkpoint.id, "abort")

    with pytest.raises(CheckpointError):
        manager.confirm_migration_success(checkpoint.id)
    with pytest.raises(RollbackNotPermittedError):
        manager.execute_rollback(checkpoint.id, "again")


def test_unknown_checkpoint_raises(store) -> None:
    with pytest.raises(CheckpointNotFoundError):
        CheckpointManager(store).get_checkpoint("missing")


def test_rollback_restores_snapshot(store, seed_account) -> None:
    seed_account(preferences=True)
    manager = CheckpointManager(store)
    checkpoint = manager.create_checkpoint("session-1", GUEST_ID, ACCOUNT_ID, _dataset())
    before = store.read_existing_account_data(ACCOUNT_ID)

    renamed = existing_curriculum().model_copy(update={"title": "Renamed", "modules": []})
    assert store.update_curriculum(renamed).success
    assert store.update_flashcard(_flashcard()).success
    assert store.create_flashcard(GUEST_ID, _flashcard("staged-card")).success
    assert store.save_progress(AccountProgress(account_id=ACCOUNT_ID, streak=3)).success
    assert store.delete_preferences(ACCOUNT_ID).success

    result = manager.execute_rollback(
        checkpoint.id,
        "verification failed",
        PartialMigrationState(
            created_flashcard_ids=["new-card"],
            updated_curriculum_ids=["existing-1"],
            progress_written=True,
            preferences_written=True,
        ),
    )

    assert result.success, result.errors
    assert result.deleted["flashcards"] == 1
    assert result.deleted["progress"] == 1
    assert result.restored == {"curricula": 1, "flashcards": 0, "progress": 0, "preferences": 1}
    assert store.read_existing_account_data(ACCOUNT_ID) == before
    assert store.count_staged_records(GUEST_ID) == {"curricula": 0, "flashcards": 0}
    stored = manager.get_checkpoint(checkpoint.id)
    assert stored.status == "rolled_back"
    assert stored.status_reason == "verification failed"


def test_rollback_continues_past_failed_actions(store, seed_account) -> None:
    class BrokenDeletes(SqlAlchemyDataStore):
        def delete_flashcard(self, flashcard_id: str) -> WriteResult:
            raise RuntimeError("delete refused")

        def delete_progress(self, account_id: str) -> WriteResult:
            return WriteResult.failed("delete_progress failed: locked")

    seed_account()
    broken = BrokenDeletes()
    manager = CheckpointManager(broken)
    checkpoint = manager.create_checkpoint("session-1", GUEST_ID, ACCOUNT_ID, _dataset())
    assert broken.update_flashcard(_flashcard()).success
    assert broken.save_progress(AccountProgress(account_id=ACCOUNT_ID)).success
    assert broken.update_curriculum(existing_curriculum().model_copy(update={"title": "Changed"})).success

    result = manager.execute_rollback(
        checkpoint.id,
        "integrity check failed",
        PartialMigrationState(
            created_flashcard_ids=["new-card"], updated_curriculum_ids=["existing-1"], progress_written=True
        ),
    )

    assert result.success is False
    assert len(result.errors) == 2
    assert result.errors[0].startswith("delete_flashcard:new-card")
    assert "locked" in result.errors[1]
    assert result.restored["curricula"] == 1
    assert broken.read_existing_account_data(ACCOUNT_ID).curricula[0].title == "Intro to Python"
    stored = manager.get_checkpoint(checkpoint.id)
    assert stored.status == "rolled_back"
    assert "rollback incomplete" in (stored.status_reason or "")


def test_list_and_cleanup_checkpoints(store) -> None:
    manager = CheckpointManager(store)
    confirmed = manager.create_checkpoint("session-1", GUEST_ID, ACCOUNT_ID, _dataset())
    manager.confirm_migration_success(confirmed.id)
    active = manager.create_checkpoint("session-2", GUEST_ID, ACCOUNT_ID, _dataset())

    assert {cp.id for cp in manager.list_checkpoints(GUEST_ID)} == {confirmed.id, active.id}
    assert [cp.id for cp in manager.list_checkpoints(status="active")] == [active.id]

    assert manager.cleanup_expired_checkpoints() == 0
    removed = manager.cleanup_expired_checkpoints(now=utcnow() + timedelta(days=8))

    assert removed == 1
    assert [cp.id for cp in manager.list_checkpoints(GUEST_ID)] == [active.id]


def test_rollback_only_touches_rows_written_for_its_guest(store, seed_account) -> None:
    seed_account(progress=True)
    manager = CheckpointManager(store)
    checkpoint = manager.create_checkpoint("session-1", GUEST_ID, ACCOUNT_ID, _dataset())

    # Written by another guest's migration while this checkpoint was open.
    other_card = _flashcard("other-card").model_copy(update={"source_guest_id": "guest-2"})
    assert store.update_flashcard(other_card).success
    other_progress = AccountProgress(account_id=ACCOUNT_ID, study_minutes=90, streak=9)
    assert store.save_progress(other_progress).success
    assert store.save_preferences(AccountPreferences(account_id=ACCOUNT_ID, theme="dark")).success
    # Committed for this guest but missing from the partial state.
    mine = _flashcard("mine").model_copy(update={"source_guest_id": GUEST_ID})
    assert store.update_flashcard(mine).success

    result = manager.execute_rollback(checkpoint.id, "stale checkpoint")

    assert result.success, result.errors
    assert result.deleted["flashcards"] == 1
    assert result.deleted["progress"] == 0
    assert result.deleted["preferences"] == 0
    after = store.read_existing_account_data(ACCOUNT_ID)
    assert [card.id for card in after.flashcards] == ["other-card"]
    assert after.progress is not None and after.progress.study_minutes == 90
    assert after.preferences is not None and after.preferences.theme == "dark"


def test_checkpoint_records_snapshot_digest(store, seed_account) -> None:
    seed_account(progress=True, preferences=True)
    manager = CheckpointManager(store)
    checkpoint = manager.create_checkpoint("session-1", GUEST_ID, ACCOUNT_ID, _dataset())

    stored = manager.get_checkpoint(checkpoint.id)
    assert stored.snapshot_digest is not None
    assert stored.snapshot_digest == snapshot_digest(stored.snapshot)


def test_tampered_snapshot_refuses_rollback(store, seed_account) -> None:
    seed_account()
    manager = CheckpointManager(store)
    checkpoint = manager.create_checkpoint("session-1", GUEST_ID, ACCOUNT_ID, _dataset())
    assert store.update_flashcard(_flashcard("mine").model_copy(update={"source_guest_id": GUEST_ID})).success
    with session_scope() as session:
        model = session.get(MigrationCheckpointModel, checkpoint.id)
        assert model is not None
        model.snapshot = {**model.snapshot, "curricula": []}

    with pytest.raises(RollbackError):
        manager.execute_rollback(checkpoint.id, "verification failed")

    assert manager.get_checkpoint(checkpoint.id).status == "active"
    after = store.read_existing_account_data(ACCOUNT_ID)
    assert [c.id for c in after.curricula] == ["existing-1"]
    assert [card.id for card in after.flashcards] == ["mine"]
