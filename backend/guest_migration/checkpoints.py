"""Checkpoint creation and compensating rollback for guest migrations."""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Mapping, Optional, Union

from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, get_settings
from .data_store import DataStoreAdapter, WriteResult
from .db.session import session_scope
from .errors import (
    CheckpointError,
    CheckpointNotFoundError,
    MigrationInProgressError,
    PersistenceError,
    RollbackError,
    RollbackNotPermittedError,
)
from .models import (
    AccountCurriculum,
    AccountDataset,
    AccountFlashcard,
    Checkpoint,
    CheckpointStatus,
    GuestDataset,
    PartialMigrationState,
    RollbackResult,
    utcnow,
)
from .repositories.checkpoints import CheckpointRepository, checkpoints as checkpoint_repository
from .telemetry import emit_event

logger = logging.getLogger(__name__)


class CheckpointManager:
    """Snapshots account state before writes and restores it on failure.

    The manager holds no per-migration state; everything it needs travels in
    the persisted checkpoint, so one instance serves concurrent guests.
    """

    def __init__(
        self,
        store: DataStoreAdapter,
        repository: Optional[CheckpointRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._store = store
        self._repo = repository or checkpoint_repository
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def create_checkpoint(
        self,
        session_id: str,
        guest_id: str,
        account_id: str,
        dataset: GuestDataset,
    ) -> Checkpoint:
        snapshot = self._store.read_existing_account_data(account_id)
        checkpoint = Checkpoint(
            id=str(uuid.uuid4()),
            session_id=session_id,
            guest_id=guest_id,
            account_id=account_id,
            snapshot=snapshot,
            snapshot_digest=snapshot_digest(snapshot),
            guest_item_counts={
                "curricula": len(dataset.curricula),
                "lessons": dataset.lesson_count(),
                "flashcards": len(dataset.flashcards),
            },
        )
        try:
            with session_scope() as session:
                if self._repo.find_active(session, session_id=session_id) is not None:
                    raise CheckpointError(f"Session {session_id} already has an unconfirmed checkpoint.")
                active = self._repo.find_active(session, guest_id=guest_id)
                if active is not None:
                    raise MigrationInProgressError(
                        f"Guest {guest_id} already has a migration in progress (session {active.session_id})."
                    )
                stored = self._repo.create(session, checkpoint)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to persist checkpoint: {exc}") from exc

        emit_event(
            "migration_checkpoint_created",
            session_id=session_id,
            guest_id=guest_id,
            account_id=account_id,
            checkpoint_id=stored.id,
            snapshot_counts=snapshot.item_counts(),
        )
        return stored

    def get_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        with session_scope(commit=False) as session:
            checkpoint = self._repo.get(session, checkpoint_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(f"Checkpoint {checkpoint_id} does not exist.")
        return checkpoint

    def list_checkpoints(
        self,
        guest_id: Optional[str] = None,
        status: Optional[CheckpointStatus] = None,
    ) -> List[Checkpoint]:
        with session_scope(commit=False) as session:
            return self._repo.list(session, guest_id=guest_id, statuses=[status] if status else None)

    def confirm_migration_success(self, checkpoint_id: str) -> Checkpoint:
        """Close the rollback window for ``checkpoint_id``."""
        with session_scope() as session:
            checkpoint = self._repo.get(session, checkpoint_id)
            if checkpoint is None:
                raise CheckpointNotFoundError(f"Checkpoint {checkpoint_id} does not exist.")
            if checkpoint.status == "confirmed":
                return checkpoint
            if checkpoint.status != "active":
                raise CheckpointError(f"Checkpoint {checkpoint_id} was {checkpoint.status} and cannot be confirmed.")
            confirmed = self._repo.set_status(session, checkpoint_id, "confirmed", reason="migration verified")
        assert confirmed is not None
        emit_event(
            "migration_checkpoint_confirmed",
            session_id=confirmed.session_id,
            guest_id=confirmed.guest_id,
            account_id=confirmed.account_id,
            checkpoint_id=checkpoint_id,
        )
        return confirmed

    def execute_rollback(
        self,
        checkpoint_id: str,
        reason: str,
        partial_state: Optional[PartialMigrationState] = None,
    ) -> RollbackResult:
        """Undo writes made since ``checkpoint_id`` and restore the snapshot.

        Only rows this guest's migration wrote are compensated: ids recorded in
        ``partial_state`` and rows whose ``source_guest_id`` is the checkpoint's
        guest. Progress and preferences are restored only when ``partial_state``
        marks them written. Best effort: each compensating action runs once,
        failures are collected into ``errors`` and the remaining actions still
        run. Raises ``RollbackError`` before touching anything when the stored
        snapshot no longer matches its digest.
        """
        checkpoint = self.get_checkpoint(checkpoint_id)
        if checkpoint.status != "active":
            raise RollbackNotPermittedError(
                f"Checkpoint {checkpoint_id} is {checkpoint.status}; rollback is no longer permitted."
            )
        if checkpoint.snapshot_digest and snapshot_digest(checkpoint.snapshot) != checkpoint.snapshot_digest:
            logger.error("Snapshot of checkpoint %s does not match its digest; refusing rollback", checkpoint_id)
            raise RollbackError(
                f"Snapshot of checkpoint {checkpoint_id} failed its integrity check; nothing was rolled back.",
                details={"checkpoint_id": checkpoint_id, "snapshot_counts": checkpoint.snapshot.item_counts()},
            )

        snapshot = checkpoint.snapshot
        errors: List[str] = []
        deleted: Dict[str, int] = {"staged": 0, "curricula": 0, "flashcards": 0, "progress": 0, "preferences": 0}
        restored: Dict[str, int] = {"curricula": 0, "flashcards": 0, "progress": 0, "preferences": 0}

        def attempt(label: str, action: Callable[[], WriteResult]) -> bool:
            try:
                result = action()
            except Exception as exc:  # noqa: BLE001
                errors.append(f"{label}: {exc}")
                logger.exception("Compensating action %s failed", label)
                return False
            if not result.success:
                errors.append(f"{label}: {result.error}")
                return False
            return result.record_id is not None

        if attempt("discard_guest_staging", lambda: self._store.discard_guest_staging(checkpoint.guest_id)):
            deleted["staged"] += 1

        # Only rows written for this guest are compensated; other migrations
        # into the same account since the snapshot stay untouched.
        partial = partial_state or PartialMigrationState()
        current = self._read_current(checkpoint.account_id, errors)
        current_curricula = {c.id: c for c in current.curricula} if current else {}
        current_flashcards = {f.id: f for f in current.flashcards} if current else {}
        snapshot_curricula = {c.id: c for c in snapshot.curricula}
        snapshot_flashcards = {f.id: f for f in snapshot.flashcards}

        for curriculum_id in _written_ids(
            partial.created_curriculum_ids, partial.updated_curriculum_ids, current_curricula, checkpoint.guest_id
        ):
            original = snapshot_curricula.get(curriculum_id)
            if original is None:
                if attempt(
                    f"delete_curriculum:{curriculum_id}",
                    lambda cid=curriculum_id: self._store.delete_curriculum(cid),
                ):
                    deleted["curricula"] += 1
            elif current is None or current_curricula.get(curriculum_id) != original:
                if attempt(
                    f"restore_curriculum:{curriculum_id}",
                    lambda c=original: self._store.restore_curriculum(c),
                ):
                    restored["curricula"] += 1

        for flashcard_id in _written_ids(
            partial.created_flashcard_ids, partial.updated_flashcard_ids, current_flashcards, checkpoint.guest_id
        ):
            original_card = snapshot_flashcards.get(flashcard_id)
            if original_card is None:
                if attempt(
                    f"delete_flashcard:{flashcard_id}",
                    lambda fid=flashcard_id: self._store.delete_flashcard(fid),
                ):
                    deleted["flashcards"] += 1
            elif current is None or current_flashcards.get(flashcard_id) != original_card:
                if attempt(
                    f"restore_flashcard:{flashcard_id}",
                    lambda f=original_card: self._store.restore_flashcard(f),
                ):
                    restored["flashcards"] += 1

        if partial.progress_written:
            current_progress = current.progress if current else None
            if snapshot.progress is None:
                if current is None or current_progress is not None:
                    if attempt("delete_progress", lambda: self._store.delete_progress(checkpoint.account_id)):
                        deleted["progress"] += 1
            elif current is None or current_progress != snapshot.progress:
                progress = snapshot.progress
                if attempt("restore_progress", lambda: self._store.save_progress(progress)):
                    restored["progress"] += 1

        if partial.preferences_written:
            current_preferences = current.preferences if current else None
            if snapshot.preferences is None:
                if current is None or current_preferences is not None:
                    if attempt("delete_preferences", lambda: self._store.delete_preferences(checkpoint.account_id)):
                        deleted["preferences"] += 1
            elif current is None or current_preferences != snapshot.preferences:
                preferences = snapshot.preferences
                if attempt("restore_preferences", lambda: self._store.save_preferences(preferences)):
                    restored["preferences"] += 1

        attempt("release_guest", lambda: self._store.release_guest(checkpoint.guest_id))

        status_reason = reason if not errors else f"{reason} (rollback incomplete: {len(errors)} error(s))"
        try:
            with session_scope() as session:
                self._repo.set_status(
                    session,
                    checkpoint_id,
                    "rolled_back",
                    reason=status_reason,
                    payload={"errors": errors, "deleted": deleted, "restored": restored},
                )
        except SQLAlchemyError as exc:
            errors.append(f"update_checkpoint_status: {exc}")
            logger.exception("Failed to mark checkpoint %s rolled back", checkpoint_id)

        result = RollbackResult(
            checkpoint_id=checkpoint_id,
            success=not errors,
            errors=errors,
            deleted=deleted,
            restored=restored,
        )
        emit_event(
            "migration_rolled_back",
            session_id=checkpoint.session_id,
            guest_id=checkpoint.guest_id,
            account_id=checkpoint.account_id,
            checkpoint_id=checkpoint_id,
            reason=reason,
            success=result.success,
            errors=errors,
        )
        if errors:
            logger.error("Rollback of checkpoint %s finished with %s error(s)", checkpoint_id, len(errors))
        else:
            logger.info("Rollback of checkpoint %s restored the pre-migration snapshot", checkpoint_id)
        return result

    def cleanup_expired_checkpoints(
        self,
        older_than_days: Optional[int] = None,
        *,
        now: Optional[datetime] = None,
    ) -> int:
        """Delete confirmed or rolled-back checkpoints past the retention window."""
        days = self.settings.checkpoint_retention_days if older_than_days is None else older_than_days
        cutoff = (now or utcnow()) - timedelta(days=days)
        with session_scope() as session:
            removed = self._repo.delete_closed_before(session, cutoff)
        if removed:
            logger.info("Removed %s expired migration checkpoints (cutoff=%s)", removed, cutoff.isoformat())
        return removed

    def _read_current(self, account_id: str, errors: List[str]) -> Optional[AccountDataset]:
        try:
            return self._store.read_existing_account_data(account_id)
        except Exception as exc:  # noqa: BLE001
            errors.append(f"read_existing_account_data: {exc}")
            logger.exception("Could not read account %s during rollback", account_id)
            return None


def _written_ids(
    created: List[str],
    updated: List[str],
    current: Mapping[str, Union[AccountCurriculum, AccountFlashcard]],
    guest_id: str,
) -> List[str]:
    """Ids recorded by the migration plus current rows attributed to ``guest_id``."""
    ids = list(dict.fromkeys([*created, *updated]))
    seen = set(ids)
    ids.extend(record_id for record_id, record in current.items()
               if record.source_guest_id == guest_id and record_id not in seen)
    return ids


def snapshot_digest(snapshot: AccountDataset) -> str:
    """SHA-256 over the canonical JSON form of ``snapshot``."""
    canonical = json.dumps(snapshot.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


__all__ = ["CheckpointManager", "snapshot_digest"]
