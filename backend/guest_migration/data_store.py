"""Persistence adapter and guest profile provider consumed by the migration engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from .config import get_settings
from .db.session import session_scope
from .errors import PersistenceError
from .models import (
    AccountCurriculum,
    AccountDataset,
    AccountFlashcard,
    AccountLesson,
    AccountModule,
    AccountPreferences,
    AccountProgress,
    GuestDataset,
    GuestUsageStats,
    ensure_utc,
)
from .repositories.account_data import AccountDataRepository, account_data

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    success: bool
    record_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, record_id: Optional[str] = None) -> "WriteResult":
        return cls(success=True, record_id=record_id)

    @classmethod
    def failed(cls, error: str) -> "WriteResult":
        return cls(success=False, error=error)


@dataclass
class CommitResult:
    success: bool
    counts: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None


class DataStoreAdapter(Protocol):
    """Data-access contract the orchestrator, validator and rollback manager rely on."""

    def read_existing_account_data(self, account_id: str) -> AccountDataset: ...

    def create_curriculum(self, guest_id: str, curriculum: AccountCurriculum) -> WriteResult: ...

    def create_module(self, guest_id: str, curriculum_id: str, module: AccountModule) -> WriteResult: ...

    def create_lesson(self, guest_id: str, module_id: str, lesson: AccountLesson) -> WriteResult: ...

    def create_flashcard(self, guest_id: str, flashcard: AccountFlashcard) -> WriteResult: ...

    def update_curriculum(self, curriculum: AccountCurriculum) -> WriteResult: ...

    def update_flashcard(self, flashcard: AccountFlashcard) -> WriteResult: ...

    def save_progress(self, progress: AccountProgress) -> WriteResult: ...

    def save_preferences(self, preferences: AccountPreferences) -> WriteResult: ...

    def commit_guest_to_account(self, guest_id: str, account_id: str) -> CommitResult: ...

    def count_staged_records(self, guest_id: str) -> Dict[str, int]: ...

    def discard_guest_staging(self, guest_id: str) -> WriteResult: ...

    def delete_curriculum(self, curriculum_id: str) -> WriteResult: ...

    def delete_flashcard(self, flashcard_id: str) -> WriteResult: ...

    def restore_curriculum(self, curriculum: AccountCurriculum) -> WriteResult: ...

    def restore_flashcard(self, flashcard: AccountFlashcard) -> WriteResult: ...

    def delete_progress(self, account_id: str) -> WriteResult: ...

    def delete_preferences(self, account_id: str) -> WriteResult: ...

    def release_guest(self, guest_id: str) -> WriteResult: ...


class GuestProfileProvider(Protocol):
    def get_guest_dataset(self, guest_id: str) -> Optional[GuestDataset]: ...

    def get_guest_usage_stats(self, guest_id: str) -> GuestUsageStats: ...

    def is_guest_consumed(self, guest_id: str) -> bool: ...

    def record_guest_snapshot(self, guest_id: str, dataset: GuestDataset) -> GuestUsageStats: ...

    def track_guest_event(self, guest_id: str, event_type: str, payload: Dict[str, Any]) -> WriteResult: ...


class SqlAlchemyDataStore:
    """Adapter over the relational store; each call runs in its own transaction."""

    def __init__(self, repository: Optional[AccountDataRepository] = None) -> None:
        self._repo = repository or account_data

    # -- reads -------------------------------------------------------------

    def read_existing_account_data(self, account_id: str) -> AccountDataset:
        try:
            with session_scope(commit=False) as session:
                return self._repo.read_account(session, account_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read account data for {account_id}: {exc}") from exc

    def count_staged_records(self, guest_id: str) -> Dict[str, int]:
        try:
            with session_scope(commit=False) as session:
                return self._repo.count_staged(session, guest_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to count staged records for {guest_id}: {exc}") from exc

    # -- staged writes -----------------------------------------------------

    def create_curriculum(self, guest_id: str, curriculum: AccountCurriculum) -> WriteResult:
        return self._write("create_curriculum", lambda s: self._repo.stage_curriculum(s, guest_id, curriculum))

    def create_module(self, guest_id: str, curriculum_id: str, module: AccountModule) -> WriteResult:
        return self._write("create_module", lambda s: self._repo.stage_module(s, curriculum_id, module))

    def create_lesson(self, guest_id: str, module_id: str, lesson: AccountLesson) -> WriteResult:
        return self._write("create_lesson", lambda s: self._repo.stage_lesson(s, module_id, lesson))

    def create_flashcard(self, guest_id: str, flashcard: AccountFlashcard) -> WriteResult:
        return self._write("create_flashcard", lambda s: self._repo.stage_flashcard(s, guest_id, flashcard))

    def commit_guest_to_account(self, guest_id: str, account_id: str) -> CommitResult:
        try:
            with session_scope() as session:
                counts = self._repo.commit_guest(session, guest_id, account_id)
        except (SQLAlchemyError, ValueError) as exc:
            logger.warning("Commit of guest %s into account %s failed: %s", guest_id, account_id, exc)
            return CommitResult(success=False, error=str(exc))
        logger.info(
            "Committed guest %s into account %s (curricula=%s flashcards=%s)",
            guest_id,
            account_id,
            counts["curricula"],
            counts["flashcards"],
        )
        return CommitResult(success=True, counts=counts)

    # -- account writes ----------------------------------------------------

    def update_curriculum(self, curriculum: AccountCurriculum) -> WriteResult:
        return self._write("update_curriculum", lambda s: self._repo.upsert_curriculum(s, curriculum))

    def update_flashcard(self, flashcard: AccountFlashcard) -> WriteResult:
        return self._write("update_flashcard", lambda s: self._repo.upsert_flashcard(s, flashcard))

    def save_progress(self, progress: AccountProgress) -> WriteResult:
        def _save(session: Any) -> str:
            self._repo.upsert_progress(session, progress)
            return progress.account_id

        return self._write("save_progress", _save)

    def save_preferences(self, preferences: AccountPreferences) -> WriteResult:
        def _save(session: Any) -> str:
            self._repo.upsert_preferences(session, preferences)
            return preferences.account_id

        return self._write("save_preferences", _save)

    # -- compensating primitives ------------------------------------------

    def discard_guest_staging(self, guest_id: str) -> WriteResult:
        def _discard(session: Any) -> str:
            counts = self._repo.discard_staging(session, guest_id)
            return f"curricula={counts['curricula']},flashcards={counts['flashcards']}"

        return self._write("discard_guest_staging", _discard)

    def delete_curriculum(self, curriculum_id: str) -> WriteResult:
        return self._write(
            "delete_curriculum",
            lambda s: curriculum_id if self._repo.delete_curriculum(s, curriculum_id) else None,
        )

    def delete_flashcard(self, flashcard_id: str) -> WriteResult:
        return self._write(
            "delete_flashcard",
            lambda s: flashcard_id if self._repo.delete_flashcard(s, flashcard_id) else None,
        )

    def restore_curriculum(self, curriculum: AccountCurriculum) -> WriteResult:
        return self._write("restore_curriculum", lambda s: self._repo.upsert_curriculum(s, curriculum))

    def restore_flashcard(self, flashcard: AccountFlashcard) -> WriteResult:
        return self._write("restore_flashcard", lambda s: self._repo.upsert_flashcard(s, flashcard))

    def delete_progress(self, account_id: str) -> WriteResult:
        return self._write(
            "delete_progress",
            lambda s: account_id if self._repo.delete_progress(s, account_id) else None,
        )

    def delete_preferences(self, account_id: str) -> WriteResult:
        return self._write(
            "delete_preferences",
            lambda s: account_id if self._repo.delete_preferences(s, account_id) else None,
        )

    def release_guest(self, guest_id: str) -> WriteResult:
        return self._write("release_guest", lambda s: guest_id if self._repo.release_guest(s, guest_id) else None)

    # -- guest profile provider --------------------------------------------

    def get_guest_dataset(self, guest_id: str) -> Optional[GuestDataset]:
        with session_scope(commit=False) as session:
            profile = self._repo.get_guest_profile(session, guest_id)
            if profile is None or profile.dataset is None:
                return None
            payload = dict(profile.dataset)
        try:
            return GuestDataset.model_validate(payload)
        except PydanticValidationError:
            logger.exception("Stored snapshot for guest %s is unreadable", guest_id)
            return None

    def get_guest_usage_stats(self, guest_id: str) -> GuestUsageStats:
        settings = get_settings()
        limits = {
            "maxPlans": settings.guest_plan_limit,
            "maxLessons": settings.guest_lesson_limit,
            "maxFlashcards": settings.guest_flashcard_limit,
        }
        with session_scope(commit=False) as session:
            profile = self._repo.get_guest_profile(session, guest_id)
            if profile is None:
                return GuestUsageStats(guest_id=guest_id, limits=limits)
            return GuestUsageStats(
                guest_id=guest_id,
                curricula=profile.curricula_count,
                lessons=profile.lessons_count,
                flashcards=profile.flashcards_count,
                limits=limits,
                migrated=profile.migrated_at is not None,
                migrated_at=ensure_utc(profile.migrated_at),
                migrated_account_id=profile.migrated_account_id,
            )

    def is_guest_consumed(self, guest_id: str) -> bool:
        with session_scope(commit=False) as session:
            profile = self._repo.get_guest_profile(session, guest_id)
            return bool(profile and profile.migrated_at is not None)

    def record_guest_snapshot(self, guest_id: str, dataset: GuestDataset) -> GuestUsageStats:
        with session_scope() as session:
            self._repo.save_guest_snapshot(session, guest_id, dataset)
        return self.get_guest_usage_stats(guest_id)

    def track_guest_event(self, guest_id: str, event_type: str, payload: Dict[str, Any]) -> WriteResult:
        return self._write(
            "track_guest_event",
            lambda s: self._repo.record_guest_event(s, guest_id, event_type, payload),
        )

    def _write(self, operation: str, action: Any) -> WriteResult:
        try:
            with session_scope() as session:
                record_id = action(session)
        except (SQLAlchemyError, LookupError, ValueError) as exc:
            logger.warning("Data store operation %s failed: %s", operation, exc)
            return WriteResult.failed(f"{operation} failed: {exc}")
        return WriteResult.ok(record_id)


__all__ = [
    "CommitResult",
    "DataStoreAdapter",
    "GuestProfileProvider",
    "SqlAlchemyDataStore",
    "WriteResult",
]
