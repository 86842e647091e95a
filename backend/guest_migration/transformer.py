"""Convert guest-schema records into account-owned records."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from .errors import TransformationError
from .models import (
    AccountCurriculum,
    AccountFlashcard,
    AccountLesson,
    AccountModule,
    AccountPreferences,
    AccountProgress,
    GuestCurriculum,
    GuestDataset,
    GuestFlashcard,
    MigrationMetadata,
    TransformedDataset,
    ensure_utc,
    utcnow,
)

MIGRATION_NAMESPACE = uuid.UUID("6f1c2b8e-4d0a-5b7e-9c3f-2a1d8e4b7c60")
UNDATED_CREATED_AT = datetime(1970, 1, 1, tzinfo=timezone.utc)


def derive_record_id(account_id: str, guest_id: str, *path: str) -> str:
    """Stable account-side id for a guest record; same inputs always give the same id."""
    name = ":".join((account_id, guest_id, *path))
    return str(uuid.uuid5(MIGRATION_NAMESPACE, name))


def transform(
    dataset: GuestDataset,
    guest_id: str,
    account_id: str,
    *,
    transformed_at: Optional[datetime] = None,
) -> TransformedDataset:
    """Re-own every guest record for ``account_id`` preserving order and nesting.

    Only the metadata envelope (``envelope_id`` and ``transformed_at``) varies
    between calls with identical inputs. Records without a creation date take
    the earliest timestamp found in ``dataset`` instead of the clock.
    """
    if not guest_id or not account_id:
        raise TransformationError("Guest id and account id are required for transformation.")
    stamp = transformed_at or utcnow()
    origin = _earliest_timestamp(dataset)
    try:
        curricula = [
            _transform_curriculum(curriculum, guest_id, account_id, origin)
            for curriculum in dataset.curricula
        ]
        flashcards = [
            _transform_flashcard(card, guest_id, account_id, origin)
            for card in dataset.flashcards
        ]
    except (TypeError, ValueError) as exc:
        raise TransformationError(f"Failed to transform guest data: {exc}") from exc

    progress = None
    if dataset.progress is not None:
        progress = AccountProgress(account_id=account_id, **dataset.progress.model_dump())
    preferences = None
    if dataset.preferences is not None:
        preferences = AccountPreferences(account_id=account_id, **dataset.preferences.model_dump())

    item_counts = {
        "curricula": len(curricula),
        "modules": sum(len(c.modules) for c in curricula),
        "lessons": sum(c.lesson_count() for c in curricula),
        "flashcards": len(flashcards),
        "progress": int(progress is not None),
        "preferences": int(preferences is not None),
    }
    metadata = MigrationMetadata(
        envelope_id=str(uuid.uuid4()),
        source_guest_id=guest_id,
        target_account_id=account_id,
        transformed_at=stamp,
        item_counts=item_counts,
    )
    return TransformedDataset(
        guest_id=guest_id,
        account_id=account_id,
        curricula=curricula,
        flashcards=flashcards,
        progress=progress,
        preferences=preferences,
        metadata=metadata,
    )


def _transform_curriculum(
    curriculum: GuestCurriculum, guest_id: str, account_id: str, origin: datetime
) -> AccountCurriculum:
    modules = []
    for module_index, module in enumerate(curriculum.modules):
        lessons = [
            AccountLesson(
                id=derive_record_id(account_id, guest_id, "lesson", curriculum.id, module.id, lesson.id),
                title=lesson.title,
                duration=lesson.duration,
                completed=lesson.completed,
                completed_at=lesson.completed_at,
                position=lesson_index,
                source_id=lesson.id,
            )
            for lesson_index, lesson in enumerate(module.lessons)
        ]
        modules.append(
            AccountModule(
                id=derive_record_id(account_id, guest_id, "module", curriculum.id, module.id),
                title=module.title,
                position=module_index,
                source_id=module.id,
                lessons=lessons,
            )
        )
    return AccountCurriculum(
        id=derive_record_id(account_id, guest_id, "curriculum", curriculum.id),
        account_id=account_id,
        title=curriculum.title,
        domain=curriculum.domain,
        created_at=curriculum.created_at or origin,
        source_id=curriculum.id,
        source_guest_id=guest_id,
        modules=modules,
    )


def _transform_flashcard(card: GuestFlashcard, guest_id: str, account_id: str, origin: datetime) -> AccountFlashcard:
    return AccountFlashcard(
        id=derive_record_id(account_id, guest_id, "flashcard", card.id),
        account_id=account_id,
        front=card.front,
        back=card.back,
        tags=list(card.tags),
        difficulty=card.difficulty,
        review_count=card.review_count,
        correct_count=card.correct_count,
        created_at=card.created_at or origin,
        last_reviewed_at=card.last_reviewed_at,
        source_id=card.id,
        source_guest_id=guest_id,
    )



def _earliest_timestamp(dataset: GuestDataset) -> datetime:
    stamps: List[Optional[datetime]] = []
    for curriculum in dataset.curricula:
        stamps.append(curriculum.created_at)
        stamps.extend(lesson.completed_at for module in curriculum.modules for lesson in module.lessons)
    for card in dataset.flashcards:
        stamps.extend((card.created_at, card.last_reviewed_at))
    if dataset.progress is not None:
        stamps.append(dataset.progress.last_study_date)
    known = [ensure_utc(stamp) for stamp in stamps if stamp is not None]
    return min(known, default=UNDATED_CREATED_AT)  # type: ignore[type-var]


__all__ = ["MIGRATION_NAMESPACE", "UNDATED_CREATED_AT", "derive_record_id", "transform"]
