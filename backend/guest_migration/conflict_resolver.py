"""Merge transformed guest data against an account's existing data.

Resolution is a pure function of ``(transformed, existing, strategy)``: no
clock reads, no random identifiers, and iteration always follows the input
order, so re-running it yields the same plan and the same statistics.
"""

from __future__ import annotations

import logging
import uuid
from typing import Dict, List, Optional, Tuple

from .errors import ConflictResolutionError
from .models import (
    CONFLICT_STRATEGIES,
    AccountCurriculum,
    AccountDataset,
    AccountFlashcard,
    AccountLesson,
    AccountModule,
    AccountPreferences,
    AccountProgress,
    Conflict,
    ConflictResolutionResult,
    ConflictStatistics,
    ConflictStrategy,
    CurriculumConflict,
    EntityConflictStats,
    FlashcardConflict,
    PreferencesConflict,
    ProgressConflict,
    Resolution,
    ResolvedDataset,
    TransformedDataset,
)
from .transformer import MIGRATION_NAMESPACE
from .validator import curriculum_key, flashcard_key, normalize_text

logger = logging.getLogger(__name__)

DUPLICATE_TITLE_SUFFIX = " (guest copy)"
DUPLICATE_TAG = "guest-copy"

_ACTION_COUNTERS = {
    "add": "added",
    "merge": "merged",
    "replace": "replaced",
    "keep_existing": "kept_existing",
    "duplicate": "duplicated",
}


def _duplicate_id(record_id: str) -> str:
    return str(uuid.uuid5(MIGRATION_NAMESPACE, f"duplicate:{record_id}"))


class _ResolutionState:
    def __init__(self, existing: AccountDataset) -> None:
        self.existing = existing
        self.curricula: Dict[str, AccountCurriculum] = {c.id: c for c in existing.curricula}
        self.flashcards: Dict[str, AccountFlashcard] = {f.id: f for f in existing.flashcards}
        self.curricula_to_create: List[AccountCurriculum] = []
        self.flashcards_to_create: List[AccountFlashcard] = []
        self.updated_curricula: List[str] = []
        self.updated_flashcards: List[str] = []
        self.progress: Optional[AccountProgress] = None
        self.preferences: Optional[AccountPreferences] = None
        self.conflicts: List[Conflict] = []
        self.resolutions: List[Resolution] = []
        self.unresolved: List[Conflict] = []
        self.statistics = ConflictStatistics()

    def record(self, resolution: Resolution) -> None:
        self.resolutions.append(resolution)
        stats = self.statistics.by_entity[resolution.entity_type]
        counter = _ACTION_COUNTERS[resolution.action]
        setattr(stats, counter, getattr(stats, counter) + 1)
        if resolution.conflict:
            stats.resolved += 1
            self.statistics.resolved_conflicts += 1

    def conflict(self, conflict: Conflict) -> None:
        self.conflicts.append(conflict)
        self.statistics.by_entity[conflict.entity_type].conflicts += 1
        self.statistics.total_conflicts += 1

    def mark_curriculum_updated(self, curriculum: AccountCurriculum) -> None:
        self.curricula[curriculum.id] = curriculum
        if curriculum.id not in self.updated_curricula:
            self.updated_curricula.append(curriculum.id)

    def mark_flashcard_updated(self, flashcard: AccountFlashcard) -> None:
        self.flashcards[flashcard.id] = flashcard
        if flashcard.id not in self.updated_flashcards:
            self.updated_flashcards.append(flashcard.id)


def resolve(
    transformed: TransformedDataset,
    existing: AccountDataset,
    strategy: ConflictStrategy = "merge_with_preference",
) -> ConflictResolutionResult:
    """Plan the writes needed to merge ``transformed`` into ``existing``.

    Raises ``ConflictResolutionError`` when a detected conflict cannot be
    resolved under ``strategy``; nothing is silently dropped.
    """
    if strategy not in CONFLICT_STRATEGIES:
        raise ConflictResolutionError(f"Unknown conflict resolution strategy: {strategy}")
    if existing.account_id != transformed.account_id:
        raise ConflictResolutionError(
            f"Existing data belongs to {existing.account_id}, not {transformed.account_id}"
        )

    state = _ResolutionState(existing)
    _resolve_curricula(state, transformed.curricula, strategy)
    _resolve_flashcards(state, transformed.flashcards, strategy)
    _resolve_progress(state, transformed.progress, existing.progress, strategy)
    _resolve_preferences(state, transformed.preferences, existing.preferences, strategy)

    if state.unresolved:
        logger.warning(
            "Strategy %s left %s of %s conflicts unresolved",
            strategy,
            len(state.unresolved),
            state.statistics.total_conflicts,
        )
        raise ConflictResolutionError(
            f"{len(state.unresolved)} conflict(s) cannot be resolved with strategy {strategy}",
            unresolved=state.unresolved,
            statistics=state.statistics,
        )

    final = AccountDataset(
        account_id=existing.account_id,
        curricula=[state.curricula[c.id] for c in existing.curricula] + state.curricula_to_create,
        flashcards=[state.flashcards[f.id] for f in existing.flashcards] + state.flashcards_to_create,
        progress=state.progress or existing.progress,
        preferences=state.preferences or existing.preferences,
    )
    dataset = ResolvedDataset(
        curricula_to_create=state.curricula_to_create,
        curricula_to_update=[state.curricula[cid] for cid in state.updated_curricula],
        flashcards_to_create=state.flashcards_to_create,
        flashcards_to_update=[state.flashcards[fid] for fid in state.updated_flashcards],
        progress=state.progress,
        preferences=state.preferences,
        final=final,
    )
    return ConflictResolutionResult(
        strategy=strategy,
        dataset=dataset,
        conflicts=state.conflicts,
        resolutions=state.resolutions,
        statistics=state.statistics,
    )


# -- curricula -------------------------------------------------------------


def _resolve_curricula(state: _ResolutionState, guests: List[AccountCurriculum], strategy: str) -> None:
    by_key: Dict[str, str] = {}
    for curriculum in state.existing.curricula:
        by_key.setdefault(curriculum_key(curriculum.title), curriculum.id)

    for guest in guests:
        key = curriculum_key(guest.title)
        if guest.id in state.curricula:
            kind, existing_id = "id_collision", guest.id
        elif key in by_key:
            kind, existing_id = "natural_key", by_key[key]
        else:
            state.curricula_to_create.append(guest)
            state.record(Resolution(entity_type="curriculum", key=key, action="add", record_id=guest.id, conflict=False))
            continue

        existing = state.curricula[existing_id]
        state.conflict(CurriculumConflict(kind=kind, key=key, guest=guest, existing=existing))
        if strategy == "merge_with_preference":
            merged = _merge_curriculum(existing, guest)
            state.mark_curriculum_updated(merged)
            state.record(Resolution(entity_type="curriculum", key=key, action="merge", record_id=merged.id))
        elif strategy == "guest_priority":
            replaced = _replace_curriculum(existing, guest)
            state.mark_curriculum_updated(replaced)
            state.record(Resolution(entity_type="curriculum", key=key, action="replace", record_id=replaced.id))
        elif strategy == "existing_priority":
            state.record(Resolution(entity_type="curriculum", key=key, action="keep_existing", record_id=existing.id))
        else:
            duplicate = _duplicate_curriculum(guest)
            state.curricula_to_create.append(duplicate)
            state.record(Resolution(entity_type="curriculum", key=key, action="duplicate", record_id=duplicate.id))


def _merge_curriculum(existing: AccountCurriculum, guest: AccountCurriculum) -> AccountCurriculum:
    modules = [module.model_copy(deep=True) for module in existing.modules]
    index = {normalize_text(module.title): i for i, module in enumerate(modules)}
    for guest_module in guest.modules:
        position = index.get(normalize_text(guest_module.title))
        if position is None:
            index[normalize_text(guest_module.title)] = len(modules)
            modules.append(guest_module.model_copy(deep=True))
            continue
        modules[position] = _merge_module(modules[position], guest_module)
    modules = [module.model_copy(update={"position": i}) for i, module in enumerate(modules)]
    return existing.model_copy(
        update={"modules": modules, "domain": existing.domain or guest.domain},
        deep=True,
    )


def _merge_module(existing: AccountModule, guest: AccountModule) -> AccountModule:
    lessons: List[AccountLesson] = [lesson.model_copy() for lesson in existing.lessons]
    index = {normalize_text(lesson.title): i for i, lesson in enumerate(lessons)}
    for guest_lesson in guest.lessons:
        position = index.get(normalize_text(guest_lesson.title))
        if position is None:
            index[normalize_text(guest_lesson.title)] = len(lessons)
            lessons.append(guest_lesson.model_copy())
            continue
        current = lessons[position]
        if guest_lesson.completed and not current.completed:
            lessons[position] = current.model_copy(
                update={"completed": True, "completed_at": guest_lesson.completed_at}
            )
    lessons = [lesson.model_copy(update={"position": i}) for i, lesson in enumerate(lessons)]
    return existing.model_copy(update={"lessons": lessons})


def _replace_curriculum(existing: AccountCurriculum, guest: AccountCurriculum) -> AccountCurriculum:
    return guest.model_copy(update={"id": existing.id, "created_at": existing.created_at}, deep=True)


def _duplicate_curriculum(guest: AccountCurriculum) -> AccountCurriculum:
    modules = []
    for module in guest.modules:
        lessons = [lesson.model_copy(update={"id": _duplicate_id(lesson.id)}) for lesson in module.lessons]
        modules.append(module.model_copy(update={"id": _duplicate_id(module.id), "lessons": lessons}))
    return guest.model_copy(
        update={
            "id": _duplicate_id(guest.id),
            "title": f"{guest.title}{DUPLICATE_TITLE_SUFFIX}",
            "modules": modules,
        }
    )


# -- flashcards ------------------------------------------------------------


def _resolve_flashcards(state: _ResolutionState, guests: List[AccountFlashcard], strategy: str) -> None:
    by_key: Dict[str, str] = {}
    for card in state.existing.flashcards:
        by_key.setdefault(flashcard_key(card.front, card.back), card.id)

    for guest in guests:
        key = flashcard_key(guest.front, guest.back)
        if guest.id in state.flashcards:
            kind, existing_id = "id_collision", guest.id
        elif key in by_key:
            kind, existing_id = "natural_key", by_key[key]
        else:
            state.flashcards_to_create.append(guest)
            state.record(Resolution(entity_type="flashcard", key=key, action="add", record_id=guest.id, conflict=False))
            continue

        existing = state.flashcards[existing_id]
        state.conflict(FlashcardConflict(kind=kind, key=key, guest=guest, existing=existing))
        if strategy == "merge_with_preference":
            merged = _merge_flashcard(existing, guest)
            state.mark_flashcard_updated(merged)
            state.record(Resolution(entity_type="flashcard", key=key, action="merge", record_id=merged.id))
        elif strategy == "guest_priority":
            replaced = guest.model_copy(update={"id": existing.id, "created_at": existing.created_at})
            state.mark_flashcard_updated(replaced)
            state.record(Resolution(entity_type="flashcard", key=key, action="replace", record_id=replaced.id))
        elif strategy == "existing_priority":
            state.record(Resolution(entity_type="flashcard", key=key, action="keep_existing", record_id=existing.id))
        else:
            tags = list(guest.tags)
            if DUPLICATE_TAG not in tags:
                tags.append(DUPLICATE_TAG)
            duplicate = guest.model_copy(update={"id": _duplicate_id(guest.id), "tags": tags})
            state.flashcards_to_create.append(duplicate)
            state.record(Resolution(entity_type="flashcard", key=key, action="duplicate", record_id=duplicate.id))


def _merge_flashcard(existing: AccountFlashcard, guest: AccountFlashcard) -> AccountFlashcard:
    tags = list(existing.tags)
    tags.extend(tag for tag in guest.tags if tag not in tags)
    reviewed = [value for value in (existing.last_reviewed_at, guest.last_reviewed_at) if value is not None]
    difficulty = guest.difficulty if guest.review_count > existing.review_count else existing.difficulty
    return existing.model_copy(
        update={
            "tags": tags,
            "review_count": max(existing.review_count, guest.review_count),
            "correct_count": max(existing.correct_count, guest.correct_count),
            "last_reviewed_at": max(reviewed) if reviewed else None,
            "difficulty": difficulty,
        }
    )


# -- singletons ------------------------------------------------------------


def _progress_values(progress: AccountProgress) -> Tuple:
    return (
        progress.total_plans,
        progress.total_lessons,
        progress.total_flashcards,
        progress.completed_lessons,
        progress.study_minutes,
        progress.streak,
        progress.last_study_date,
    )


def _resolve_progress(
    state: _ResolutionState,
    guest: Optional[AccountProgress],
    existing: Optional[AccountProgress],
    strategy: str,
) -> None:
    if guest is None:
        return
    if existing is None:
        state.progress = guest
        state.record(Resolution(entity_type="progress", key=guest.account_id, action="add", conflict=False))
        return
    if _progress_values(guest) == _progress_values(existing):
        return

    conflict = ProgressConflict(key=existing.account_id, guest=guest, existing=existing)
    state.conflict(conflict)
    if strategy == "merge_with_preference":
        dates = [value for value in (existing.last_study_date, guest.last_study_date) if value is not None]
        state.progress = existing.model_copy(
            update={
                "total_plans": max(existing.total_plans, guest.total_plans),
                "total_lessons": max(existing.total_lessons, guest.total_lessons),
                "total_flashcards": max(existing.total_flashcards, guest.total_flashcards),
                "completed_lessons": max(existing.completed_lessons, guest.completed_lessons),
                "study_minutes": existing.study_minutes + guest.study_minutes,
                "streak": max(existing.streak, guest.streak),
                "last_study_date": max(dates) if dates else None,
            }
        )
        state.record(Resolution(entity_type="progress", key=conflict.key, action="merge"))
    elif strategy == "guest_priority":
        state.progress = guest
        state.record(Resolution(entity_type="progress", key=conflict.key, action="replace"))
    elif strategy == "existing_priority":
        state.record(Resolution(entity_type="progress", key=conflict.key, action="keep_existing"))
    else:
        # One progress record per account; a side-by-side copy is impossible.
        state.unresolved.append(conflict)


def _resolve_preferences(
    state: _ResolutionState,
    guest: Optional[AccountPreferences],
    existing: Optional[AccountPreferences],
    strategy: str,
) -> None:
    if guest is None:
        return
    if existing is None:
        state.preferences = guest
        state.record(Resolution(entity_type="preferences", key=guest.account_id, action="add", conflict=False))
        return
    if (guest.theme, guest.notifications, guest.sound_effects) == (
        existing.theme,
        existing.notifications,
        existing.sound_effects,
    ):
        return

    conflict = PreferencesConflict(key=existing.account_id, guest=guest, existing=existing)
    state.conflict(conflict)
    if strategy == "merge_with_preference":
        state.preferences = existing.model_copy(
            update={
                "theme": guest.theme if existing.theme == "system" else existing.theme,
                "notifications": existing.notifications or guest.notifications,
                "sound_effects": existing.sound_effects or guest.sound_effects,
            }
        )
        state.record(Resolution(entity_type="preferences", key=conflict.key, action="merge"))
    elif strategy == "guest_priority":
        state.preferences = guest
        state.record(Resolution(entity_type="preferences", key=conflict.key, action="replace"))
    elif strategy == "existing_priority":
        state.record(Resolution(entity_type="preferences", key=conflict.key, action="keep_existing"))
    else:
        state.unresolved.append(conflict)


# -- reporting -------------------------------------------------------------


def generate_conflict_report(result: ConflictResolutionResult) -> str:
    """Render a Markdown summary of a resolution result."""
    stats = result.statistics
    lines = [
        "# Conflict Resolution Report",
        "",
        f"- Strategy: `{result.strategy}`",
        f"- Conflicts detected: {stats.total_conflicts}",
        f"- Conflicts resolved: {stats.resolved_conflicts}",
        "",
        "| Entity | Conflicts | Resolved | Added | Merged | Replaced | Kept | Duplicated |",
        "| --- | --- | --- | --- | --- | --- | --- | --- |",
    ]
    for name, entity in stats.by_entity.items():
        lines.append(_stats_row(name, entity))
    if result.conflicts:
        lines.extend(["", "## Conflicts", ""])
        for conflict in result.conflicts:
            lines.append(f"- {conflict.entity_type} `{conflict.key}` ({conflict.kind})")
    return "\n".join(lines) + "\n"


def _stats_row(name: str, entity: EntityConflictStats) -> str:
    return (
        f"| {name} | {entity.conflicts} | {entity.resolved} | {entity.added} | {entity.merged} "
        f"| {entity.replaced} | {entity.kept_existing} | {entity.duplicated} |"
    )


__all__ = [
    "DUPLICATE_TAG",
    "DUPLICATE_TITLE_SUFFIX",
    "generate_conflict_report",
    "resolve",
]
