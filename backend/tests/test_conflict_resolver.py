from __future__ import annotations

from datetime import datetime, timezone

import pytest

from guest_migration.conflict_resolver import (
    DUPLICATE_TAG,
    DUPLICATE_TITLE_SUFFIX,
    generate_conflict_report,
    resolve,
)
from guest_migration.errors import ConflictResolutionError
from guest_migration.models import (
    AccountDataset,
    AccountFlashcard,
    AccountPreferences,
    AccountProgress,
    GuestDataset,
    TransformedDataset,
)
from guest_migration.transformer import transform

from conftest import ACCOUNT_ID, GUEST_ID, build_guest_payload, existing_curriculum

STAMP = datetime(2026, 2, 1, tzinfo=timezone.utc)


def _transformed() -> TransformedDataset:
    return transform(GuestDataset.model_validate(build_guest_payload()), GUEST_ID, ACCOUNT_ID, transformed_at=STAMP)


def _existing(*, singletons: bool = True) -> AccountDataset:
    card = AccountFlashcard(
        id="existing-card",
        account_id=ACCOUNT_ID,
        front="question 1",
        back="Answer  1",
        tags=["spanish"],
        difficulty="hard",
        review_count=10,
        correct_count=7,
        created_at=datetime(2025, 11, 1, tzinfo=timezone.utc),
        last_reviewed_at=datetime(2026, 1, 20, tzinfo=timezone.utc),
    )
    return AccountDataset(
        account_id=ACCOUNT_ID,
        curricula=[existing_curriculum()],
        flashcards=[card],
        progress=AccountProgress(account_id=ACCOUNT_ID, total_plans=1, total_lessons=1, study_minutes=30, streak=5)
        if singletons
        else None,
        preferences=AccountPreferences(account_id=ACCOUNT_ID, theme="light", notifications=False, sound_effects=True)
        if singletons
        else None,
    )


def test_resolution_is_deterministic() -> None:
    transformed = _transformed()
    existing = _existing()

    first = resolve(transformed, existing, "merge_with_preference")
    second = resolve(transformed, existing, "merge_with_preference")

    assert first.model_dump() == second.model_dump()


def test_merge_with_preference_combines_records() -> None:
    result = resolve(_transformed(), _existing(), "merge_with_preference")
    stats = result.statistics

    assert stats.total_conflicts == 4
    assert stats.resolved_conflicts == 4
    assert stats.by_entity["curriculum"].conflicts == 1
    assert stats.by_entity["curriculum"].added == 1
    assert stats.by_entity["flashcard"].merged == 1
    assert stats.by_entity["flashcard"].added == 4

    plan = result.dataset
    assert [c.title for c in plan.curricula_to_create] == ["Spanish Basics"]
    merged = plan.curricula_to_update[0]
    assert merged.id == "existing-1"
    lessons = merged.modules[0].lessons
    assert [lesson.title for lesson in lessons] == ["Variables", "Loops"]
    assert [lesson.position for lesson in lessons] == [0, 1]
    assert lessons[0].completed is True

    card = plan.flashcards_to_update[0]
    assert card.id == "existing-card"
    assert card.tags == ["spanish", "python"]
    assert card.review_count == 10
    assert card.difficulty == "hard"
    assert card.last_reviewed_at == datetime(2026, 1, 20, tzinfo=timezone.utc)

    assert plan.progress is not None
    assert plan.progress.study_minutes == 75
    assert plan.progress.streak == 5
    assert plan.progress.total_plans == 2
    assert plan.preferences is not None
    assert (plan.preferences.theme, plan.preferences.notifications, plan.preferences.sound_effects) == (
        "light",
        True,
        True,
    )

    assert [c.id for c in plan.final.curricula][0] == "existing-1"
    assert len(plan.final.curricula) == 2
    assert len(plan.final.flashcards) == 5


def test_guest_priority_replaces_existing_content() -> None:
    result = resolve(_transformed(), _existing(), "guest_priority")
    plan = result.dataset

    replaced = plan.curricula_to_update[0]
    assert replaced.id == "existing-1"
    assert replaced.created_at == existing_curriculum().created_at
    assert replaced.source_id == "plan-1"
    assert [lesson.title for lesson in replaced.modules[0].lessons] == ["Variables", "Loops"]
    assert plan.flashcards_to_update[0].review_count == 1
    assert plan.flashcards_to_update[0].id == "existing-card"
    assert plan.preferences is not None and plan.preferences.theme == "dark"
    assert plan.progress is not None and plan.progress.study_minutes == 45
    assert result.statistics.by_entity["curriculum"].replaced == 1


def test_existing_priority_keeps_account_records() -> None:
    existing = _existing()
    result = resolve(_transformed(), existing, "existing_priority")
    plan = result.dataset

    assert plan.curricula_to_update == []
    assert plan.flashcards_to_update == []
    assert plan.progress is None
    assert plan.preferences is None
    assert plan.final.curricula[0] == existing.curricula[0]
    assert plan.final.preferences == existing.preferences
    assert result.statistics.by_entity["preferences"].kept_existing == 1
    assert result.statistics.resolved_conflicts == result.statistics.total_conflicts


def test_create_duplicate_copies_conflicting_content() -> None:
    result = resolve(_transformed(), _existing(singletons=False), "create_duplicate")
    plan = result.dataset

    titles = [c.title for c in plan.curricula_to_create]
    assert titles == [f"Intro to Python{DUPLICATE_TITLE_SUFFIX}", "Spanish Basics"]
    duplicate_card = next(card for card in plan.flashcards_to_create if DUPLICATE_TAG in card.tags)
    assert duplicate_card.source_id == "card-1"
    assert plan.curricula_to_update == []
    assert len(plan.final.curricula) == 3
    assert len(plan.final.flashcards) == 6


def test_create_duplicate_cannot_split_singletons() -> None:
    with pytest.raises(ConflictResolutionError) as excinfo:
        resolve(_transformed(), _existing(), "create_duplicate")

    unresolved = {conflict.entity_type for conflict in excinfo.value.unresolved}
    assert unresolved == {"progress", "preferences"}
    assert excinfo.value.statistics is not None
    assert excinfo.value.statistics.total_conflicts == 4


def test_identical_settings_are_not_conflicts() -> None:
    transformed = _transformed()
    existing = _existing(singletons=False).model_copy(
        update={
            "progress": transformed.progress,
            "preferences": transformed.preferences,
        }
    )
    result = resolve(transformed, existing, "create_duplicate")

    assert result.statistics.by_entity["progress"].conflicts == 0
    assert result.statistics.by_entity["preferences"].conflicts == 0
    assert result.dataset.progress is None


def test_rerun_against_own_output_detects_id_collisions() -> None:
    transformed = _transformed()
    first = resolve(transformed, AccountDataset(account_id=ACCOUNT_ID), "merge_with_preference")

    second = resolve(transformed, first.dataset.final, "merge_with_preference")

    kinds = {conflict.kind for conflict in second.conflicts if conflict.entity_type == "curriculum"}
    assert kinds == {"id_collision"}
    assert second.dataset.curricula_to_create == []
    assert second.dataset.flashcards_to_create == []


def test_rejects_unknown_strategy_and_foreign_account() -> None:
    with pytest.raises(ConflictResolutionError):
        resolve(_transformed(), _existing(), "newest_wins")  # type: ignore[arg-type]
    with pytest.raises(ConflictResolutionError):
        resolve(_transformed(), AccountDataset(account_id="someone-else"), "merge_with_preference")


def test_conflict_report_lists_conflicts() -> None:
    report = generate_conflict_report(resolve(_transformed(), _existing(), "merge_with_preference"))

    assert report.startswith("# Conflict Resolution Report")
    assert "- Strategy: `merge_with_preference`" in report
    assert "- Conflicts detected: 4" in report
    assert "| curriculum | 1 | 1 | 1 | 1 | 0 | 0 | 0 |" in report
    assert "- curriculum `intro to python` (natural_key)" in report
