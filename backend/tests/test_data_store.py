from __future__ import annotations

from datetime import datetime, timezone

from guest_migration.db.session import session_scope
from guest_migration.models import GuestDataset
from guest_migration.repositories.account_data import account_data
from guest_migration.transformer import transform

from conftest import ACCOUNT_ID, GUEST_ID, build_guest_payload

STAMP = datetime(2026, 2, 1, tzinfo=timezone.utc)


def _stage_all(store) -> None:
    dataset = GuestDataset.model_validate(build_guest_payload())
    transformed = transform(dataset, GUEST_ID, ACCOUNT_ID, transformed_at=STAMP)
    for curriculum in transformed.curricula:
        assert store.create_curriculum(GUEST_ID, curriculum).success
        for module in curriculum.modules:
            assert store.create_module(GUEST_ID, curriculum.id, module).success
            for lesson in module.lessons:
                assert store.create_lesson(GUEST_ID, module.id, lesson).success
    for flashcard in transformed.flashcards:
        assert store.create_flashcard(GUEST_ID, flashcard).success


def test_staged_content_is_invisible_until_commit(store) -> None:
    _stage_all(store)

    assert store.read_existing_account_data(ACCOUNT_ID).curricula == []
    assert store.count_staged_records(GUEST_ID) == {"curricula": 2, "flashcards": 5}
    assert not store.is_guest_consumed(GUEST_ID)

    commit = store.commit_guest_to_account(GUEST_ID, ACCOUNT_ID)

    assert commit.success
    assert commit.counts == {"curricula": 2, "flashcards": 5}
    account = store.read_existing_account_data(ACCOUNT_ID)
    assert [c.title for c in account.curricula] == ["Intro to Python", "Spanish Basics"]
    assert [lesson.title for lesson in account.curricula[0].modules[0].lessons] == ["Variables", "Loops"]
    assert store.count_staged_records(GUEST_ID) == {"curricula": 0, "flashcards": 0}
    assert store.is_guest_consumed(GUEST_ID)


def test_discard_staging_removes_guest_rows(store) -> None:
    _stage_all(store)

    result = store.discard_guest_staging(GUEST_ID)

    assert result.success
    assert result.record_id == "curricula=2,flashcards=5"
    assert store.count_staged_records(GUEST_ID) == {"curricula": 0, "flashcards": 0}


def test_failed_writes_return_results_instead_of_raising(store) -> None:
    dataset = GuestDataset.model_validate(build_guest_payload())
    module = transform(dataset, GUEST_ID, ACCOUNT_ID, transformed_at=STAMP).curricula[0].modules[0]

    result = store.create_module(GUEST_ID, "no-such-curriculum", module)

    assert result.success is False
    assert "create_module failed" in (result.error or "")


def test_commit_with_blank_account_fails(store) -> None:
    _stage_all(store)

    result = store.commit_guest_to_account(GUEST_ID, "  ")

    assert result.success is False
    assert store.count_staged_records(GUEST_ID) == {"curricula": 2, "flashcards": 5}


def test_deletes_report_missing_rows(store) -> None:
    assert store.delete_curriculum("missing").record_id is None
    assert store.delete_progress(ACCOUNT_ID).record_id is None
    assert store.release_guest(GUEST_ID).record_id is None


def test_guest_snapshot_and_usage(store) -> None:
    dataset = GuestDataset.model_validate(build_guest_payload())

    stats = store.record_guest_snapshot(GUEST_ID, dataset)

    assert (stats.curricula, stats.lessons, stats.flashcards) == (2, 3, 5)
    assert stats.has_data
    assert stats.limits == {"maxPlans": 3, "maxLessons": 10, "maxFlashcards": 50}
    assert store.get_guest_dataset(GUEST_ID) == dataset
    assert store.get_guest_dataset("unknown-guest") is None
    assert not store.get_guest_usage_stats("unknown-guest").has_data


def test_release_guest_clears_consumed_marker(store) -> None:
    _stage_all(store)
    assert store.commit_guest_to_account(GUEST_ID, ACCOUNT_ID).success

    released = store.release_guest(GUEST_ID)

    assert released.record_id == GUEST_ID
    assert not store.is_guest_consumed(GUEST_ID)


def test_track_guest_event(store) -> None:
    result = store.track_guest_event(GUEST_ID, "data_migration_completed", {"plans": 2})

    assert result.success
    with session_scope(commit=False) as session:
        events = account_data.list_guest_events(session, GUEST_ID)
        assert [(event.event_type, event.payload) for event in events] == [
            ("data_migration_completed", {"plans": 2})
        ]
