from __future__ import annotations

from datetime import datetime, timezone

from guest_migration.legacy_upgrade import (
    CURRENT_SCHEMA_VERSION,
    detect_version,
    needs_upgrade,
    parse_version,
    upgrade_guest_payload,
)
from guest_migration.models import GuestDataset

STAMP = datetime(2026, 3, 1, tzinfo=timezone.utc)


def test_parse_version_pads_and_strips() -> None:
    assert parse_version("v1.2") == (1, 2, 0)
    assert parse_version("0.9.0-beta") == (0, 9, 0)


def test_detect_version() -> None:
    assert detect_version({"_version": "0.8.0"}) == "0.8.0"
    assert detect_version({"plans": []}) == "0.9.0"
    assert detect_version({"curricula": []}) == CURRENT_SCHEMA_VERSION
    assert not needs_upgrade({"curricula": [], "_version": "1.0.0"})
    assert needs_upgrade({"plans": []})


def test_current_payload_passes_through() -> None:
    payload = {"curricula": [], "flashcards": []}
    upgraded, upgraded_from = upgrade_guest_payload(payload)

    assert upgraded_from is None
    assert upgraded == payload
    assert upgraded is not payload


def test_legacy_payload_is_normalised() -> None:
    legacy = {
        "plans": [
            {
                "id": "p-1",
                "title": "Old plan",
                "modules": [{"id": "m-1", "title": "Start", "lessons": [{"id": "l-1", "title": "One"}, "junk"]}],
            }
        ],
        "flashcards": [
            {"id": "c-1", "front": "Q", "back": "A", "difficulty": "brutal", "reviewCount": -3, "tags": "x"},
        ],
        "preferences": {"theme": "neon", "notifications": False},
    }

    upgraded, upgraded_from = upgrade_guest_payload(legacy, fallback_timestamp=STAMP)

    assert upgraded_from == "0.9.0"
    assert "plans" not in upgraded
    assert upgraded["_version"] == CURRENT_SCHEMA_VERSION
    assert upgraded["_migratedFrom"] == "0.9.0"
    assert upgraded["_migratedAt"] == STAMP.isoformat()
    plan = upgraded["curricula"][0]
    assert plan["createdAt"] == STAMP.isoformat()
    assert plan["modules"][0]["lessons"] == [{"id": "l-1", "title": "One", "completed": False, "duration": ""}]
    card = upgraded["flashcards"][0]
    assert (card["difficulty"], card["reviewCount"], card["correctCount"], card["tags"]) == ("medium", 0, 0, [])
    assert upgraded["progress"] == {
        "totalPlans": 1,
        "totalLessons": 1,
        "totalFlashcards": 1,
        "completedLessons": 0,
        "studyMinutes": 0,
        "streak": 0,
    }
    assert upgraded["preferences"] == {"theme": "system", "notifications": False, "soundEffects": True}
    assert legacy["plans"][0]["modules"][0]["lessons"][1] == "junk"

    dataset = GuestDataset.model_validate(upgraded)
    assert dataset.lesson_count() == 1
