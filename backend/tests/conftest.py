from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator

import pytest
from sqlalchemy.engine import Engine

from guest_migration.config import get_settings
from guest_migration.data_store import SqlAlchemyDataStore
from guest_migration.db import models  # noqa: F401  registers tables
from guest_migration.db.base import Base
from guest_migration.db.session import dispose_engine, get_engine
from guest_migration.models import (
    AccountCurriculum,
    AccountLesson,
    AccountModule,
    AccountPreferences,
    AccountProgress,
)
from guest_migration.orchestrator import reset_orchestrator

ACCOUNT_ID = "acct-1"
GUEST_ID = "guest-1"


@pytest.fixture
def database(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Engine]:
    db_path = tmp_path / "fathom.db"
    monkeypatch.setenv("FATHOM_DATABASE_URL", f"sqlite:///{db_path}")
    get_settings.cache_clear()
    dispose_engine()
    reset_orchestrator()
    engine = get_engine()
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield engine
    dispose_engine()
    reset_orchestrator()
    get_settings.cache_clear()


@pytest.fixture
def store(database: Engine) -> SqlAlchemyDataStore:
    return SqlAlchemyDataStore()


def build_guest_payload() -> Dict[str, Any]:
    return {
        "curricula": [
            {
                "id": "plan-1",
                "title": "Intro to Python",
                "domain": "programming",
                "createdAt": "2026-01-05T10:00:00+00:00",
                "modules": [
                    {
                        "id": "m-1",
                        "title": "Basics",
                        "lessons": [
                            {
                                "id": "l-1",
                                "title": "Variables",
                                "duration": "10 min",
                                "completed": True,
                                "completedAt": "2026-01-06T10:00:00+00:00",
                            },
                            {"id": "l-2", "title": "Loops", "duration": "15 min", "completed": False},
                        ],
                    }
                ],
            },
            {
                "id": "plan-2",
                "title": "Spanish Basics",
                "domain": "languages",
                "createdAt": "2026-01-07T10:00:00+00:00",
                "modules": [
                    {
                        "id": "m-2",
                        "title": "Greetings",
                        "lessons": [{"id": "l-3", "title": "Hola", "duration": "5 min"}],
                    }
                ],
            },
        ],
        "flashcards": [
            {
                "id": f"card-{index}",
                "front": f"Question {index}",
                "back": f"Answer {index}",
                "tags": ["python"],
                "difficulty": "medium",
                "reviewCount": index,
                "correctCount": 0,
                "createdAt": f"2026-01-0{index}T08:00:00+00:00",
            }
            for index in range(1, 6)
        ],
        "progress": {
            "totalPlans": 2,
            "totalLessons": 3,
            "totalFlashcards": 5,
            "completedLessons": 1,
            "studyMinutes": 45,
            "streak": 2,
            "lastStudyDate": "2026-01-08T09:00:00+00:00",
        },
        "preferences": {"theme": "dark", "notifications": True, "soundEffects": False},
    }


@pytest.fixture
def guest_payload() -> Dict[str, Any]:
    return build_guest_payload()


def existing_curriculum(account_id: str = ACCOUNT_ID) -> AccountCurriculum:
    return AccountCurriculum(
        id="existing-1",
        account_id=account_id,
        title="Intro to Python",
        domain="programming",
        created_at=datetime(2025, 12, 1, tzinfo=timezone.utc),
        modules=[
            AccountModule(
                id="existing-m-1",
                title="Basics",
                position=0,
                lessons=[AccountLesson(id="existing-l-1", title="Variables", duration="12 min", position=0)],
            )
        ],
    )


@pytest.fixture
def seed_account(store: SqlAlchemyDataStore) -> Callable[..., None]:
    def _seed(*, progress: bool = False, preferences: bool = False) -> None:
        assert store.update_curriculum(existing_curriculum()).success
        if progress:
            assert store.save_progress(
                AccountProgress(account_id=ACCOUNT_ID, total_plans=1, total_lessons=1, study_minutes=30, streak=5)
            ).success
        if preferences:
            assert store.save_preferences(
                AccountPreferences(account_id=ACCOUNT_ID, theme="light", notifications=False, sound_effects=True)
            ).success

    return _seed
