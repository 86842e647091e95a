from __future__ import annotations

import logging

import pytest

from guest_migration.config import get_settings
from guest_migration.logging_config import SESSION_LOG_FORMAT, SESSION_LOGGER, configure_logging


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_settings_defaults(monkeypatch) -> None:
    monkeypatch.delenv("FATHOM_DEFAULT_CONFLICT_STRATEGY", raising=False)
    settings = get_settings()

    assert settings.default_conflict_strategy == "merge_with_preference"
    assert settings.min_integrity_score == 80.0
    assert settings.migration_timeout_seconds is None
    assert (settings.guest_plan_limit, settings.guest_lesson_limit, settings.guest_flashcard_limit) == (3, 10, 50)


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("FATHOM_DEFAULT_CONFLICT_STRATEGY", "existing_priority")
    monkeypatch.setenv("FATHOM_MIGRATION_TIMEOUT_SECONDS", "12.5")

    settings = get_settings()

    assert settings.default_conflict_strategy == "existing_priority"
    assert settings.migration_timeout_seconds == 12.5


def test_invalid_settings_raise_runtime_error(monkeypatch) -> None:
    monkeypatch.setenv("FATHOM_DEFAULT_CONFLICT_STRATEGY", "newest_wins")

    with pytest.raises(RuntimeError, match="Invalid migration service configuration"):
        get_settings()


def test_configure_logging_honours_flags(monkeypatch) -> None:
    monkeypatch.setenv("FATHOM_LOG_LEVEL", "warning")
    monkeypatch.setenv("FATHOM_DEBUG_SQL", "1")
    monkeypatch.setenv("FATHOM_SESSION_LOG_LEVEL", "debug")

    try:
        configure_logging()

        assert logging.getLogger().level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.INFO
        assert logging.getLogger("uvicorn.access").level == logging.NOTSET
        session_logger = logging.getLogger(SESSION_LOGGER)
        assert session_logger.level == logging.DEBUG
        assert session_logger.propagate is False
        assert session_logger.handlers[0].formatter._fmt == SESSION_LOG_FORMAT
    finally:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.NOTSET)
        logging.getLogger("uvicorn.access").setLevel(logging.NOTSET)
        logging.getLogger().setLevel(logging.INFO)
