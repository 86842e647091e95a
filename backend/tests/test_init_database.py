from __future__ import annotations

import types

import pytest
from sqlalchemy import inspect

from guest_migration.db.base import Base
from scripts import init_database as runner


def test_parse_args_defaults() -> None:
    args = runner.parse_args([])
    assert args.timeout == runner.DEFAULT_TIMEOUT
    assert args.poll_interval == runner.DEFAULT_POLL_INTERVAL
    assert args.check_only is False


def test_wait_for_database_succeeds_with_sqlite(database) -> None:
    runner.wait_for_database(timeout=2, poll_interval=0.1)


def test_wait_for_database_times_out(monkeypatch) -> None:
    class DummyEngine:
        def connect(self) -> types.SimpleNamespace:
            raise runner.OperationalError("SELECT 1", {}, Exception("boom"))

    monkeypatch.setattr(runner, "get_engine", lambda: DummyEngine())
    monkeypatch.setattr(runner.time, "sleep", lambda _: None)
    with pytest.raises(RuntimeError):
        runner.wait_for_database(timeout=0, poll_interval=0)


def test_main_creates_schema(database) -> None:
    Base.metadata.drop_all(database)
    assert inspect(database).get_table_names() == []

    assert runner.main(["--timeout", "2", "--poll-interval", "0.1"]) == 0

    tables = set(inspect(database).get_table_names())
    assert {"curricula", "flashcards", "guest_profiles", "migration_checkpoints"} <= tables


def test_main_reports_failure(monkeypatch) -> None:
    def fail(*, timeout: int, poll_interval: float) -> None:
        raise RuntimeError("Database did not become ready in time.")

    monkeypatch.setattr(runner, "wait_for_database", fail)
    assert runner.main([]) == 1


def test_check_only_reports_missing_tables(database) -> None:
    args = ["--timeout", "2", "--poll-interval", "0.1", "--check-only"]
    assert runner.main(args) == 0

    Base.metadata.tables["migration_audit_events"].drop(database)

    assert runner.missing_tables() == ["migration_audit_events"]
    assert runner.main(args) == runner.EXIT_SCHEMA_INCOMPLETE
    assert "migration_audit_events" not in inspect(database).get_table_names()
