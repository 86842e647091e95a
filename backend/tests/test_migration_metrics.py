from __future__ import annotations

import json

from guest_migration.checkpoints import CheckpointManager
from guest_migration.config import get_settings
from guest_migration.db.session import session_scope
from guest_migration.models import GuestDataset
from scripts import migration_metrics

from conftest import ACCOUNT_ID, GUEST_ID, build_guest_payload


def test_collect_metrics_counts_backlog(store) -> None:
    dataset = GuestDataset.model_validate(build_guest_payload())
    store.record_guest_snapshot(GUEST_ID, dataset)
    store.record_guest_snapshot("guest-2", dataset)
    manager = CheckpointManager(store)
    checkpoint = manager.create_checkpoint("session-1", GUEST_ID, ACCOUNT_ID, dataset)
    manager.confirm_migration_success(checkpoint.id)
    manager.create_checkpoint("session-2", "guest-2", ACCOUNT_ID, dataset)

    with session_scope(commit=False) as session:
        metrics = migration_metrics.collect_metrics(session)

    assert metrics["checkpoints"] == {"active": 1, "confirmed": 1, "rolled_back": 0}
    assert metrics["pendingGuests"] == 2
    assert metrics["migratedGuests"] == 0


def test_main_prints_snapshot(database, capsys) -> None:
    assert migration_metrics.main(["--include-pool"]) == 0

    payload = json.loads(capsys.readouterr().out.strip())
    assert payload["checkpoints"] == {"active": 0, "confirmed": 0, "rolled_back": 0}
    assert payload["pool"]["connects"] >= 1


def test_main_returns_error_without_database(monkeypatch) -> None:
    monkeypatch.delenv("FATHOM_DATABASE_URL", raising=False)
    get_settings.cache_clear()
    try:
        assert migration_metrics.main([]) == 1
    finally:
        get_settings.cache_clear()
