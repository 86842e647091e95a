from __future__ import annotations

from typing import Any, Dict, Iterator

import pytest
from fastapi.testclient import TestClient

from guest_migration.data_store import CommitResult, SqlAlchemyDataStore
from guest_migration.main import app
from guest_migration.orchestrator import MigrationOrchestrator, get_orchestrator
from guest_migration.session_logger import SessionLogger

from conftest import ACCOUNT_ID, GUEST_ID


class _CommitFailsStore(SqlAlchemyDataStore):
    def commit_guest_to_account(self, guest_id: str, account_id: str) -> CommitResult:
        return CommitResult(success=False, error="deadlock detected")


@pytest.fixture
def client(database) -> Iterator[TestClient]:
    yield TestClient(app)
    app.dependency_overrides.clear()


def _request(guest_payload: Dict[str, Any], **overrides: Any) -> Dict[str, Any]:
    body = {
        "guestId": GUEST_ID,
        "accountId": ACCOUNT_ID,
        "guestData": guest_payload,
        "conflictResolutionStrategy": "merge_with_preference",
    }
    body.update(overrides)
    return body


def test_migrate_data_success(client: TestClient, guest_payload) -> None:
    response = client.post("/api/guest/migrate-data", json=_request(guest_payload))

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["alreadyMigrated"] is False
    assert payload["migrationResults"]["plans"] == {"success": 2, "failed": 0, "errors": []}
    assert payload["migrationResults"]["flashcards"]["success"] == 5
    assert payload["migrationResults"]["sessions"]["success"] == 2
    assert payload["conflictResolution"]["strategy"] == "merge_with_preference"
    assert payload["conflictResolution"]["conflicts"] == 0
    assert payload["conflictResolution"]["report"].startswith("# Conflict Resolution Report")
    assert payload["validation"]["preValidation"]["valid"] is True
    assert payload["validation"]["postValidation"]["valid"] is True
    assert payload["validation"]["integrityCheck"]["integrityScore"] == 100.0
    assert payload["completedAt"]


def test_migrate_data_twice_reports_already_migrated(client: TestClient, guest_payload) -> None:
    assert client.post("/api/guest/migrate-data", json=_request(guest_payload)).status_code == 200

    response = client.post("/api/guest/migrate-data", json=_request(guest_payload))

    assert response.status_code == 200
    assert response.json()["alreadyMigrated"] is True


def test_migrate_data_validation_failure(client: TestClient, guest_payload) -> None:
    guest_payload["curricula"][0]["title"] = ""
    response = client.post("/api/guest/migrate-data", json=_request(guest_payload))

    assert response.status_code == 400
    payload = response.json()
    assert payload["success"] is False
    assert payload["validationReport"]["valid"] is False
    assert any("plan-1" in error for error in payload["validationReport"]["errors"])
    assert payload["sessionId"]


def test_migrate_data_rejects_unknown_strategy(client: TestClient, guest_payload) -> None:
    response = client.post(
        "/api/guest/migrate-data",
        json=_request(guest_payload, conflictResolutionStrategy="newest_wins"),
    )
    assert response.status_code == 422


def test_migrate_data_conflicts_with_running_migration(client: TestClient, guest_payload) -> None:
    orchestrator = get_orchestrator()
    with orchestrator.locks.hold(GUEST_ID):
        response = client.post("/api/guest/migrate-data", json=_request(guest_payload))

    assert response.status_code == 409
    payload = response.json()
    assert payload["errorKind"] == "concurrent_migration"
    assert payload["rollbackPerformed"] is False


def test_migrate_data_persistence_failure_rolls_back(client: TestClient, guest_payload) -> None:
    store = _CommitFailsStore()
    app.dependency_overrides[get_orchestrator] = lambda: MigrationOrchestrator(
        store, guest_profiles=store, session_logger=SessionLogger()
    )

    response = client.post("/api/guest/migrate-data", json=_request(guest_payload))

    assert response.status_code == 500
    payload = response.json()
    assert payload["success"] is False
    assert payload["errorKind"] == "persistence"
    assert payload["rollbackPerformed"] is True
    assert payload["rollbackErrors"] == []
    assert "deadlock detected" in payload["error"]
    account = store.read_existing_account_data(ACCOUNT_ID)
    assert account.curricula == [] and account.flashcards == []


def test_guest_status_and_sync(client: TestClient, guest_payload) -> None:
    response = client.get("/api/guest/migrate-data", params={"guestId": GUEST_ID})
    assert response.status_code == 200
    assert response.json()["hasDataToMigrate"] is False

    synced = client.put(f"/api/guest/{GUEST_ID}/data", json=guest_payload)
    assert synced.status_code == 200
    body = synced.json()
    assert body["upgradedFrom"] is None
    assert body["usage"]["curricula"] == 2
    assert body["usage"]["lessons"] == 3
    assert body["usage"]["limits"] == {"maxPlans": 3, "maxLessons": 10, "maxFlashcards": 50}

    status_payload = client.get("/api/guest/migrate-data", params={"guestId": GUEST_ID}).json()
    assert status_payload["hasDataToMigrate"] is True

    migrated = client.post(
        "/api/guest/migrate-data",
        json={"guestId": GUEST_ID, "accountId": ACCOUNT_ID},
    )
    assert migrated.status_code == 200

    status_payload = client.get("/api/guest/migrate-data", params={"guestId": GUEST_ID}).json()
    assert status_payload["hasDataToMigrate"] is False
    assert status_payload["usage"]["migrated"] is True
    assert status_payload["usage"]["migratedAccountId"] == ACCOUNT_ID


def test_sync_upgrades_legacy_payload(client: TestClient) -> None:
    response = client.put(
        f"/api/guest/{GUEST_ID}/data",
        json={"plans": [{"id": "p-1", "title": "Legacy", "modules": []}]},
    )
    assert response.status_code == 200
    assert response.json()["upgradedFrom"] == "0.9.0"


def test_sync_rejects_malformed_payload(client: TestClient) -> None:
    response = client.put(
        f"/api/guest/{GUEST_ID}/data",
        json={"curricula": [{"title": "No id"}]},
    )
    assert response.status_code == 422


def test_migration_session_report(client: TestClient, guest_payload) -> None:
    session_id = client.post("/api/guest/migrate-data", json=_request(guest_payload)).json()["sessionId"]

    response = client.get(f"/api/guest/migrations/{session_id}")

    assert response.status_code == 200
    payload = response.json()
    assert payload["session"]["status"] == "completed"
    assert payload["summary"]["status"] == "completed"
    assert payload["logs"][0]["message"] == "Migration session started"
    assert payload["report"].startswith(f"# Migration Session {session_id}")


def test_migration_session_report_unknown_session(client: TestClient) -> None:
    response = client.get("/api/guest/migrations/does-not-exist")
    assert response.status_code == 404


def test_guest_checkpoints_listing(client: TestClient, guest_payload) -> None:
    migrated = client.post("/api/guest/migrate-data", json=_request(guest_payload)).json()

    response = client.get(f"/api/guest/{GUEST_ID}/checkpoints")

    assert response.status_code == 200
    listed = response.json()["checkpoints"]
    assert len(listed) == 1
    assert listed[0]["sessionId"] == migrated["sessionId"]
    assert listed[0]["status"] == "confirmed"
    assert "snapshot" not in listed[0]
    assert client.get("/api/guest/someone-else/checkpoints").json()["checkpoints"] == []


def test_guest_analytics_events_listing(client: TestClient, guest_payload) -> None:
    migrated = client.post("/api/guest/migrate-data", json=_request(guest_payload)).json()

    response = client.get(f"/api/guest/{GUEST_ID}/events")

    assert response.status_code == 200
    events = response.json()["events"]
    assert [event["eventType"] for event in events] == ["data_migration_completed"]
    assert events[0]["payload"]["sessionId"] == migrated["sessionId"]
    assert events[0]["payload"]["flashcards"] == 5
    assert client.get("/api/guest/someone-else/events").json()["events"] == []
