"""REST endpoints for guest data sync and guest-to-account migration."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session

from .conflict_resolver import generate_conflict_report
from .db.session import get_session_dependency
from .errors import SessionNotFoundError
from .legacy_upgrade import upgrade_guest_payload
from .models import ConflictStrategy, GuestDataset, MigrationOutcome, ensure_utc
from .orchestrator import MigrationOrchestrator, get_orchestrator
from .repositories.account_data import account_data
from .repositories.checkpoints import checkpoints

router = APIRouter(prefix="/api/guest", tags=["guest-migration"])
logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 55.0


class MigrateDataRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    guest_id: str = Field(..., min_length=1)
    account_id: str = Field(..., min_length=1)
    guest_data: Optional[Dict[str, Any]] = None
    conflict_resolution_strategy: Optional[ConflictStrategy] = None


def _success_payload(outcome: MigrationOutcome) -> Dict[str, Any]:
    resolution = outcome.conflict_resolution
    validation = outcome.validation
    return {
        "success": True,
        "sessionId": outcome.session_id,
        "alreadyMigrated": outcome.already_migrated,
        "migrationResults": outcome.migration_results.model_dump(mode="json", by_alias=True),
        "conflictResolution": {
            "strategy": outcome.strategy,
            "conflicts": resolution.statistics.total_conflicts if resolution else 0,
            "resolutions": resolution.statistics.resolved_conflicts if resolution else 0,
            "statistics": resolution.statistics.model_dump(mode="json", by_alias=True) if resolution else None,
            "report": generate_conflict_report(resolution) if resolution else None,
        },
        "validation": {
            "preValidation": _dump(validation.pre_validation),
            "postValidation": _dump(validation.post_validation),
            "integrityCheck": _dump(validation.integrity_check),
        },
        "completedAt": outcome.completed_at.isoformat() if outcome.completed_at else None,
    }


def _dump(model: Optional[BaseModel]) -> Optional[Dict[str, Any]]:
    return model.model_dump(mode="json", by_alias=True) if model is not None else None


@router.post("/migrate-data")
def migrate_guest_data(
    payload: MigrateDataRequest,
    orchestrator: MigrationOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    logger.info("Migration requested for guest=%s account=%s", payload.guest_id, payload.account_id)
    outcome = orchestrator.migrate(
        payload.guest_id,
        payload.account_id,
        payload.guest_data,
        payload.conflict_resolution_strategy,
        timeout=REQUEST_TIMEOUT_SECONDS,
    )
    if outcome.succeeded:
        return JSONResponse(status_code=status.HTTP_200_OK, content=_success_payload(outcome))

    if outcome.error_kind == "validation":
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "success": False,
                "error": outcome.error,
                "validationReport": _dump(outcome.validation.pre_validation),
                "sessionId": outcome.session_id,
            },
        )

    status_code = (
        status.HTTP_409_CONFLICT
        if outcome.error_kind == "concurrent_migration"
        else status.HTTP_500_INTERNAL_SERVER_ERROR
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": outcome.error,
            "errorKind": outcome.error_kind,
            "sessionId": outcome.session_id,
            "rollbackPerformed": outcome.rollback_performed,
            "rollbackErrors": outcome.rollback_errors,
        },
    )


@router.get("/migrate-data")
def guest_migration_status(
    guest_id: str = Query(..., alias="guestId", min_length=1),
    orchestrator: MigrationOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    provider = orchestrator.guest_profiles
    if provider is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Guest profiles unavailable.")
    stats = provider.get_guest_usage_stats(guest_id)
    return {
        "guestId": guest_id,
        "hasDataToMigrate": stats.has_data and not stats.migrated,
        "usage": stats.model_dump(mode="json", by_alias=True),
    }


@router.put("/{guest_id}/data")
def sync_guest_data(
    guest_id: str,
    payload: Dict[str, Any],
    orchestrator: MigrationOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    provider = orchestrator.guest_profiles
    if provider is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Guest profiles unavailable.")
    upgraded, upgraded_from = upgrade_guest_payload(payload)
    try:
        dataset = GuestDataset.model_validate(upgraded)
    except PydanticValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc
    stats = provider.record_guest_snapshot(guest_id, dataset)
    return {
        "guestId": guest_id,
        "upgradedFrom": upgraded_from,
        "usage": stats.model_dump(mode="json", by_alias=True),
    }


@router.get("/migrations/{session_id}")
def migration_session_report(
    session_id: str,
    orchestrator: MigrationOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    session_logger = orchestrator.session_logger
    try:
        exported = session_logger.export_session_logs(session_id)
        report = session_logger.generate_session_report(session_id)
    except SessionNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return {**exported, "report": report}


@router.get("/{guest_id}/checkpoints")
def list_guest_checkpoints(
    guest_id: str,
    session: Session = Depends(get_session_dependency),
) -> Dict[str, Any]:
    items = checkpoints.list(session, guest_id=guest_id)
    return {
        "guestId": guest_id,
        "checkpoints": [
            checkpoint.model_dump(mode="json", by_alias=True, exclude={"snapshot"}) for checkpoint in items
        ],
    }


@router.get("/{guest_id}/events")
def list_guest_analytics_events(
    guest_id: str,
    session: Session = Depends(get_session_dependency),
) -> Dict[str, Any]:
    events = account_data.list_guest_events(session, guest_id)
    return {
        "guestId": guest_id,
        "events": [
            {
                "eventType": event.event_type,
                "payload": event.payload,
                "createdAt": ensure_utc(event.created_at).isoformat(),
            }
            for event in events
        ],
    }
