"""Database-backed persistence for migration checkpoints and the audit trail."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ..db.models import MigrationAuditEventModel, MigrationCheckpointModel
from ..models import AccountDataset, Checkpoint, ensure_utc

CLOSED_STATUSES = ("confirmed", "rolled_back")


class CheckpointRepository:
    def create(self, session: Session, checkpoint: Checkpoint) -> Checkpoint:
        model = MigrationCheckpointModel(
            id=checkpoint.id,
            session_id=checkpoint.session_id,
            guest_id=checkpoint.guest_id,
            account_id=checkpoint.account_id,
            status=checkpoint.status,
            snapshot=checkpoint.snapshot.model_dump(mode="json"),
            snapshot_digest=checkpoint.snapshot_digest,
            guest_item_counts=dict(checkpoint.guest_item_counts),
            status_reason=checkpoint.status_reason,
            created_at=checkpoint.created_at,
        )
        session.add(model)
        session.flush()
        self._record_audit(
            session,
            model,
            "checkpoint_created",
            {"checkpoint_id": model.id, "snapshot_counts": checkpoint.snapshot.item_counts()},
        )
        return self._to_domain(model)

    def get(self, session: Session, checkpoint_id: str) -> Optional[Checkpoint]:
        model = session.get(MigrationCheckpointModel, checkpoint_id)
        return self._to_domain(model) if model else None

    def find_active(
        self,
        session: Session,
        *,
        session_id: Optional[str] = None,
        guest_id: Optional[str] = None,
    ) -> Optional[Checkpoint]:
        stmt = select(MigrationCheckpointModel).where(MigrationCheckpointModel.status == "active")
        if session_id is not None:
            stmt = stmt.where(MigrationCheckpointModel.session_id == session_id)
        if guest_id is not None:
            stmt = stmt.where(MigrationCheckpointModel.guest_id == guest_id)
        model = session.execute(stmt.limit(1)).scalar_one_or_none()
        return self._to_domain(model) if model else None

    def list(
        self,
        session: Session,
        *,
        guest_id: Optional[str] = None,
        statuses: Optional[Iterable[str]] = None,
    ) -> List[Checkpoint]:
        stmt = select(MigrationCheckpointModel).order_by(
            MigrationCheckpointModel.created_at.desc(), MigrationCheckpointModel.id
        )
        if guest_id is not None:
            stmt = stmt.where(MigrationCheckpointModel.guest_id == guest_id)
        if statuses is not None:
            stmt = stmt.where(MigrationCheckpointModel.status.in_(list(statuses)))
        return [self._to_domain(model) for model in session.execute(stmt).scalars()]

    def set_status(
        self,
        session: Session,
        checkpoint_id: str,
        status: str,
        *,
        reason: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[Checkpoint]:
        model = session.get(MigrationCheckpointModel, checkpoint_id, with_for_update=True)
        if model is None:
            return None
        model.status = status
        model.status_reason = reason
        session.flush()
        self._record_audit(session, model, f"checkpoint_{status}", {"reason": reason, **(payload or {})})
        return self._to_domain(model)

    def delete_closed_before(self, session: Session, cutoff: datetime) -> int:
        ids = [
            row[0]
            for row in session.execute(
                select(MigrationCheckpointModel.id).where(
                    MigrationCheckpointModel.status.in_(CLOSED_STATUSES),
                    MigrationCheckpointModel.updated_at < cutoff,
                )
            )
        ]
        if not ids:
            return 0
        session.execute(delete(MigrationCheckpointModel).where(MigrationCheckpointModel.id.in_(ids)))
        return len(ids)

    def record_audit_event(
        self,
        session: Session,
        event_type: str,
        payload: Dict[str, Any],
        *,
        session_id: Optional[str] = None,
        guest_id: Optional[str] = None,
        account_id: Optional[str] = None,
        actor: str = "system",
    ) -> None:
        session.add(
            MigrationAuditEventModel(
                session_id=session_id,
                guest_id=guest_id,
                account_id=account_id,
                event_type=event_type,
                payload=payload,
                actor=actor,
            )
        )

    def list_audit_events(self, session: Session, session_id: str) -> List[MigrationAuditEventModel]:
        stmt = (
            select(MigrationAuditEventModel)
            .where(MigrationAuditEventModel.session_id == session_id)
            .order_by(MigrationAuditEventModel.created_at)
        )
        return list(session.execute(stmt).scalars())

    def _record_audit(
        self, session: Session, model: MigrationCheckpointModel, event_type: str, payload: Dict[str, Any]
    ) -> None:
        self.record_audit_event(
            session,
            event_type,
            payload,
            session_id=model.session_id,
            guest_id=model.guest_id,
            account_id=model.account_id,
        )

    @staticmethod
    def _to_domain(model: MigrationCheckpointModel) -> Checkpoint:
        return Checkpoint(
            id=model.id,
            session_id=model.session_id,
            guest_id=model.guest_id,
            account_id=model.account_id,
            status=model.status,  # type: ignore[arg-type]
            snapshot=AccountDataset.model_validate(model.snapshot),
            snapshot_digest=model.snapshot_digest,
            guest_item_counts=dict(model.guest_item_counts or {}),
            status_reason=model.status_reason,
            created_at=ensure_utc(model.created_at),
            updated_at=ensure_utc(model.updated_at),
        )


checkpoints = CheckpointRepository()

__all__ = ["CLOSED_STATUSES", "CheckpointRepository", "checkpoints"]
