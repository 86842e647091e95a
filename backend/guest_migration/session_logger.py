"""Structured per-session logging and audit trail for migrations."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import RLock
from typing import Any, Dict, List, Literal, Optional

from .config import Settings, get_settings
from .errors import SessionClosedError, SessionNotFoundError
from .models import (
    PHASE_ORDER,
    TERMINAL_PHASES,
    LogEntry,
    MigrationPhase,
    MigrationSession,
    SessionStatus,
    SessionSummary,
    utcnow,
)
from .telemetry import emit_event

logger = logging.getLogger("guest_migration.session")

_LEVELS = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR}
_TERMINAL_PHASE_FOR_STATUS: Dict[str, MigrationPhase] = {
    "completed": "completion",
    "failed": "failed",
    "rolled_back": "rolled_back",
}


@dataclass
class _PendingOperation:
    op_type: str
    started_at: datetime


@dataclass
class _SessionRecord:
    session: MigrationSession
    logs: List[LogEntry] = field(default_factory=list)
    operations: Dict[str, _PendingOperation] = field(default_factory=dict)
    summary: Optional[SessionSummary] = None


class SessionLogger:
    """Append-only log streams keyed by migration session id.

    Entries are mirrored to the ``guest_migration.session`` logger. Once a
    session is completed its record is frozen; further writes raise
    ``SessionClosedError``.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings
        self._sessions: Dict[str, _SessionRecord] = {}
        self._lock = RLock()

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def initialize_session(self, guest_id: str, account_id: str) -> str:
        session_id = str(uuid.uuid4())
        record = _SessionRecord(session=MigrationSession(id=session_id, guest_id=guest_id, account_id=account_id))
        with self._lock:
            self._sessions[session_id] = record
        self._append(session_id, "info", "Migration session started", {"guestId": guest_id, "accountId": account_id})
        emit_event("migration_session_started", session_id=session_id, guest_id=guest_id, account_id=account_id)
        return session_id

    def log_info(self, session_id: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> LogEntry:
        return self._append(session_id, "info", message, metadata)

    def log_warning(self, session_id: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> LogEntry:
        return self._append(session_id, "warning", message, metadata)

    def log_error(self, session_id: str, message: str, metadata: Optional[Dict[str, Any]] = None) -> LogEntry:
        return self._append(session_id, "error", message, metadata)

    def log_operation_start(self, session_id: str, op_type: str, data: Optional[Dict[str, Any]] = None) -> str:
        operation_id = str(uuid.uuid4())
        with self._lock:
            record = self._open_record(session_id)
            record.operations[operation_id] = _PendingOperation(op_type=op_type, started_at=utcnow())
            record.session.metrics.operations_attempted += 1
        self._append(
            session_id,
            "info",
            f"Operation started: {op_type}",
            {"operation": op_type, "data": data or {}},
            operation_id=operation_id,
        )
        return operation_id

    def log_operation_success(
        self,
        session_id: str,
        operation_id: str,
        op_type: str,
        result: Optional[Dict[str, Any]] = None,
    ) -> LogEntry:
        duration_ms = self._finish_operation(session_id, operation_id, succeeded=True)
        return self._append(
            session_id,
            "info",
            f"Operation succeeded: {op_type}",
            {"operation": op_type, "result": result or {}, "durationMs": duration_ms},
            operation_id=operation_id,
        )

    def log_operation_failure(
        self,
        session_id: str,
        operation_id: str,
        op_type: str,
        error: Any,
    ) -> LogEntry:
        duration_ms = self._finish_operation(session_id, operation_id, succeeded=False)
        return self._append(
            session_id,
            "error",
            f"Operation failed: {op_type}",
            {"operation": op_type, "error": str(error), "durationMs": duration_ms},
            operation_id=operation_id,
        )

    def update_migration_phase(self, session_id: str, phase: MigrationPhase) -> None:
        with self._lock:
            record = self._open_record(session_id)
            current = record.session.phase
            if current in TERMINAL_PHASES:
                raise SessionClosedError(f"Migration session {session_id} already reached {current}.")
            if phase in PHASE_ORDER and PHASE_ORDER.index(phase) < PHASE_ORDER.index(current):
                raise ValueError(f"Cannot move session {session_id} back from {current} to {phase}.")
            record.session.phase = phase
            record.session.phase_history.append(phase)
        self._append(session_id, "info", f"Phase changed to {phase}", {"from": current, "to": phase})
        emit_event("migration_phase_changed", session_id=session_id, phase=phase, previous=current)

    def complete_session(
        self,
        session_id: str,
        status: SessionStatus,
        summary: Optional[Dict[str, Any]] = None,
    ) -> SessionSummary:
        if status not in _TERMINAL_PHASE_FOR_STATUS:
            raise ValueError(f"Sessions cannot complete with status {status}.")
        terminal_phase = _TERMINAL_PHASE_FOR_STATUS[status]
        with self._lock:
            record = self._open_record(session_id)
            if record.session.phase != terminal_phase:
                record.session.phase_history.append(terminal_phase)
            previous = record.session.phase
            record.session.phase = terminal_phase
        level: Literal["info", "warning", "error"] = "info" if status == "completed" else "error"
        self._append(
            session_id,
            level,
            f"Migration session {status}",
            {"status": status, "previousPhase": previous, **(summary or {})},
        )
        with self._lock:
            record = self._open_record(session_id)
            completed_at = utcnow()
            record.session.status = status
            record.session.completed_at = completed_at
            started_at = record.session.started_at
            result = SessionSummary(
                session_id=session_id,
                guest_id=record.session.guest_id,
                account_id=record.session.account_id,
                status=status,
                phase=terminal_phase,
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=int((completed_at - started_at).total_seconds() * 1000),
                metrics=record.session.metrics.model_copy(),
                log_count=len(record.logs),
                summary=dict(summary or {}),
            )
            record.summary = result
        emit_event(
            "migration_session_completed",
            session_id=session_id,
            guest_id=result.guest_id,
            account_id=result.account_id,
            status=status,
            duration_ms=result.duration_ms,
            operations_failed=result.metrics.operations_failed,
        )
        return result

    # -- reads -------------------------------------------------------------

    def get_session(self, session_id: str) -> MigrationSession:
        with self._lock:
            return self._record(session_id).session.model_copy(deep=True)

    def get_summary(self, session_id: str) -> Optional[SessionSummary]:
        with self._lock:
            return self._record(session_id).summary

    def get_logs(self, session_id: str, level: Optional[str] = None) -> List[LogEntry]:
        with self._lock:
            logs = list(self._record(session_id).logs)
        if level is not None:
            logs = [entry for entry in logs if entry.level == level]
        return logs

    def export_session_logs(self, session_id: str) -> Dict[str, Any]:
        with self._lock:
            record = self._record(session_id)
            session = record.session.model_copy(deep=True)
            logs = list(record.logs)
            summary = record.summary
        return {
            "session": session.model_dump(mode="json", by_alias=True),
            "summary": summary.model_dump(mode="json", by_alias=True) if summary else None,
            "logs": [entry.model_dump(mode="json", by_alias=True) for entry in logs],
        }

    def generate_session_report(self, session_id: str) -> str:
        """Markdown report reconstructed purely from the session's log stream."""
        with self._lock:
            record = self._record(session_id)
            session = record.session.model_copy(deep=True)
            logs = list(record.logs)
        metrics = session.metrics
        lines = [
            f"# Migration Session {session.id}",
            "",
            f"- Guest: `{session.guest_id}`",
            f"- Account: `{session.account_id}`",
            f"- Status: **{session.status}** (phase `{session.phase}`)",
            f"- Started: {session.started_at.isoformat()}",
            f"- Completed: {session.completed_at.isoformat() if session.completed_at else 'in progress'}",
            f"- Phases: {' -> '.join(session.phase_history)}",
            "",
            "## Metrics",
            "",
            f"- Operations attempted: {metrics.operations_attempted}",
            f"- Operations succeeded: {metrics.operations_succeeded}",
            f"- Operations failed: {metrics.operations_failed}",
            f"- Warnings: {metrics.warnings}",
            f"- Errors: {metrics.errors}",
        ]
        problems = [entry for entry in logs if entry.level != "info"]
        if problems:
            lines.extend(["", "## Warnings and errors", ""])
            for entry in problems:
                lines.append(f"- [{entry.level.upper()}] {entry.timestamp.isoformat()} {entry.message}")
        return "\n".join(lines) + "\n"

    def prune_expired_sessions(self, *, now: Optional[datetime] = None) -> int:
        cutoff = (now or utcnow()) - timedelta(hours=self.settings.session_retention_hours)
        with self._lock:
            expired = [
                session_id
                for session_id, record in self._sessions.items()
                if record.session.completed_at is not None and record.session.completed_at < cutoff
            ]
            for session_id in expired:
                del self._sessions[session_id]
        return len(expired)

    # -- internals ---------------------------------------------------------

    def _record(self, session_id: str) -> _SessionRecord:
        record = self._sessions.get(session_id)
        if record is None:
            raise SessionNotFoundError(f"Migration session {session_id} does not exist.")
        return record

    def _open_record(self, session_id: str) -> _SessionRecord:
        record = self._record(session_id)
        if record.session.status != "active":
            raise SessionClosedError(f"Migration session {session_id} is {record.session.status}.")
        return record

    def _finish_operation(self, session_id: str, operation_id: str, *, succeeded: bool) -> Optional[int]:
        with self._lock:
            record = self._open_record(session_id)
            pending = record.operations.pop(operation_id, None)
            if succeeded:
                record.session.metrics.operations_succeeded += 1
            else:
                record.session.metrics.operations_failed += 1
        if pending is None:
            return None
        return int((utcnow() - pending.started_at).total_seconds() * 1000)

    def _append(
        self,
        session_id: str,
        level: Literal["info", "warning", "error"],
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        operation_id: Optional[str] = None,
    ) -> LogEntry:
        with self._lock:
            record = self._open_record(session_id)
            entry = LogEntry(
                session_id=session_id,
                level=level,
                message=message,
                metadata=dict(metadata or {}),
                phase=record.session.phase,
                operation_id=operation_id,
            )
            record.logs.append(entry)
            if level == "warning":
                record.session.metrics.warnings += 1
            elif level == "error":
                record.session.metrics.errors += 1
        logger.log(_LEVELS[level], "[%s] %s", session_id, message, extra={"migration_metadata": entry.metadata})
        return entry


_default_logger: Optional[SessionLogger] = None


def get_session_logger() -> SessionLogger:
    global _default_logger
    if _default_logger is None:
        _default_logger = SessionLogger()
    return _default_logger


__all__ = ["SessionLogger", "get_session_logger"]
