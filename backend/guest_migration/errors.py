"""Exception taxonomy for the migration engine.

Each error carries a ``kind`` used for HTTP mapping and audit records, and a
``requires_rollback`` flag the orchestrator consults once a checkpoint exists.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, List, Optional, Sequence

if TYPE_CHECKING:
    from .models import ConflictStatistics, ValidationReport


class MigrationError(Exception):
    kind = "migration"
    requires_rollback = True

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})


class ValidationError(MigrationError):
    """Guest data failed structural or business validation before any write."""

    kind = "validation"
    requires_rollback = False

    def __init__(self, message: str, report: "ValidationReport | None" = None) -> None:
        super().__init__(message)
        self.report = report


class TransformationError(MigrationError):
    kind = "transformation"

    def __init__(self, message: str, report: "ValidationReport | None" = None) -> None:
        super().__init__(message)
        self.report = report


class ConflictResolutionError(MigrationError):
    """A detected conflict has no resolution under the selected strategy."""

    kind = "conflict_resolution"

    def __init__(
        self,
        message: str,
        *,
        unresolved: Sequence[Any] = (),
        statistics: "ConflictStatistics | None" = None,
    ) -> None:
        super().__init__(message)
        self.unresolved: List[Any] = list(unresolved)
        self.statistics = statistics


class PersistenceError(MigrationError):
    kind = "persistence"


class IntegrityError(MigrationError):
    kind = "integrity"

    def __init__(self, message: str, report: "ValidationReport | None" = None, score: Optional[float] = None) -> None:
        super().__init__(message)
        self.report = report
        self.score = score


class RollbackError(MigrationError):
    kind = "rollback"
    requires_rollback = False


class MigrationTimeoutError(MigrationError):
    kind = "timeout"


class MigrationInProgressError(MigrationError):
    kind = "concurrent_migration"
    requires_rollback = False


class CheckpointError(MigrationError):
    kind = "checkpoint"
    requires_rollback = False


class CheckpointNotFoundError(CheckpointError):
    kind = "checkpoint_not_found"


class RollbackNotPermittedError(CheckpointError):
    kind = "rollback_not_permitted"


class SessionNotFoundError(MigrationError):
    kind = "session_not_found"
    requires_rollback = False


class SessionClosedError(MigrationError):
    kind = "session_closed"
    requires_rollback = False


__all__ = [
    "CheckpointError",
    "CheckpointNotFoundError",
    "ConflictResolutionError",
    "IntegrityError",
    "MigrationError",
    "MigrationInProgressError",
    "MigrationTimeoutError",
    "PersistenceError",
    "RollbackError",
    "RollbackNotPermittedError",
    "SessionClosedError",
    "SessionNotFoundError",
    "TransformationError",
    "ValidationError",
]
