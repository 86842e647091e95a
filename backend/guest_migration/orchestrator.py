"""Phase state machine driving a guest-to-account migration.

The orchestrator runs a saga: validate, snapshot the account in a
checkpoint, transform, resolve conflicts, stage and commit writes, then
verify. Any failure once the checkpoint exists is compensated by restoring
the snapshot, so the caller only ever sees the fully merged state or the
pre-migration state.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Set, Union

from pydantic import ValidationError as PydanticValidationError

from .checkpoints import CheckpointManager
from .config import Settings, get_settings
from .conflict_resolver import resolve
from .data_store import DataStoreAdapter, GuestProfileProvider, SqlAlchemyDataStore
from .errors import (
    CheckpointError,
    IntegrityError,
    MigrationError,
    MigrationInProgressError,
    MigrationTimeoutError,
    PersistenceError,
    RollbackError,
    TransformationError,
    ValidationError,
)
from .legacy_upgrade import upgrade_guest_payload
from .models import (
    AccountCurriculum,
    Checkpoint,
    ConflictResolutionResult,
    ConflictStrategy,
    EntityResults,
    GuestDataset,
    MigrationOutcome,
    MigrationPhase,
    PartialMigrationState,
    RollbackResult,
    ValidationReport,
    utcnow,
)
from .session_logger import SessionLogger, get_session_logger
from .transformer import transform
from .validator import MigrationValidator

logger = logging.getLogger(__name__)

GuestPayload = Union[GuestDataset, Mapping[str, Any], None]


class GuestLockRegistry:
    """In-process mutual exclusion per guest id."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._active: Set[str] = set()

    @contextmanager
    def hold(self, guest_id: str) -> Iterator[None]:
        with self._lock:
            if guest_id in self._active:
                raise MigrationInProgressError(f"A migration for guest {guest_id} is already running.")
            self._active.add(guest_id)
        try:
            yield
        finally:
            with self._lock:
                self._active.discard(guest_id)

    def is_active(self, guest_id: str) -> bool:
        with self._lock:
            return guest_id in self._active


@dataclass
class _MigrationContext:
    session_id: str
    guest_id: str
    account_id: str
    strategy: ConflictStrategy
    deadline: Optional[float]
    outcome: MigrationOutcome
    dataset: Optional[GuestDataset] = None
    checkpoint: Optional[Checkpoint] = None
    resolution: Optional[ConflictResolutionResult] = None
    partial: PartialMigrationState = field(default_factory=PartialMigrationState)


def compensate_failed_migration(
    manager: CheckpointManager,
    session_logger: SessionLogger,
    session_id: str,
    checkpoint: Checkpoint,
    reason: str,
    partial_data: Optional[PartialMigrationState] = None,
) -> RollbackResult:
    """Run the compensating rollback for ``checkpoint`` and log it as one operation."""
    operation_id = session_logger.log_operation_start(
        session_id,
        "rollback",
        {"checkpointId": checkpoint.id, "reason": reason},
    )
    try:
        result = manager.execute_rollback(checkpoint.id, reason, partial_data)
    except (CheckpointError, RollbackError) as exc:
        session_logger.log_operation_failure(session_id, operation_id, "rollback", exc)
        return RollbackResult(checkpoint_id=checkpoint.id, success=False, errors=[str(exc)])
    except Exception as exc:  # noqa: BLE001
        logger.exception("Rollback for session %s crashed", session_id)
        session_logger.log_operation_failure(session_id, operation_id, "rollback", exc)
        return RollbackResult(checkpoint_id=checkpoint.id, success=False, errors=[f"rollback crashed: {exc}"])

    if result.success:
        session_logger.log_operation_success(
            session_id,
            operation_id,
            "rollback",
            {"deleted": result.deleted, "restored": result.restored},
        )
    else:
        session_logger.log_operation_failure(session_id, operation_id, "rollback", "; ".join(result.errors))
        for error in result.errors:
            session_logger.log_error(session_id, "Compensating action failed", {"error": error})
    return result


class MigrationOrchestrator:
    """Sequence validator, checkpoint, transformer, resolver and store into one saga."""

    def __init__(
        self,
        store: DataStoreAdapter,
        *,
        guest_profiles: Optional[GuestProfileProvider] = None,
        checkpoint_manager: Optional[CheckpointManager] = None,
        validator: Optional[MigrationValidator] = None,
        session_logger: Optional[SessionLogger] = None,
        settings: Optional[Settings] = None,
        locks: Optional[GuestLockRegistry] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._settings = settings
        self._clock = clock or time.monotonic
        self.store = store
        self.guest_profiles = guest_profiles
        self.checkpoints = checkpoint_manager or CheckpointManager(store, settings=settings)
        self.validator = validator or MigrationValidator(store, settings=settings)
        self.session_logger = session_logger or get_session_logger()
        self.locks = locks or GuestLockRegistry()

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def migrate(
        self,
        guest_id: str,
        account_id: str,
        guest_data: GuestPayload = None,
        strategy: Optional[ConflictStrategy] = None,
        *,
        deadline: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> MigrationOutcome:
        """Migrate ``guest_id``'s data into ``account_id``.

        ``deadline`` is an absolute value on the orchestrator clock
        (``time.monotonic`` by default) and ``timeout`` is relative to now.
        Once it passes the run fails as if a hard error had occurred.
        """
        guest_id = (guest_id or "").strip()
        account_id = (account_id or "").strip()
        if not guest_id or not account_id:
            raise ValueError("guest_id and account_id must be non-empty.")
        strategy = strategy or self.settings.default_conflict_strategy
        timeout = timeout or self.settings.migration_timeout_seconds
        if deadline is None and timeout:
            deadline = self._clock() + timeout

        self.session_logger.prune_expired_sessions()
        session_id = self.session_logger.initialize_session(guest_id, account_id)
        ctx = _MigrationContext(
            session_id=session_id,
            guest_id=guest_id,
            account_id=account_id,
            strategy=strategy,
            deadline=deadline,
            outcome=MigrationOutcome(
                status="active",
                session_id=session_id,
                guest_id=guest_id,
                account_id=account_id,
                strategy=strategy,
            ),
        )
        try:
            with self.locks.hold(guest_id):
                self._run(ctx, guest_data)
        except MigrationError as exc:
            self._handle_failure(ctx, exc, exc.kind)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure during migration session %s", session_id)
            self._handle_failure(ctx, exc, "unexpected")
        return ctx.outcome

    # -- phases ------------------------------------------------------------

    def _run(self, ctx: _MigrationContext, guest_data: GuestPayload) -> None:
        log = self.session_logger
        if self._is_consumed(ctx.guest_id):
            log.log_info(ctx.session_id, "Guest data was already migrated; nothing to do")
            ctx.outcome.already_migrated = True
            self._finish(ctx, "completed", {"alreadyMigrated": True})
            return

        ctx.dataset = self._load_dataset(ctx, guest_data)

        self._enter(ctx, "validation")
        report = self.validator.validate_guest_data(ctx.dataset)
        ctx.outcome.validation.pre_validation = report
        for warning in report.warnings:
            log.log_warning(ctx.session_id, "Validation warning", {"warning": warning})
        if not report.valid:
            raise ValidationError("Guest data failed validation", report)

        self._enter(ctx, "checkpoint_creation")
        with self._operation(ctx, "create_checkpoint", {"guestId": ctx.guest_id, "accountId": ctx.account_id}) as op:
            ctx.checkpoint = self.checkpoints.create_checkpoint(
                ctx.session_id, ctx.guest_id, ctx.account_id, ctx.dataset
            )
            op["checkpointId"] = ctx.checkpoint.id
        ctx.outcome.checkpoint_id = ctx.checkpoint.id
        log.log_info(
            ctx.session_id,
            "Checkpoint created",
            {"checkpointId": ctx.checkpoint.id, "snapshot": ctx.checkpoint.snapshot.item_counts()},
        )

        self._enter(ctx, "transformation")
        transformed = transform(ctx.dataset, ctx.guest_id, ctx.account_id)
        transformed_report = self.validator.validate_transformed_data(transformed)
        ctx.outcome.validation.transformed_validation = transformed_report
        if not transformed_report.valid:
            raise TransformationError("Transformed data failed validation", transformed_report)

        self._enter(ctx, "conflict_resolution")
        ctx.resolution = resolve(transformed, ctx.checkpoint.snapshot, ctx.strategy)
        ctx.outcome.conflict_resolution = ctx.resolution
        log.log_info(
            ctx.session_id,
            "Conflicts resolved",
            {
                "strategy": ctx.strategy,
                "conflicts": ctx.resolution.statistics.total_conflicts,
                "resolved": ctx.resolution.statistics.resolved_conflicts,
            },
        )

        self._enter(ctx, "migration")
        self._migrate_records(ctx)

        self._enter(ctx, "verification")
        self._verify(ctx)

        self._enter(ctx, "completion")
        with self._operation(ctx, "confirm_checkpoint", {"checkpointId": ctx.checkpoint.id}):
            self.checkpoints.confirm_migration_success(ctx.checkpoint.id)
        self._track_completion(ctx)
        self._finish(
            ctx,
            "completed",
            {
                "plans": ctx.outcome.migration_results.plans.success,
                "flashcards": ctx.outcome.migration_results.flashcards.success,
                "conflicts": ctx.resolution.statistics.total_conflicts,
            },
        )

    def _load_dataset(self, ctx: _MigrationContext, guest_data: GuestPayload) -> GuestDataset:
        if isinstance(guest_data, GuestDataset):
            return guest_data
        if guest_data is None:
            if self.guest_profiles is None:
                raise ValidationError("No guest data was provided.")
            stored = self.guest_profiles.get_guest_dataset(ctx.guest_id)
            if stored is None:
                raise ValidationError(f"No stored data found for guest {ctx.guest_id}.")
            self.session_logger.log_info(ctx.session_id, "Using stored guest snapshot")
            return stored

        payload, upgraded_from = upgrade_guest_payload(guest_data)
        if upgraded_from is not None:
            self.session_logger.log_info(
                ctx.session_id, "Upgraded legacy guest payload", {"fromVersion": upgraded_from}
            )
        try:
            return GuestDataset.model_validate(payload)
        except PydanticValidationError as exc:
            errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()]
            report = ValidationReport(valid=False, errors=errors, integrity_score=0)
            ctx.outcome.validation.pre_validation = report
            raise ValidationError("Guest data is malformed", report) from exc

    def _is_consumed(self, guest_id: str) -> bool:
        if self.guest_profiles is None:
            return False
        return self.guest_profiles.is_guest_consumed(guest_id)

    def _migrate_records(self, ctx: _MigrationContext) -> None:
        assert ctx.resolution is not None
        plan = ctx.resolution.dataset
        results = ctx.outcome.migration_results

        for curriculum in plan.curricula_to_create:
            self._check_deadline(ctx)
            self._stage_curriculum(ctx, curriculum, results.plans)
        for curriculum in plan.curricula_to_update:
            self._check_deadline(ctx)
            if self._write(ctx, "update_curriculum", {"curriculumId": curriculum.id}, results.plans,
                           lambda c=curriculum: self.store.update_curriculum(c)):
                ctx.partial.updated_curriculum_ids.append(curriculum.id)

        for flashcard in plan.flashcards_to_create:
            self._check_deadline(ctx)
            if self._write(ctx, "create_flashcard", {"flashcardId": flashcard.id, "sourceId": flashcard.source_id},
                           results.flashcards, lambda f=flashcard: self.store.create_flashcard(ctx.guest_id, f)):
                ctx.partial.created_flashcard_ids.append(flashcard.id)
        for flashcard in plan.flashcards_to_update:
            self._check_deadline(ctx)
            if self._write(ctx, "update_flashcard", {"flashcardId": flashcard.id}, results.flashcards,
                           lambda f=flashcard: self.store.update_flashcard(f)):
                ctx.partial.updated_flashcard_ids.append(flashcard.id)

        if plan.progress is not None:
            self._check_deadline(ctx)
            progress = plan.progress
            ctx.partial.progress_written = self._write(
                ctx, "save_progress", {"accountId": ctx.account_id}, results.sessions,
                lambda: self.store.save_progress(progress),
            )
        if plan.preferences is not None:
            self._check_deadline(ctx)
            preferences = plan.preferences
            ctx.partial.preferences_written = self._write(
                ctx, "save_preferences", {"accountId": ctx.account_id}, results.sessions,
                lambda: self.store.save_preferences(preferences),
            )

        failed = {
            name: entity.failed
            for name, entity in (("plans", results.plans), ("flashcards", results.flashcards), ("sessions", results.sessions))
            if entity.failed
        }
        if failed:
            raise PersistenceError(
                "Item writes failed: " + ", ".join(f"{count} {name}" for name, count in failed.items()),
                details={"failed": failed},
            )

        self._check_deadline(ctx)
        operation_id = self.session_logger.log_operation_start(
            ctx.session_id, "commit_guest_to_account", {"guestId": ctx.guest_id, "accountId": ctx.account_id}
        )
        commit = self.store.commit_guest_to_account(ctx.guest_id, ctx.account_id)
        if not commit.success:
            self.session_logger.log_operation_failure(
                ctx.session_id, operation_id, "commit_guest_to_account", commit.error
            )
            raise PersistenceError(f"Bulk commit failed: {commit.error}")
        ctx.partial.committed = True
        self.session_logger.log_operation_success(
            ctx.session_id, operation_id, "commit_guest_to_account", {"counts": commit.counts}
        )

    def _stage_curriculum(self, ctx: _MigrationContext, curriculum: AccountCurriculum, results: EntityResults) -> None:
        """Stage a curriculum and its tree; any failed part counts the curriculum as failed."""
        log = self.session_logger
        operation_id = log.log_operation_start(
            ctx.session_id, "create_curriculum", {"curriculumId": curriculum.id, "sourceId": curriculum.source_id}
        )
        created = self.store.create_curriculum(ctx.guest_id, curriculum)
        if not created.success:
            log.log_operation_failure(ctx.session_id, operation_id, "create_curriculum", created.error)
            results.failed += 1
            results.errors.append(f"{curriculum.title}: {created.error}")
            return
        log.log_operation_success(ctx.session_id, operation_id, "create_curriculum", {"recordId": created.record_id})
        ctx.partial.created_curriculum_ids.append(curriculum.id)

        failures = []
        for module in curriculum.modules:
            module_op = log.log_operation_start(ctx.session_id, "create_module", {"moduleId": module.id})
            result = self.store.create_module(ctx.guest_id, curriculum.id, module)
            if not result.success:
                log.log_operation_failure(ctx.session_id, module_op, "create_module", result.error)
                failures.append(f"module {module.title}: {result.error}")
                continue
            log.log_operation_success(ctx.session_id, module_op, "create_module", {"recordId": result.record_id})
            for lesson in module.lessons:
                lesson_op = log.log_operation_start(ctx.session_id, "create_lesson", {"lessonId": lesson.id})
                lesson_result = self.store.create_lesson(ctx.guest_id, module.id, lesson)
                if not lesson_result.success:
                    log.log_operation_failure(ctx.session_id, lesson_op, "create_lesson", lesson_result.error)
                    failures.append(f"lesson {lesson.title}: {lesson_result.error}")
                    continue
                log.log_operation_success(
                    ctx.session_id, lesson_op, "create_lesson", {"recordId": lesson_result.record_id}
                )
        if failures:
            results.failed += 1
            results.errors.append(f"{curriculum.title}: {'; '.join(failures)}")
        else:
            results.success += 1

    @contextmanager
    def _operation(self, ctx: _MigrationContext, op_type: str, data: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
        """Bracket a non-item step in operation logs; the yielded dict becomes the success result."""
        operation_id = self.session_logger.log_operation_start(ctx.session_id, op_type, data)
        result: Dict[str, Any] = {}
        try:
            yield result
        except Exception as exc:
            self.session_logger.log_operation_failure(ctx.session_id, operation_id, op_type, exc)
            raise
        self.session_logger.log_operation_success(ctx.session_id, operation_id, op_type, result)

    def _write(
        self,
        ctx: _MigrationContext,
        op_type: str,
        data: Dict[str, Any],
        results: EntityResults,
        action: Any,
    ) -> bool:
        operation_id = self.session_logger.log_operation_start(ctx.session_id, op_type, data)
        result = action()
        if result.success:
            self.session_logger.log_operation_success(
                ctx.session_id, operation_id, op_type, {"recordId": result.record_id}
            )
            results.success += 1
            return True
        self.session_logger.log_operation_failure(ctx.session_id, operation_id, op_type, result.error)
        results.failed += 1
        results.errors.append(result.error or f"{op_type} failed")
        return False

    def _verify(self, ctx: _MigrationContext) -> None:
        assert ctx.dataset is not None and ctx.resolution is not None
        post = self.validator.validate_migration_results(
            ctx.dataset, ctx.guest_id, ctx.account_id, expected=ctx.resolution.dataset.final
        )
        ctx.outcome.validation.post_validation = post
        migrated = self.store.read_existing_account_data(ctx.account_id)
        integrity = self.validator.perform_data_integrity_check(ctx.session_id, ctx.dataset, migrated, ctx.guest_id)
        ctx.outcome.validation.integrity_check = integrity
        self.session_logger.log_info(
            ctx.session_id,
            "Verification finished",
            {"postValid": post.valid, "integrityScore": integrity.integrity_score},
        )
        if not post.valid:
            raise IntegrityError("Post-migration verification failed: " + "; ".join(post.errors), post)
        if integrity.integrity_score < self.settings.min_integrity_score:
            raise IntegrityError(
                f"Integrity score {integrity.integrity_score} is below {self.settings.min_integrity_score}",
                post,
                integrity.integrity_score,
            )

    def _track_completion(self, ctx: _MigrationContext) -> None:
        if self.guest_profiles is None:
            return
        results = ctx.outcome.migration_results
        log = self.session_logger
        operation_id = log.log_operation_start(
            ctx.session_id, "track_guest_event", {"eventType": "data_migration_completed"}
        )
        try:
            tracked = self.guest_profiles.track_guest_event(
                ctx.guest_id,
                "data_migration_completed",
                {
                    "sessionId": ctx.session_id,
                    "accountId": ctx.account_id,
                    "plans": results.plans.success,
                    "flashcards": results.flashcards.success,
                },
            )
        except Exception as exc:  # noqa: BLE001
            log.log_operation_failure(ctx.session_id, operation_id, "track_guest_event", exc)
            log.log_warning(ctx.session_id, "Analytics tracking failed", {"error": str(exc)})
            return
        if not tracked.success:
            log.log_operation_failure(ctx.session_id, operation_id, "track_guest_event", tracked.error)
            log.log_warning(ctx.session_id, "Analytics tracking failed", {"error": tracked.error})
            return
        log.log_operation_success(ctx.session_id, operation_id, "track_guest_event", {"recordId": tracked.record_id})

    # -- helpers -----------------------------------------------------------

    def _enter(self, ctx: _MigrationContext, phase: MigrationPhase) -> None:
        self._check_deadline(ctx)
        self.session_logger.update_migration_phase(ctx.session_id, phase)

    def _check_deadline(self, ctx: _MigrationContext) -> None:
        if ctx.deadline is not None and self._clock() >= ctx.deadline:
            raise MigrationTimeoutError("Migration deadline exceeded")

    def _handle_failure(self, ctx: _MigrationContext, exc: BaseException, kind: str) -> None:
        message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
        outcome = ctx.outcome
        outcome.error = message
        outcome.error_kind = kind
        self.session_logger.log_error(ctx.session_id, message, {"kind": kind})

        needs_rollback = ctx.checkpoint is not None and (
            not isinstance(exc, MigrationError) or exc.requires_rollback
        )
        if needs_rollback:
            assert ctx.checkpoint is not None
            rollback = compensate_failed_migration(
                self.checkpoints,
                self.session_logger,
                ctx.session_id,
                ctx.checkpoint,
                message,
                ctx.partial,
            )
            outcome.rollback_performed = True
            outcome.rollback_errors = list(rollback.errors)
            if not rollback.success:
                incomplete = RollbackError(
                    f"Rollback after {kind} failure is incomplete: {message}",
                    details={"cause": kind, "errors": rollback.errors},
                )
                outcome.error = incomplete.message
                outcome.error_kind = incomplete.kind
                self.session_logger.log_error(ctx.session_id, incomplete.message, incomplete.details)
            self._finish(ctx, "rolled_back", {"error": message, "kind": kind, "rollbackErrors": rollback.errors})
        else:
            self._finish(ctx, "failed", {"error": message, "kind": kind})

    def _finish(self, ctx: _MigrationContext, status: str, summary: Dict[str, Any]) -> None:
        ctx.outcome.status = status  # type: ignore[assignment]
        ctx.outcome.summary = self.session_logger.complete_session(ctx.session_id, status, summary)  # type: ignore[arg-type]
        ctx.outcome.completed_at = utcnow()


_orchestrator: Optional[MigrationOrchestrator] = None


def get_orchestrator() -> MigrationOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        store = SqlAlchemyDataStore()
        _orchestrator = MigrationOrchestrator(store, guest_profiles=store)
    return _orchestrator


def reset_orchestrator() -> None:
    global _orchestrator
    _orchestrator = None


__all__ = [
    "GuestLockRegistry",
    "MigrationOrchestrator",
    "compensate_failed_migration",
    "get_orchestrator",
    "reset_orchestrator",
]
