"""Domain models shared by the migration engine.

Guest-side records mirror the client's local storage schema (camelCase on the
wire). Account-side records are what the persistence adapter reads and writes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Difficulty = Literal["easy", "medium", "hard"]
Theme = Literal["light", "dark", "system"]
ConflictStrategy = Literal[
    "merge_with_preference",
    "guest_priority",
    "existing_priority",
    "create_duplicate",
]
MigrationPhase = Literal[
    "initialization",
    "validation",
    "checkpoint_creation",
    "transformation",
    "conflict_resolution",
    "migration",
    "verification",
    "completion",
    "failed",
    "rolled_back",
]
SessionStatus = Literal["active", "completed", "failed", "rolled_back"]
CheckpointStatus = Literal["active", "confirmed", "rolled_back"]
EntityType = Literal["curriculum", "flashcard", "progress", "preferences"]

CONFLICT_STRATEGIES: tuple[str, ...] = (
    "merge_with_preference",
    "guest_priority",
    "existing_priority",
    "create_duplicate",
)
PHASE_ORDER: tuple[str, ...] = (
    "initialization",
    "validation",
    "checkpoint_creation",
    "transformation",
    "conflict_resolution",
    "migration",
    "verification",
    "completion",
)
TERMINAL_PHASES: frozenset[str] = frozenset({"completion", "failed", "rolled_back"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _UtcModel(BaseModel):
    @field_validator("*", mode="after")
    @classmethod
    def _normalise_datetimes(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value


class ApiModel(_UtcModel):
    """Base for payloads exchanged with clients in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Guest schema


class GuestLesson(ApiModel):
    id: str
    title: str
    duration: str = ""
    completed: bool = False
    completed_at: Optional[datetime] = None


class GuestModule(ApiModel):
    id: str
    title: str
    lessons: List[GuestLesson] = Field(default_factory=list)


class GuestCurriculum(ApiModel):
    id: str
    title: str
    domain: str = ""
    created_at: Optional[datetime] = None
    modules: List[GuestModule] = Field(default_factory=list)


class GuestFlashcard(ApiModel):
    id: str
    front: str
    back: str
    tags: List[str] = Field(default_factory=list)
    difficulty: Difficulty = "medium"
    review_count: int = Field(default=0, ge=0)
    correct_count: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None
    last_reviewed_at: Optional[datetime] = None


class GuestProgress(ApiModel):
    total_plans: int = Field(default=0, ge=0)
    total_lessons: int = Field(default=0, ge=0)
    total_flashcards: int = Field(default=0, ge=0)
    completed_lessons: int = Field(default=0, ge=0)
    study_minutes: int = Field(default=0, ge=0)
    streak: int = Field(default=0, ge=0)
    last_study_date: Optional[datetime] = None


class GuestPreferences(ApiModel):
    theme: Theme = "system"
    notifications: bool = True
    sound_effects: bool = True


class GuestDataset(ApiModel):
    """Snapshot of everything a guest identity owns prior to migration."""

    curricula: List[GuestCurriculum] = Field(default_factory=list)
    flashcards: List[GuestFlashcard] = Field(default_factory=list)
    progress: Optional[GuestProgress] = None
    preferences: Optional[GuestPreferences] = None

    def lesson_count(self) -> int:
        return sum(len(module.lessons) for curriculum in self.curricula for module in curriculum.modules)

    def is_empty(self) -> bool:
        return not self.curricula and not self.flashcards and self.progress is None and self.preferences is None


# ---------------------------------------------------------------------------
# Account schema


class AccountLesson(_UtcModel):
    id: str
    title: str
    duration: str = ""
    completed: bool = False
    completed_at: Optional[datetime] = None
    position: int = 0
    source_id: Optional[str] = None


class AccountModule(_UtcModel):
    id: str
    title: str
    position: int = 0
    source_id: Optional[str] = None
    lessons: List[AccountLesson] = Field(default_factory=list)


class AccountCurriculum(_UtcModel):
    id: str
    account_id: str
    title: str
    domain: str = ""
    created_at: datetime
    source_id: Optional[str] = None
    source_guest_id: Optional[str] = None
    modules: List[AccountModule] = Field(default_factory=list)

    def lesson_count(self) -> int:
        return sum(len(module.lessons) for module in self.modules)


class AccountFlashcard(_UtcModel):
    id: str
    account_id: str
    front: str
    back: str
    tags: List[str] = Field(default_factory=list)
    difficulty: Difficulty = "medium"
    review_count: int = 0
    correct_count: int = 0
    created_at: datetime
    last_reviewed_at: Optional[datetime] = None
    source_id: Optional[str] = None
    source_guest_id: Optional[str] = None


class AccountProgress(_UtcModel):
    account_id: str
    total_plans: int = 0
    total_lessons: int = 0
    total_flashcards: int = 0
    completed_lessons: int = 0
    study_minutes: int = 0
    streak: int = 0
    last_study_date: Optional[datetime] = None


class AccountPreferences(_UtcModel):
    account_id: str
    theme: Theme = "system"
    notifications: bool = True
    sound_effects: bool = True


class AccountDataset(_UtcModel):
    account_id: str
    curricula: List[AccountCurriculum] = Field(default_factory=list)
    flashcards: List[AccountFlashcard] = Field(default_factory=list)
    progress: Optional[AccountProgress] = None
    preferences: Optional[AccountPreferences] = None

    def item_counts(self) -> Dict[str, int]:
        return {
            "curricula": len(self.curricula),
            "modules": sum(len(c.modules) for c in self.curricula),
            "lessons": sum(c.lesson_count() for c in self.curricula),
            "flashcards": len(self.flashcards),
        }


class MigrationMetadata(_UtcModel):
    envelope_id: str
    source_guest_id: str
    target_account_id: str
    transformed_at: datetime
    item_counts: Dict[str, int] = Field(default_factory=dict)


class TransformedDataset(_UtcModel):
    """Guest data re-owned by the target account, ready for conflict resolution."""

    guest_id: str
    account_id: str
    curricula: List[AccountCurriculum] = Field(default_factory=list)
    flashcards: List[AccountFlashcard] = Field(default_factory=list)
    progress: Optional[AccountProgress] = None
    preferences: Optional[AccountPreferences] = None
    metadata: MigrationMetadata


# ---------------------------------------------------------------------------
# Conflict resolution

ConflictKind = Literal["id_collision", "natural_key", "data_inconsistency", "setting_mismatch"]
ResolutionAction = Literal["add", "merge", "replace", "keep_existing", "duplicate"]


class CurriculumConflict(ApiModel):
    entity_type: Literal["curriculum"] = "curriculum"
    kind: ConflictKind
    key: str
    guest: AccountCurriculum
    existing: AccountCurriculum


class FlashcardConflict(ApiModel):
    entity_type: Literal["flashcard"] = "flashcard"
    kind: ConflictKind
    key: str
    guest: AccountFlashcard
    existing: AccountFlashcard


class ProgressConflict(ApiModel):
    entity_type: Literal["progress"] = "progress"
    kind: ConflictKind = "data_inconsistency"
    key: str
    guest: AccountProgress
    existing: AccountProgress


class PreferencesConflict(ApiModel):
    entity_type: Literal["preferences"] = "preferences"
    kind: ConflictKind = "setting_mismatch"
    key: str
    guest: AccountPreferences
    existing: AccountPreferences


Conflict = Annotated[
    Union[CurriculumConflict, FlashcardConflict, ProgressConflict, PreferencesConflict],
    Field(discriminator="entity_type"),
]


class Resolution(ApiModel):
    entity_type: EntityType
    key: str
    action: ResolutionAction
    record_id: Optional[str] = None
    conflict: bool = True


class EntityConflictStats(ApiModel):
    conflicts: int = 0
    resolved: int = 0
    added: int = 0
    merged: int = 0
    replaced: int = 0
    kept_existing: int = 0
    duplicated: int = 0


class ConflictStatistics(ApiModel):
    total_conflicts: int = 0
    resolved_conflicts: int = 0
    by_entity: Dict[str, EntityConflictStats] = Field(
        default_factory=lambda: {name: EntityConflictStats() for name in ("curriculum", "flashcard", "progress", "preferences")}
    )


class ResolvedDataset(_UtcModel):
    """Write plan derived from resolution plus the expected final account state."""

    curricula_to_create: List[AccountCurriculum] = Field(default_factory=list)
    curricula_to_update: List[AccountCurriculum] = Field(default_factory=list)
    flashcards_to_create: List[AccountFlashcard] = Field(default_factory=list)
    flashcards_to_update: List[AccountFlashcard] = Field(default_factory=list)
    progress: Optional[AccountProgress] = None
    preferences: Optional[AccountPreferences] = None
    final: AccountDataset


class ConflictResolutionResult(ApiModel):
    strategy: ConflictStrategy
    dataset: ResolvedDataset
    conflicts: List[Conflict] = Field(default_factory=list)
    resolutions: List[Resolution] = Field(default_factory=list)
    statistics: ConflictStatistics = Field(default_factory=ConflictStatistics)


# ---------------------------------------------------------------------------
# Validation

Severity = Literal["error", "warning"]


class ValidationCheck(ApiModel):
    name: str
    weight: float
    passed: bool
    severity: Severity = "error"
    message: Optional[str] = None


class ValidationReport(ApiModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    integrity_score: float = Field(default=100.0, ge=0, le=100)
    checks: List[ValidationCheck] = Field(default_factory=list)


class IntegrityIssue(ApiModel):
    category: Literal["count", "content", "relationship", "data_type", "business"]
    entity_type: Optional[EntityType] = None
    entity_id: Optional[str] = None
    message: str


class IntegrityCheckResult(ApiModel):
    session_id: str
    integrity_score: float
    issues: List[IntegrityIssue] = Field(default_factory=list)
    checks: Dict[str, bool] = Field(default_factory=dict)
    recommendations: List[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Sessions, checkpoints and outcomes


class SessionMetrics(ApiModel):
    operations_attempted: int = 0
    operations_succeeded: int = 0
    operations_failed: int = 0
    warnings: int = 0
    errors: int = 0


class MigrationSession(ApiModel):
    id: str
    guest_id: str
    account_id: str
    phase: MigrationPhase = "initialization"
    status: SessionStatus = "active"
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    metrics: SessionMetrics = Field(default_factory=SessionMetrics)
    phase_history: List[MigrationPhase] = Field(default_factory=lambda: ["initialization"])


class LogEntry(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    session_id: str
    level: Literal["info", "warning", "error"]
    message: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    phase: MigrationPhase
    operation_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class SessionSummary(ApiModel):
    session_id: str
    guest_id: str
    account_id: str
    status: SessionStatus
    phase: MigrationPhase
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    metrics: SessionMetrics
    log_count: int
    summary: Dict[str, Any] = Field(default_factory=dict)


class Checkpoint(ApiModel):
    id: str
    session_id: str
    guest_id: str
    account_id: str
    status: CheckpointStatus = "active"
    snapshot: AccountDataset
    snapshot_digest: Optional[str] = None
    guest_item_counts: Dict[str, int] = Field(default_factory=dict)
    status_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @property
    def confirmed(self) -> bool:
        return self.status == "confirmed"


class PartialMigrationState(ApiModel):
    """Identifiers written during the migration phase, handed to rollback."""

    created_curriculum_ids: List[str] = Field(default_factory=list)
    created_flashcard_ids: List[str] = Field(default_factory=list)
    updated_curriculum_ids: List[str] = Field(default_factory=list)
    updated_flashcard_ids: List[str] = Field(default_factory=list)
    progress_written: bool = False
    preferences_written: bool = False
    committed: bool = False


class RollbackResult(ApiModel):
    checkpoint_id: str
    success: bool
    errors: List[str] = Field(default_factory=list)
    deleted: Dict[str, int] = Field(default_factory=dict)
    restored: Dict[str, int] = Field(default_factory=dict)


class EntityResults(ApiModel):
    success: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)


class MigrationResults(ApiModel):
    plans: EntityResults = Field(default_factory=EntityResults)
    flashcards: EntityResults = Field(default_factory=EntityResults)
    sessions: EntityResults = Field(default_factory=EntityResults)


class ValidationSummary(ApiModel):
    pre_validation: Optional[ValidationReport] = None
    transformed_validation: Optional[ValidationReport] = None
    post_validation: Optional[ValidationReport] = None
    integrity_check: Optional[IntegrityCheckResult] = None


class GuestUsageStats(ApiModel):
    guest_id: str
    curricula: int = 0
    lessons: int = 0
    flashcards: int = 0
    limits: Dict[str, int] = Field(default_factory=dict)
    migrated: bool = False
    migrated_at: Optional[datetime] = None
    migrated_account_id: Optional[str] = None

    @property
    def has_data(self) -> bool:
        return (self.curricula + self.lessons + self.flashcards) > 0


class MigrationOutcome(ApiModel):
    status: SessionStatus
    session_id: str
    guest_id: str
    account_id: str
    strategy: ConflictStrategy
    migration_results: MigrationResults = Field(default_factory=MigrationResults)
    conflict_resolution: Optional[ConflictResolutionResult] = None
    validation: ValidationSummary = Field(default_factory=ValidationSummary)
    rollback_performed: bool = False
    rollback_errors: List[str] = Field(default_factory=list)
    already_migrated: bool = False
    error: Optional[str] = None
    error_kind: Optional[str] = None
    checkpoint_id: Optional[str] = None
    summary: Optional[SessionSummary] = None
    completed_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"
