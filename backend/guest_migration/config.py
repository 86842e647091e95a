import os
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

ConflictStrategyName = Literal[
    "merge_with_preference",
    "guest_priority",
    "existing_priority",
    "create_duplicate",
]


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, alias="FATHOM_DATABASE_URL")
    database_pool_size: int = Field(10, alias="FATHOM_DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(10, alias="FATHOM_DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(False, alias="FATHOM_DATABASE_ECHO")
    default_conflict_strategy: ConflictStrategyName = Field(
        "merge_with_preference",
        alias="FATHOM_DEFAULT_CONFLICT_STRATEGY",
    )
    max_guest_curricula: int = Field(100, alias="FATHOM_MAX_GUEST_CURRICULA", ge=1)
    max_guest_lessons: int = Field(2000, alias="FATHOM_MAX_GUEST_LESSONS", ge=1)
    max_guest_flashcards: int = Field(5000, alias="FATHOM_MAX_GUEST_FLASHCARDS", ge=1)
    guest_plan_limit: int = Field(3, alias="FATHOM_GUEST_PLAN_LIMIT", ge=0)
    guest_lesson_limit: int = Field(10, alias="FATHOM_GUEST_LESSON_LIMIT", ge=0)
    guest_flashcard_limit: int = Field(50, alias="FATHOM_GUEST_FLASHCARD_LIMIT", ge=0)
    min_integrity_score: float = Field(80.0, alias="FATHOM_MIN_INTEGRITY_SCORE", ge=0, le=100)
    checkpoint_retention_days: int = Field(7, alias="FATHOM_CHECKPOINT_RETENTION_DAYS", ge=0)
    session_retention_hours: int = Field(24, alias="FATHOM_SESSION_RETENTION_HOURS", ge=0)
    migration_timeout_seconds: Optional[float] = Field(None, alias="FATHOM_MIGRATION_TIMEOUT_SECONDS", gt=0)

    class Config:
        env_file = os.getenv("ENV_FILE", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache
def get_settings() -> Settings:
    try:
        return Settings()  # type: ignore[arg-type]
    except ValidationError as exc:
        raise RuntimeError(f"Invalid migration service configuration: {exc}") from exc
