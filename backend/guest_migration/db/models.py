"""ORM models backing guest staging, account content and migration audit state."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from .base import Base, TimestampMixin

JSONType = JSON


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CurriculumModel(TimestampMixin, Base):
    """Curriculum row; staged rows belong to a guest until committed to an account."""

    __tablename__ = "curricula"
    __table_args__ = (
        Index("ix_curricula_account_id", "account_id"),
        Index("ix_curricula_guest_owner_id", "guest_owner_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    account_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    guest_owner_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    is_guest_content: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    source_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    source_guest_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    domain: Mapped[str] = mapped_column(String(255), default="", nullable=False)

    modules: Mapped[list["CurriculumModuleModel"]] = relationship(
        back_populates="curriculum",
        cascade="all, delete-orphan",
        order_by="CurriculumModuleModel.position",
    )


class CurriculumModuleModel(Base):
    __tablename__ = "curriculum_modules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    curriculum_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("curricula.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    source_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    curriculum: Mapped[CurriculumModel] = relationship(back_populates="modules")
    lessons: Mapped[list["CurriculumLessonModel"]] = relationship(
        back_populates="module",
        cascade="all, delete-orphan",
        order_by="CurriculumLessonModel.position",
    )


class CurriculumLessonModel(Base):
    __tablename__ = "curriculum_lessons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    module_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("curriculum_modules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    duration: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    source_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    module: Mapped[CurriculumModuleModel] = relationship(back_populates="lessons")


class FlashcardModel(TimestampMixin, Base):
    __tablename__ = "flashcards"
    __table_args__ = (
        Index("ix_flashcards_account_id", "account_id"),
        Index("ix_flashcards_guest_owner_id", "guest_owner_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    account_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    guest_owner_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    is_guest_content: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    source_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    source_guest_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    front: Mapped[str] = mapped_column(Text, nullable=False)
    back: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)
    difficulty: Mapped[str] = mapped_column(String(16), default="medium", nullable=False)
    review_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    correct_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class AccountProgressModel(Base):
    __tablename__ = "account_progress"

    account_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    total_plans: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_lessons: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_flashcards: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_lessons: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    study_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_study_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class AccountPreferencesModel(Base):
    __tablename__ = "account_preferences"

    account_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    theme: Mapped[str] = mapped_column(String(16), default="system", nullable=False)
    notifications: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sound_effects: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )


class GuestProfileModel(TimestampMixin, Base):
    """Latest synced guest snapshot plus the consumed marker set on commit."""

    __tablename__ = "guest_profiles"

    guest_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    dataset: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    curricula_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lessons_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    flashcards_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    migrated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    migrated_account_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)


class GuestAnalyticsEventModel(Base):
    __tablename__ = "guest_analytics_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    guest_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


class MigrationCheckpointModel(TimestampMixin, Base):
    __tablename__ = "migration_checkpoints"
    __table_args__ = (
        Index("ix_migration_checkpoints_guest_status", "guest_id", "status"),
        Index("ix_migration_checkpoints_session_id", "session_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    session_id: Mapped[str] = mapped_column(String(36), nullable=False)
    guest_id: Mapped[str] = mapped_column(String(128), nullable=False)
    account_id: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="active", nullable=False)
    snapshot: Mapped[dict] = mapped_column(JSONType, nullable=False)
    snapshot_digest: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    guest_item_counts: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    status_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class MigrationAuditEventModel(Base):
    __tablename__ = "migration_audit_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    session_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    guest_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    account_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    actor: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )


__all__ = [
    "AccountPreferencesModel",
    "AccountProgressModel",
    "CurriculumLessonModel",
    "CurriculumModel",
    "CurriculumModuleModel",
    "FlashcardModel",
    "GuestAnalyticsEventModel",
    "GuestProfileModel",
    "MigrationAuditEventModel",
    "MigrationCheckpointModel",
]
