"""Database-backed repository for account content, guest staging and guest profiles."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from ..db.models import (
    AccountPreferencesModel,
    AccountProgressModel,
    CurriculumLessonModel,
    CurriculumModel,
    CurriculumModuleModel,
    FlashcardModel,
    GuestAnalyticsEventModel,
    GuestProfileModel,
)
from ..models import (
    AccountCurriculum,
    AccountDataset,
    AccountFlashcard,
    AccountLesson,
    AccountModule,
    AccountPreferences,
    AccountProgress,
    GuestDataset,
    ensure_utc,
)


def _normalize_identifier(value: str, label: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{label} cannot be empty.")
    return normalized


class AccountDataRepository:
    """Session-scoped helpers; callers own the transaction boundary."""

    # -- reads -------------------------------------------------------------

    def read_account(self, session: Session, account_id: str) -> AccountDataset:
        account_id = _normalize_identifier(account_id, "Account id")
        curricula_stmt = (
            select(CurriculumModel)
            .where(CurriculumModel.account_id == account_id, CurriculumModel.is_guest_content.is_(False))
            .options(selectinload(CurriculumModel.modules).selectinload(CurriculumModuleModel.lessons))
            .order_by(CurriculumModel.created_at, CurriculumModel.id)
        )
        flashcards_stmt = (
            select(FlashcardModel)
            .where(FlashcardModel.account_id == account_id, FlashcardModel.is_guest_content.is_(False))
            .order_by(FlashcardModel.created_at, FlashcardModel.id)
        )
        curricula = [self._curriculum_to_domain(model) for model in session.execute(curricula_stmt).scalars()]
        flashcards = [self._flashcard_to_domain(model) for model in session.execute(flashcards_stmt).scalars()]
        progress_model = session.get(AccountProgressModel, account_id)
        preferences_model = session.get(AccountPreferencesModel, account_id)
        return AccountDataset(
            account_id=account_id,
            curricula=curricula,
            flashcards=flashcards,
            progress=self._progress_to_domain(progress_model) if progress_model else None,
            preferences=self._preferences_to_domain(preferences_model) if preferences_model else None,
        )

    def count_staged(self, session: Session, guest_id: str) -> Dict[str, int]:
        curricula = session.execute(
            select(CurriculumModel.id).where(
                CurriculumModel.guest_owner_id == guest_id, CurriculumModel.is_guest_content.is_(True)
            )
        ).all()
        flashcards = session.execute(
            select(FlashcardModel.id).where(
                FlashcardModel.guest_owner_id == guest_id, FlashcardModel.is_guest_content.is_(True)
            )
        ).all()
        return {"curricula": len(curricula), "flashcards": len(flashcards)}

    # -- staged guest content ----------------------------------------------

    def stage_curriculum(self, session: Session, guest_id: str, curriculum: AccountCurriculum) -> str:
        model = CurriculumModel(
            id=curriculum.id,
            account_id=None,
            guest_owner_id=guest_id,
            is_guest_content=True,
            source_id=curriculum.source_id,
            source_guest_id=curriculum.source_guest_id,
            title=curriculum.title,
            domain=curriculum.domain,
            created_at=curriculum.created_at,
        )
        session.add(model)
        session.flush()
        return model.id

    def stage_module(self, session: Session, curriculum_id: str, module: AccountModule) -> str:
        if session.get(CurriculumModel, curriculum_id) is None:
            raise LookupError(f"Curriculum {curriculum_id} does not exist.")
        model = CurriculumModuleModel(
            id=module.id,
            curriculum_id=curriculum_id,
            title=module.title,
            position=module.position,
            source_id=module.source_id,
        )
        session.add(model)
        session.flush()
        return model.id

    def stage_lesson(self, session: Session, module_id: str, lesson: AccountLesson) -> str:
        if session.get(CurriculumModuleModel, module_id) is None:
            raise LookupError(f"Module {module_id} does not exist.")
        model = CurriculumLessonModel(module_id=module_id)
        model.id = lesson.id
        self._apply_lesson(model, lesson)
        session.add(model)
        session.flush()
        return model.id

    def stage_flashcard(self, session: Session, guest_id: str, flashcard: AccountFlashcard) -> str:
        model = FlashcardModel(
            id=flashcard.id,
            account_id=None,
            guest_owner_id=guest_id,
            is_guest_content=True,
            source_id=flashcard.source_id,
            source_guest_id=flashcard.source_guest_id,
        )
        self._apply_flashcard(model, flashcard)
        session.add(model)
        session.flush()
        return model.id

    def commit_guest(self, session: Session, guest_id: str, account_id: str) -> Dict[str, int]:
        """Re-own every staged row and mark the guest consumed inside one transaction."""
        account_id = _normalize_identifier(account_id, "Account id")
        curricula = session.execute(
            select(CurriculumModel).where(
                CurriculumModel.guest_owner_id == guest_id, CurriculumModel.is_guest_content.is_(True)
            )
        ).scalars().all()
        flashcards = session.execute(
            select(FlashcardModel).where(
                FlashcardModel.guest_owner_id == guest_id, FlashcardModel.is_guest_content.is_(True)
            )
        ).scalars().all()
        for row in [*curricula, *flashcards]:
            row.account_id = account_id
            row.guest_owner_id = None
            row.is_guest_content = False
        profile = self._require_guest_profile(session, guest_id)
        profile.migrated_at = datetime.now(timezone.utc)
        profile.migrated_account_id = account_id
        session.flush()
        return {"curricula": len(curricula), "flashcards": len(flashcards)}

    def discard_staging(self, session: Session, guest_id: str) -> Dict[str, int]:
        curricula = session.execute(
            select(CurriculumModel).where(
                CurriculumModel.guest_owner_id == guest_id, CurriculumModel.is_guest_content.is_(True)
            )
        ).scalars().all()
        flashcards = session.execute(
            select(FlashcardModel).where(
                FlashcardModel.guest_owner_id == guest_id, FlashcardModel.is_guest_content.is_(True)
            )
        ).scalars().all()
        for row in [*curricula, *flashcards]:
            session.delete(row)
        session.flush()
        return {"curricula": len(curricula), "flashcards": len(flashcards)}

    # -- account-owned content ---------------------------------------------

    def upsert_curriculum(self, session: Session, curriculum: AccountCurriculum) -> str:
        """Write ``curriculum`` as an account-owned record, syncing its module tree in place."""
        model = session.get(CurriculumModel, curriculum.id)
        if model is None:
            model = CurriculumModel(id=curriculum.id)
            session.add(model)
        model.account_id = curriculum.account_id
        model.guest_owner_id = None
        model.is_guest_content = False
        model.source_id = curriculum.source_id
        model.source_guest_id = curriculum.source_guest_id
        model.title = curriculum.title
        model.domain = curriculum.domain
        model.created_at = curriculum.created_at
        self._sync_modules(session, model, curriculum.modules)
        session.flush()
        return model.id

    def delete_curriculum(self, session: Session, curriculum_id: str) -> bool:
        model = session.get(CurriculumModel, curriculum_id)
        if model is None:
            return False
        session.delete(model)
        session.flush()
        return True

    def upsert_flashcard(self, session: Session, flashcard: AccountFlashcard) -> str:
        model = session.get(FlashcardModel, flashcard.id)
        if model is None:
            model = FlashcardModel(id=flashcard.id)
            session.add(model)
        model.account_id = flashcard.account_id
        model.guest_owner_id = None
        model.is_guest_content = False
        model.source_id = flashcard.source_id
        model.source_guest_id = flashcard.source_guest_id
        self._apply_flashcard(model, flashcard)
        session.flush()
        return model.id

    def delete_flashcard(self, session: Session, flashcard_id: str) -> bool:
        model = session.get(FlashcardModel, flashcard_id)
        if model is None:
            return False
        session.delete(model)
        session.flush()
        return True

    def upsert_progress(self, session: Session, progress: AccountProgress) -> None:
        model = session.get(AccountProgressModel, progress.account_id)
        if model is None:
            model = AccountProgressModel(account_id=progress.account_id)
            session.add(model)
        model.total_plans = progress.total_plans
        model.total_lessons = progress.total_lessons
        model.total_flashcards = progress.total_flashcards
        model.completed_lessons = progress.completed_lessons
        model.study_minutes = progress.study_minutes
        model.streak = progress.streak
        model.last_study_date = progress.last_study_date
        session.flush()

    def delete_progress(self, session: Session, account_id: str) -> bool:
        model = session.get(AccountProgressModel, account_id)
        if model is None:
            return False
        session.delete(model)
        session.flush()
        return True

    def upsert_preferences(self, session: Session, preferences: AccountPreferences) -> None:
        model = session.get(AccountPreferencesModel, preferences.account_id)
        if model is None:
            model = AccountPreferencesModel(account_id=preferences.account_id)
            session.add(model)
        model.theme = preferences.theme
        model.notifications = preferences.notifications
        model.sound_effects = preferences.sound_effects
        session.flush()

    def delete_preferences(self, session: Session, account_id: str) -> bool:
        model = session.get(AccountPreferencesModel, account_id)
        if model is None:
            return False
        session.delete(model)
        session.flush()
        return True

    # -- guest profiles ----------------------------------------------------

    def get_guest_profile(self, session: Session, guest_id: str) -> Optional[GuestProfileModel]:
        return session.get(GuestProfileModel, _normalize_identifier(guest_id, "Guest id"))

    def save_guest_snapshot(self, session: Session, guest_id: str, dataset: GuestDataset) -> GuestProfileModel:
        profile = self._require_guest_profile(session, guest_id)
        profile.dataset = dataset.model_dump(mode="json", by_alias=True)
        profile.curricula_count = len(dataset.curricula)
        profile.lessons_count = dataset.lesson_count()
        profile.flashcards_count = len(dataset.flashcards)
        session.flush()
        return profile

    def release_guest(self, session: Session, guest_id: str) -> bool:
        profile = session.get(GuestProfileModel, guest_id)
        if profile is None or profile.migrated_at is None:
            return False
        profile.migrated_at = None
        profile.migrated_account_id = None
        session.flush()
        return True

    def record_guest_event(self, session: Session, guest_id: str, event_type: str, payload: Dict[str, Any]) -> str:
        event = GuestAnalyticsEventModel(guest_id=guest_id, event_type=event_type, payload=payload)
        session.add(event)
        session.flush()
        return event.id

    def list_guest_events(self, session: Session, guest_id: str) -> List[GuestAnalyticsEventModel]:
        stmt = (
            select(GuestAnalyticsEventModel)
            .where(GuestAnalyticsEventModel.guest_id == guest_id)
            .order_by(GuestAnalyticsEventModel.created_at)
        )
        return list(session.execute(stmt).scalars())

    def _require_guest_profile(self, session: Session, guest_id: str) -> GuestProfileModel:
        normalized = _normalize_identifier(guest_id, "Guest id")
        profile = session.get(GuestProfileModel, normalized)
        if profile is None:
            profile = GuestProfileModel(guest_id=normalized)
            session.add(profile)
        return profile

    # -- mapping helpers ---------------------------------------------------

    def _sync_modules(self, session: Session, model: CurriculumModel, modules: List[AccountModule]) -> None:
        current = {module.id: module for module in model.modules}
        wanted: List[CurriculumModuleModel] = []
        for module in modules:
            module_model = current.pop(module.id, None)
            if module_model is None:
                module_model = CurriculumModuleModel(id=module.id)
            module_model.title = module.title
            module_model.position = module.position
            module_model.source_id = module.source_id
            self._sync_lessons(module_model, module.lessons)
            wanted.append(module_model)
        model.modules = wanted

    def _sync_lessons(self, module_model: CurriculumModuleModel, lessons: List[AccountLesson]) -> None:
        current = {lesson.id: lesson for lesson in module_model.lessons}
        wanted: List[CurriculumLessonModel] = []
        for lesson in lessons:
            lesson_model = current.pop(lesson.id, None)
            if lesson_model is None:
                lesson_model = CurriculumLessonModel(id=lesson.id)
            self._apply_lesson(lesson_model, lesson)
            wanted.append(lesson_model)
        module_model.lessons = wanted

    @staticmethod
    def _apply_lesson(model: CurriculumLessonModel, lesson: AccountLesson) -> None:
        model.title = lesson.title
        model.duration = lesson.duration
        model.completed = lesson.completed
        model.completed_at = lesson.completed_at
        model.position = lesson.position
        model.source_id = lesson.source_id

    @staticmethod
    def _apply_flashcard(model: FlashcardModel, flashcard: AccountFlashcard) -> None:
        model.front = flashcard.front
        model.back = flashcard.back
        model.tags = list(flashcard.tags)
        model.difficulty = flashcard.difficulty
        model.review_count = flashcard.review_count
        model.correct_count = flashcard.correct_count
        model.last_reviewed_at = flashcard.last_reviewed_at
        model.created_at = flashcard.created_at

    @staticmethod
    def _curriculum_to_domain(model: CurriculumModel) -> AccountCurriculum:
        return AccountCurriculum(
            id=model.id,
            account_id=model.account_id or "",
            title=model.title,
            domain=model.domain,
            created_at=ensure_utc(model.created_at),
            source_id=model.source_id,
            source_guest_id=model.source_guest_id,
            modules=[
                AccountModule(
                    id=module.id,
                    title=module.title,
                    position=module.position,
                    source_id=module.source_id,
                    lessons=[
                        AccountLesson(
                            id=lesson.id,
                            title=lesson.title,
                            duration=lesson.duration,
                            completed=lesson.completed,
                            completed_at=lesson.completed_at,
                            position=lesson.position,
                            source_id=lesson.source_id,
                        )
                        for lesson in module.lessons
                    ],
                )
                for module in model.modules
            ],
        )

    @staticmethod
    def _flashcard_to_domain(model: FlashcardModel) -> AccountFlashcard:
        return AccountFlashcard(
            id=model.id,
            account_id=model.account_id or "",
            front=model.front,
            back=model.back,
            tags=list(model.tags or []),
            difficulty=model.difficulty,  # type: ignore[arg-type]
            review_count=model.review_count,
            correct_count=model.correct_count,
            created_at=ensure_utc(model.created_at),
            last_reviewed_at=model.last_reviewed_at,
            source_id=model.source_id,
            source_guest_id=model.source_guest_id,
        )

    @staticmethod
    def _progress_to_domain(model: AccountProgressModel) -> AccountProgress:
        return AccountProgress(
            account_id=model.account_id,
            total_plans=model.total_plans,
            total_lessons=model.total_lessons,
            total_flashcards=model.total_flashcards,
            completed_lessons=model.completed_lessons,
            study_minutes=model.study_minutes,
            streak=model.streak,
            last_study_date=model.last_study_date,
        )

    @staticmethod
    def _preferences_to_domain(model: AccountPreferencesModel) -> AccountPreferences:
        return AccountPreferences(
            account_id=model.account_id,
            theme=model.theme,  # type: ignore[arg-type]
            notifications=model.notifications,
            sound_effects=model.sound_effects,
        )


account_data = AccountDataRepository()

__all__ = ["AccountDataRepository", "account_data"]
