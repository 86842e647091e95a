"""Validation of guest data, transformed data and post-migration account state.

Every report is computed from a ledger of weighted checks. The integrity score
is the weighted pass rate of those checks scaled to 0-100, so a dataset that
passes every check scores 100 and each failed check costs its weight share.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from .config import Settings, get_settings
from .data_store import DataStoreAdapter
from .models import (
    AccountCurriculum,
    AccountDataset,
    AccountFlashcard,
    GuestDataset,
    IntegrityCheckResult,
    IntegrityIssue,
    TransformedDataset,
    ValidationCheck,
    ValidationReport,
)

logger = logging.getLogger(__name__)

# Weights for post-migration integrity categories; they sum to 100.
INTEGRITY_WEIGHTS: Dict[str, float] = {
    "count": 20.0,
    "content": 30.0,
    "relationship": 25.0,
    "data_type": 15.0,
    "business": 10.0,
}


def normalize_text(value: str) -> str:
    return " ".join(value.casefold().split())


def curriculum_key(title: str) -> str:
    return normalize_text(title)


def flashcard_key(front: str, back: str) -> str:
    return f"{normalize_text(front)}\x1f{normalize_text(back)}"


class _CheckLedger:
    def __init__(self) -> None:
        self.checks: List[ValidationCheck] = []

    def add(
        self,
        name: str,
        weight: float,
        failures: Sequence[str],
        *,
        severity: str = "error",
    ) -> None:
        message = "; ".join(failures[:5]) if failures else None
        if len(failures) > 5:
            message = f"{message}; and {len(failures) - 5} more"
        self.checks.append(
            ValidationCheck(
                name=name,
                weight=weight,
                passed=not failures,
                severity=severity,  # type: ignore[arg-type]
                message=message,
            )
        )

    def report(self) -> ValidationReport:
        errors = [f"{c.name}: {c.message}" for c in self.checks if not c.passed and c.severity == "error"]
        warnings = [f"{c.name}: {c.message}" for c in self.checks if not c.passed and c.severity == "warning"]
        total = sum(c.weight for c in self.checks)
        passed = sum(c.weight for c in self.checks if c.passed)
        score = round(100.0 * passed / total, 2) if total else 100.0
        return ValidationReport(
            valid=not errors,
            errors=errors,
            warnings=warnings,
            integrity_score=score,
            checks=list(self.checks),
        )


def _duplicates(values: Iterable[str]) -> List[str]:
    counts = Counter(values)
    return sorted(value for value, count in counts.items() if count > 1)


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class MigrationValidator:
    """Stateless validator; the data store is only used for post-migration reads."""

    def __init__(self, store: Optional[DataStoreAdapter] = None, settings: Optional[Settings] = None) -> None:
        self._store = store
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    # -- pre-migration -----------------------------------------------------

    def validate_guest_data(self, dataset: GuestDataset) -> ValidationReport:
        settings = self.settings
        ledger = _CheckLedger()

        curriculum_ids = [c.id for c in dataset.curricula]
        ledger.add(
            "curriculum_ids_present",
            10,
            [f"curriculum #{i} has no id" for i, cid in enumerate(curriculum_ids) if _blank(cid)],
        )
        ledger.add(
            "curriculum_ids_unique",
            10,
            [f"duplicate curriculum id {cid}" for cid in _duplicates(cid for cid in curriculum_ids if cid)],
        )
        ledger.add(
            "curriculum_titles_present",
            8,
            [f"curriculum {c.id} has an empty title" for c in dataset.curricula if _blank(c.title)],
        )
        ledger.add("module_structure", 8, self._module_failures(dataset))
        ledger.add("lesson_structure", 8, self._lesson_failures(dataset))
        ledger.add("nesting_acyclic", 6, self._nesting_failures(dataset))

        flashcard_ids = [f.id for f in dataset.flashcards]
        ledger.add(
            "flashcard_ids_present",
            8,
            [f"flashcard #{i} has no id" for i, fid in enumerate(flashcard_ids) if _blank(fid)],
        )
        ledger.add(
            "flashcard_ids_unique",
            8,
            [f"duplicate flashcard id {fid}" for fid in _duplicates(fid for fid in flashcard_ids if fid)],
        )
        ledger.add(
            "flashcard_content_present",
            8,
            [
                f"flashcard {f.id} is missing front or back text"
                for f in dataset.flashcards
                if _blank(f.front) or _blank(f.back)
            ],
        )

        bounds: List[str] = []
        if len(dataset.curricula) > settings.max_guest_curricula:
            bounds.append(f"{len(dataset.curricula)} curricula exceeds the maximum of {settings.max_guest_curricula}")
        if dataset.lesson_count() > settings.max_guest_lessons:
            bounds.append(f"{dataset.lesson_count()} lessons exceeds the maximum of {settings.max_guest_lessons}")
        if len(dataset.flashcards) > settings.max_guest_flashcards:
            bounds.append(
                f"{len(dataset.flashcards)} flashcards exceeds the maximum of {settings.max_guest_flashcards}"
            )
        ledger.add("count_bounds", 6, bounds)

        # Warnings
        ledger.add(
            "review_counters_consistent",
            3,
            [
                f"flashcard {f.id} has more correct answers ({f.correct_count}) than reviews ({f.review_count})"
                for f in dataset.flashcards
                if f.correct_count > f.review_count
            ],
            severity="warning",
        )
        ledger.add(
            "completed_lessons_dated",
            2,
            [
                f"lesson {lesson.id} is completed without a completion date"
                for c in dataset.curricula
                for m in c.modules
                for lesson in m.lessons
                if lesson.completed and lesson.completed_at is None
            ],
            severity="warning",
        )
        ledger.add(
            "curriculum_titles_distinct",
            2,
            [
                f"title '{title}' is used by more than one curriculum"
                for title in _duplicates(curriculum_key(c.title) for c in dataset.curricula if c.title)
            ],
            severity="warning",
        )
        ledger.add("guest_limits", 2, self._guest_limit_warnings(dataset, settings), severity="warning")
        ledger.add("progress_consistent", 2, self._progress_warnings(dataset), severity="warning")
        ledger.add(
            "has_content",
            1,
            ["guest dataset is empty; nothing to migrate"] if dataset.is_empty() else [],
            severity="warning",
        )

        report = ledger.report()
        logger.debug(
            "Guest data validation: valid=%s errors=%s warnings=%s score=%s",
            report.valid,
            len(report.errors),
            len(report.warnings),
            report.integrity_score,
        )
        return report

    def _module_failures(self, dataset: GuestDataset) -> List[str]:
        failures: List[str] = []
        for curriculum in dataset.curricula:
            ids = [m.id for m in curriculum.modules]
            failures.extend(f"curriculum {curriculum.id} has a module without id" for mid in ids if _blank(mid))
            failures.extend(
                f"curriculum {curriculum.id} repeats module id {mid}" for mid in _duplicates(i for i in ids if i)
            )
            failures.extend(
                f"module {m.id} in curriculum {curriculum.id} has an empty title"
                for m in curriculum.modules
                if _blank(m.title)
            )
        return failures

    def _lesson_failures(self, dataset: GuestDataset) -> List[str]:
        failures: List[str] = []
        for curriculum in dataset.curricula:
            for module in curriculum.modules:
                ids = [lesson.id for lesson in module.lessons]
                failures.extend(f"module {module.id} has a lesson without id" for lid in ids if _blank(lid))
                failures.extend(
                    f"module {module.id} repeats lesson id {lid}" for lid in _duplicates(i for i in ids if i)
                )
                failures.extend(
                    f"lesson {lesson.id} in module {module.id} has an empty title"
                    for lesson in module.lessons
                    if _blank(lesson.title)
                )
        return failures

    def _nesting_failures(self, dataset: GuestDataset) -> List[str]:
        """An id may not reappear on its own ancestor path."""
        failures: List[str] = []
        for curriculum in dataset.curricula:
            for module in curriculum.modules:
                if module.id and module.id == curriculum.id:
                    failures.append(f"module {module.id} reuses its curriculum id")
                for lesson in module.lessons:
                    if lesson.id and lesson.id in {curriculum.id, module.id}:
                        failures.append(f"lesson {lesson.id} reuses an ancestor id")
        return failures

    def _guest_limit_warnings(self, dataset: GuestDataset, settings: Settings) -> List[str]:
        warnings: List[str] = []
        if len(dataset.curricula) > settings.guest_plan_limit:
            warnings.append(f"{len(dataset.curricula)} plans exceeds the guest limit of {settings.guest_plan_limit}")
        if dataset.lesson_count() > settings.guest_lesson_limit:
            warnings.append(f"{dataset.lesson_count()} lessons exceeds the guest limit of {settings.guest_lesson_limit}")
        if len(dataset.flashcards) > settings.guest_flashcard_limit:
            warnings.append(
                f"{len(dataset.flashcards)} flashcards exceeds the guest limit of {settings.guest_flashcard_limit}"
            )
        return warnings

    def _progress_warnings(self, dataset: GuestDataset) -> List[str]:
        progress = dataset.progress
        if progress is None:
            return []
        warnings: List[str] = []
        actual = {
            "totalPlans": (progress.total_plans, len(dataset.curricula)),
            "totalLessons": (progress.total_lessons, dataset.lesson_count()),
            "totalFlashcards": (progress.total_flashcards, len(dataset.flashcards)),
        }
        for label, (reported, counted) in actual.items():
            if reported != counted:
                warnings.append(f"progress {label}={reported} but dataset contains {counted}")
        if progress.completed_lessons > progress.total_lessons:
            warnings.append("progress reports more completed lessons than total lessons")
        return warnings

    # -- post-transformation -----------------------------------------------

    def validate_transformed_data(self, transformed: TransformedDataset) -> ValidationReport:
        ledger = _CheckLedger()
        account_id = transformed.account_id

        ownership = [
            f"curriculum {c.id} is owned by {c.account_id}" for c in transformed.curricula if c.account_id != account_id
        ]
        ownership.extend(
            f"flashcard {f.id} is owned by {f.account_id}" for f in transformed.flashcards if f.account_id != account_id
        )
        if transformed.progress is not None and transformed.progress.account_id != account_id:
            ownership.append("progress is owned by another account")
        if transformed.preferences is not None and transformed.preferences.account_id != account_id:
            ownership.append("preferences are owned by another account")
        ledger.add("ownership_assigned", 25, ownership)

        all_ids: List[str] = []
        for curriculum in transformed.curricula:
            all_ids.append(curriculum.id)
            for module in curriculum.modules:
                all_ids.append(module.id)
                all_ids.extend(lesson.id for lesson in module.lessons)
        all_ids.extend(f.id for f in transformed.flashcards)
        ledger.add("record_ids_unique", 20, [f"duplicate record id {rid}" for rid in _duplicates(all_ids)])

        required: List[str] = []
        for curriculum in transformed.curricula:
            if _blank(curriculum.title):
                required.append(f"curriculum {curriculum.id} lost its title")
            if curriculum.source_id is None or curriculum.source_guest_id != transformed.guest_id:
                required.append(f"curriculum {curriculum.id} lost its migration source")
        for card in transformed.flashcards:
            if _blank(card.front) or _blank(card.back):
                required.append(f"flashcard {card.id} lost its content")
            if card.source_id is None or card.source_guest_id != transformed.guest_id:
                required.append(f"flashcard {card.id} lost its migration source")
        ledger.add("required_fields", 20, required)

        ordering: List[str] = []
        for curriculum in transformed.curricula:
            if [m.position for m in curriculum.modules] != list(range(len(curriculum.modules))):
                ordering.append(f"curriculum {curriculum.id} has non-contiguous module positions")
            for module in curriculum.modules:
                if [lesson.position for lesson in module.lessons] != list(range(len(module.lessons))):
                    ordering.append(f"module {module.id} has non-contiguous lesson positions")
        ledger.add("ordering_preserved", 15, ordering)

        counts = transformed.metadata.item_counts
        actual_counts = {
            "curricula": len(transformed.curricula),
            "modules": sum(len(c.modules) for c in transformed.curricula),
            "lessons": sum(c.lesson_count() for c in transformed.curricula),
            "flashcards": len(transformed.flashcards),
        }
        metadata: List[str] = []
        if transformed.metadata.source_guest_id != transformed.guest_id:
            metadata.append("metadata source guest does not match")
        if transformed.metadata.target_account_id != account_id:
            metadata.append("metadata target account does not match")
        for name, value in actual_counts.items():
            if counts.get(name) != value:
                metadata.append(f"metadata reports {counts.get(name)} {name} but dataset has {value}")
        ledger.add("metadata_consistent", 15, metadata)

        ledger.add(
            "uuid_format",
            5,
            [f"record id {rid} is not a UUID" for rid in all_ids if not _is_uuid(rid)],
            severity="warning",
        )
        return ledger.report()

    # -- post-migration ----------------------------------------------------

    def validate_migration_results(
        self,
        original: GuestDataset,
        guest_id: str,
        account_id: str,
        expected: Optional[AccountDataset] = None,
    ) -> ValidationReport:
        """Re-read the account and confirm every guest entity landed somewhere."""
        if self._store is None:
            raise RuntimeError("A data store is required to validate migration results.")
        ledger = _CheckLedger()
        staged = self._store.count_staged_records(guest_id)
        migrated = self._store.read_existing_account_data(account_id)

        ledger.add(
            "staging_cleared",
            20,
            [f"{count} {name} still staged for guest {guest_id}" for name, count in staged.items() if count],
        )

        matches = _match_guest_records(original, migrated, guest_id)
        ledger.add(
            "curricula_present",
            25,
            [f"curriculum {c.id} ('{c.title}') missing from account" for c in original.curricula if c.id not in matches.curricula],
        )
        ledger.add(
            "flashcards_present",
            25,
            [f"flashcard {f.id} missing from account" for f in original.flashcards if f.id not in matches.flashcards],
        )

        singletons: List[str] = []
        if original.progress is not None and migrated.progress is None:
            singletons.append("progress missing from account")
        if original.preferences is not None and migrated.preferences is None:
            singletons.append("preferences missing from account")
        ledger.add("settings_present", 10, singletons)

        if expected is not None:
            count_failures: List[str] = []
            for name, value in expected.item_counts().items():
                actual = migrated.item_counts()[name]
                if actual != value:
                    count_failures.append(f"expected {value} {name} but found {actual}")
            found_curricula = {c.id for c in migrated.curricula}
            found_flashcards = {f.id for f in migrated.flashcards}
            count_failures.extend(
                f"expected curriculum {c.id} not found" for c in expected.curricula if c.id not in found_curricula
            )
            count_failures.extend(
                f"expected flashcard {f.id} not found" for f in expected.flashcards if f.id not in found_flashcards
            )
            ledger.add("expected_state", 20, count_failures)
            ledger.add("content_matches", 20, _content_mismatches(expected, migrated))

        return ledger.report()

    def perform_data_integrity_check(
        self,
        session_id: str,
        source: GuestDataset,
        migrated: AccountDataset,
        guest_id: Optional[str] = None,
    ) -> IntegrityCheckResult:
        """Cross-check guest source data against migrated account data.

        Each category carries a fixed weight; any issue in a category deducts
        its full weight from 100.
        """
        issues: List[IntegrityIssue] = []
        matches = _match_guest_records(source, migrated, guest_id)

        source_keys = {curriculum_key(c.title) for c in source.curricula}
        if len(migrated.curricula) < len(source_keys):
            issues.append(
                IntegrityIssue(
                    category="count",
                    entity_type="curriculum",
                    message=f"account has {len(migrated.curricula)} curricula for {len(source_keys)} distinct guest curricula",
                )
            )
        source_card_keys = {flashcard_key(f.front, f.back) for f in source.flashcards}
        if len(migrated.flashcards) < len(source_card_keys):
            issues.append(
                IntegrityIssue(
                    category="count",
                    entity_type="flashcard",
                    message=f"account has {len(migrated.flashcards)} flashcards for {len(source_card_keys)} distinct guest flashcards",
                )
            )

        for curriculum in source.curricula:
            if curriculum.id not in matches.curricula:
                issues.append(
                    IntegrityIssue(
                        category="content",
                        entity_type="curriculum",
                        entity_id=curriculum.id,
                        message=f"curriculum '{curriculum.title}' is absent from the account",
                    )
                )
        migrated_cards = {f.id: f for f in migrated.flashcards}
        for card in source.flashcards:
            match_id = matches.flashcards.get(card.id)
            if match_id is None:
                issues.append(
                    IntegrityIssue(
                        category="content",
                        entity_type="flashcard",
                        entity_id=card.id,
                        message="flashcard is absent from the account",
                    )
                )
                continue
            target = migrated_cards[match_id]
            if target.source_id == card.id and flashcard_key(target.front, target.back) != flashcard_key(card.front, card.back):
                issues.append(
                    IntegrityIssue(
                        category="content",
                        entity_type="flashcard",
                        entity_id=card.id,
                        message="flashcard content was altered during migration",
                    )
                )

        migrated_curricula = {c.id: c for c in migrated.curricula}
        for curriculum in source.curricula:
            match_id = matches.curricula.get(curriculum.id)
            if match_id is None:
                continue
            target = migrated_curricula[match_id]
            if target.source_id != curriculum.id:
                continue
            if len(target.modules) < len(curriculum.modules):
                issues.append(
                    IntegrityIssue(
                        category="relationship",
                        entity_type="curriculum",
                        entity_id=curriculum.id,
                        message=f"expected {len(curriculum.modules)} modules, found {len(target.modules)}",
                    )
                )
            source_lessons = sum(len(m.lessons) for m in curriculum.modules)
            if target.lesson_count() < source_lessons:
                issues.append(
                    IntegrityIssue(
                        category="relationship",
                        entity_type="curriculum",
                        entity_id=curriculum.id,
                        message=f"expected {source_lessons} lessons, found {target.lesson_count()}",
                    )
                )

        issues.extend(_data_type_issues(migrated))
        issues.extend(_business_issues(migrated))

        failed_categories = {issue.category for issue in issues}
        checks = {category: category not in failed_categories for category in INTEGRITY_WEIGHTS}
        score = max(0.0, 100.0 - sum(INTEGRITY_WEIGHTS[c] for c in failed_categories))
        recommendations = _recommendations(score, issues)
        logger.info(
            "Integrity check for session %s: score=%s issues=%s", session_id, score, len(issues)
        )
        return IntegrityCheckResult(
            session_id=session_id,
            integrity_score=score,
            issues=issues,
            checks=checks,
            recommendations=recommendations,
        )


class _RecordMatches:
    def __init__(self) -> None:
        self.curricula: Dict[str, str] = {}
        self.flashcards: Dict[str, str] = {}


def _match_guest_records(source: GuestDataset, migrated: AccountDataset, guest_id: Optional[str]) -> _RecordMatches:
    """Map guest record ids to the account record that now carries them.

    A guest record matches by migration source first, then by natural key
    (merged or kept-existing records keep the account's identity).
    """
    matches = _RecordMatches()

    by_source: Dict[Tuple[Optional[str], str], AccountCurriculum] = {}
    by_key: Dict[str, AccountCurriculum] = {}
    for curriculum in migrated.curricula:
        if curriculum.source_id:
            by_source.setdefault((curriculum.source_guest_id, curriculum.source_id), curriculum)
        by_key.setdefault(curriculum_key(curriculum.title), curriculum)
    for curriculum in source.curricula:
        target = _lookup_source(by_source, guest_id, curriculum.id) or by_key.get(curriculum_key(curriculum.title))
        if target is not None:
            matches.curricula[curriculum.id] = target.id

    card_source: Dict[Tuple[Optional[str], str], AccountFlashcard] = {}
    card_key: Dict[str, AccountFlashcard] = {}
    for card in migrated.flashcards:
        if card.source_id:
            card_source.setdefault((card.source_guest_id, card.source_id), card)
        card_key.setdefault(flashcard_key(card.front, card.back), card)
    for card in source.flashcards:
        target = _lookup_source(card_source, guest_id, card.id) or card_key.get(flashcard_key(card.front, card.back))
        if target is not None:
            matches.flashcards[card.id] = target.id
    return matches


def _lookup_source(index: Dict, guest_id: Optional[str], source_id: str):  # type: ignore[no-untyped-def]
    if guest_id is not None:
        return index.get((guest_id, source_id))
    for (_, candidate), record in index.items():
        if candidate == source_id:
            return record
    return None


def _curriculum_content(curriculum: AccountCurriculum) -> Tuple:
    lessons = {
        lesson.id: (lesson.title, lesson.completed) for module in curriculum.modules for lesson in module.lessons
    }
    return curriculum.title, tuple(sorted(m.id for m in curriculum.modules)), tuple(sorted(lessons.items()))


def _flashcard_content(flashcard: AccountFlashcard) -> Tuple:
    return (
        flashcard.front,
        flashcard.back,
        tuple(flashcard.tags),
        flashcard.difficulty,
        flashcard.review_count,
        flashcard.correct_count,
    )


def _content_mismatches(expected: AccountDataset, migrated: AccountDataset) -> List[str]:
    """Records whose stored content differs from the planned final state."""
    mismatches: List[str] = []
    found_curricula = {c.id: c for c in migrated.curricula}
    for curriculum in expected.curricula:
        stored = found_curricula.get(curriculum.id)
        if stored is not None and _curriculum_content(stored) != _curriculum_content(curriculum):
            mismatches.append(f"curriculum {curriculum.id} content differs from the merged plan")
    found_flashcards = {f.id: f for f in migrated.flashcards}
    for flashcard in expected.flashcards:
        stored_card = found_flashcards.get(flashcard.id)
        if stored_card is not None and _flashcard_content(stored_card) != _flashcard_content(flashcard):
            mismatches.append(f"flashcard {flashcard.id} content differs from the merged plan")

    if expected.progress is not None:
        fields = ("completed_lessons", "study_minutes", "streak")
        if migrated.progress is None or any(
            getattr(migrated.progress, name) != getattr(expected.progress, name) for name in fields
        ):
            mismatches.append("progress differs from the merged plan")
    if expected.preferences is not None:
        fields = ("theme", "notifications", "sound_effects")
        if migrated.preferences is None or any(
            getattr(migrated.preferences, name) != getattr(expected.preferences, name) for name in fields
        ):
            mismatches.append("preferences differ from the merged plan")
    return mismatches


def _data_type_issues(migrated: AccountDataset) -> List[IntegrityIssue]:
    issues: List[IntegrityIssue] = []
    for curriculum in migrated.curricula:
        if curriculum.account_id != migrated.account_id:
            issues.append(
                IntegrityIssue(
                    category="data_type",
                    entity_type="curriculum",
                    entity_id=curriculum.id,
                    message="curriculum is not owned by the target account",
                )
            )
    for card in migrated.flashcards:
        if card.account_id != migrated.account_id:
            issues.append(
                IntegrityIssue(
                    category="data_type",
                    entity_type="flashcard",
                    entity_id=card.id,
                    message="flashcard is not owned by the target account",
                )
            )
        if card.review_count < 0 or card.correct_count < 0:
            issues.append(
                IntegrityIssue(
                    category="data_type",
                    entity_type="flashcard",
                    entity_id=card.id,
                    message="flashcard has negative review counters",
                )
            )
    return issues


def _business_issues(migrated: AccountDataset) -> List[IntegrityIssue]:
    issues: List[IntegrityIssue] = []
    seen: Set[str] = set()
    for curriculum in migrated.curricula:
        for module in curriculum.modules:
            for lesson in module.lessons:
                if lesson.id in seen:
                    issues.append(
                        IntegrityIssue(
                            category="business",
                            entity_type="curriculum",
                            entity_id=curriculum.id,
                            message=f"lesson {lesson.id} appears more than once",
                        )
                    )
                seen.add(lesson.id)
    progress = migrated.progress
    if progress is not None and progress.total_lessons and progress.completed_lessons > progress.total_lessons:
        issues.append(
            IntegrityIssue(
                category="business",
                entity_type="progress",
                message="progress reports more completed lessons than total lessons",
            )
        )
    return issues


def _recommendations(score: float, issues: Sequence[IntegrityIssue]) -> List[str]:
    recommendations: List[str] = []
    if score < 50:
        recommendations.append("Integrity is critically low; roll back the migration and retry.")
    elif score < 80:
        recommendations.append("Review the reported issues before confirming the migration.")
    content_issues = sum(1 for issue in issues if issue.category == "content")
    if content_issues:
        recommendations.append(f"{content_issues} guest records are missing or altered; verify the guest snapshot.")
    if any(issue.category == "relationship" for issue in issues):
        recommendations.append("Curriculum structure differs from the guest source; re-sync modules and lessons.")
    if not recommendations:
        recommendations.append("No action required.")
    return recommendations


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except (ValueError, AttributeError, TypeError):
        return False
    return True


__all__ = [
    "INTEGRITY_WEIGHTS",
    "MigrationValidator",
    "curriculum_key",
    "flashcard_key",
    "normalize_text",
]
