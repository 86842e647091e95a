"""Upgrade guest payloads written by older clients to the current schema."""

from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .models import utcnow

logger = logging.getLogger(__name__)

CURRENT_SCHEMA_VERSION = "1.0.0"
LEGACY_SCHEMA_VERSION = "0.9.0"

_VALID_THEMES = {"light", "dark", "system"}
_VALID_DIFFICULTIES = {"easy", "medium", "hard"}


def parse_version(value: str) -> Tuple[int, ...]:
    parts: List[int] = []
    for piece in value.strip().lstrip("v").split("."):
        digits = "".join(ch for ch in piece if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    while len(parts) < 3:
        parts.append(0)
    return tuple(parts)


def detect_version(payload: Mapping[str, Any]) -> str:
    version = payload.get("_version") or payload.get("version")
    if isinstance(version, str) and version.strip():
        return version.strip()
    # Unversioned payloads predate 1.0.0 only when they still use the ``plans`` key.
    if "plans" in payload and "curricula" not in payload:
        return LEGACY_SCHEMA_VERSION
    return CURRENT_SCHEMA_VERSION


def needs_upgrade(payload: Mapping[str, Any]) -> bool:
    return parse_version(detect_version(payload)) < parse_version(CURRENT_SCHEMA_VERSION)


def upgrade_guest_payload(
    payload: Mapping[str, Any],
    fallback_timestamp: Optional[datetime] = None,
) -> Tuple[Dict[str, Any], Optional[str]]:
    """Return ``(payload, upgraded_from)``; ``upgraded_from`` is ``None`` for current payloads."""
    if not needs_upgrade(payload):
        return dict(payload), None

    from_version = detect_version(payload)
    timestamp = (fallback_timestamp or utcnow()).isoformat()
    upgraded: Dict[str, Any] = copy.deepcopy(dict(payload))

    if "curricula" not in upgraded and isinstance(upgraded.get("plans"), list):
        upgraded["curricula"] = upgraded.pop("plans")
    curricula = [_upgrade_curriculum(item, timestamp) for item in upgraded.get("curricula") or [] if isinstance(item, dict)]
    flashcards = [_upgrade_flashcard(item, timestamp) for item in upgraded.get("flashcards") or [] if isinstance(item, dict)]
    upgraded["curricula"] = curricula
    upgraded["flashcards"] = flashcards

    if not isinstance(upgraded.get("progress"), dict):
        upgraded["progress"] = _derive_progress(curricula, flashcards)
    upgraded["preferences"] = _upgrade_preferences(upgraded.get("preferences"))

    upgraded["_version"] = CURRENT_SCHEMA_VERSION
    upgraded["_migratedFrom"] = from_version
    upgraded["_migratedAt"] = timestamp
    logger.info("Upgraded guest payload from schema %s to %s", from_version, CURRENT_SCHEMA_VERSION)
    return upgraded, from_version


def _upgrade_curriculum(item: Dict[str, Any], timestamp: str) -> Dict[str, Any]:
    curriculum = dict(item)
    curriculum.setdefault("createdAt", timestamp)
    curriculum.setdefault("domain", "")
    modules = []
    for module in curriculum.get("modules") or []:
        if not isinstance(module, dict):
            continue
        module = dict(module)
        lessons = []
        for lesson in module.get("lessons") or []:
            if not isinstance(lesson, dict):
                continue
            lesson = dict(lesson)
            lesson.setdefault("completed", False)
            lesson.setdefault("duration", "")
            lessons.append(lesson)
        module["lessons"] = lessons
        modules.append(module)
    curriculum["modules"] = modules
    return curriculum


def _upgrade_flashcard(item: Dict[str, Any], timestamp: str) -> Dict[str, Any]:
    card = dict(item)
    if not isinstance(card.get("tags"), list):
        card["tags"] = []
    if card.get("difficulty") not in _VALID_DIFFICULTIES:
        card["difficulty"] = "medium"
    for counter in ("reviewCount", "correctCount"):
        value = card.get(counter)
        if not isinstance(value, int) or value < 0:
            card[counter] = 0
    card.setdefault("createdAt", timestamp)
    return card


def _derive_progress(curricula: List[Dict[str, Any]], flashcards: List[Dict[str, Any]]) -> Dict[str, Any]:
    lessons = [lesson for c in curricula for m in c["modules"] for lesson in m["lessons"]]
    return {
        "totalPlans": len(curricula),
        "totalLessons": len(lessons),
        "totalFlashcards": len(flashcards),
        "completedLessons": sum(1 for lesson in lessons if lesson.get("completed")),
        "studyMinutes": 0,
        "streak": 0,
    }


def _upgrade_preferences(value: Any) -> Dict[str, Any]:
    preferences = dict(value) if isinstance(value, dict) else {}
    if preferences.get("theme") not in _VALID_THEMES:
        preferences["theme"] = "system"
    if not isinstance(preferences.get("notifications"), bool):
        preferences["notifications"] = True
    if not isinstance(preferences.get("soundEffects"), bool):
        preferences["soundEffects"] = True
    return preferences


__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "LEGACY_SCHEMA_VERSION",
    "detect_version",
    "needs_upgrade",
    "parse_version",
    "upgrade_guest_payload",
]
