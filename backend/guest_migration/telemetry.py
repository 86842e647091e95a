"""In-process telemetry bus for migration lifecycle and pool events."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional

from pydantic import BaseModel

logger = logging.getLogger("guest_migration.telemetry")

Listener = Callable[["TelemetryEvent"], None]


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def session_id(self) -> Optional[str]:
        value = self.payload.get("session_id")
        if isinstance(value, str) and value.strip():
            return value
        return None


@dataclass(frozen=True)
class _Subscription:
    listener: Listener
    events: Optional[FrozenSet[str]]

    def wants(self, name: str) -> bool:
        return self.events is None or name in self.events


_subscriptions: List[_Subscription] = []
_lock = RLock()


def register_listener(listener: Listener, *, events: Optional[Iterable[str]] = None) -> None:
    """Subscribe ``listener`` to every event, or only to the names in ``events``."""
    subscription = _Subscription(listener, frozenset(events) if events is not None else None)
    with _lock:
        if all(existing.listener != listener for existing in _subscriptions):
            _subscriptions.append(subscription)


def unregister_listener(listener: Listener) -> None:
    with _lock:
        _subscriptions[:] = [existing for existing in _subscriptions if existing.listener != listener]


def clear_listeners() -> None:
    with _lock:
        _subscriptions.clear()


def emit_event(name: str, **fields: Any) -> None:
    """Log a structured event and hand it to every interested listener.

    Listener failures are logged and swallowed so instrumentation can never
    fail a migration.
    """
    event = TelemetryEvent(name=name, payload={key: _sanitize(value) for key, value in fields.items()})

    with _lock:
        interested = [subscription.listener for subscription in _subscriptions if subscription.wants(name)]

    for listener in interested:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    structured = {"event": name, "at": event.emitted_at.isoformat(), **event.payload}
    logger.info("TELEMETRY %s", json.dumps(structured, default=str))


def _sanitize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, dict):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_sanitize(item) for item in value]
    return value


__all__ = [
    "TelemetryEvent",
    "clear_listeners",
    "emit_event",
    "register_listener",
    "unregister_listener",
]
