"""ScheduledEvent data model."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from src.notifications.models import NotificationRequest

PENDING = "pending"
SCHEDULED = "scheduled"
SENT = "sent"
FAILED = "failed"

STATUSES = (PENDING, SCHEDULED, SENT, FAILED)
TERMINAL_STATUSES = frozenset({SENT, FAILED})

# Every datetime-valued field, mapped to its key in the persisted JSON.
# Deserialization parses exactly these keys and nothing else.
TEMPORAL_FIELDS = {
    "scheduled_for": "scheduledFor",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "last_attempt_at": "lastAttemptAt",
    "completed_at": "completedAt",
}

_PLAIN_FIELDS = {
    "id": "id",
    "plugin_name": "pluginName",
    "event_type": "eventType",
    "status": "status",
    "retry_count": "retryCount",
    "max_retries": "maxRetries",
    "payload": "payload",
    "metadata": "metadata",
    "error": "error",
}


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def parse_instant(value: str | datetime) -> datetime:
    """Parse an ISO-8601 string (``Z`` suffix allowed) into an aware datetime."""
    if isinstance(value, datetime):
        return ensure_aware(value)
    return ensure_aware(datetime.fromisoformat(value))


def json_default(value: Any) -> Any:
    """``json.dumps`` hook for datetimes left inside payload/metadata."""
    if isinstance(value, datetime):
        return value.isoformat()
    msg = f"Object of type {type(value).__name__} is not JSON serializable"
    raise TypeError(msg)


@dataclass
class ScheduledEvent:
    """A notification to deliver at a future instant.

    Attributes:
        id: Caller-supplied unique key. Adding the same id twice is rejected.
        plugin_name: Plugin that registered the event.
        event_type: Free-form tag, e.g. ``"high-tide-advance"``.
        scheduled_for: When the notification should go out (aware UTC).
        payload: ``title``, ``message`` and optional ``priority``, ``tags``,
            ``click``, ``attach`` plus any plugin-specific fields.
        status: ``pending``, ``scheduled``, ``sent`` or ``failed``.
        retry_count: Failed delivery attempts so far.
        max_retries: Attempts allowed before the event becomes ``failed``.
            ``0`` means "use the store default".
        metadata: Free-form plugin data, never interpreted here.
        created_at / updated_at: Stamped by the store.
        last_attempt_at: Time of the last failed attempt.
        completed_at: Time the notification was sent.
        error: Last delivery error message.
    """

    id: str
    plugin_name: str
    event_type: str
    scheduled_for: datetime
    payload: dict[str, Any]
    status: str = PENDING
    retry_count: int = 0
    max_retries: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_attempt_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None

    def __post_init__(self) -> None:
        if not self.id:
            msg = "ScheduledEvent.id must be a non-empty string"
            raise ValueError(msg)
        if self.scheduled_for is None:
            msg = f"ScheduledEvent {self.id!r} has no scheduled_for"
            raise ValueError(msg)
        if self.status not in STATUSES:
            msg = f"Unknown event status: {self.status!r}"
            raise ValueError(msg)
        for name in TEMPORAL_FIELDS:
            value = getattr(self, name)
            if value is not None:
                setattr(self, name, parse_instant(value))

    # -- Convenience properties ------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def title(self) -> str:
        return str(self.payload.get("title", ""))

    def to_notification(self) -> NotificationRequest:
        """Build the gateway request from the payload."""
        payload = self.payload
        return NotificationRequest(
            title=str(payload.get("title", "")),
            message=str(payload.get("message", "")),
            priority=payload.get("priority"),
            tags=list(payload.get("tags") or []),
            click=payload.get("click"),
            attach=payload.get("attach"),
        )

    def copy(self) -> ScheduledEvent:
        """Deep copy, so callers never share dicts with the store."""
        return copy.deepcopy(self)

    # -- Serialization ---------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON shape used by the events file."""
        data: dict[str, Any] = {}
        for attr, key in _PLAIN_FIELDS.items():
            data[key] = getattr(self, attr)
        for attr, key in TEMPORAL_FIELDS.items():
            value = getattr(self, attr)
            data[key] = value.isoformat() if value is not None else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduledEvent:
        """Deserialize one record from the events file."""
        kwargs: dict[str, Any] = {}
        for attr, key in _PLAIN_FIELDS.items():
            if key in data:
                kwargs[attr] = data[key]
        for attr, key in TEMPORAL_FIELDS.items():
            value = data.get(key)
            kwargs[attr] = parse_instant(value) if value is not None else None
        kwargs["payload"] = kwargs.get("payload") or {}
        kwargs["metadata"] = kwargs.get("metadata") or {}
        return cls(**kwargs)
