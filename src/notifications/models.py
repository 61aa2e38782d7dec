"""NotificationRequest data model."""

from __future__ import annotations

from dataclasses import dataclass, field

# ntfy priority names, lowest to highest.
PRIORITIES = ("min", "low", "default", "high", "max")


@dataclass
class NotificationRequest:
    """One push notification, as produced by plugins and scheduled events.

    Attributes:
        title: Short headline. Sanitized before it goes on the wire.
        message: Plain-text body.
        priority: One of :data:`PRIORITIES`, or None for the server default.
        tags: ntfy tags (emoji shortcodes or plain labels).
        click: URL opened when the notification is tapped.
        attach: URL of an attachment.
    """

    title: str
    message: str
    priority: str | None = None
    tags: list[str] = field(default_factory=list)
    click: str | None = None
    attach: str | None = None
