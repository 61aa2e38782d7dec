"""NotificationGateway protocol — interface for the outbound push transport."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from src.notifications.models import NotificationRequest


@runtime_checkable
class NotificationGateway(Protocol):
    """Protocol that the delivery gateway (and test doubles) must satisfy."""

    async def send_notification(self, notification: NotificationRequest) -> bool:
        """Send one notification. Returns True on success, never raises."""
        ...

    async def send_bulk_notifications(
        self, notifications: list[NotificationRequest]
    ) -> int:
        """Send notifications one after another. Returns the success count."""
        ...
