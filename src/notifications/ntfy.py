"""ntfy delivery gateway using httpx."""

from __future__ import annotations

import asyncio
import base64
import logging
import re
import unicodedata
from typing import TYPE_CHECKING

import httpx

from src.notifications.models import PRIORITIES, NotificationRequest

if TYPE_CHECKING:
    from src.config import NtfyAuth

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_BULK_DELAY_SECONDS = 0.1
DEFAULT_TITLE = "Notification"

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE = re.compile(r"\s+")


def sanitize_header_value(value: str) -> str:
    """Reduce *value* to something an HTTP header can carry.

    Control characters are dropped, accented letters are folded to their
    ASCII base (``"Café"`` -> ``"Cafe"``), and anything else outside ASCII
    (emoji, symbols) is removed.
    """
    value = _CONTROL_CHARS.sub("", value)
    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    return _WHITESPACE.sub(" ", value).strip()


class NtfyGateway:
    """Publishes notifications to ``{base_url}/{topic}`` on an ntfy server.

    Args:
        base_url: ntfy server root, e.g. ``https://ntfy.sh``.
        topic: Topic name to publish to.
        auth: Optional basic or bearer credentials.
        timeout: Per-request timeout in seconds.
        bulk_delay: Pause between sends in :meth:`send_bulk_notifications`.
    """

    def __init__(
        self,
        base_url: str,
        topic: str,
        *,
        auth: NtfyAuth | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        bulk_delay: float = DEFAULT_BULK_DELAY_SECONDS,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._topic = topic.strip("/")
        self._auth = auth
        self._timeout = timeout
        self._bulk_delay = bulk_delay

    @property
    def url(self) -> str:
        return f"{self._base_url}/{self._topic}"

    # -- Sending ---------------------------------------------------------------

    async def send_notification(self, notification: NotificationRequest) -> bool:
        """POST one notification. Returns True on a 2xx/3xx response."""
        headers = self._build_headers(notification)
        logger.debug(
            "Sending notification to %s (title=%r, priority=%s, tags=%s)",
            self.url,
            notification.title,
            notification.priority,
            notification.tags,
        )

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    self.url,
                    content=notification.message.encode("utf-8"),
                    headers=headers,
                )
        except httpx.TimeoutException:
            logger.error(
                "ntfy request timed out after %.1fs (title=%r)",
                self._timeout,
                notification.title,
            )
            return False
        except httpx.HTTPError as exc:
            logger.error(
                "Failed to reach ntfy server %s (title=%r): %s",
                self._base_url,
                notification.title,
                exc,
            )
            return False

        if resp.status_code >= 500:
            logger.error(
                "ntfy server error: status=%d title=%r body=%s",
                resp.status_code,
                notification.title,
                resp.text[:200],
            )
            return False
        if resp.status_code >= 400:
            # 4xx means our request or configuration is wrong (bad topic, auth).
            logger.warning(
                "ntfy rejected notification (client/config error): status=%d title=%r body=%s",
                resp.status_code,
                notification.title,
                resp.text[:200],
            )
            return False

        logger.info(
            "Notification sent: %r (status=%d)", notification.title, resp.status_code
        )
        return True

    async def send_bulk_notifications(
        self, notifications: list[NotificationRequest]
    ) -> int:
        """Send sequentially with a short pause between sends."""
        success_count = 0
        for index, notification in enumerate(notifications):
            if index and self._bulk_delay:
                await asyncio.sleep(self._bulk_delay)
            if await self.send_notification(notification):
                success_count += 1

        logger.info(
            "Sent %d/%d notifications successfully", success_count, len(notifications)
        )
        return success_count

    async def test_connection(self) -> bool:
        """Publish a low-priority test message."""
        return await self.send_notification(
            NotificationRequest(
                title="ntfy-fetch Test",
                message="Connection test successful!",
                priority="low",
                tags=["test"],
            )
        )

    # -- Internal --------------------------------------------------------------

    def _build_headers(self, notification: NotificationRequest) -> dict[str, str]:
        headers = {"Content-Type": "text/plain; charset=utf-8"}

        if notification.title:
            headers["Title"] = sanitize_header_value(notification.title) or DEFAULT_TITLE

        if notification.priority:
            if notification.priority in PRIORITIES:
                headers["Priority"] = notification.priority
            else:
                logger.warning(
                    "Ignoring unknown priority %r (title=%r)",
                    notification.priority,
                    notification.title,
                )

        tags = [sanitize_header_value(t) for t in notification.tags]
        tags = [t for t in tags if t]
        if tags:
            headers["Tags"] = ",".join(tags)

        if notification.click:
            headers["Click"] = sanitize_header_value(notification.click)
        if notification.attach:
            headers["Attach"] = sanitize_header_value(notification.attach)

        authorization = self._authorization()
        if authorization:
            headers["Authorization"] = authorization

        return headers

    def _authorization(self) -> str | None:
        auth = self._auth
        if auth is None:
            return None
        if auth.scheme == "basic" and auth.username and auth.password:
            raw = f"{auth.username}:{auth.password}".encode()
            return f"Basic {base64.b64encode(raw).decode('ascii')}"
        if auth.scheme == "bearer" and auth.token:
            return f"Bearer {auth.token}"
        return None
