"""Notification delivery — request model, gateway protocol, and ntfy client."""

from src.notifications.channels import NotificationGateway
from src.notifications.models import PRIORITIES, NotificationRequest
from src.notifications.ntfy import NtfyGateway, sanitize_header_value

__all__ = [
    "PRIORITIES",
    "NotificationGateway",
    "NotificationRequest",
    "NtfyGateway",
    "sanitize_header_value",
]
