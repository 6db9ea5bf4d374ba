"""Notifier implementations."""

from .base import NotificationError, Notifier, render_listing_message
from .telegram import ConsoleNotifier, TelegramNotifier

__all__ = [
    "ConsoleNotifier",
    "NotificationError",
    "Notifier",
    "TelegramNotifier",
    "render_listing_message",
]
