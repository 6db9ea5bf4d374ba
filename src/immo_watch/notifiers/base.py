from __future__ import annotations

from abc import ABC, abstractmethod

from immo_watch.models import Candidate


class NotificationError(RuntimeError):
    """Raised when a message could not be delivered to every destination."""


class Notifier(ABC):
    @abstractmethod
    def deliver(self, message: str, destination: str | None = None) -> None:
        """Send a message to one destination, or to every configured one."""


def render_listing_message(
    candidate: Candidate,
    *,
    platform_name: str,
    emoji: str,
    index: int,
    total: int,
) -> str:
    return f"{emoji} {platform_name} - Wohnung {index}/{total}:\n{candidate.url}"
