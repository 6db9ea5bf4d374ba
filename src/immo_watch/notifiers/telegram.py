from __future__ import annotations

import logging

import requests

from .base import NotificationError, Notifier

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4096


class TelegramNotifier(Notifier):
    def __init__(self, token: str, chat_ids: list[str], timeout_seconds: int = 15) -> None:
        self.token = token
        self.chat_ids = list(chat_ids)
        self.timeout_seconds = timeout_seconds

    @property
    def endpoint(self) -> str:
        return f"{TELEGRAM_API_URL}/bot{self.token}/sendMessage"

    def deliver(self, message: str, destination: str | None = None) -> None:
        targets = [destination] if destination else self.chat_ids
        if not targets:
            raise NotificationError("no Telegram chat ids configured")

        text = _truncate(message)
        failures: list[str] = []
        for chat_id in targets:
            try:
                self._send(chat_id, text)
            except (requests.RequestException, NotificationError) as exc:
                logger.warning("Telegram delivery to chat %s failed: %s", chat_id, exc)
                failures.append(f"{chat_id}: {exc}")
                continue
            logger.info("Message sent to chat %s", chat_id)

        if failures:
            raise NotificationError(
                f"Telegram delivery failed for {len(failures)}/{len(targets)} chats: "
                + "; ".join(failures)
            )

    def _send(self, chat_id: str, text: str) -> None:
        response = requests.post(
            self.endpoint,
            json={"chat_id": chat_id, "text": text},
            timeout=self.timeout_seconds,
        )
        if response.status_code >= 400:
            raise NotificationError(
                f"Telegram API returned {response.status_code}: {response.text}"
            )

        try:
            body = response.json()
        except ValueError:
            return
        if isinstance(body, dict) and body.get("ok") is False:
            raise NotificationError(
                f"Telegram API rejected message: {body.get('description', 'no description')}"
            )


class ConsoleNotifier(Notifier):
    """Prints messages instead of sending them."""

    def deliver(self, message: str, destination: str | None = None) -> None:
        print(f"[DRY RUN] WOULD SEND TO {destination or 'all chats'}:")
        print(message)
        print("")


def _truncate(text: str) -> str:
    if len(text) <= MAX_MESSAGE_LENGTH:
        return text
    return f"{text[: MAX_MESSAGE_LENGTH - 3]}..."
