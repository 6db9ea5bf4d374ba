from __future__ import annotations

import pytest
import requests

from immo_watch.models import Candidate
from immo_watch.notifiers import (
    ConsoleNotifier,
    NotificationError,
    TelegramNotifier,
    render_listing_message,
)


class _DummyResponse:
    def __init__(self, status_code: int = 200, body: object | None = None, text: str = "") -> None:
        self.status_code = status_code
        self._body = {"ok": True} if body is None else body
        self.text = text

    def json(self) -> object:
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class _RecordingPost:
    def __init__(self, responses: dict[str, object] | None = None) -> None:
        self.calls: list[dict] = []
        self.responses = responses or {}

    def __call__(self, url: str, *, json: dict, timeout: int) -> _DummyResponse:
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        response = self.responses.get(json["chat_id"], _DummyResponse())
        if isinstance(response, Exception):
            raise response
        return response


def test_deliver_posts_once_per_configured_chat(monkeypatch: pytest.MonkeyPatch) -> None:
    post = _RecordingPost()
    monkeypatch.setattr("requests.post", post)

    notifier = TelegramNotifier(token="123:abc", chat_ids=["111", "-222"], timeout_seconds=9)
    notifier.deliver("hello")

    assert [call["json"] for call in post.calls] == [
        {"chat_id": "111", "text": "hello"},
        {"chat_id": "-222", "text": "hello"},
    ]
    assert all(call["url"] == "https://api.telegram.org/bot123:abc/sendMessage" for call in post.calls)
    assert all(call["timeout"] == 9 for call in post.calls)


def test_deliver_to_explicit_destination_only(monkeypatch: pytest.MonkeyPatch) -> None:
    post = _RecordingPost()
    monkeypatch.setattr("requests.post", post)

    TelegramNotifier(token="t", chat_ids=["111", "222"]).deliver("debug", destination="999")

    assert [call["json"]["chat_id"] for call in post.calls] == ["999"]


def test_failed_chat_does_not_stop_remaining_chats(monkeypatch: pytest.MonkeyPatch) -> None:
    post = _RecordingPost(
        responses={
            "111": _DummyResponse(status_code=403, text="Forbidden: bot was blocked"),
            "222": requests.ConnectionError("connection reset"),
        }
    )
    monkeypatch.setattr("requests.post", post)

    notifier = TelegramNotifier(token="t", chat_ids=["111", "222", "333"])
    with pytest.raises(NotificationError) as excinfo:
        notifier.deliver("hello")

    assert [call["json"]["chat_id"] for call in post.calls] == ["111", "222", "333"]
    assert "2/3" in str(excinfo.value)
    assert "403" in str(excinfo.value)


def test_ok_false_body_counts_as_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    post = _RecordingPost(
        responses={"111": _DummyResponse(body={"ok": False, "description": "chat not found"})}
    )
    monkeypatch.setattr("requests.post", post)

    with pytest.raises(NotificationError, match="chat not found"):
        TelegramNotifier(token="t", chat_ids=["111"]).deliver("hello")


def test_non_json_success_body_is_accepted(monkeypatch: pytest.MonkeyPatch) -> None:
    post = _RecordingPost(responses={"111": _DummyResponse(body=ValueError("no json"))})
    monkeypatch.setattr("requests.post", post)

    TelegramNotifier(token="t", chat_ids=["111"]).deliver("hello")

    assert len(post.calls) == 1


def test_long_messages_are_truncated(monkeypatch: pytest.MonkeyPatch) -> None:
    post = _RecordingPost()
    monkeypatch.setattr("requests.post", post)

    TelegramNotifier(token="t", chat_ids=["111"]).deliver("x" * 5000)

    text = post.calls[0]["json"]["text"]
    assert len(text) == 4096
    assert text.endswith("...")


def test_deliver_without_destinations_raises() -> None:
    with pytest.raises(NotificationError):
        TelegramNotifier(token="t", chat_ids=[]).deliver("hello")


def test_render_listing_message_format() -> None:
    candidate = Candidate(
        listing_id="2712345678",
        url="https://www.kleinanzeigen.de/s-anzeige/wohnung/2712345678-203-3331",
    )

    message = render_listing_message(
        candidate,
        platform_name="Kleinanzeigen",
        emoji="🏘️",
        index=2,
        total=5,
    )

    assert message == (
        "🏘️ Kleinanzeigen - Wohnung 2/5:\n"
        "https://www.kleinanzeigen.de/s-anzeige/wohnung/2712345678-203-3331"
    )


def test_console_notifier_prints_message(capsys: pytest.CaptureFixture[str]) -> None:
    ConsoleNotifier().deliver("🏠 ImmoScout24 - Wohnung 1/1:\nhttps://example.test/1")

    assert capsys.readouterr().out == (
        "[DRY RUN] WOULD SEND TO all chats:\n"
        "🏠 ImmoScout24 - Wohnung 1/1:\nhttps://example.test/1\n\n"
    )
