"""Tests for sitekeeper.connectors.notify — deployment notices to chat platforms."""

from __future__ import annotations

import json

import httpx
import pytest

from sitekeeper.connectors.notify import (
    ChatNotifier,
    NotifyTarget,
    success_message,
    timeout_message,
)

pytestmark = pytest.mark.unit

WEBSITE = "https://org.github.io/site/"
REPO_URL = "https://github.com/org/site"


def _notifier(handler, **tokens) -> ChatNotifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ChatNotifier(WEBSITE, REPO_URL, http_client=client, **tokens)


class _Recorder:
    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, json={"ok": True})

    @property
    def body(self) -> dict:
        return json.loads(self.requests[-1].content)


def test_success_message_mentions_elapsed_seconds():
    message = success_message(42_400, WEBSITE)

    assert message.startswith("✅ **Deployment Complete!**")
    assert f"[View Website]({WEBSITE})" in message
    assert message.endswith("_Deployment took 42 seconds_")


def test_timeout_message_links_actions():
    message = timeout_message(300_000, WEBSITE, REPO_URL)

    assert "(5 minutes)" in message
    assert f"[Repository Actions]({REPO_URL}/actions)" in message


async def test_telegram_success_replies_to_original_message():
    recorder = _Recorder()
    notifier = _notifier(recorder, telegram_token="tg-token")
    target = NotifyTarget(platform="telegram", chat_id=-100, reply_to_message_id=55)

    await notifier.notify_success(target, 30_000)

    request = recorder.requests[0]
    assert request.url.path == "/bottg-token/sendMessage"
    assert recorder.body["chat_id"] == -100
    assert recorder.body["reply_to_message_id"] == 55
    assert recorder.body["parse_mode"] == "Markdown"
    assert recorder.body["disable_web_page_preview"] is True


async def test_discord_timeout_mentions_user():
    recorder = _Recorder()
    notifier = _notifier(recorder, discord_token="dc-token")
    target = NotifyTarget(platform="discord", chat_id="123", user_id="456")

    await notifier.notify_timeout(target, 301_000)

    request = recorder.requests[0]
    assert str(request.url) == "https://discord.com/api/v10/channels/123/messages"
    assert request.headers["Authorization"] == "Bot dc-token"
    assert recorder.body["content"].endswith("<@456>")
    assert recorder.body["allowed_mentions"] == {"users": ["456"]}


async def test_missing_token_sends_nothing():
    recorder = _Recorder()
    notifier = _notifier(recorder)

    await notifier.notify_success(NotifyTarget(platform="telegram", chat_id=1), 1000)

    assert recorder.requests == []


async def test_http_failure_raises():
    notifier = _notifier(_Recorder(status=500), telegram_token="tg-token")

    with pytest.raises(httpx.HTTPStatusError):
        await notifier.notify_success(NotifyTarget(platform="telegram", chat_id=1), 1000)
