"""Deployment notifications to the operator who made a change.

Messages go back to where the change was made: a reply in the Telegram chat,
or a mention in the Discord channel.  Both are plain REST calls over httpx;
no bot framework is involved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org/bot{token}"
DISCORD_API_BASE = "https://discord.com/api/v10"


@dataclass(frozen=True)
class NotifyTarget:
    """Where to report the outcome of a tracked deployment."""

    platform: Literal["telegram", "discord"]
    chat_id: str | int
    user_id: str | int | None = None
    user_name: str | None = None
    reply_to_message_id: int | None = None


def success_message(elapsed_ms: int, website_url: str) -> str:
    return (
        "✅ **Deployment Complete!**\n\n"
        "Your changes are now live on the website.\n\n"
        f"🔗 [View Website]({website_url})\n\n"
        f"_Deployment took {round(elapsed_ms / 1000)} seconds_"
    )


def timeout_message(elapsed_ms: int, website_url: str, repo_url: str) -> str:
    return (
        "⏰ **Deployment Status Unknown**\n\n"
        "The deployment is taking longer than expected "
        f"({round(elapsed_ms / 1000 / 60)} minutes).\n\n"
        "Please check manually:\n"
        f"🔗 [View Website]({website_url})\n"
        f"🔗 [Repository Actions]({repo_url}/actions)"
    )


class ChatNotifier:
    """Sends deployment success/timeout notices to Telegram or Discord.

    Args:
        website_url: Published site root linked from the messages
        repo_url: Repository web URL (for the Actions link)
        telegram_token: Bot token for Telegram targets
        discord_token: Bot token for Discord targets
        http_client: Optional pre-built client
    """

    def __init__(
        self,
        website_url: str,
        repo_url: str,
        *,
        telegram_token: str | None = None,
        discord_token: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._website_url = website_url
        self._repo_url = repo_url.rstrip("/")
        self._telegram_token = telegram_token
        self._discord_token = discord_token
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=15.0)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def notify_success(self, target: NotifyTarget, elapsed_ms: int) -> None:
        await self._send(target, success_message(elapsed_ms, self._website_url))

    async def notify_timeout(self, target: NotifyTarget, elapsed_ms: int) -> None:
        await self._send(target, timeout_message(elapsed_ms, self._website_url, self._repo_url))

    async def _send(self, target: NotifyTarget, text: str) -> None:
        if target.platform == "telegram":
            await self._send_telegram(target, text)
        elif target.platform == "discord":
            await self._send_discord(target, text)
        else:
            raise ValueError(f"Unsupported notification platform: {target.platform!r}")

    async def _send_telegram(self, target: NotifyTarget, text: str) -> None:
        if not self._telegram_token:
            logger.warning("No Telegram token configured; dropping notice for %s", target.chat_id)
            return
        payload: dict[str, object] = {
            "chat_id": target.chat_id,
            "text": text,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        if target.reply_to_message_id is not None:
            payload["reply_to_message_id"] = target.reply_to_message_id
        resp = await self._http.post(
            f"{TELEGRAM_API_BASE.format(token=self._telegram_token)}/sendMessage", json=payload
        )
        resp.raise_for_status()

    async def _send_discord(self, target: NotifyTarget, text: str) -> None:
        if not self._discord_token:
            logger.warning("No Discord token configured; dropping notice for %s", target.chat_id)
            return
        payload: dict[str, object] = {"content": text}
        if target.user_id is not None:
            payload["content"] = f"{text} <@{target.user_id}>"
            payload["allowed_mentions"] = {"users": [str(target.user_id)]}
        resp = await self._http.post(
            f"{DISCORD_API_BASE}/channels/{target.chat_id}/messages",
            json=payload,
            headers={"Authorization": f"Bot {self._discord_token}"},
        )
        resp.raise_for_status()
