"""Audit logging to a Telegram channel.

One logger serves every producer (scheduler, Telegram bot, Discord bot); the
``platform`` argument tags where an entry came from.

Fire-and-forget: exceptions are logged and swallowed so that audit logging
never blocks or breaks the primary operation.  Without a token and channel the
entry is only written to the process log.
"""

from __future__ import annotations

import logging
import traceback
from datetime import UTC, datetime

import httpx

logger = logging.getLogger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org/bot{token}"

SYSTEM_ACTOR_ID = "system"
SYSTEM_ACTOR_NAME = "Event Scheduler"

_MAX_STACK_CHARS = 1000


def _actor(actor_id: str | int | None, actor_name: str | None) -> str:
    return f"{actor_name} ({actor_id})" if actor_name else f"User {actor_id}"


class AuditLogger:
    """Posts audit entries to a Telegram channel.

    Args:
        telegram_token: Bot token used to post; ``None`` disables posting
        channel_id: Target chat/channel id; ``None`` disables posting
        platform: Tag for the producing component ("scheduler", "telegram", "discord")
        http_client: Optional pre-built client
    """

    def __init__(
        self,
        telegram_token: str | None = None,
        channel_id: str | int | None = None,
        *,
        platform: str = "scheduler",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = telegram_token
        self._channel_id = channel_id
        self.platform = platform
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=15.0)

    @property
    def configured(self) -> bool:
        return bool(self._token and self._channel_id)

    @property
    def channel_id(self) -> str | int | None:
        return self._channel_id

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def log(
        self,
        action: str,
        details: str | None = None,
        actor_id: str | int | None = SYSTEM_ACTOR_ID,
        actor_name: str | None = SYSTEM_ACTOR_NAME,
    ) -> None:
        """Record an operator or system action."""
        logger.info(
            "Audit: %s",
            action,
            extra={"details": details, "actor_id": actor_id, "platform": self.platform},
        )
        if not self.configured:
            return

        message = (
            "🔍 **Audit Log**\n\n"
            f"**Action:** {action}\n"
            f"**User:** {_actor(actor_id, actor_name)}\n"
            f"**Source:** {self.platform}\n"
            f"**Time:** {datetime.now(UTC).isoformat()}\n"
        )
        if details:
            message += f"**Details:**\n{details}"

        try:
            await self._send(message)
        except Exception:
            logger.warning("Failed to send audit entry: action=%s", action, exc_info=True)

    async def log_error(
        self,
        error: BaseException,
        context: str = "Error",
        actor_id: str | int | None = SYSTEM_ACTOR_ID,
        actor_name: str | None = SYSTEM_ACTOR_NAME,
    ) -> None:
        """Record a failure, including a truncated stack trace when available."""
        logger.error(
            "Audit error: %s: %s",
            context,
            error,
            extra={"actor_id": actor_id, "platform": self.platform},
        )
        if not self.configured:
            return

        message = (
            "❌ **Error Log**\n\n"
            f"**Title:** {context}\n"
            f"**User:** {_actor(actor_id, actor_name)}\n"
            f"**Source:** {self.platform}\n"
            f"**Time:** {datetime.now(UTC).isoformat()}\n"
            f"**Error:** {error or type(error).__name__}\n"
        )
        if error.__traceback__ is not None:
            stack = "".join(traceback.format_exception(error))
            if len(stack) > _MAX_STACK_CHARS:
                stack = stack[:_MAX_STACK_CHARS] + "... (truncated)"
            message += f"\n**Stack Trace:**\n```\n{stack}\n```"

        try:
            await self._send(message)
        except Exception:
            logger.warning("Failed to send error entry: context=%s", context, exc_info=True)

    async def log_deployment_complete(
        self,
        revision: str,
        elapsed_ms: int,
        actor_id: str | int | None = SYSTEM_ACTOR_ID,
        actor_name: str | None = SYSTEM_ACTOR_NAME,
    ) -> None:
        await self.log(
            "Deployment Complete",
            f"Deployment {revision[:7]} went live after {round(elapsed_ms / 1000)} seconds",
            actor_id,
            actor_name,
        )

    async def _send(self, text: str) -> None:
        url = f"{TELEGRAM_API_BASE.format(token=self._token)}/sendMessage"
        resp = await self._http.post(
            url,
            json={"chat_id": self._channel_id, "text": text, "parse_mode": "Markdown"},
        )
        resp.raise_for_status()
