"""Fallback change detection for the recurrence rules document.

When the push webhook is not reachable from GitHub, the daemon can instead
poll the rules document's revision and materialize as soon as it changes.
The first read only records the revision.  Failures are logged and retried on
the next interval.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from sitekeeper.storage.documents import DocumentStore

logger = logging.getLogger(__name__)


class RevisionWatcher:
    """Calls ``on_change`` whenever the document at ``path`` gets a new revision."""

    def __init__(
        self,
        store: DocumentStore,
        path: str,
        on_change: Callable[[], Awaitable[Any]],
        interval_s: float,
    ) -> None:
        self._store = store
        self._path = path
        self._on_change = on_change
        self._interval_s = interval_s
        self._last_revision: str | None = None
        self._task: asyncio.Task | None = None

    @property
    def last_revision(self) -> str | None:
        return self._last_revision

    def start(self) -> None:
        if self._task is not None:
            logger.warning("Revision watcher already running for %s", self._path)
            return
        self._task = asyncio.create_task(self._loop())
        logger.info("Watching %s every %ss", self._path, self._interval_s)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _loop(self) -> None:
        while True:
            try:
                await self.check_once()
            except Exception:
                logger.warning("Revision check failed for %s", self._path, exc_info=True)
            await asyncio.sleep(self._interval_s)

    async def check_once(self) -> bool:
        """Read the current revision; return ``True`` if ``on_change`` ran."""
        document = await self._store.get(self._path)
        previous, self._last_revision = self._last_revision, document.revision
        if previous is None or previous == document.revision:
            return False

        logger.info(
            "%s changed (revision %s), triggering processing",
            self._path,
            document.revision[:7],
        )
        await self._on_change()
        return True
