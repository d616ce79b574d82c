"""Deployment completion tracking.

After a data file is committed, the site still has to be rebuilt by GitHub
Pages.  :class:`DeploymentTracker` remembers each in-flight commit, polls a
liveness oracle on a fixed interval and tells the operator once the change is
live, or that it gave up waiting.

Key behaviour:
- One poll loop (asyncio task) serves every tracked commit; it stops when
  nothing is pending and restarts on the next ``track()``
- A record leaves the pending set exactly once, on success or timeout
- A failing liveness check leaves the record pending for the next tick
- A failing notification is logged; the record is still removed
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

from sitekeeper.core.metrics import deployments_pending, record_deployment

if TYPE_CHECKING:
    from sitekeeper.core.audit import AuditLogger

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_S = 15.0
DEFAULT_MAX_WAIT_S = 300.0


class LivenessOracle(Protocol):
    async def is_revision_live(self, revision: str) -> bool: ...


class NotificationSink(Protocol):
    async def notify_success(self, target: Any, elapsed_ms: int) -> None: ...

    async def notify_timeout(self, target: Any, elapsed_ms: int) -> None: ...


@dataclass
class DeploymentRecord:
    commit_revision: str
    started_at: float
    notify_target: Any
    last_checked_at: float | None = None


@dataclass(frozen=True)
class DeploymentStatus:
    revision: str
    elapsed_seconds: int
    platform: str | None


class DeploymentTracker:
    """Polls until tracked commits are live or time out.

    Args:
        oracle: Answers whether a revision's content is live
        sink: Delivers success/timeout notices to the record's target
        poll_interval_s: Seconds between loop iterations (and per-record checks)
        max_wait_s: Give up on a record once it has been pending this long
        audit: Optional audit logger for completion/timeout entries
        clock: Monotonic seconds source (tests inject a fake)
    """

    def __init__(
        self,
        oracle: LivenessOracle,
        sink: NotificationSink,
        *,
        poll_interval_s: float = DEFAULT_POLL_INTERVAL_S,
        max_wait_s: float = DEFAULT_MAX_WAIT_S,
        audit: AuditLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._oracle = oracle
        self._sink = sink
        self._poll_interval_s = poll_interval_s
        self._max_wait_s = max_wait_s
        self._audit = audit
        self._clock = clock
        self._records: dict[str, DeploymentRecord] = {}
        self._task: asyncio.Task | None = None

    @property
    def is_polling(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> dict[str, DeploymentRecord]:
        return dict(self._records)

    def track(self, revision: str, target: Any) -> DeploymentRecord:
        """Start waiting for *revision* and make sure the poll loop runs."""
        if revision in self._records:
            logger.debug("Re-tracking deployment %s with a new target", revision[:7])
        record = DeploymentRecord(
            commit_revision=revision,
            started_at=self._clock(),
            notify_target=target,
        )
        self._records[revision] = record
        deployments_pending.set(len(self._records))
        logger.info("Tracking deployment %s", revision[:7])

        if not self.is_polling:
            self._task = asyncio.create_task(self._poll_loop())
        return record

    def status(self) -> list[DeploymentStatus]:
        now = self._clock()
        return [
            DeploymentStatus(
                revision=revision[:7],
                elapsed_seconds=round(now - record.started_at),
                platform=getattr(record.notify_target, "platform", None),
            )
            for revision, record in self._records.items()
        ]

    async def aclose(self) -> None:
        """Cancel the poll loop; pending records are dropped without notice."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _poll_loop(self) -> None:
        try:
            while self._records:
                await self.poll_once()
                if not self._records:
                    break
                await asyncio.sleep(self._poll_interval_s)
        except asyncio.CancelledError:
            logger.debug("Deployment poll loop cancelled")
            raise
        finally:
            if self._task is asyncio.current_task():
                self._task = None

    async def poll_once(self) -> None:
        """Run one iteration over every pending record."""
        if not self._records:
            return

        logger.debug("Polling %d pending deployment(s)", len(self._records))
        now = self._clock()

        for revision, record in list(self._records.items()):
            # A record re-tracked during an earlier await belongs to the next pass.
            if self._records.get(revision) is not record:
                continue
            elapsed_s = now - record.started_at

            if elapsed_s > self._max_wait_s:
                self._remove(revision)
                record_deployment("timeout")
                await self._on_timeout(record, elapsed_s)
                continue

            if (
                record.last_checked_at is not None
                and now - record.last_checked_at < self._poll_interval_s
            ):
                continue

            try:
                live = await self._oracle.is_revision_live(revision)
            except Exception:
                logger.warning("Error checking deployment %s", revision[:7], exc_info=True)
                continue
            record.last_checked_at = now

            if live and self._records.get(revision) is record:
                self._remove(revision)
                record_deployment("live", elapsed_s)
                await self._on_success(record, elapsed_s)

    def _remove(self, revision: str) -> None:
        self._records.pop(revision, None)
        deployments_pending.set(len(self._records))

    async def _on_success(self, record: DeploymentRecord, elapsed_s: float) -> None:
        elapsed_ms = int(elapsed_s * 1000)
        logger.info(
            "Deployment %s is live after %ds", record.commit_revision[:7], round(elapsed_s)
        )
        try:
            await self._sink.notify_success(record.notify_target, elapsed_ms)
        except Exception:
            logger.exception("Failed to send success notice for %s", record.commit_revision[:7])

        if self._audit is not None:
            await self._audit.log_deployment_complete(
                record.commit_revision,
                elapsed_ms,
                getattr(record.notify_target, "user_id", None) or "system",
                getattr(record.notify_target, "user_name", None),
            )

    async def _on_timeout(self, record: DeploymentRecord, elapsed_s: float) -> None:
        elapsed_ms = int(elapsed_s * 1000)
        logger.warning(
            "Deployment %s timed out after %ds", record.commit_revision[:7], round(elapsed_s)
        )
        try:
            await self._sink.notify_timeout(record.notify_target, elapsed_ms)
        except Exception:
            logger.exception("Failed to send timeout notice for %s", record.commit_revision[:7])

        if self._audit is not None:
            await self._audit.log(
                "Deployment Timeout",
                f"Deployment {record.commit_revision[:7]} timed out after "
                f"{round(elapsed_s / 60)} minutes",
                getattr(record.notify_target, "user_id", None) or "system",
                getattr(record.notify_target, "user_name", None),
            )
