"""Event scheduler — daily cleanup and recurring-event materialization.

Two named jobs run once a day at fixed wall-clock times evaluated by croniter
in the configured timezone (``Europe/London`` by default):

- ``cleanup`` (00:00): prune past events and elapsed exclusion dates, both
  documents committed together in one batch
- ``repeating`` (00:05): materialize recurrence rules into the events document

Each job holds its own ``asyncio.Lock`` so a manual trigger that overlaps a
scheduled run waits for it instead of racing it to the same document.  A
failing job writes nothing, is reported through the audit logger and is
retried by its next tick.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from zoneinfo import ZoneInfo

from croniter import croniter
from opentelemetry import trace

from sitekeeper.core.materializer import format_audit_message, materialize
from sitekeeper.core.metrics import get_error_type, record_events_changed, record_job_run
from sitekeeper.core.models import split_events
from sitekeeper.core.pruner import prune_events, prune_exclusions
from sitekeeper.storage.documents import FileUpdate

if TYPE_CHECKING:
    from sitekeeper.config import SchedulerConfig
    from sitekeeper.core.audit import AuditLogger
    from sitekeeper.storage.documents import DocumentStore

logger = logging.getLogger(__name__)

CLEANUP_JOB = "cleanup"
REPEATING_JOB = "repeating"


@dataclass
class JobResult:
    """Outcome of one job run."""

    job: str
    changed: bool = False
    summary: str = ""
    commit: str | None = None
    error: str | None = None
    error_type: str | None = None
    finished_at: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SchedulerStatus:
    is_running: bool
    active_timer_names: list[str]
    next_runs: dict[str, datetime] = field(default_factory=dict)
    last_results: dict[str, JobResult] = field(default_factory=dict)


def next_fire_time(cron: str, now: datetime) -> datetime:
    """Next time *cron* fires after *now*, in *now*'s timezone."""
    return croniter(cron, now).get_next(datetime)


class EventScheduler:
    """Owns the daily jobs and their timers.

    Args:
        store: Document store holding the events and rules documents
        config: Scheduler settings (timezone, crons, windows, paths)
        audit: Audit logger for job summaries and failures
        on_commit: Optional callback receiving each commit sha a job produces
        clock: Returns the current aware time in the scheduler timezone
    """

    def __init__(
        self,
        store: DocumentStore,
        config: SchedulerConfig,
        audit: AuditLogger,
        *,
        on_commit: Callable[[str], Any] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._config = config
        self._audit = audit
        self._on_commit = on_commit
        self._tz = ZoneInfo(config.timezone)
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._crons = {CLEANUP_JOB: config.cleanup_cron, REPEATING_JOB: config.repeating_cron}
        self._locks = {name: asyncio.Lock() for name in self._crons}
        self._timers: dict[str, asyncio.Task] = {}
        self._next_runs: dict[str, datetime] = {}
        self._last_results: dict[str, JobResult] = {}
        self._inflight: set[asyncio.Task] = set()
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def _now(self) -> datetime:
        """Current local wall-clock time, naive, as stored in the data files."""
        return self._clock().astimezone(self._tz).replace(tzinfo=None)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start both daily timers; a no-op when already running."""
        if self._running:
            logger.warning("Event scheduler is already running")
            return

        for name in self._crons:
            self._timers[name] = asyncio.create_task(self._timer_loop(name), name=f"timer:{name}")
        self._running = True
        logger.info(
            "Event scheduler started (%s)",
            ", ".join(f"{name}={cron!r}" for name, cron in self._crons.items()),
        )

    async def stop(self) -> None:
        """Cancel both timers; in-flight job runs are left to finish."""
        if not self._running:
            logger.info("Event scheduler is not running")
            return

        for name, task in self._timers.items():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Stopped %s job", name)

        self._timers.clear()
        self._next_runs.clear()
        self._running = False
        logger.info("Event scheduler stopped")

    async def drain(self) -> None:
        """Wait for job runs that outlived ``stop()``."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)

    def status(self) -> SchedulerStatus:
        return SchedulerStatus(
            is_running=self._running,
            active_timer_names=[name for name, task in self._timers.items() if not task.done()],
            next_runs=dict(self._next_runs),
            last_results=dict(self._last_results),
        )

    async def _timer_loop(self, name: str) -> None:
        cron = self._crons[name]
        while True:
            now = self._clock()
            fire_at = next_fire_time(cron, now)
            self._next_runs[name] = fire_at
            # Same-tzinfo aware datetimes subtract as wall clock time.
            await asyncio.sleep(max(0.0, fire_at.timestamp() - now.timestamp()))

            logger.info("Running scheduled %s job", name)
            run = asyncio.create_task(self._run_job(name), name=f"job:{name}")
            self._inflight.add(run)
            run.add_done_callback(self._inflight.discard)
            # Shielded: cancelling the timer must not abort a run mid-write.
            await asyncio.shield(run)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def trigger_cleanup(self) -> JobResult:
        logger.info("Manually triggering event cleanup")
        return await self._run_job(CLEANUP_JOB)

    async def trigger_repeating_events(self) -> JobResult:
        logger.info("Manually triggering repeating events")
        return await self._run_job(REPEATING_JOB)

    async def _run_job(self, name: str) -> JobResult:
        job_fn = self.run_batch_cleanup if name == CLEANUP_JOB else self.process_repeating_events
        tracer = trace.get_tracer("sitekeeper")

        async with self._locks[name]:
            with tracer.start_as_current_span(f"sitekeeper.{name}") as span:
                try:
                    result = await job_fn()
                except Exception as exc:
                    logger.exception("Scheduler job %s failed", name)
                    span.record_exception(exc)
                    result = JobResult(job=name, error=str(exc), error_type=get_error_type(exc))
                    record_job_run(name, "error")
                    await self._audit.log_error(exc, _ERROR_TITLES[name])
                else:
                    record_job_run(name, "changed" if result.changed else "unchanged")
                span.set_attribute("changed", result.changed)

        result.finished_at = self._clock()
        self._last_results[name] = result

        if result.commit and self._on_commit is not None:
            try:
                self._on_commit(result.commit)
            except Exception:
                logger.exception("on_commit callback failed for %s", result.commit[:7])
        return result

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def run_batch_cleanup(self) -> JobResult:
        """Prune both documents and commit whatever changed in one commit.

        Store errors propagate; :meth:`_run_job` turns them into a failed result.
        """
        cfg = self._config
        now = self._now()
        updates: list[FileUpdate] = []
        message_parts: list[str] = []
        audit_details: list[str] = []

        events_doc = await self._store.get(cfg.events_path)
        if isinstance(events_doc.data, list) and events_doc.data:
            events, unreadable = split_events(events_doc.data)
            if unreadable:
                logger.warning("Dropping %d event(s) with an unreadable datetime", len(unreadable))
            pruned = prune_events(events, now, cfg.retention_days)
            removed = pruned.removed_count + len(unreadable)
            if removed:
                updates.append(
                    FileUpdate(
                        cfg.events_path,
                        [event.to_wire() for event in pruned.kept],
                        events_doc.revision,
                    )
                )
                message_parts.append(f"remove {removed} old event(s)")
                audit_details.append(
                    f"Removed {removed} events older than {cfg.retention_days} days"
                )
                record_events_changed(CLEANUP_JOB, "pruned", removed)
        else:
            logger.info("No events to clean up")

        rules_doc = await self._store.get(cfg.rules_path)
        if isinstance(rules_doc.data, list) and rules_doc.data:
            exclusions = prune_exclusions(rules_doc.data, now.date())
            if exclusions.removed_count:
                updates.append(FileUpdate(cfg.rules_path, exclusions.rules, rules_doc.revision))
                message_parts.append(f"remove {exclusions.removed_count} old excluded date(s)")
                audit_details.append(
                    f"Removed {exclusions.removed_count} excluded dates that have passed"
                )
                record_events_changed(CLEANUP_JOB, "exclusions_pruned", exclusions.removed_count)
        else:
            logger.info("No repeating events to process for excluded dates cleanup")

        if not updates:
            logger.info("No cleanup changes needed")
            return JobResult(job=CLEANUP_JOB, summary="No cleanup changes needed")

        message = f"Cleanup: {', '.join(message_parts)}"
        if cfg.dry_run:
            logger.info("Dry run, not committing: %s", message)
            return JobResult(job=CLEANUP_JOB, changed=True, summary=message)

        commit = await self._store.batch_put(updates, message)
        logger.info("Batch cleanup completed: %s", message)
        await self._audit.log("Batch Cleanup", "\n".join(audit_details))
        return JobResult(job=CLEANUP_JOB, changed=True, summary=message, commit=commit)

    async def process_repeating_events(self) -> JobResult:
        """Materialize recurrence rules into the events document."""
        cfg = self._config
        rules_doc = await self._store.get(cfg.rules_path)
        if not isinstance(rules_doc.data, list) or not rules_doc.data:
            logger.info("No repeating events configured")
            return JobResult(job=REPEATING_JOB, summary="No repeating events configured")

        events_doc = await self._store.get(cfg.events_path)
        events, unreadable = split_events(events_doc.data)
        if unreadable:
            logger.warning(
                "Keeping %d event(s) with an unreadable datetime as they are", len(unreadable)
            )

        changeset = materialize(rules_doc.data, events, self._now(), cfg.advance_weeks * 7)
        for skipped in changeset.skipped_rules:
            await self._audit.log(
                "Repeating Event Skipped",
                f"Rule {skipped.name!r} (#{skipped.index}) was skipped: {skipped.reason}",
            )

        if changeset.is_empty:
            logger.info("No repeating events changes needed")
            return JobResult(job=REPEATING_JOB, summary="No repeating events changes needed")

        message = changeset.commit_message()
        if cfg.dry_run:
            logger.info("Dry run, not committing: %s", message)
            return JobResult(job=REPEATING_JOB, changed=True, summary=message)

        commit = await self._store.put(
            cfg.events_path,
            [event.to_wire() for event in changeset.merged_events] + unreadable,
            events_doc.revision,
            message,
        )
        record_events_changed(REPEATING_JOB, "added", len(changeset.to_add))
        record_events_changed(REPEATING_JOB, "removed", len(changeset.to_remove))
        logger.info(
            "Processed repeating events: %d added, %d removed",
            len(changeset.to_add),
            len(changeset.to_remove),
        )
        await self._audit.log(
            "Repeating Events", format_audit_message(changeset, cfg.advance_weeks)
        )
        return JobResult(job=REPEATING_JOB, changed=True, summary=message, commit=commit)


_ERROR_TITLES = {
    CLEANUP_JOB: "Batch Cleanup Error",
    REPEATING_JOB: "Repeating Events Error",
}
