"""Scheduler daemon — wires the long-running sitekeeper process together.

Startup:
1. Build the GitHub document store and the audit logger
2. Build the deployment tracker (Pages oracle + chat notifier)
3. Build the event scheduler and start its daily timers
4. Start the webhook/health server (when enabled)
5. Start the rules-document revision watcher (when a poll interval is set)

Graceful shutdown reverses the order: stop watcher, stop HTTP server, stop
scheduler timers and let in-flight jobs finish, cancel the deployment poll
loop, close HTTP clients.
"""

from __future__ import annotations

import asyncio
import logging

import uvicorn

from sitekeeper.api.app import create_app
from sitekeeper.config import SitekeeperConfig
from sitekeeper.connectors.notify import ChatNotifier, NotifyTarget
from sitekeeper.core.audit import SYSTEM_ACTOR_ID, SYSTEM_ACTOR_NAME, AuditLogger
from sitekeeper.core.deployments import DeploymentTracker
from sitekeeper.core.scheduler import EventScheduler
from sitekeeper.core.watcher import RevisionWatcher
from sitekeeper.storage.github import GitHubDocumentStore, GitHubPagesOracle

logger = logging.getLogger(__name__)


def build_store(config: SitekeeperConfig) -> GitHubDocumentStore:
    gh = config.github
    return GitHubDocumentStore(gh.owner, gh.repo, gh.token, branch=gh.branch, api_base=gh.api_base)


def build_audit(config: SitekeeperConfig) -> AuditLogger:
    return AuditLogger(config.audit.telegram_token, config.audit.channel_id, platform="scheduler")


class SchedulerDaemon:
    """Owns every long-lived component of the scheduler process."""

    def __init__(self, config: SitekeeperConfig) -> None:
        self.config = config
        self.store: GitHubDocumentStore | None = None
        self.audit: AuditLogger | None = None
        self.oracle: GitHubPagesOracle | None = None
        self.notifier: ChatNotifier | None = None
        self.tracker: DeploymentTracker | None = None
        self.scheduler: EventScheduler | None = None
        self.watcher: RevisionWatcher | None = None
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task | None = None

    async def start(self) -> None:
        cfg = self.config

        # 1. Store and audit
        self.store = build_store(cfg)
        self.audit = build_audit(cfg)

        # 2. Deployment tracker
        self.oracle = GitHubPagesOracle(
            cfg.github.owner,
            cfg.github.repo,
            cfg.github.token,
            cfg.deployments.website_url,
            api_base=cfg.github.api_base,
        )
        self.notifier = ChatNotifier(
            cfg.deployments.website_url,
            cfg.deployments.repo_url,
            telegram_token=cfg.notify.telegram_token or cfg.audit.telegram_token,
            discord_token=cfg.notify.discord_token,
        )
        self.tracker = DeploymentTracker(
            self.oracle,
            self.notifier,
            poll_interval_s=cfg.deployments.poll_interval_s,
            max_wait_s=cfg.deployments.max_wait_s,
            audit=self.audit,
        )

        # 3. Scheduler
        self.scheduler = EventScheduler(
            self.store,
            cfg.scheduler,
            self.audit,
            on_commit=self._track_scheduler_commit,
        )
        self.scheduler.start()

        # 4. Webhook / health server
        if cfg.webhook.enabled:
            await self._start_http_server()

        # 5. Fallback revision watcher
        if cfg.webhook.poll_interval_s > 0:
            self.watcher = RevisionWatcher(
                self.store,
                cfg.scheduler.rules_path,
                self.scheduler.trigger_repeating_events,
                cfg.webhook.poll_interval_s,
            )
            self.watcher.start()

        logger.info("sitekeeper started for %s/%s", cfg.github.owner, cfg.github.repo)

    def _track_scheduler_commit(self, revision: str) -> None:
        cfg = self.config
        if not cfg.deployments.track_scheduler_commits or self.tracker is None:
            return
        if not cfg.audit.channel_id:
            logger.debug("No audit channel to report deployment %s to", revision[:7])
            return
        self.tracker.track(
            revision,
            NotifyTarget(
                platform="telegram",
                chat_id=cfg.audit.channel_id,
                user_id=SYSTEM_ACTOR_ID,
                user_name=SYSTEM_ACTOR_NAME,
            ),
        )

    async def _start_http_server(self) -> None:
        cfg = self.config.webhook
        app = create_app(
            self.scheduler,
            self.tracker,
            webhook_secret=cfg.secret,
            webhook_branch=cfg.branch,
            webhook_path=cfg.path,
        )
        server_config = uvicorn.Config(
            app,
            host=cfg.host,
            port=cfg.port,
            log_level="warning",
            timeout_graceful_shutdown=0,
        )
        self._server = uvicorn.Server(server_config)
        self._server_task = asyncio.create_task(self._server.serve())
        logger.info("Webhook server listening on %s:%d%s", cfg.host, cfg.port, cfg.path)

    async def shutdown(self) -> None:
        logger.info("Shutting down sitekeeper")

        if self.watcher is not None:
            await self.watcher.stop()

        if self._server is not None:
            self._server.should_exit = True
        if self._server_task is not None:
            try:
                await self._server_task
            except Exception:
                logger.exception("Error while stopping webhook server")
            self._server_task = None
            self._server = None

        if self.scheduler is not None:
            await self.scheduler.stop()
            await self.scheduler.drain()

        if self.tracker is not None:
            await self.tracker.aclose()

        for closable in (self.notifier, self.oracle, self.audit, self.store):
            if closable is not None:
                await closable.aclose()

        logger.info("sitekeeper shutdown complete")
