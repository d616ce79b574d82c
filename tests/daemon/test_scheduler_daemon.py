"""Tests for sitekeeper.daemon — component wiring, startup and shutdown."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from sitekeeper.config import parse_config
from sitekeeper.daemon import SchedulerDaemon

pytestmark = pytest.mark.unit


def _config(**sections):
    data = {"github": {"owner": "org", "repo": "site", "token": "tok"}}
    data.update(sections)
    return parse_config(data)


async def test_start_and_shutdown_without_http_server():
    daemon = SchedulerDaemon(_config())

    await daemon.start()
    try:
        assert daemon.scheduler.is_running
        assert daemon.watcher is None
        assert daemon._server is None
    finally:
        await daemon.shutdown()

    assert not daemon.scheduler.is_running


async def test_start_with_poller_starts_watcher():
    daemon = SchedulerDaemon(_config(webhook={"poll_interval_s": 60}))

    with patch("sitekeeper.daemon.RevisionWatcher") as watcher_cls:
        watcher_cls.return_value.stop = AsyncMock()
        await daemon.start()
        await daemon.shutdown()

    args = watcher_cls.call_args.args
    assert args[1] == "data/repeating-events.json"
    assert args[3] == 60.0
    watcher_cls.return_value.start.assert_called_once()
    watcher_cls.return_value.stop.assert_awaited_once()


async def test_webhook_server_started_when_enabled():
    daemon = SchedulerDaemon(_config(webhook={"enabled": True, "port": 48123, "secret": "s"}))

    with patch("sitekeeper.daemon.uvicorn.Server") as server_cls:
        server_cls.return_value.serve = AsyncMock()
        await daemon.start()
        await daemon.shutdown()

    config = server_cls.call_args.args[0]
    assert config.port == 48123
    assert server_cls.return_value.should_exit is True


class TestTrackSchedulerCommits:
    def _daemon(self, **sections) -> SchedulerDaemon:
        daemon = SchedulerDaemon(_config(**sections))
        daemon.tracker = MagicMock()
        return daemon

    def test_disabled_by_default(self):
        daemon = self._daemon(audit={"telegram_token": "t", "channel_id": "-100"})

        daemon._track_scheduler_commit("abc1234")

        daemon.tracker.track.assert_not_called()

    def test_tracks_to_audit_channel(self):
        daemon = self._daemon(
            deployments={"track_scheduler_commits": True},
            audit={"telegram_token": "t", "channel_id": "-100"},
        )

        daemon._track_scheduler_commit("abc1234")

        revision, target = daemon.tracker.track.call_args.args
        assert revision == "abc1234"
        assert target.platform == "telegram"
        assert target.chat_id == "-100"
        assert target.user_name == "Event Scheduler"

    def test_needs_audit_channel(self):
        daemon = self._daemon(deployments={"track_scheduler_commits": True})

        daemon._track_scheduler_commit("abc1234")

        daemon.tracker.track.assert_not_called()
