"""Tests for sitekeeper.api.app — push webhook, health and metrics endpoints."""

from __future__ import annotations

import hashlib
import hmac
import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from sitekeeper.api.app import create_app, verify_signature
from sitekeeper.core.deployments import DeploymentStatus
from sitekeeper.core.scheduler import JobResult, SchedulerStatus

pytestmark = pytest.mark.unit

SECRET = "s3cret"
PUSH = json.dumps({"ref": "refs/heads/master"}).encode()


def _sign(body: bytes, secret: str = SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@pytest.fixture
def scheduler() -> MagicMock:
    mock = MagicMock()
    mock.trigger_repeating_events = AsyncMock(return_value=JobResult(job="repeating"))
    mock.status.return_value = SchedulerStatus(
        is_running=True,
        active_timer_names=["cleanup", "repeating"],
        next_runs={"cleanup": datetime(2025, 1, 14, 0, 0)},
        last_results={"repeating": JobResult(job="repeating", summary="No changes")},
    )
    return mock


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


async def _post(app, body: bytes, headers: dict[str, str]) -> httpx.Response:
    async with _client(app) as client:
        return await client.post("/webhook/github", content=body, headers=headers)


class TestVerifySignature:
    def test_valid(self):
        assert verify_signature(PUSH, _sign(PUSH), SECRET)

    def test_wrong_secret(self):
        assert not verify_signature(PUSH, _sign(PUSH, "other"), SECRET)

    def test_missing(self):
        assert not verify_signature(PUSH, None, SECRET)
        assert not verify_signature(PUSH, _sign(PUSH), None)


class TestWebhook:
    async def test_valid_push_triggers_processing(self, scheduler):
        app = create_app(scheduler, webhook_secret=SECRET)

        resp = await _post(
            app,
            PUSH,
            {"X-GitHub-Event": "push", "X-Hub-Signature-256": _sign(PUSH)},
        )

        assert resp.status_code == 202
        assert resp.text == "Accepted"
        scheduler.trigger_repeating_events.assert_awaited_once()

    async def test_bad_signature_rejected(self, scheduler):
        app = create_app(scheduler, webhook_secret=SECRET)

        resp = await _post(
            app,
            PUSH,
            {"X-GitHub-Event": "push", "X-Hub-Signature-256": _sign(PUSH, "wrong")},
        )

        assert resp.status_code == 401
        assert resp.text == "Invalid signature"
        scheduler.trigger_repeating_events.assert_not_awaited()

    async def test_other_branch_ignored(self, scheduler):
        body = json.dumps({"ref": "refs/heads/feature"}).encode()
        app = create_app(scheduler, webhook_secret=SECRET)

        resp = await _post(app, body, {"X-GitHub-Event": "push", "X-Hub-Signature-256": _sign(body)})

        assert resp.status_code == 200
        scheduler.trigger_repeating_events.assert_not_awaited()

    async def test_non_push_event_ignored(self, scheduler):
        app = create_app(scheduler, webhook_secret=SECRET)

        resp = await _post(app, PUSH, {"X-GitHub-Event": "ping"})

        assert resp.status_code == 200
        scheduler.trigger_repeating_events.assert_not_awaited()

    async def test_no_secret_configured_ignores_push(self, scheduler):
        app = create_app(scheduler)

        resp = await _post(app, PUSH, {"X-GitHub-Event": "push"})

        assert resp.status_code == 200
        scheduler.trigger_repeating_events.assert_not_awaited()

    async def test_invalid_json(self, scheduler):
        body = b"{not json"
        app = create_app(scheduler, webhook_secret=SECRET)

        resp = await _post(app, body, {"X-GitHub-Event": "push", "X-Hub-Signature-256": _sign(body)})

        assert resp.status_code == 400
        assert resp.text == "Invalid JSON"

    async def test_custom_path_and_branch(self, scheduler):
        body = json.dumps({"ref": "refs/heads/main"}).encode()
        app = create_app(
            scheduler, webhook_secret=SECRET, webhook_branch="refs/heads/main", webhook_path="/hook"
        )

        async with _client(app) as client:
            resp = await client.post(
                "/hook",
                content=body,
                headers={"X-GitHub-Event": "push", "X-Hub-Signature-256": _sign(body)},
            )

        assert resp.status_code == 202


class TestHealth:
    async def test_reports_scheduler_and_deployments(self, scheduler):
        tracker = MagicMock()
        tracker.status.return_value = [
            DeploymentStatus(revision="abc1234", elapsed_seconds=12, platform="telegram")
        ]
        app = create_app(scheduler, tracker)

        async with _client(app) as client:
            resp = await client.get("/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["scheduler"]["active_timer_names"] == ["cleanup", "repeating"]
        assert data["scheduler"]["next_runs"] == {"cleanup": "2025-01-14T00:00:00"}
        assert data["scheduler"]["last_results"]["repeating"]["summary"] == "No changes"
        assert data["deployments"] == [
            {"revision": "abc1234", "elapsed_seconds": 12, "platform": "telegram"}
        ]

    async def test_stopped_scheduler(self, scheduler):
        scheduler.status.return_value = SchedulerStatus(is_running=False, active_timer_names=[])
        app = create_app(scheduler)

        async with _client(app) as client:
            resp = await client.get("/health")

        assert resp.json()["status"] == "stopped"
        assert resp.json()["deployments"] == []


async def test_metrics_endpoint(scheduler):
    app = create_app(scheduler)

    async with _client(app) as client:
        resp = await client.get("/metrics")

    assert resp.status_code == 200
    assert "sitekeeper_job_runs_total" in resp.text
