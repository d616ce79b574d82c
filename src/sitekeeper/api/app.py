"""HTTP surface of the scheduler daemon.

- ``POST {webhook_path}``: GitHub push webhook.  Pushes to the watched branch
  trigger recurring-event materialization in the background.  The body must
  carry a valid ``X-Hub-Signature-256`` (HMAC-SHA256 over the raw body with
  the shared secret).  Materialization is idempotent, so every push to the
  branch triggers it.
- ``GET /health``: scheduler state and pending deployments
- ``GET /metrics``: Prometheus exposition
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import TYPE_CHECKING, Any

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

if TYPE_CHECKING:
    from sitekeeper.core.deployments import DeploymentTracker
    from sitekeeper.core.scheduler import EventScheduler

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
EVENT_HEADER = "X-GitHub-Event"


def verify_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """Check a ``sha256=<hex>`` GitHub webhook signature in constant time."""
    if not signature or not secret:
        return False
    expected = "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))


async def _run_trigger(scheduler: EventScheduler) -> None:
    result = await scheduler.trigger_repeating_events()
    if not result.ok:
        logger.error("Webhook-triggered repeating events failed: %s", result.error)


def create_app(
    scheduler: EventScheduler,
    tracker: DeploymentTracker | None = None,
    *,
    webhook_secret: str | None = None,
    webhook_branch: str = "refs/heads/master",
    webhook_path: str = "/webhook/github",
) -> FastAPI:
    """Build the FastAPI app bound to a running scheduler (and tracker)."""
    app = FastAPI(title="sitekeeper")

    @app.post(webhook_path)
    async def github_webhook(request: Request, background: BackgroundTasks) -> Response:
        body = await request.body()
        event = request.headers.get(EVENT_HEADER)

        if event != "push":
            return PlainTextResponse("OK")

        if not webhook_secret:
            logger.warning("Webhook received but no webhook secret is configured; ignoring")
            return PlainTextResponse("OK")

        if not verify_signature(body, request.headers.get(SIGNATURE_HEADER), webhook_secret):
            logger.warning("Webhook signature verification failed")
            return PlainTextResponse("Invalid signature", status_code=401)

        try:
            payload: Any = json.loads(body)
        except ValueError:
            return PlainTextResponse("Invalid JSON", status_code=400)

        ref = payload.get("ref") if isinstance(payload, dict) else None
        if ref != webhook_branch:
            logger.debug("Ignoring push to %s", ref)
            return PlainTextResponse("OK")

        logger.info("Webhook: push to %s, triggering repeating events processing", ref)
        background.add_task(_run_trigger, scheduler)
        return PlainTextResponse("Accepted", status_code=202)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        status = scheduler.status()
        return {
            "status": "healthy" if status.is_running else "stopped",
            "scheduler": {
                "is_running": status.is_running,
                "active_timer_names": status.active_timer_names,
                "next_runs": {name: at.isoformat() for name, at in status.next_runs.items()},
                "last_results": {
                    name: {
                        "changed": result.changed,
                        "summary": result.summary,
                        "commit": result.commit,
                        "error": result.error,
                    }
                    for name, result in status.last_results.items()
                },
            },
            "deployments": [
                {
                    "revision": item.revision,
                    "elapsed_seconds": item.elapsed_seconds,
                    "platform": item.platform,
                }
                for item in (tracker.status() if tracker is not None else [])
            ],
        }

    @app.get("/metrics")
    async def metrics() -> Response:
        return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)

    return app
