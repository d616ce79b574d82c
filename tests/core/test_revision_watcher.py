"""Tests for sitekeeper.core.watcher — rules document change detection."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from sitekeeper.core.watcher import RevisionWatcher
from sitekeeper.storage.documents import DocumentStoreError, InMemoryDocumentStore

pytestmark = pytest.mark.unit

_real_sleep = asyncio.sleep
RULES = "data/repeating-events.json"


async def _fast_sleep(delay: float) -> None:
    await _real_sleep(0)


async def test_first_check_only_records_revision():
    store = InMemoryDocumentStore({RULES: []})
    on_change = AsyncMock()
    watcher = RevisionWatcher(store, RULES, on_change, 30)

    assert await watcher.check_once() is False
    assert watcher.last_revision is not None
    on_change.assert_not_awaited()


async def test_change_triggers_callback_once():
    store = InMemoryDocumentStore({RULES: []})
    on_change = AsyncMock()
    watcher = RevisionWatcher(store, RULES, on_change, 30)
    await watcher.check_once()

    doc = await store.get(RULES)
    await store.put(RULES, [{"locationId": "park"}], doc.revision, "edit")

    assert await watcher.check_once() is True
    assert await watcher.check_once() is False
    on_change.assert_awaited_once()


async def test_loop_survives_store_errors():
    store = AsyncMock()
    store.get.side_effect = DocumentStoreError("GitHub down")
    watcher = RevisionWatcher(store, RULES, AsyncMock(), 30)

    with patch("sitekeeper.core.watcher.asyncio.sleep", side_effect=_fast_sleep):
        watcher.start()
        for _ in range(5):
            await _real_sleep(0)
        await watcher.stop()

    assert store.get.await_count >= 2
    assert watcher.last_revision is None
