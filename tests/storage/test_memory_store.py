"""Tests for the in-memory document store."""

from __future__ import annotations

import pytest

from sitekeeper.storage import (
    DocumentConflictError,
    DocumentNotFoundError,
    FileUpdate,
    InMemoryDocumentStore,
    dump_document,
)

pytestmark = pytest.mark.unit


async def test_get_returns_copy_and_revision():
    store = InMemoryDocumentStore({"data/times.json": [{"locationId": "park"}]})

    doc = await store.get("data/times.json")
    doc.data.append("mutated")

    assert store.snapshot("data/times.json") == [{"locationId": "park"}]
    assert len(doc.revision) == 40


async def test_get_missing_raises():
    store = InMemoryDocumentStore()

    with pytest.raises(DocumentNotFoundError) as excinfo:
        await store.get("data/nope.json")
    assert excinfo.value.path == "data/nope.json"


async def test_put_with_stale_revision_conflicts():
    store = InMemoryDocumentStore({"a.json": [1]})
    doc = await store.get("a.json")
    await store.put("a.json", [1, 2], doc.revision, "first")

    with pytest.raises(DocumentConflictError):
        await store.put("a.json", [1, 3], doc.revision, "second")
    assert store.snapshot("a.json") == [1, 2]


async def test_put_creates_new_document_without_revision():
    store = InMemoryDocumentStore()

    commit = await store.put("new.json", {"x": 1}, None, "create")

    assert commit == "commit-1"
    assert store.snapshot("new.json") == {"x": 1}


async def test_batch_put_is_all_or_nothing():
    store = InMemoryDocumentStore({"a.json": [1], "b.json": [2]})
    a = await store.get("a.json")

    with pytest.raises(DocumentConflictError):
        await store.batch_put(
            [FileUpdate("a.json", [10], a.revision), FileUpdate("b.json", [20], "stale")],
            "both",
        )

    assert store.snapshot("a.json") == [1]
    assert store.commits == []


async def test_batch_put_commits_once():
    store = InMemoryDocumentStore({"a.json": [1], "b.json": [2]})
    a, b = await store.get("a.json"), await store.get("b.json")

    commit = await store.batch_put(
        [FileUpdate("a.json", [10], a.revision), FileUpdate("b.json", [20], b.revision)],
        "both",
    )

    assert commit == "commit-1"
    assert store.commits == [("both", ["a.json", "b.json"])]


async def test_batch_put_rejects_empty():
    with pytest.raises(ValueError):
        await InMemoryDocumentStore().batch_put([], "nothing")


def test_dump_document_uses_four_space_indent_and_keeps_unicode():
    assert dump_document({"about": "café"}) == '{\n    "about": "café"\n}'
