"""JSON document store abstraction with optimistic concurrency.

Documents are whole JSON values addressed by a repository path
(e.g. ``data/times.json``).  Every read returns a ``revision`` token and every
write must present the revision it was derived from; a stale token is rejected
with :class:`DocumentConflictError` instead of silently overwriting a
concurrent change.

The GitHub-backed implementation lives in :mod:`sitekeeper.storage.github`.
:class:`InMemoryDocumentStore` is the in-process backend used by tests and
dry runs.
"""

from __future__ import annotations

import copy
import hashlib
import json
from dataclasses import dataclass
from typing import Any, NamedTuple, Protocol


class Document(NamedTuple):
    """A JSON document together with the revision it was read at."""

    data: Any
    revision: str


@dataclass(frozen=True)
class FileUpdate:
    """One file in a batched write."""

    path: str
    data: Any
    revision: str | None = None


class DocumentStore(Protocol):
    """Protocol for JSON document backends."""

    async def get(self, path: str) -> Document:
        """Read the document at *path*.

        Raises:
            DocumentNotFoundError: If no document exists at *path*
            DocumentStoreError: If the backend is unreachable or returns garbage
        """
        ...

    async def put(self, path: str, data: Any, revision: str | None, message: str) -> str:
        """Replace the document at *path* and return the new commit revision.

        Raises:
            DocumentConflictError: If *revision* is stale
            DocumentStoreError: On any other backend failure
        """
        ...

    async def batch_put(self, files: list[FileUpdate], message: str) -> str:
        """Atomically replace several documents in a single commit.

        Either every file is updated or none is.

        Raises:
            ValueError: If *files* is empty
            DocumentConflictError: If any revision is stale or the branch moved
            DocumentStoreError: On any other backend failure
        """
        ...


class DocumentStoreError(Exception):
    """Raised when the document backend is unreachable or misbehaves."""

    def __init__(self, message: str, *, path: str | None = None):
        self.path = path
        super().__init__(message)


class DocumentNotFoundError(DocumentStoreError):
    """Raised when a document does not exist."""

    def __init__(self, path: str):
        super().__init__(f"Document not found: {path}", path=path)


class DocumentConflictError(DocumentStoreError):
    """Raised when a write carries a stale revision."""

    def __init__(self, path: str, revision: str | None = None):
        self.revision = revision
        super().__init__(f"Stale revision {revision!r} for {path}", path=path)


def dump_document(data: Any) -> str:
    """Serialize *data* the way the site's data files are laid out."""
    return json.dumps(data, indent=4, ensure_ascii=False)


def _revision_for(data: Any) -> str:
    return hashlib.sha1(dump_document(data).encode("utf-8")).hexdigest()


class InMemoryDocumentStore:
    """Dict-backed document store that enforces revision checks.

    Revisions are content hashes so identical content always carries the same
    token.  Each successful write bumps a commit counter and returns a
    synthetic commit id.

    Args:
        documents: Optional initial ``{path: data}`` mapping
    """

    def __init__(self, documents: dict[str, Any] | None = None):
        self._documents: dict[str, Any] = {}
        self._revisions: dict[str, str] = {}
        self.commits: list[tuple[str, list[str]]] = []
        for path, data in (documents or {}).items():
            self._store(path, data)

    def _store(self, path: str, data: Any) -> None:
        self._documents[path] = copy.deepcopy(data)
        self._revisions[path] = _revision_for(data)

    def _check(self, path: str, revision: str | None) -> None:
        current = self._revisions.get(path)
        if current is not None and revision != current:
            raise DocumentConflictError(path, revision)

    def _commit(self, message: str, paths: list[str]) -> str:
        self.commits.append((message, paths))
        return f"commit-{len(self.commits)}"

    async def get(self, path: str) -> Document:
        if path not in self._documents:
            raise DocumentNotFoundError(path)
        return Document(copy.deepcopy(self._documents[path]), self._revisions[path])

    async def put(self, path: str, data: Any, revision: str | None, message: str) -> str:
        self._check(path, revision)
        self._store(path, data)
        return self._commit(message, [path])

    async def batch_put(self, files: list[FileUpdate], message: str) -> str:
        if not files:
            raise ValueError("No files provided for batch update")
        for update in files:
            self._check(update.path, update.revision)
        for update in files:
            self._store(update.path, update.data)
        return self._commit(message, [update.path for update in files])

    def snapshot(self, path: str) -> Any:
        """Return a copy of the stored document without a revision."""
        return copy.deepcopy(self._documents[path])
