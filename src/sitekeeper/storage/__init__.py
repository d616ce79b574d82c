"""JSON document storage for the site's data files."""

from sitekeeper.storage.documents import (
    Document,
    DocumentConflictError,
    DocumentNotFoundError,
    DocumentStore,
    DocumentStoreError,
    FileUpdate,
    InMemoryDocumentStore,
    dump_document,
)

__all__ = [
    "Document",
    "DocumentConflictError",
    "DocumentNotFoundError",
    "DocumentStore",
    "DocumentStoreError",
    "FileUpdate",
    "InMemoryDocumentStore",
    "dump_document",
]
