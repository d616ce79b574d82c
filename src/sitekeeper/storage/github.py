"""GitHub-backed document store and GitHub Pages liveness oracle.

Documents are JSON files in a repository branch.  Single-file writes go
through the Contents API (``PUT /repos/{owner}/{repo}/contents/{path}``) and
carry the file's blob sha as the optimistic-concurrency revision.  Multi-file
writes go through the Git Data API (blobs → tree → commit → non-forced ref
update) so that either every file lands in one commit or nothing does.

The liveness oracle answers "is the site built from this commit yet?" by
probing the published site and the Pages builds feed.
"""

from __future__ import annotations

import base64
import json
import logging
import time
from datetime import datetime
from typing import Any

import httpx

from sitekeeper.core.metrics import record_store_request
from sitekeeper.storage.documents import (
    Document,
    DocumentConflictError,
    DocumentNotFoundError,
    DocumentStoreError,
    FileUpdate,
    dump_document,
)

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
USER_AGENT = "sitekeeper"


def github_headers(token: str | None) -> dict[str, str]:
    """Standard REST headers for api.github.com."""
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": USER_AGENT,
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _encode(data: Any) -> str:
    return base64.b64encode(dump_document(data).encode("utf-8")).decode("ascii")


class GitHubDocumentStore:
    """JSON documents stored as files on one branch of a GitHub repository.

    Args:
        owner: Repository owner (user or organisation)
        repo: Repository name
        token: Token with ``contents:write`` on the repository
        branch: Branch that holds the data files
        api_base: REST API root (overridable for GitHub Enterprise)
        http_client: Optional pre-built client (tests inject a MockTransport)
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str | None,
        *,
        branch: str = "master",
        api_base: str = GITHUB_API_BASE,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owner = owner
        self._repo = repo
        self._branch = branch
        self._api_base = api_base.rstrip("/")
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=30.0)
        self._headers = github_headers(token)

    @property
    def _repo_url(self) -> str:
        return f"{self._api_base}/repos/{self._owner}/{self._repo}"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            raise DocumentStoreError(f"GitHub request failed: {method} {url}: {exc}") from exc

    @staticmethod
    def _json(resp: httpx.Response, *, path: str | None = None) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise DocumentStoreError(
                f"Malformed GitHub response ({resp.status_code})", path=path
            ) from exc

    @staticmethod
    def _fail(resp: httpx.Response, what: str, *, path: str | None = None) -> DocumentStoreError:
        return DocumentStoreError(
            f"Failed to {what}: HTTP {resp.status_code} {resp.text[:200]}", path=path
        )

    # ------------------------------------------------------------------
    # Contents API
    # ------------------------------------------------------------------

    async def get(self, path: str) -> Document:
        """Fetch and decode a JSON file from the configured branch."""
        resp = await self._request(
            "GET", f"{self._repo_url}/contents/{path}", params={"ref": self._branch}
        )
        if resp.status_code == 404:
            record_store_request("get", "not_found")
            raise DocumentNotFoundError(path)
        if resp.status_code != 200:
            record_store_request("get", "error")
            raise self._fail(resp, f"fetch {path}", path=path)

        body = self._json(resp, path=path)
        try:
            raw = base64.b64decode(body["content"]).decode("utf-8")
            data = json.loads(raw)
            revision = body["sha"]
        except (KeyError, TypeError, ValueError) as exc:
            record_store_request("get", "error")
            raise DocumentStoreError(f"Failed to decode {path}: {exc}", path=path) from exc

        record_store_request("get", "success")
        return Document(data, revision)

    async def put(self, path: str, data: Any, revision: str | None, message: str) -> str:
        """Write *data* to *path*, returning the new commit sha."""
        payload: dict[str, Any] = {
            "message": message,
            "content": _encode(data),
            "branch": self._branch,
        }
        if revision is not None:
            payload["sha"] = revision

        resp = await self._request("PUT", f"{self._repo_url}/contents/{path}", json=payload)
        if resp.status_code in (409, 422):
            record_store_request("put", "conflict")
            raise DocumentConflictError(path, revision)
        if resp.status_code not in (200, 201):
            record_store_request("put", "error")
            raise self._fail(resp, f"update {path}", path=path)

        body = self._json(resp, path=path)
        try:
            commit_sha: str = body["commit"]["sha"]
        except (KeyError, TypeError) as exc:
            record_store_request("put", "error")
            raise DocumentStoreError(f"Missing commit sha updating {path}", path=path) from exc

        record_store_request("put", "success")
        logger.info("Committed %s as %s", path, commit_sha[:7])
        return commit_sha

    # ------------------------------------------------------------------
    # Git Data API (atomic multi-file commit)
    # ------------------------------------------------------------------

    async def _current_blob_sha(self, path: str, ref: str) -> str | None:
        resp = await self._request("GET", f"{self._repo_url}/contents/{path}", params={"ref": ref})
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise self._fail(resp, f"inspect {path}", path=path)
        return self._json(resp, path=path).get("sha")

    async def batch_put(self, files: list[FileUpdate], message: str) -> str:
        """Commit every file in *files* together, returning the commit sha."""
        if not files:
            raise ValueError("No files provided for batch update")

        try:
            commit_sha = await self._batch_put(files, message)
        except DocumentConflictError:
            record_store_request("batch_put", "conflict")
            raise
        except DocumentStoreError:
            record_store_request("batch_put", "error")
            raise
        except (KeyError, TypeError) as exc:
            record_store_request("batch_put", "error")
            raise DocumentStoreError(f"Malformed Git Data API response: {exc}") from exc

        record_store_request("batch_put", "success")
        logger.info(
            "Committed %d file(s) as %s: %s",
            len(files),
            commit_sha[:7],
            ", ".join(update.path for update in files),
        )
        return commit_sha

    async def _batch_put(self, files: list[FileUpdate], message: str) -> str:
        ref_url = f"{self._repo_url}/git/ref/heads/{self._branch}"
        resp = await self._request("GET", ref_url)
        if resp.status_code != 200:
            raise self._fail(resp, f"read ref heads/{self._branch}")
        head_sha = self._json(resp)["object"]["sha"]

        resp = await self._request("GET", f"{self._repo_url}/git/commits/{head_sha}")
        if resp.status_code != 200:
            raise self._fail(resp, f"read commit {head_sha}")
        base_tree = self._json(resp)["tree"]["sha"]

        for update in files:
            if update.revision is None:
                continue
            current = await self._current_blob_sha(update.path, head_sha)
            if current != update.revision:
                raise DocumentConflictError(update.path, update.revision)

        tree_entries = []
        for update in files:
            resp = await self._request(
                "POST",
                f"{self._repo_url}/git/blobs",
                json={"content": _encode(update.data), "encoding": "base64"},
            )
            if resp.status_code != 201:
                raise self._fail(resp, f"create blob for {update.path}", path=update.path)
            tree_entries.append(
                {
                    "path": update.path,
                    "mode": "100644",
                    "type": "blob",
                    "sha": self._json(resp)["sha"],
                }
            )

        resp = await self._request(
            "POST",
            f"{self._repo_url}/git/trees",
            json={"base_tree": base_tree, "tree": tree_entries},
        )
        if resp.status_code != 201:
            raise self._fail(resp, "create tree")
        tree_sha = self._json(resp)["sha"]

        resp = await self._request(
            "POST",
            f"{self._repo_url}/git/commits",
            json={"message": message, "tree": tree_sha, "parents": [head_sha]},
        )
        if resp.status_code != 201:
            raise self._fail(resp, "create commit")
        commit_sha: str = self._json(resp)["sha"]

        # Non-forced: GitHub answers 422 when the branch is no longer at head_sha.
        resp = await self._request(
            "PATCH",
            f"{self._repo_url}/git/refs/heads/{self._branch}",
            json={"sha": commit_sha, "force": False},
        )
        if resp.status_code == 422:
            raise DocumentConflictError(f"refs/heads/{self._branch}", head_sha)
        if resp.status_code != 200:
            raise self._fail(resp, f"update ref heads/{self._branch}")

        return commit_sha


def _parse_github_time(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class GitHubPagesOracle:
    """Decides whether a commit's content is live on the GitHub Pages site.

    A revision counts as live when the site answers and the latest Pages
    build is ``built`` and either is for that commit or was created after the
    commit was authored.

    Args:
        owner: Repository owner
        repo: Repository name
        token: Token able to read Pages builds
        website_url: Published site root, with trailing slash
        probe_path: Site-relative file fetched to confirm the site answers
        http_client: Optional pre-built client
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str | None,
        website_url: str,
        *,
        probe_path: str = "data/about.json",
        api_base: str = GITHUB_API_BASE,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._repo_url = f"{api_base.rstrip('/')}/repos/{owner}/{repo}"
        self._website_url = website_url if website_url.endswith("/") else f"{website_url}/"
        self._probe_path = probe_path
        self._headers = github_headers(token)
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=15.0)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def is_revision_live(self, revision: str) -> bool:
        try:
            return await self._check(revision)
        except (httpx.HTTPError, KeyError, TypeError, ValueError):
            logger.warning("Liveness check failed for %s", revision[:7], exc_info=True)
            return False

    async def _check(self, revision: str) -> bool:
        probe = await self._http.get(
            f"{self._website_url}{self._probe_path}",
            params={"t": str(int(time.time() * 1000))},
            headers={"Cache-Control": "no-cache", "Pragma": "no-cache"},
        )
        if not probe.is_success:
            return False

        resp = await self._http.get(f"{self._repo_url}/pages/builds", headers=self._headers)
        if not resp.is_success:
            logger.info("Pages builds request returned %d", resp.status_code)
            return False

        builds = resp.json()
        if not builds:
            return False
        latest = builds[0]
        logger.debug(
            "Latest Pages build %s (%s), waiting for %s",
            str(latest.get("commit", ""))[:7],
            latest.get("status"),
            revision[:7],
        )

        if latest.get("status") != "built":
            return False
        if latest.get("commit") == revision:
            return True

        resp = await self._http.get(f"{self._repo_url}/commits/{revision}", headers=self._headers)
        if not resp.is_success:
            return False
        authored_at = _parse_github_time(resp.json()["commit"]["author"]["date"])
        built_at = _parse_github_time(latest["created_at"])
        return built_at > authored_at
