"""
Remote file store backed by the GitHub Contents API.

The insights document is a single file in a repository. Reads return the
decoded content together with the blob SHA; writes must send that SHA back,
and GitHub rejects the commit when the file moved on in the meantime.
"""

import base64
import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from app.config import Settings
from app.exceptions import ConflictError, UpstreamUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteFile:
    content: str
    version: str


class RemoteFileStore(ABC):
    """A single versioned file"""

    @abstractmethod
    async def read_file(self) -> Optional[RemoteFile]:
        """Return the file, or None when it does not exist yet"""

    @abstractmethod
    async def write_file(
        self, content: str, expected_version: Optional[str], message: str
    ) -> str:
        """Replace the file if ``expected_version`` is still current.

        Returns the new version token. Raises ConflictError when the token
        is stale.
        """

    def describe(self) -> Dict[str, Any]:
        return {"backend": type(self).__name__}


class GitHubContentsStore(RemoteFileStore):
    """Read/write one repository file through ``/repos/{owner}/{repo}/contents``"""

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        path: str,
        branch: str = "main",
        api_url: str = "https://api.github.com",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.owner = owner
        self.repo = repo
        self.path = path.lstrip("/")
        self.branch = branch
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    @property
    def contents_url(self) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}/contents/{self.path}"

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "insights-cms",
        }
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            headers=self._headers(), timeout=self.timeout, transport=self._transport
        )

    async def read_file(self) -> Optional[RemoteFile]:
        try:
            async with self._client() as client:
                r = await client.get(self.contents_url, params={"ref": self.branch})
        except httpx.HTTPError as e:
            logger.error("GitHub read of %s failed: %s", self.path, e)
            raise UpstreamUnavailableError(f"GitHub unreachable: {e}") from e

        if r.status_code == 404:
            logger.info("Insights file %s not found in %s/%s", self.path, self.owner, self.repo)
            return None
        if not r.is_success:
            logger.error("GitHub API error on read: %s %s", r.status_code, r.text[:500])
            raise UpstreamUnavailableError(
                f"GitHub read failed with status {r.status_code}", upstream_status=r.status_code
            )

        try:
            data = r.json()
            sha = data["sha"]
            encoding = data.get("encoding")
            if encoding == "base64":
                raw = base64.b64decode(data.get("content") or "")
                return RemoteFile(content=raw.decode("utf-8"), version=sha)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            raise UpstreamUnavailableError(f"Unexpected GitHub contents payload: {e}") from e

        # files over 1 MB come back with encoding "none" and no content
        logger.info("Insights file %s served without inline content (encoding=%r), "
                    "fetching blob %s", self.path, encoding, sha)
        return RemoteFile(content=await self._read_blob(sha), version=sha)

    @property
    def blob_url(self) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}/git/blobs"

    async def _read_blob(self, sha: str) -> str:
        """Raw content of the blob ``sha``, so it always matches the version"""
        try:
            async with self._client() as client:
                r = await client.get(
                    f"{self.blob_url}/{sha}",
                    headers={"Accept": "application/vnd.github.raw"},
                )
        except httpx.HTTPError as e:
            logger.error("GitHub blob read of %s failed: %s", self.path, e)
            raise UpstreamUnavailableError(f"GitHub unreachable: {e}") from e

        if not r.is_success:
            logger.error("GitHub API error on blob read: %s %s", r.status_code, r.text[:500])
            raise UpstreamUnavailableError(
                f"GitHub blob read failed with status {r.status_code}", upstream_status=r.status_code
            )
        try:
            return r.content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise UpstreamUnavailableError(f"Insights blob is not UTF-8: {e}") from e

    async def write_file(
        self, content: str, expected_version: Optional[str], message: str
    ) -> str:
        payload = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": self.branch,
        }
        if expected_version:
            payload["sha"] = expected_version

        try:
            async with self._client() as client:
                r = await client.put(self.contents_url, json=payload)
        except httpx.HTTPError as e:
            # never retried here: the commit may or may not have landed
            logger.error("GitHub write of %s failed: %s", self.path, e)
            raise UpstreamUnavailableError(f"GitHub unreachable: {e}") from e

        if r.status_code == 409 or (r.status_code == 422 and "sha" in r.text.lower()):
            logger.warning("GitHub rejected write of %s: version %s is stale",
                           self.path, expected_version)
            raise ConflictError("The insights file was changed by another writer")
        if not r.is_success:
            logger.error("GitHub update failed: %s %s", r.status_code, r.text[:500])
            raise UpstreamUnavailableError(
                f"GitHub update failed with status {r.status_code}", upstream_status=r.status_code
            )

        try:
            return r.json()["content"]["sha"]
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamUnavailableError(f"Unexpected GitHub update payload: {e}") from e

    def describe(self) -> Dict[str, Any]:
        return {
            "backend": "github",
            "token": "SET" if self.token else "MISSING",
            "owner": self.owner,
            "repo": self.repo,
            "path": self.path,
            "branch": self.branch,
        }


class MemoryFileStore(RemoteFileStore):
    """In-process store with the same version semantics, for development and tests"""

    def __init__(self, content: Optional[str] = None):
        self._content = content
        self.commits: list[str] = []

    @staticmethod
    def _version_of(content: str) -> str:
        return hashlib.sha1(content.encode("utf-8")).hexdigest()

    async def read_file(self) -> Optional[RemoteFile]:
        if self._content is None:
            return None
        return RemoteFile(content=self._content, version=self._version_of(self._content))

    async def write_file(
        self, content: str, expected_version: Optional[str], message: str
    ) -> str:
        current = None if self._content is None else self._version_of(self._content)
        if current != expected_version:
            raise ConflictError("The insights file was changed by another writer")
        self._content = content
        self.commits.append(message)
        return self._version_of(content)

    def describe(self) -> Dict[str, Any]:
        return {"backend": "memory", "commits": len(self.commits)}


def build_file_store(settings: Settings) -> RemoteFileStore:
    """Pick the backend for the configured environment"""
    if settings.DEV_MODE:
        logger.warning("DEV_MODE enabled: insights are kept in memory only")
        return MemoryFileStore()
    if not settings.GITHUB_TOKEN:
        logger.warning("GITHUB_TOKEN is not set: writes to %s/%s will be rejected",
                       settings.GITHUB_OWNER, settings.GITHUB_REPO)
    return GitHubContentsStore(
        token=settings.GITHUB_TOKEN,
        owner=settings.GITHUB_OWNER,
        repo=settings.GITHUB_REPO,
        path=settings.INSIGHTS_FILE_PATH,
        branch=settings.GITHUB_BRANCH,
        api_url=settings.GITHUB_API_URL,
        timeout=settings.GITHUB_TIMEOUT_SECONDS,
    )
