"""API client for the GitHub REST (Git Data) API."""

from __future__ import annotations

import asyncio
import base64
import logging
import random
from collections.abc import Sequence
from typing import Any
from urllib.parse import quote

import httpx

from .config import DEFAULT_API_URL, DEFAULT_BRANCH, SyncConfiguration
from .exceptions import (
    GitSyncAPIError,
    GitSyncAuthenticationError,
    GitSyncConflictError,
    GitSyncEmptyRepositoryError,
    GitSyncError,
    GitSyncNotConfiguredError,
    GitSyncNotFoundError,
    GitSyncRemoteUnavailableError,
)
from .models import FileChange, FileEntry, TreeSnapshot
from .utils import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
BLOB_MODE = "100644"


class GitHubClient:
    """Async client for the subset of the GitHub API used for syncing."""

    def __init__(
        self,
        username: str,
        token: str,
        repository: str,
        branch: str = DEFAULT_BRANCH,
        api_url: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize GitHub API client.

        Args:
            username: Repository owner (the authenticated user)
            token: Personal access token with ``repo`` scope
            repository: Repository name
            branch: Branch to read and commit to
            api_url: API base URL (default: https://api.github.com)
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 30.0)
            transport: Optional httpx transport (used by tests)
        """
        if not (username and token and repository):
            raise GitSyncNotConfiguredError(
                "GitHub username, token and repository name are required"
            )
        self.username = username
        self._token = token
        self.repository = repository
        self.branch = branch or DEFAULT_BRANCH
        self.api_url = (api_url or DEFAULT_API_URL).rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._blob_shas: dict[str, str] = {}

    @classmethod
    def from_config(cls, config: SyncConfiguration, **kwargs: Any) -> GitHubClient:
        """Create a client from a sync configuration."""
        return cls(
            username=config.credentials.username,
            token=config.credentials.token,
            repository=config.repository,
            branch=config.branch,
            api_url=config.api_url,
            **kwargs,
        )

    def __repr__(self) -> str:
        return (
            f"GitHubClient(repo={self.username}/{self.repository}, "
            f"branch={self.branch})"
        )

    @property
    def repo_path(self) -> str:
        return f"/repos/{quote(self.username)}/{quote(self.repository)}"

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                headers={
                    "Authorization": f"Bearer {self._token}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": API_VERSION,
                },
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # =========================
    # Request handling
    # =========================

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # Add jitter: +/- 25% of base delay
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        """Extract the ``message`` field from a GitHub error body."""
        try:
            data = response.json()
        except ValueError:
            return ""
        if isinstance(data, dict):
            return str(data.get("message", ""))
        return ""

    def _handle_http_error(
        self, response: httpx.Response, attempt: int
    ) -> tuple[GitSyncError, bool]:
        """Map an HTTP error response to an exception.

        Args:
            response: The failed response
            attempt: Current attempt number

        Returns:
            Tuple of (exception to raise, should_retry)
        """
        status_code = response.status_code
        message = self._error_message(response)
        can_retry = attempt < self.max_retries

        if status_code == 401:
            return GitSyncAuthenticationError("Bad credentials or expired token"), False
        if status_code in (403, 429):
            rate_limited = status_code == 429 or (
                response.headers.get("x-ratelimit-remaining") == "0"
                or "rate limit" in message.lower()
            )
            if rate_limited:
                return (
                    GitSyncRemoteUnavailableError("API rate limit exceeded"),
                    can_retry,
                )
            return (
                GitSyncAuthenticationError(
                    f"Access forbidden - check token scopes ({message or status_code})"
                ),
                False,
            )
        if status_code == 404:
            return GitSyncNotFoundError(message or "Resource not found"), False
        if status_code == 409:
            if "empty" in message.lower():
                return GitSyncEmptyRepositoryError(message), False
            return GitSyncConflictError(message or "Conflict"), False

        error_msg = f"API request failed with status {status_code}"
        if message:
            error_msg = f"{error_msg}: {message}"
        if 500 <= status_code < 600:
            return GitSyncRemoteUnavailableError(error_msg), can_retry
        return GitSyncAPIError(error_msg, status_code=status_code), False

    def _retry_after(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            return float(retry_after)
        return self._calculate_retry_delay(attempt)

    async def _request(self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Make an API request with retry logic.

        Args:
            method: HTTP method
            endpoint: API endpoint path
            **kwargs: Additional arguments passed to httpx

        Returns:
            Response JSON data ({} for empty bodies)

        Raises:
            GitSyncError: If the request fails after all retries
        """
        url = f"{self.api_url}/{endpoint.lstrip('/')}"
        client = self._get_client()

        for attempt in range(self.max_retries + 1):
            try:
                response = await client.request(method, url, **kwargs)
            except httpx.RequestError as e:
                # Message comes from the transport and never includes headers
                error = GitSyncRemoteUnavailableError(f"Network error: {e}")
                if attempt < self.max_retries:
                    delay = self._calculate_retry_delay(attempt)
                    logger.warning(
                        f"{method} {endpoint} failed ({e}), retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise error from e

            if response.is_error:
                error, should_retry = self._handle_http_error(response, attempt)
                if should_retry:
                    delay = self._retry_after(response, attempt)
                    logger.warning(
                        f"{method} {endpoint} returned {response.status_code}, "
                        f"retrying in {delay:.1f}s"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise error

            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as e:
                raise GitSyncRemoteUnavailableError(
                    "Invalid JSON response from server"
                ) from e

        raise GitSyncRemoteUnavailableError("Request failed after all retry attempts")

    # =========================
    # Repository operations
    # =========================

    async def verify_connection(self) -> bool:
        """Check that the credentials can read the repository.

        Returns:
            True on confirmed read access, False on any failure (never raises)
        """
        try:
            data = await self._request("GET", self.repo_path)
        except GitSyncError as e:
            logger.info(f"Connection check failed for {self!r}: {e}")
            return False
        return isinstance(data, dict) and bool(data.get("full_name"))

    async def ensure_repository(self, private: bool = True) -> bool:
        """Create the repository if it does not exist.

        Args:
            private: Visibility for a newly created repository

        Returns:
            True if the repository was created, False if it already existed
        """
        try:
            await self._request("GET", self.repo_path)
            return False
        except GitSyncNotFoundError:
            pass

        logger.info(f"Creating repository {self.username}/{self.repository}")
        try:
            await self._request(
                "POST",
                "/user/repos",
                json={
                    "name": self.repository,
                    "private": private,
                    "auto_init": True,
                    "description": "Vault synced by pygitsync",
                },
            )
        except GitSyncAPIError as e:
            # 422: name already exists (created concurrently)
            if e.status_code == 422:
                return False
            raise
        return True

    async def get_branch_head(self, branch: str | None = None) -> str | None:
        """Return the commit sha the branch points to, or None if absent."""
        branch = branch or self.branch
        try:
            data = await self._request(
                "GET", f"{self.repo_path}/git/ref/heads/{quote(branch)}"
            )
        except GitSyncNotFoundError:
            return None
        sha: str = data["object"]["sha"]
        return sha

    async def list_tree(self, branch: str | None = None) -> TreeSnapshot:
        """Fetch the full remote file listing for a branch.

        Args:
            branch: Branch name (defaults to the client's branch)

        Returns:
            TreeSnapshot of blob entries with ``head_sha`` set

        Raises:
            GitSyncNotFoundError: If the branch (or any commit) does not exist
            GitSyncRemoteUnavailableError: On network errors or a truncated tree
        """
        branch = branch or self.branch
        head_sha = await self.get_branch_head(branch)
        if head_sha is None:
            raise GitSyncNotFoundError(f"Branch not found: {branch}")

        commit = await self._request("GET", f"{self.repo_path}/git/commits/{head_sha}")
        tree_sha = commit["tree"]["sha"]
        tree = await self._request(
            "GET",
            f"{self.repo_path}/git/trees/{tree_sha}",
            params={"recursive": "1"},
        )
        if tree.get("truncated"):
            raise GitSyncRemoteUnavailableError(
                "Remote tree listing was truncated by the API"
            )

        entries = [
            FileEntry(
                path=item["path"],
                content_hash=item["sha"],
                size=int(item.get("size", 0)),
            )
            for item in tree.get("tree", [])
            # Only regular files; skips directories, submodules and symlinks
            if item.get("type") == "blob" and item.get("mode") != "120000"
        ]
        self._blob_shas = {entry.path: entry.content_hash for entry in entries}
        logger.debug(f"Listed {len(entries)} remote files at {head_sha[:7]}")
        return TreeSnapshot(entries, head_sha=head_sha)

    async def read_blob(self, path: str, blob_sha: str | None = None) -> bytes:
        """Fetch file content.

        Args:
            path: Relative file path
            blob_sha: Blob sha if known (falls back to the last listed tree,
                then the contents API)

        Returns:
            File content

        Raises:
            GitSyncNotFoundError: If the file does not exist
        """
        blob_sha = blob_sha or self._blob_shas.get(path)
        if blob_sha:
            data = await self._request("GET", f"{self.repo_path}/git/blobs/{blob_sha}")
        else:
            data = await self._request(
                "GET",
                f"{self.repo_path}/contents/{quote(path)}",
                params={"ref": self.branch},
            )
            if not isinstance(data, dict) or data.get("type") != "file":
                raise GitSyncNotFoundError(f"Not a file: {path}")
        return self._decode_content(data, path)

    @staticmethod
    def _decode_content(data: dict[str, Any], path: str) -> bytes:
        content = data.get("content", "")
        if data.get("encoding", "base64") != "base64":
            return str(content).encode("utf-8")
        try:
            return base64.b64decode(content)
        except ValueError as e:
            raise GitSyncRemoteUnavailableError(
                f"Could not decode content of {path}"
            ) from e

    async def _create_blob(self, content: bytes) -> str:
        data = await self._request(
            "POST",
            f"{self.repo_path}/git/blobs",
            json={
                "content": base64.b64encode(content).decode("ascii"),
                "encoding": "base64",
            },
        )
        sha: str = data["sha"]
        return sha

    async def _tree_items(
        self, changes: Sequence[FileChange], base_tree: str | None
    ) -> list[dict[str, Any]]:
        """Upload blobs and build tree entries; deletions need a base tree."""
        tree_items: list[dict[str, Any]] = []
        for change in changes:
            if change.content is None:
                if base_tree is None:
                    continue
                blob_sha = None
            else:
                blob_sha = await self._create_blob(change.content)
            tree_items.append(
                {
                    "path": change.path,
                    "mode": BLOB_MODE,
                    "type": "blob",
                    "sha": blob_sha,
                }
            )
        return tree_items

    async def _seed_empty_repository(
        self, changes: Sequence[FileChange], message: str
    ) -> str | None:
        """Make the first commit of a repository that has no commits.

        The Git Data API rejects writes to an empty repository, so the first
        upload goes through the contents API and the remaining changes are
        committed on top of it.

        Returns:
            Sha of the last commit made (None if there was nothing to upload)
        """
        for index, change in enumerate(changes):
            if change.content is None:
                continue
            logger.info(
                f"Repository {self.username}/{self.repository} is empty, "
                f"creating {self.branch} with {change.path}"
            )
            data = await self._request(
                "PUT",
                f"{self.repo_path}/contents/{quote(change.path)}",
                json={
                    "message": message,
                    "content": base64.b64encode(change.content).decode("ascii"),
                    "branch": self.branch,
                },
            )
            seed_sha: str = data["commit"]["sha"]
            # Nothing exists yet, so only the remaining uploads matter
            rest = [c for c in changes[index + 1 :] if c.content is not None]
            return await self.write_files(rest, message, parent_sha=seed_sha)
        return None

    async def write_files(
        self,
        changes: Sequence[FileChange],
        message: str,
        parent_sha: str | None,
    ) -> str | None:
        """Create one commit containing all changes and advance the branch.

        Args:
            changes: Ordered file writes and deletions
            message: Commit message
            parent_sha: Commit the changes were computed against
                (None if the branch does not exist yet)

        Returns:
            The new commit sha (``parent_sha`` if there was nothing to commit)

        Raises:
            GitSyncConflictError: If the branch moved away from ``parent_sha``
            GitSyncRemoteUnavailableError: On transient failures
        """
        if not changes:
            return parent_sha

        base_tree: str | None = None
        if parent_sha is not None:
            parent = await self._request(
                "GET", f"{self.repo_path}/git/commits/{parent_sha}"
            )
            base_tree = parent["tree"]["sha"]

        try:
            tree_items = await self._tree_items(changes, base_tree)
        except GitSyncEmptyRepositoryError:
            if parent_sha is not None:
                raise
            return await self._seed_empty_repository(changes, message)
        if not tree_items:
            return parent_sha

        tree_payload: dict[str, Any] = {"tree": tree_items}
        if base_tree is not None:
            tree_payload["base_tree"] = base_tree
        tree = await self._request(
            "POST", f"{self.repo_path}/git/trees", json=tree_payload
        )

        commit = await self._request(
            "POST",
            f"{self.repo_path}/git/commits",
            json={
                "message": message,
                "tree": tree["sha"],
                "parents": [parent_sha] if parent_sha else [],
            },
        )
        commit_sha: str = commit["sha"]

        try:
            if parent_sha is None:
                await self._request(
                    "POST",
                    f"{self.repo_path}/git/refs",
                    json={"ref": f"refs/heads/{self.branch}", "sha": commit_sha},
                )
            else:
                await self._request(
                    "PATCH",
                    f"{self.repo_path}/git/refs/heads/{quote(self.branch)}",
                    json={"sha": commit_sha, "force": False},
                )
        except GitSyncAPIError as e:
            if e.status_code == 422:
                raise GitSyncConflictError(
                    f"Branch {self.branch} moved since {parent_sha or 'creation'}"
                ) from e
            raise

        logger.info(
            f"Committed {len(changes)} change(s) to {self.branch} as {commit_sha[:7]}"
        )
        return commit_sha
