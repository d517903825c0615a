"""Shared fixtures for PyGitSync tests."""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Optional

import pytest

from pygitsync.config import Credentials, SyncConfiguration
from pygitsync.exceptions import GitSyncConflictError, GitSyncNotFoundError
from pygitsync.models import FileChange, TreeSnapshot
from pygitsync.sync import SyncEngine, SyncStateManager
from pygitsync.sync.operations import entry_for

FIXED_TIME = datetime(2024, 5, 1, 9, 30)


class FakeGitHubClient:
    """In-memory stand-in for GitHubClient holding a single branch."""

    def __init__(self, files: Optional[dict[str, bytes]] = None):
        self.files: dict[str, bytes] = dict(files or {})
        self.head: Optional[str] = "c0"
        self.commits: list[tuple[str, list[FileChange]]] = []
        self.reject_commits = 0
        """Number of upcoming commits rejected as if the branch moved"""

        self.concurrent_files: dict[str, bytes] = {}
        """Files another client commits whenever a commit is rejected"""

        self.read_error: Optional[Exception] = None
        self.list_gate: Optional[asyncio.Event] = None
        self.list_calls = 0
        self.read_calls: list[str] = []
        self.ensure_calls = 0
        self.connected = True
        self.closed = False
        self._counter = 0

    def _advance(self) -> str:
        self._counter += 1
        self.head = f"c{self._counter}"
        return self.head

    def push_external(self, files=None, deletions=()) -> None:
        """Simulate a commit made by another client."""
        self.files.update(files or {})
        for path in deletions:
            self.files.pop(path, None)
        self._advance()

    def snapshot(self) -> TreeSnapshot:
        return TreeSnapshot(
            [entry_for(path, data) for path, data in self.files.items()],
            head_sha=self.head,
        )

    async def verify_connection(self) -> bool:
        return self.connected

    async def ensure_repository(self, private: bool = True) -> bool:
        self.ensure_calls += 1
        return False

    async def list_tree(self, branch=None) -> TreeSnapshot:
        self.list_calls += 1
        if self.list_gate is not None:
            await self.list_gate.wait()
        if self.head is None:
            raise GitSyncNotFoundError(f"Branch not found: {branch}")
        return self.snapshot()

    async def read_blob(self, path: str, blob_sha=None) -> bytes:
        self.read_calls.append(path)
        if self.read_error is not None:
            raise self.read_error
        if path not in self.files:
            raise GitSyncNotFoundError(path)
        return self.files[path]

    async def write_files(self, changes, message, parent_sha):
        if not changes:
            return parent_sha
        if self.reject_commits:
            self.reject_commits -= 1
            self.push_external(self.concurrent_files)
            raise GitSyncConflictError("Reference update failed")
        if parent_sha != self.head:
            raise GitSyncConflictError(f"Branch moved since {parent_sha}")
        for change in changes:
            if change.is_delete:
                self.files.pop(change.path, None)
            else:
                self.files[change.path] = change.content
        self.commits.append((message, list(changes)))
        return self._advance()

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    directory = tmp_path / "vault"
    directory.mkdir()
    return directory


@pytest.fixture
def config() -> SyncConfiguration:
    return SyncConfiguration(
        credentials=Credentials(username="octocat", token="ghp_secret"),
        repository="notes",
        excluded_folders=(".trash", ".obsidian/plugins"),
        excluded_files=(".DS_Store", "*.tmp"),
        commit_message_template="Sync: {{date}}",
    )


@pytest.fixture
def state_manager(tmp_path: Path) -> SyncStateManager:
    return SyncStateManager(state_dir=tmp_path / "state")


@pytest.fixture
def remote() -> FakeGitHubClient:
    return FakeGitHubClient()


@pytest.fixture
def make_engine(config, vault, state_manager):
    """Factory building engines that share the vault and state directory."""

    def factory(client, **kwargs) -> SyncEngine:
        kwargs.setdefault("clock", lambda: FIXED_TIME)
        return SyncEngine(
            kwargs.pop("config", config),
            kwargs.pop("vault_path", vault),
            client=client,
            state_manager=state_manager,
            **kwargs,
        )

    return factory


@pytest.fixture
def engine(make_engine, remote) -> SyncEngine:
    return make_engine(remote)


@pytest.fixture
def fake_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    for name in (
        "GITSYNC_USERNAME",
        "GITSYNC_TOKEN",
        "GITSYNC_REPOSITORY",
        "GITSYNC_BRANCH",
        "GITSYNC_API_URL",
        "GITSYNC_VAULT",
    ):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture(autouse=True)
def trash(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Record files sent to the system trash instead of touching the real one."""
    trashed: list[str] = []

    def fake_send2trash(path: str) -> None:
        trashed.append(path)
        Path(path).unlink()

    monkeypatch.setattr("pygitsync.sync.operations.send2trash", fake_send2trash)
    return trashed
