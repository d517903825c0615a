"""Data models for sync snapshots, actions and results."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Optional


@dataclass(frozen=True)
class FileEntry:
    """State of a single file on one side of the sync."""

    path: str
    """Relative, slash-separated path (identity of the entry)"""

    content_hash: str
    """Git blob SHA-1 of the file content"""

    size: int = 0
    """File size in bytes"""

    is_binary: bool = False
    """Whether the content looked binary when it was last read"""

    def to_dict(self) -> dict[str, Any]:
        return {
            "hash": self.content_hash,
            "size": self.size,
            "is_binary": self.is_binary,
        }

    @classmethod
    def from_dict(cls, path: str, data: Mapping[str, Any]) -> FileEntry:
        return cls(
            path=path,
            content_hash=str(data.get("hash", "")),
            size=int(data.get("size", 0)),
            is_binary=bool(data.get("is_binary", False)),
        )


class TreeSnapshot(Mapping[str, FileEntry]):
    """Immutable mapping of path to FileEntry for one side at one instant.

    Snapshots are never mutated; ``with_changes`` and ``filter`` return new
    snapshots. ``head_sha`` records the commit a remote snapshot was read
    from (None for local snapshots and for a branch that does not exist).
    """

    def __init__(
        self,
        entries: Iterable[FileEntry] = (),
        head_sha: Optional[str] = None,
    ):
        files: dict[str, FileEntry] = {}
        for entry in entries:
            if entry.path in files:
                raise ValueError(f"Duplicate path in snapshot: {entry.path}")
            files[entry.path] = entry
        self._files = MappingProxyType(files)
        self.head_sha = head_sha

    @classmethod
    def empty(cls, head_sha: Optional[str] = None) -> TreeSnapshot:
        return cls((), head_sha=head_sha)

    def __getitem__(self, path: str) -> FileEntry:
        return self._files[path]

    def __iter__(self) -> Iterator[str]:
        return iter(self._files)

    def __len__(self) -> int:
        return len(self._files)

    def __repr__(self) -> str:
        return f"TreeSnapshot({len(self)} files, head_sha={self.head_sha!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TreeSnapshot):
            return NotImplemented
        return dict(self._files) == dict(other._files)

    def hash_of(self, path: str) -> Optional[str]:
        """Content hash for a path, or None if absent."""
        entry = self._files.get(path)
        return entry.content_hash if entry else None

    def filter(self, predicate: Callable[[str], bool]) -> TreeSnapshot:
        """Return a snapshot containing only paths accepted by predicate."""
        return TreeSnapshot(
            (e for p, e in self._files.items() if predicate(p)),
            head_sha=self.head_sha,
        )

    def with_changes(
        self,
        updates: Iterable[FileEntry] = (),
        removals: Iterable[str] = (),
        head_sha: Optional[str] = None,
    ) -> TreeSnapshot:
        """Return a new snapshot with entries replaced/added and paths removed."""
        files = dict(self._files)
        for path in removals:
            files.pop(path, None)
        for entry in updates:
            files[entry.path] = entry
        return TreeSnapshot(
            files.values(),
            head_sha=head_sha if head_sha is not None else self.head_sha,
        )

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {path: self._files[path].to_dict() for path in sorted(self._files)}

    @classmethod
    def from_dict(
        cls, data: Mapping[str, Mapping[str, Any]], head_sha: Optional[str] = None
    ) -> TreeSnapshot:
        return cls(
            (FileEntry.from_dict(path, value) for path, value in data.items()),
            head_sha=head_sha,
        )


class ActionKind(str, Enum):
    """Kinds of change actions produced by reconciliation."""

    UPLOAD_CREATE = "upload_create"
    UPLOAD_UPDATE = "upload_update"
    UPLOAD_DELETE = "upload_delete"
    DOWNLOAD_CREATE = "download_create"
    DOWNLOAD_UPDATE = "download_update"
    DOWNLOAD_DELETE = "download_delete"
    CONFLICT_SKIP = "conflict_skip"


class ConflictResolution(str, Enum):
    """Deterministic side effect applied for a conflicting path."""

    KEEP_LOCAL = "keep_local"
    """Local content kept, nothing transferred"""

    UPLOAD_LOCAL = "upload_local"
    """Local content kept and re-uploaded"""

    DOWNLOAD_REMOTE = "download_remote"
    """Remote content downloaded over the missing local file"""


UPLOAD_KINDS = frozenset(
    {ActionKind.UPLOAD_CREATE, ActionKind.UPLOAD_UPDATE, ActionKind.UPLOAD_DELETE}
)
DOWNLOAD_KINDS = frozenset(
    {
        ActionKind.DOWNLOAD_CREATE,
        ActionKind.DOWNLOAD_UPDATE,
        ActionKind.DOWNLOAD_DELETE,
    }
)
DELETE_KINDS = frozenset({ActionKind.UPLOAD_DELETE, ActionKind.DOWNLOAD_DELETE})


@dataclass(frozen=True)
class ChangeAction:
    """A single reconciled action for one path."""

    kind: ActionKind
    path: str
    local_hash: Optional[str] = None
    remote_hash: Optional[str] = None
    base_hash: Optional[str] = None
    """Hash recorded in the last-synced snapshot"""

    resolution: Optional[ConflictResolution] = None
    """Only set for CONFLICT_SKIP"""

    reason: str = ""

    @property
    def is_conflict(self) -> bool:
        return self.kind == ActionKind.CONFLICT_SKIP

    @property
    def is_delete(self) -> bool:
        return self.kind in DELETE_KINDS

    @property
    def is_upload(self) -> bool:
        """True if applying the action writes to the remote."""
        return self.kind in UPLOAD_KINDS or (
            self.resolution == ConflictResolution.UPLOAD_LOCAL
        )

    @property
    def is_download(self) -> bool:
        """True if applying the action writes to the local tree."""
        return self.kind in DOWNLOAD_KINDS or (
            self.resolution == ConflictResolution.DOWNLOAD_REMOTE
        )


@dataclass(frozen=True)
class FileChange:
    """One file change in a commit; ``content`` None means delete."""

    path: str
    content: Optional[bytes] = None

    @property
    def is_delete(self) -> bool:
        return self.content is None


@dataclass(frozen=True)
class PathFailure:
    """A per-path failure that did not abort the sync."""

    path: str
    message: str


@dataclass
class SyncResult:
    """Outcome of one push, pull or sync operation."""

    pushed: int = 0
    """Number of paths written to the remote (including deletions)"""

    pulled: int = 0
    """Number of paths written to the local tree (including deletions)"""

    conflicts: list[str] = field(default_factory=list)
    """Conflicting paths, in reconciliation order"""

    timestamp: datetime = field(default_factory=datetime.now)

    failures: list[PathFailure] = field(default_factory=list)
    skipped: list[PathFailure] = field(default_factory=list)
    """Local entries skipped by the scanner (symlinks, unreadable)"""

    commit_sha: Optional[str] = None
    actions: list[ChangeAction] = field(default_factory=list)
    """Actions that were planned for this run"""

    @property
    def changed(self) -> bool:
        return bool(self.pushed or self.pulled)

    def add_conflict(self, path: str) -> None:
        if path not in self.conflicts:
            self.conflicts.append(path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pushed": self.pushed,
            "pulled": self.pulled,
            "conflicts": list(self.conflicts),
            "timestamp": self.timestamp.isoformat(),
            "failures": [{"path": f.path, "message": f.message} for f in self.failures],
            "skipped": [{"path": f.path, "message": f.message} for f in self.skipped],
            "commit_sha": self.commit_sha,
        }
