"""Sync modes supported by the engine."""

from enum import Enum


class SyncMode(str, Enum):
    """Direction(s) a sync operation is allowed to transfer changes."""

    PUSH = "push"
    """Upload local changes only"""

    PULL = "pull"
    """Download remote changes only"""

    SYNC = "sync"
    """Push, then pull against the post-push remote state"""

    @classmethod
    def from_string(cls, value: str) -> "SyncMode":
        """Parse a sync mode name (case-insensitive)."""
        try:
            return cls(value.strip().lower())
        except ValueError as e:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(f"Invalid sync mode '{value}'. Valid: {valid}") from e

    @property
    def allows_upload(self) -> bool:
        return self in (SyncMode.PUSH, SyncMode.SYNC)

    @property
    def allows_download(self) -> bool:
        return self in (SyncMode.PULL, SyncMode.SYNC)
