"""State management for tracking sync history.

This module persists the last-synced snapshot: the file state both sides
agreed on after the previous successful operation. Reconciliation compares
each side against it to tell edits from deletions.
"""

import hashlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from ..exceptions import GitSyncLocalIOError
from ..models import TreeSnapshot

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass
class SyncState:
    """Last-synced state of a vault/repository pair."""

    vault_path: str
    """Local vault directory that was synced"""

    repository: str
    """``owner/repository@branch`` that was synced"""

    files: TreeSnapshot = field(default_factory=TreeSnapshot.empty)
    """Snapshot both sides agreed on after the last sync"""

    head_sha: Optional[str] = None
    """Remote commit observed (or created) by the last sync"""

    last_sync: Optional[int] = None
    """Epoch milliseconds of the last successful operation"""

    def to_dict(self) -> dict[str, Any]:
        """Convert state to dictionary for JSON serialization."""
        return {
            "version": STATE_VERSION,
            "vault_path": self.vault_path,
            "repository": self.repository,
            "head_sha": self.head_sha,
            "last_sync": self.last_sync,
            "files": self.files.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SyncState":
        """Create SyncState from dictionary."""
        head_sha = data.get("head_sha")
        return cls(
            vault_path=data.get("vault_path", ""),
            repository=data.get("repository", ""),
            files=TreeSnapshot.from_dict(data.get("files", {}), head_sha=head_sha),
            head_sha=head_sha,
            last_sync=data.get("last_sync"),
        )


class SyncStateManager:
    """Manages sync state persistence.

    The state is stored in a JSON file in the user's config directory,
    keyed by a hash of the vault path and repository to support several
    vaults syncing to different repositories.
    """

    def __init__(self, state_dir: Optional[Path] = None):
        """Initialize state manager.

        Args:
            state_dir: Directory to store state files. Defaults to
                      ~/.config/pygitsync/sync_state/
        """
        if state_dir is None:
            state_dir = Path.home() / ".config" / "pygitsync" / "sync_state"
        self.state_dir = state_dir

    def _get_state_key(self, vault_path: Path, repository: str) -> str:
        """Generate a unique key for a vault/repository pair.

        Args:
            vault_path: Local vault directory
            repository: ``owner/repository@branch``

        Returns:
            Hash-based key
        """
        # Use absolute path for consistency
        vault_abs = str(vault_path.resolve())
        combined = f"{vault_abs}:{repository}"
        return hashlib.sha256(combined.encode()).hexdigest()[:16]

    def get_state_file(self, vault_path: Path, repository: str) -> Path:
        """Get the state file path for a vault/repository pair."""
        key = self._get_state_key(vault_path, repository)
        return self.state_dir / f"{key}.json"

    def load_state(self, vault_path: Path, repository: str) -> Optional[SyncState]:
        """Load sync state.

        A missing or unreadable state file means "never synced".

        Args:
            vault_path: Local vault directory
            repository: ``owner/repository@branch``

        Returns:
            SyncState if found, None otherwise
        """
        state_file = self.get_state_file(vault_path, repository)

        if not state_file.exists():
            logger.debug(f"No sync state found at {state_file}")
            return None

        try:
            with open(state_file, encoding="utf-8") as f:
                data = json.load(f)
            state = SyncState.from_dict(data)
            logger.debug(
                f"Loaded sync state with {len(state.files)} files "
                f"from {state.last_sync}"
            )
            return state
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load sync state: {e}")
            return None

    def save_state(self, vault_path: Path, state: SyncState) -> None:
        """Save sync state atomically.

        Args:
            vault_path: Local vault directory
            state: State to persist

        Raises:
            GitSyncLocalIOError: If the state file cannot be written
        """
        state_file = self.get_state_file(vault_path, state.repository)

        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.state_dir, prefix=".state-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(state.to_dict(), f, indent=2)
                os.replace(tmp_name, state_file)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise GitSyncLocalIOError(str(state_file), f"cannot save state: {e}") from e

        logger.debug(f"Saved sync state with {len(state.files)} files to {state_file}")

    def clear_state(self, vault_path: Path, repository: str) -> bool:
        """Clear sync state.

        Returns:
            True if state was cleared, False if no state existed
        """
        state_file = self.get_state_file(vault_path, repository)

        if state_file.exists():
            state_file.unlink()
            logger.debug(f"Cleared sync state at {state_file}")
            return True
        return False
