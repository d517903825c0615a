"""Sync operations wrapper for applying actions on both sides."""

import asyncio
import logging
import os
import tempfile
from pathlib import Path, PurePosixPath
from typing import Optional

from send2trash import send2trash

from ..api import GitHubClient
from ..exceptions import GitSyncLocalIOError
from ..models import ActionKind, ChangeAction, FileChange, FileEntry
from ..utils import calculate_git_blob_hash, is_binary_content

logger = logging.getLogger(__name__)


def entry_for(path: str, data: bytes) -> FileEntry:
    """Build a FileEntry for content that was just transferred."""
    return FileEntry(
        path=path,
        content_hash=calculate_git_blob_hash(data),
        size=len(data),
        is_binary=is_binary_content(data),
    )


class SyncOperations:
    """Unified local/remote file operations used by the sync engine."""

    def __init__(self, client: GitHubClient, root: Path, use_trash: bool = True):
        """Initialize sync operations.

        Args:
            client: GitHub API client
            root: Vault root directory
            use_trash: Move deleted local files to the system trash instead
                of removing them permanently
        """
        self.client = client
        self.root = Path(root)
        self.use_trash = use_trash

    def local_path(self, relative_path: str) -> Path:
        """Resolve a relative path inside the vault.

        Raises:
            GitSyncLocalIOError: If the path would escape the vault
        """
        parts = PurePosixPath(relative_path).parts
        if not parts or relative_path.startswith("/") or ".." in parts:
            raise GitSyncLocalIOError(relative_path, "path escapes the vault")
        return self.root.joinpath(*parts)

    # =========================
    # Local file access (blocking, run in worker threads)
    # =========================

    def read_local(self, relative_path: str) -> bytes:
        target = self.local_path(relative_path)
        try:
            return target.read_bytes()
        except OSError as e:
            raise GitSyncLocalIOError(relative_path, f"cannot read: {e}") from e

    def write_local(self, relative_path: str, data: bytes) -> None:
        """Write a file atomically, creating parent directories."""
        target = self.local_path(relative_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".pygitsync-")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(data)
                os.replace(tmp_name, target)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise GitSyncLocalIOError(relative_path, f"cannot write: {e}") from e

    def delete_local(self, relative_path: str) -> None:
        """Delete a local file and prune directories left empty.

        The file goes to the system trash unless ``use_trash`` is off.
        """
        target = self.local_path(relative_path)
        try:
            if self.use_trash and target.exists():
                send2trash(str(target))
            else:
                target.unlink(missing_ok=True)
        except OSError as e:
            raise GitSyncLocalIOError(relative_path, f"cannot delete: {e}") from e

        parent = target.parent
        while parent != self.root and self.root in parent.parents:
            try:
                parent.rmdir()
            except OSError:
                # Not empty (or not removable): stop pruning
                break
            parent = parent.parent

    # =========================
    # Action application
    # =========================

    async def prepare_upload(
        self, action: ChangeAction
    ) -> tuple[FileChange, Optional[FileEntry]]:
        """Read the local side of an upload action.

        Returns:
            The change to commit and the entry it will produce (None for deletes)
        """
        if action.kind == ActionKind.UPLOAD_DELETE:
            return FileChange(action.path), None
        data = await asyncio.to_thread(self.read_local, action.path)
        return FileChange(action.path, data), entry_for(action.path, data)

    async def download(self, action: ChangeAction) -> Optional[FileEntry]:
        """Apply a download action to the local tree.

        Returns:
            The entry now present locally (None for deletes)
        """
        if action.remote_hash is None:
            logger.debug(f"Deleting local {action.path}")
            await asyncio.to_thread(self.delete_local, action.path)
            return None

        logger.debug(f"Downloading {action.path}")
        data = await self.client.read_blob(action.path, blob_sha=action.remote_hash)
        await asyncio.to_thread(self.write_local, action.path, data)
        return entry_for(action.path, data)
