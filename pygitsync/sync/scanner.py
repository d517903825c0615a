"""Directory scanning utilities for sync operations."""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath
from typing import Optional

from ..config import SyncConfiguration
from ..models import FileEntry, PathFailure, TreeSnapshot
from ..utils import (
    DEFAULT_MAX_WORKERS,
    calculate_git_blob_hash,
    is_binary_content,
    normalize_path,
)

logger = logging.getLogger(__name__)


class ExclusionRules:
    """Folder-prefix and file-name exclusion rules.

    Folders match by prefix on normalized paths: ``.trash`` excludes
    ``.trash/x.md`` and ``.trash/a/b.md`` but not ``.trashcan/x.md``.
    File patterns match the base name case-sensitively with glob syntax;
    a pattern without wildcards is an exact name match.

    Examples:
        >>> rules = ExclusionRules([".trash"], ["*.tmp", ".DS_Store"])
        >>> rules.is_excluded(".trash/x.md")
        True
        >>> rules.is_excluded("notes/y.md")
        False
        >>> rules.is_excluded("notes/draft.tmp")
        True
        >>> rules.is_excluded("notes/.ds_store")
        False
    """

    def __init__(
        self,
        excluded_folders: Iterable[str] = (),
        excluded_files: Iterable[str] = (),
    ):
        self.excluded_folders = tuple(
            f for f in (normalize_path(p) for p in excluded_folders) if f
        )
        self.excluded_files = tuple(p for p in excluded_files if p)

    @classmethod
    def from_config(cls, config: SyncConfiguration) -> "ExclusionRules":
        return cls(config.excluded_folders, config.excluded_files)

    def is_folder_excluded(self, folder: str) -> bool:
        """Check a normalized folder path against the folder prefixes."""
        return any(
            folder == prefix or folder.startswith(prefix + "/")
            for prefix in self.excluded_folders
        )

    def is_file_name_excluded(self, name: str) -> bool:
        return any(fnmatchcase(name, pattern) for pattern in self.excluded_files)

    def is_excluded(self, path: str) -> bool:
        """Check whether a relative file path is excluded."""
        path = normalize_path(path)
        if self.is_folder_excluded(path):
            return True
        return self.is_file_name_excluded(PurePosixPath(path).name)

    def __call__(self, path: str) -> bool:
        """Predicate form: True if the path is *included*."""
        return not self.is_excluded(path)


@dataclass
class ScanReport:
    """Result of scanning the local tree."""

    snapshot: TreeSnapshot
    skipped: list[PathFailure] = field(default_factory=list)
    """Entries skipped (symlinks, unreadable files/directories)"""

    def is_skipped(self, path: str) -> bool:
        """Check whether a path is, or lies below, a skipped entry.

        The scan says nothing about such paths, so they must be left alone
        on both sides rather than read as missing.
        """
        for failure in self.skipped:
            if failure.path in ("", "."):
                return True
            if path == failure.path or path.startswith(failure.path + "/"):
                return True
        return False


def fingerprint_file(file_path: Path, relative_path: str) -> FileEntry:
    """Read a file once and build its FileEntry.

    Raises:
        OSError: If the file cannot be read
    """
    data = file_path.read_bytes()
    return FileEntry(
        path=relative_path,
        content_hash=calculate_git_blob_hash(data),
        size=len(data),
        is_binary=is_binary_content(data),
    )


class DirectoryScanner:
    """Scans the local vault and builds a TreeSnapshot.

    Examples:
        >>> scanner = DirectoryScanner(Path("/vault"))
        >>> report = asyncio.run(scanner.scan(config))
        >>> sorted(report.snapshot)
        ['notes/y.md']
    """

    def __init__(self, root: Path, max_workers: int = DEFAULT_MAX_WORKERS):
        """Initialize directory scanner.

        Args:
            root: Vault root directory
            max_workers: Number of files fingerprinted concurrently
        """
        self.root = Path(root)
        self.max_workers = max(1, max_workers)

    def _walk(
        self,
        directory: Path,
        rules: ExclusionRules,
        skipped: list[PathFailure],
    ) -> list[tuple[Path, str]]:
        """Recursively collect (absolute path, relative path) of included files."""
        files: list[tuple[Path, str]] = []

        try:
            items = sorted(directory.iterdir())
        except OSError as e:
            rel = directory.relative_to(self.root).as_posix()
            logger.warning(f"Skipping unreadable directory {rel}: {e}")
            skipped.append(PathFailure(rel, f"unreadable directory: {e}"))
            return files

        for item in items:
            # Use as_posix() to ensure forward slashes on all platforms
            relative_path = item.relative_to(self.root).as_posix()

            if item.is_symlink():
                logger.warning(f"Skipping symlink: {relative_path}")
                skipped.append(PathFailure(relative_path, "symlink"))
                continue

            if item.is_dir():
                if rules.is_folder_excluded(relative_path):
                    logger.debug(f"Excluded folder: {relative_path}")
                    continue
                files.extend(self._walk(item, rules, skipped))
            elif item.is_file():
                if rules.is_excluded(relative_path):
                    logger.debug(f"Excluded file: {relative_path}")
                    continue
                files.append((item, relative_path))
            else:
                skipped.append(PathFailure(relative_path, "not a regular file"))

        return files

    async def scan(
        self,
        config: SyncConfiguration,
        rules: Optional[ExclusionRules] = None,
    ) -> ScanReport:
        """Walk the vault and fingerprint every included file.

        Each file is read exactly once. Unreadable entries are recorded in
        the report instead of failing the scan.

        Args:
            config: Sync configuration providing the exclusion lists
            rules: Pre-built exclusion rules (built from config if omitted)

        Returns:
            ScanReport with the local snapshot and skipped entries
        """
        rules = rules or ExclusionRules.from_config(config)
        skipped: list[PathFailure] = []

        if not self.root.is_dir():
            raise NotADirectoryError(f"Vault directory does not exist: {self.root}")

        candidates = await asyncio.to_thread(self._walk, self.root, rules, skipped)
        semaphore = asyncio.Semaphore(self.max_workers)

        async def read_one(file_path: Path, relative_path: str) -> Optional[FileEntry]:
            async with semaphore:
                try:
                    return await asyncio.to_thread(
                        fingerprint_file, file_path, relative_path
                    )
                except OSError as e:
                    logger.warning(f"Skipping unreadable file {relative_path}: {e}")
                    skipped.append(PathFailure(relative_path, f"unreadable: {e}"))
                    return None

        results = await asyncio.gather(*(read_one(p, r) for p, r in candidates))
        entries = [entry for entry in results if entry is not None]
        logger.debug(
            f"Scanned {len(entries)} local file(s), skipped {len(skipped)} entry(ies)"
        )
        return ScanReport(snapshot=TreeSnapshot(entries), skipped=skipped)
