"""Utility functions for PyGitSync."""

import hashlib
from collections.abc import Iterable
from datetime import datetime
from pathlib import PurePosixPath
from typing import Optional, Union

# =============================================================================
# Constants for sync operations
# =============================================================================

# Retry configuration for transient errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

# Request timeout for API calls
DEFAULT_TIMEOUT: float = 30.0  # seconds

# How often a rejected commit is re-reconciled before giving up
DEFAULT_MAX_CONFLICT_RETRIES: int = 3

# Worker limit for local file reads/writes
DEFAULT_MAX_WORKERS: int = 4

# Number of leading bytes inspected for NUL when detecting binary content
BINARY_SNIFF_BYTES: int = 8000

# Placeholder replaced in commit message templates
DATE_PLACEHOLDER: str = "{{date}}"

DEFAULT_COMMIT_MESSAGE: str = "Obsidian sync: {{date}}"


# =============================================================================
# Content fingerprint utilities
# =============================================================================


def calculate_git_blob_hash(data: bytes) -> str:
    """Calculate the git blob SHA-1 for a byte string.

    This is the same identifier GitHub reports for blobs in a tree, so local
    and remote content can be compared without transferring it.

    Args:
        data: File content

    Returns:
        Hex encoded SHA-1 digest

    Examples:
        >>> calculate_git_blob_hash(b"")
        'e69de29bb2d1d6434b8b29ae775ad8c2e48c5391'
        >>> calculate_git_blob_hash(b"hello\\n")
        'ce013625030ba8dba906f756967f9e9ca394464a'
    """
    header = f"blob {len(data)}\0".encode()
    return hashlib.sha1(header + data).hexdigest()


def is_binary_content(data: bytes) -> bool:
    """Check whether content looks binary (NUL byte in the leading chunk)."""
    return b"\0" in data[:BINARY_SNIFF_BYTES]


# =============================================================================
# Path utilities
# =============================================================================


def normalize_path(path: str) -> str:
    """Normalize a relative path to slash-separated form.

    Backslashes are converted, ``.`` segments and duplicate slashes are
    collapsed and leading/trailing slashes are stripped.

    Args:
        path: Relative path in any common notation

    Returns:
        Normalized path ("" for the root)

    Examples:
        >>> normalize_path("/notes//daily/")
        'notes/daily'
        >>> normalize_path("./.trash")
        '.trash'
        >>> normalize_path("a\\\\b.md")
        'a/b.md'
    """
    parts = [p for p in path.replace("\\", "/").split("/") if p not in ("", ".")]
    return str(PurePosixPath(*parts)) if parts else ""


def parse_list_setting(value: Union[str, Iterable[str], None]) -> tuple[str, ...]:
    """Parse a newline-delimited (or list) setting into trimmed entries.

    Blank entries are dropped and order is preserved.

    Examples:
        >>> parse_list_setting(".trash\\n  \\n.obsidian/themes ")
        ('.trash', '.obsidian/themes')
        >>> parse_list_setting(["a", " ", "b"])
        ('a', 'b')
    """
    if value is None:
        return ()
    if isinstance(value, str):
        items = value.split("\n")
    else:
        items = [str(v) for v in value]
    return tuple(s.strip() for s in items if s.strip())


# =============================================================================
# Timestamp utilities
# =============================================================================


def format_commit_timestamp(moment: datetime) -> str:
    """Format a local timestamp for commit messages (``YYYY-MM-DD HH:MM:SS``)."""
    return moment.strftime("%Y-%m-%d %H:%M:%S")


def render_commit_message(template: str, moment: datetime) -> str:
    """Substitute every ``{{date}}`` placeholder in a commit message template.

    Args:
        template: Message template; empty falls back to the default
        moment: Local time of the commit

    Returns:
        Commit message

    Examples:
        >>> render_commit_message("Sync: {{date}}", datetime(2024, 5, 1, 9, 30))
        'Sync: 2024-05-01 09:30:00'
    """
    template = template or DEFAULT_COMMIT_MESSAGE
    return template.replace(DATE_PLACEHOLDER, format_commit_timestamp(moment))


def to_epoch_millis(moment: datetime) -> int:
    """Convert a datetime to epoch milliseconds."""
    return int(moment.timestamp() * 1000)


def format_epoch_millis(value: Optional[int]) -> str:
    """Format epoch milliseconds as local time, or "never" when unset."""
    if not value:
        return "never"
    return format_commit_timestamp(datetime.fromtimestamp(value / 1000))


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"
