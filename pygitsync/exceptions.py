"""Custom exceptions for PyGitSync."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import SyncResult


class GitSyncError(Exception):
    """Base exception for all PyGitSync errors.

    Errors raised out of a sync operation carry the portion of the work
    that completed before the failure in ``partial_result``.
    """

    def __init__(self, message: str = "", partial_result: Optional[SyncResult] = None):
        super().__init__(message)
        self.partial_result = partial_result


class GitSyncAPIError(GitSyncError):
    """Raised for unexpected API errors that are not retried."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GitSyncConfigError(GitSyncError):
    """Raised when configuration values are invalid."""


class GitSyncNotConfiguredError(GitSyncConfigError):
    """Raised when credentials, repository or branch are missing."""


class GitSyncAuthenticationError(GitSyncError):
    """Raised when the API rejects the credentials (401/403)."""


class GitSyncNotFoundError(GitSyncError):
    """Raised when a repository, branch or blob does not exist."""


class GitSyncEmptyRepositoryError(GitSyncNotFoundError):
    """Raised when the repository exists but has no commits yet."""


class GitSyncRemoteUnavailableError(GitSyncError):
    """Raised on transient network or server failures."""


class GitSyncConflictError(GitSyncError):
    """Raised when the branch moved since the last known reference."""


class GitSyncLocalIOError(GitSyncError):
    """Raised when a local file cannot be read or written."""

    def __init__(
        self,
        path: str,
        message: str,
        partial_result: Optional[SyncResult] = None,
    ):
        super().__init__(f"{path}: {message}", partial_result=partial_result)
        self.path = path


class GitSyncBusyError(GitSyncError):
    """Raised when a sync operation is requested while another is running."""


class GitSyncCancelledError(GitSyncError):
    """Raised when a sync operation was cancelled between phases."""
