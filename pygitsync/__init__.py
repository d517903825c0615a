"""PyGitSync - sync a local vault with a GitHub repository over the REST API."""

from .api import GitHubClient
from .config import Credentials, SyncConfiguration, load_configuration
from .exceptions import (
    GitSyncAPIError,
    GitSyncAuthenticationError,
    GitSyncBusyError,
    GitSyncCancelledError,
    GitSyncConfigError,
    GitSyncConflictError,
    GitSyncEmptyRepositoryError,
    GitSyncError,
    GitSyncLocalIOError,
    GitSyncNotConfiguredError,
    GitSyncNotFoundError,
    GitSyncRemoteUnavailableError,
)
from .models import (
    ActionKind,
    ChangeAction,
    ConflictResolution,
    FileEntry,
    SyncResult,
    TreeSnapshot,
)
from .utils import calculate_git_blob_hash

__version__ = "0.1.0"

__all__ = [
    "GitHubClient",
    "Credentials",
    "SyncConfiguration",
    "load_configuration",
    "GitSyncError",
    "GitSyncAPIError",
    "GitSyncAuthenticationError",
    "GitSyncBusyError",
    "GitSyncCancelledError",
    "GitSyncConfigError",
    "GitSyncConflictError",
    "GitSyncEmptyRepositoryError",
    "GitSyncLocalIOError",
    "GitSyncNotConfiguredError",
    "GitSyncNotFoundError",
    "GitSyncRemoteUnavailableError",
    "ActionKind",
    "ChangeAction",
    "ConflictResolution",
    "FileEntry",
    "SyncResult",
    "TreeSnapshot",
    "calculate_git_blob_hash",
]
