"""Configuration for PyGitSync.

The sync engine only ever sees an immutable ``SyncConfiguration``. Values
come from a JSON settings file (same keys as the vault plugin settings) and
``GITSYNC_*`` environment variables, which take precedence.
"""

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

from .exceptions import GitSyncConfigError
from .utils import DEFAULT_COMMIT_MESSAGE, parse_list_setting

logger = logging.getLogger(__name__)

DEFAULT_BRANCH = "main"
DEFAULT_API_URL = "https://api.github.com"
DEFAULT_EXCLUDED_FOLDERS = (".obsidian/plugins", ".obsidian/themes", ".trash")
DEFAULT_EXCLUDED_FILES = (".DS_Store", "Thumbs.db")
DEFAULT_AUTO_SYNC_INTERVAL = 30
DEFAULT_AUTO_SYNC = False
DEFAULT_USE_TRASH = True
AUTO_SYNC_INTERVAL_RANGE = (5, 120)

ENV_USERNAME = "GITSYNC_USERNAME"
ENV_TOKEN = "GITSYNC_TOKEN"
ENV_REPOSITORY = "GITSYNC_REPOSITORY"
ENV_BRANCH = "GITSYNC_BRANCH"
ENV_API_URL = "GITSYNC_API_URL"


def _flag(data: Mapping[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise GitSyncConfigError(f"Invalid {key}: {value!r}")
    return value


@dataclass(frozen=True)
class Credentials:
    """GitHub username and personal access token."""

    username: str = ""
    token: str = field(default="", repr=False)

    def __repr__(self) -> str:
        masked = "***" if self.token else "''"
        return f"Credentials(username={self.username!r}, token={masked})"


@dataclass(frozen=True)
class SyncConfiguration:
    """Immutable settings snapshot for one sync operation."""

    credentials: Credentials = field(default_factory=Credentials)
    repository: str = ""
    """Repository name (owned by ``credentials.username``)"""

    branch: str = DEFAULT_BRANCH
    excluded_folders: tuple[str, ...] = DEFAULT_EXCLUDED_FOLDERS
    excluded_files: tuple[str, ...] = DEFAULT_EXCLUDED_FILES
    commit_message_template: str = DEFAULT_COMMIT_MESSAGE
    auto_sync: bool = DEFAULT_AUTO_SYNC
    auto_sync_interval_minutes: int = DEFAULT_AUTO_SYNC_INTERVAL
    """Both consumed by an external scheduler only"""

    use_trash: bool = DEFAULT_USE_TRASH
    """Move files deleted by a pull to the system trash"""

    api_url: str = DEFAULT_API_URL

    def __post_init__(self) -> None:
        low, high = AUTO_SYNC_INTERVAL_RANGE
        if not low <= self.auto_sync_interval_minutes <= high:
            raise GitSyncConfigError(
                f"Auto sync interval must be between {low} and {high} minutes, "
                f"got {self.auto_sync_interval_minutes}"
            )

    @property
    def is_configured(self) -> bool:
        """Structural check: username, token, repository and branch are set."""
        return all(
            value.strip()
            for value in (
                self.credentials.username,
                self.credentials.token,
                self.repository,
                self.branch,
            )
        )

    @property
    def full_name(self) -> str:
        """``owner/repository`` identifier."""
        return f"{self.credentials.username}/{self.repository}"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SyncConfiguration":
        """Create a configuration from plugin-style settings.

        Args:
            data: Mapping with keys such as ``githubUsername``, ``githubToken``,
                ``repositoryName``, ``branch``, ``excludedFolders``,
                ``excludedFiles``, ``commitMessage``, ``autoSync``,
                ``autoSyncInterval`` and ``useTrash``.
                List settings may be lists or newline-delimited strings.

        Returns:
            SyncConfiguration instance

        Raises:
            GitSyncConfigError: If a value has the wrong type or range
        """
        try:
            interval = int(data.get("autoSyncInterval", DEFAULT_AUTO_SYNC_INTERVAL))
        except (TypeError, ValueError) as e:
            raise GitSyncConfigError(
                f"Invalid autoSyncInterval: {data.get('autoSyncInterval')!r}"
            ) from e

        folders = data.get("excludedFolders")
        files = data.get("excludedFiles")
        return cls(
            credentials=Credentials(
                username=str(data.get("githubUsername", "")).strip(),
                token=str(data.get("githubToken", "")).strip(),
            ),
            repository=str(data.get("repositoryName", "")).strip(),
            branch=str(data.get("branch", "")).strip() or DEFAULT_BRANCH,
            excluded_folders=(
                DEFAULT_EXCLUDED_FOLDERS
                if folders is None
                else parse_list_setting(folders)
            ),
            excluded_files=(
                DEFAULT_EXCLUDED_FILES if files is None else parse_list_setting(files)
            ),
            commit_message_template=str(data.get("commitMessage", ""))
            or DEFAULT_COMMIT_MESSAGE,
            auto_sync=_flag(data, "autoSync", DEFAULT_AUTO_SYNC),
            auto_sync_interval_minutes=interval,
            use_trash=_flag(data, "useTrash", DEFAULT_USE_TRASH),
            api_url=str(data.get("apiUrl", "")).strip() or DEFAULT_API_URL,
        )

    def with_env_overrides(
        self, environ: Optional[Mapping[str, str]] = None
    ) -> "SyncConfiguration":
        """Return a copy with ``GITSYNC_*`` environment variables applied."""
        env = os.environ if environ is None else environ
        credentials = Credentials(
            username=env.get(ENV_USERNAME, self.credentials.username).strip(),
            token=env.get(ENV_TOKEN, self.credentials.token).strip(),
        )
        return replace(
            self,
            credentials=credentials,
            repository=env.get(ENV_REPOSITORY, self.repository).strip(),
            branch=env.get(ENV_BRANCH, self.branch).strip() or DEFAULT_BRANCH,
            api_url=env.get(ENV_API_URL, self.api_url).strip() or DEFAULT_API_URL,
        )


def get_config_path() -> Path:
    """Default settings file location (~/.config/pygitsync/config.json)."""
    return Path.home() / ".config" / "pygitsync" / "config.json"


def load_configuration(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> SyncConfiguration:
    """Load configuration from a JSON settings file plus environment.

    A missing file yields defaults; environment variables are applied last.

    Args:
        path: Settings file (defaults to ``get_config_path()``)
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        SyncConfiguration

    Raises:
        GitSyncConfigError: If the file exists but cannot be parsed
    """
    config_file = path or get_config_path()
    data: dict[str, Any] = {}

    if config_file.exists():
        try:
            with open(config_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise GitSyncConfigError(
                f"Failed to read config file {config_file}: {e}"
            ) from e
        if not isinstance(data, dict):
            raise GitSyncConfigError(
                f"Config file {config_file} must contain a JSON object"
            )
        logger.debug(f"Loaded configuration from {config_file}")
    else:
        logger.debug(f"No config file at {config_file}, using defaults")

    return SyncConfiguration.from_dict(data).with_env_overrides(environ)
