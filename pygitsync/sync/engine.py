"""Core sync engine for executing push, pull and sync operations."""

import asyncio
import logging
import time
from collections.abc import Sequence
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from ..api import GitHubClient
from ..config import SyncConfiguration
from ..exceptions import (
    GitSyncBusyError,
    GitSyncCancelledError,
    GitSyncConflictError,
    GitSyncError,
    GitSyncLocalIOError,
    GitSyncNotConfiguredError,
    GitSyncNotFoundError,
)
from ..models import (
    ChangeAction,
    FileChange,
    FileEntry,
    PathFailure,
    SyncResult,
    TreeSnapshot,
)
from ..utils import (
    DEFAULT_MAX_CONFLICT_RETRIES,
    DEFAULT_MAX_WORKERS,
    render_commit_message,
    to_epoch_millis,
)
from .comparator import FileComparator, agreed_state
from .modes import SyncMode
from .operations import SyncOperations
from .scanner import DirectoryScanner, ExclusionRules, ScanReport
from .state import SyncState, SyncStateManager

logger = logging.getLogger(__name__)


class SyncPhase(str, Enum):
    """Lifecycle of a single sync operation."""

    IDLE = "idle"
    SCANNING = "scanning"
    RECONCILING = "reconciling"
    APPLYING = "applying"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class _Plan:
    """Snapshots and actions for one reconciliation round."""

    def __init__(
        self,
        local: TreeSnapshot,
        remote: TreeSnapshot,
        actions: list[ChangeAction],
        baseline: TreeSnapshot,
        include: Callable[[str], bool],
    ):
        self.local = local
        self.remote = remote
        self.actions = actions
        self.baseline = baseline
        """Last-synced state for every path both sides already agree on"""

        self.include = include
        """Paths taking part in this round (not excluded, not skipped by the scan)"""

    @property
    def uploads(self) -> list[ChangeAction]:
        return [a for a in self.actions if a.is_upload]

    @property
    def downloads(self) -> list[ChangeAction]:
        return [a for a in self.actions if a.is_download]


class SyncEngine:
    """Core sync engine that orchestrates vault synchronization.

    One engine owns the last-synced snapshot of a vault/repository pair and
    runs at most one operation at a time.

    Examples:
        >>> engine = SyncEngine(config, Path("~/vault").expanduser())
        >>> result = await engine.sync()
        >>> print(f"Pushed {result.pushed}, pulled {result.pulled}")
    """

    def __init__(
        self,
        config: SyncConfiguration,
        vault_path: Path,
        client: Optional[GitHubClient] = None,
        state_manager: Optional[SyncStateManager] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        max_conflict_retries: int = DEFAULT_MAX_CONFLICT_RETRIES,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize sync engine.

        Args:
            config: Immutable sync configuration
            vault_path: Local vault directory
            client: GitHub API client (created from config when omitted)
            state_manager: Last-synced state persistence
            max_workers: Concurrent local file reads/writes
            max_conflict_retries: Re-reconciliations after a rejected commit
            clock: Source of local time (commit messages, timestamps)
        """
        self.config = config
        self.vault_path = Path(vault_path)
        self._client = client
        self.state_manager = state_manager or SyncStateManager()
        self.max_workers = max(1, max_workers)
        self.max_conflict_retries = max_conflict_retries
        self.clock = clock
        self.rules = ExclusionRules.from_config(config)
        self.phase = SyncPhase.IDLE
        self._busy = False
        self._cancel_requested = False

    # =========================
    # Public operations
    # =========================

    @property
    def client(self) -> GitHubClient:
        if self._client is None:
            self._client = GitHubClient.from_config(self.config)
        return self._client

    @property
    def state_key(self) -> str:
        return f"{self.config.full_name}@{self.config.branch}"

    @property
    def is_running(self) -> bool:
        return self._busy

    def is_configured(self) -> bool:
        """Check that credentials, repository and branch are set (no network)."""
        return self.config.is_configured

    def load_state(self) -> SyncState:
        state = self.state_manager.load_state(self.vault_path, self.state_key)
        if state is None:
            return SyncState(
                vault_path=str(self.vault_path.resolve()),
                repository=self.state_key,
            )
        return state

    @property
    def last_sync_timestamp(self) -> Optional[int]:
        """Epoch milliseconds of the last successful operation."""
        return self.load_state().last_sync

    async def verify_connection(self) -> bool:
        """Check credentials and repository access; never raises."""
        if not self.is_configured():
            return False
        return await self.client.verify_connection()

    async def push(self) -> SyncResult:
        """Upload local changes in a single commit."""
        return await self._run(SyncMode.PUSH)

    async def pull(self) -> SyncResult:
        """Download remote changes into the vault."""
        return await self._run(SyncMode.PULL)

    async def sync(self) -> SyncResult:
        """Push local changes, then pull remote changes."""
        return await self._run(SyncMode.SYNC)

    async def plan(self, mode: SyncMode = SyncMode.SYNC) -> list[ChangeAction]:
        """Compute the actions an operation would apply, without applying them."""
        self._require_configured()
        self._acquire()
        try:
            state = self.load_state()
            plan = await self._reconcile(mode, state.files)
            return plan.actions
        finally:
            self._release()

    async def aclose(self) -> None:
        """Close the API client if one was created."""
        if self._client is not None:
            await self._client.aclose()

    def cancel(self) -> None:
        """Request cancellation at the next phase boundary."""
        if self._busy:
            logger.info("Cancellation requested")
            self._cancel_requested = True

    # =========================
    # Orchestration
    # =========================

    def _require_configured(self) -> None:
        if not self.is_configured():
            raise GitSyncNotConfiguredError(
                "GitHub username, token, repository and branch must be configured"
            )

    def _acquire(self) -> None:
        if self._busy:
            raise GitSyncBusyError("A sync operation is already running")
        self._busy = True
        self._cancel_requested = False

    def _release(self) -> None:
        self._busy = False
        self._cancel_requested = False

    def _set_phase(self, phase: SyncPhase) -> None:
        logger.debug(f"Sync phase: {self.phase.value} -> {phase.value}")
        self.phase = phase

    def _checkpoint(self, result: Optional[SyncResult] = None) -> None:
        if self._cancel_requested:
            raise GitSyncCancelledError("Sync cancelled", partial_result=result)

    async def _run(self, mode: SyncMode) -> SyncResult:
        self._require_configured()
        self._acquire()
        result = SyncResult(timestamp=self.clock())
        start_time = time.time()
        logger.info(f"Starting {mode.value} of {self.vault_path} <-> {self.state_key}")

        try:
            await self._execute(mode, result)
        except GitSyncError as e:
            self._set_phase(SyncPhase.FAILED)
            if e.partial_result is None:
                e.partial_result = result
            logger.warning(f"{mode.value} failed: {e}")
            raise
        except OSError as e:
            self._set_phase(SyncPhase.FAILED)
            raise GitSyncLocalIOError(
                str(self.vault_path), str(e), partial_result=result
            ) from e
        finally:
            self._release()

        elapsed = time.time() - start_time
        logger.info(
            f"{mode.value} complete in {elapsed:.2f}s: pushed {result.pushed}, "
            f"pulled {result.pulled}, conflicts {len(result.conflicts)}"
        )
        return result

    async def _fetch_remote(
        self, create_missing: bool, last_synced: TreeSnapshot
    ) -> TreeSnapshot:
        """Fetch the remote snapshot.

        A missing branch or repository reads as an empty remote only before
        the first successful sync; afterwards it is an error.
        """
        try:
            return await self.client.list_tree(self.config.branch)
        except GitSyncNotFoundError as e:
            if len(last_synced):
                raise GitSyncNotFoundError(
                    f"{self.state_key} was synced before but is now missing: {e}"
                ) from e
            if create_missing and await self.client.ensure_repository():
                try:
                    return await self.client.list_tree(self.config.branch)
                except GitSyncNotFoundError:
                    pass
            logger.info(
                f"Branch {self.config.branch} not found, treating remote as empty"
            )
            return TreeSnapshot.empty()

    def _participating(self, report: ScanReport) -> Callable[[str], bool]:
        """Predicate for paths that are neither excluded nor skipped by the scan."""
        return lambda path: self.rules(path) and not report.is_skipped(path)

    async def _reconcile(
        self,
        mode: SyncMode,
        last_synced: TreeSnapshot,
        previous: Optional[_Plan] = None,
        result: Optional[SyncResult] = None,
    ) -> _Plan:
        """Scan (unless a previous round is given), fetch remote and reconcile."""
        if previous is None:
            self._set_phase(SyncPhase.SCANNING)
            scanner = DirectoryScanner(self.vault_path, max_workers=self.max_workers)
            report = await scanner.scan(self.config, self.rules)
            if result is not None:
                result.skipped = report.skipped
            local = report.snapshot
            include = self._participating(report)
        else:
            local, include = previous.local, previous.include

        remote = await self._fetch_remote(mode.allows_upload, last_synced)
        self._checkpoint(result)

        self._set_phase(SyncPhase.RECONCILING)
        comparator = FileComparator(mode, include=include)
        actions = comparator.compare(local, remote, last_synced)

        baseline = agreed_state(
            local.filter(include), remote.filter(include), last_synced.filter(include)
        )
        # Excluded and skipped paths keep their last-synced entries
        held = last_synced.filter(lambda path: not include(path))
        baseline = baseline.with_changes(updates=held.values())
        logger.debug(
            f"Reconciled {len(local)} local / {len(remote)} remote / "
            f"{len(last_synced)} synced: {len(actions)} action(s)"
        )
        return _Plan(local, remote, actions, baseline, include)

    async def _execute(self, mode: SyncMode, result: SyncResult) -> None:
        state = self.load_state()
        plan = await self._reconcile(mode, state.files, result=result)
        self._record_plan(plan, result)
        self._checkpoint(result)

        applied: dict[str, Optional[FileEntry]] = {}
        head_sha = plan.remote.head_sha

        try:
            self._set_phase(SyncPhase.APPLYING)
            if mode.allows_upload:
                plan = await self._push_with_retries(mode, state, plan, result, applied)
                head_sha = plan.remote.head_sha
                self._checkpoint(result)

            if mode.allows_download:
                await self._pull_changes(plan.downloads, result, applied)
        except GitSyncError:
            self._persist(state, plan.baseline, applied, head_sha, successful=False)
            raise

        self._persist(state, plan.baseline, applied, head_sha, successful=True)
        result.timestamp = self.clock()
        self._set_phase(SyncPhase.DONE)

    def _record_plan(self, plan: _Plan, result: SyncResult) -> None:
        result.actions = list(plan.actions)
        result.conflicts = []
        for action in plan.actions:
            if action.is_conflict:
                logger.warning(f"Conflict: {action.path}: {action.reason}")
                result.add_conflict(action.path)

    async def _push_with_retries(
        self,
        mode: SyncMode,
        state: SyncState,
        plan: _Plan,
        result: SyncResult,
        applied: dict[str, Optional[FileEntry]],
    ) -> _Plan:
        """Commit uploads; re-reconcile against the fresh remote on conflict.

        Returns:
            Plan whose remote snapshot reflects the post-push state
        """
        attempt = 0
        while True:
            try:
                post_push = await self._push_changes(plan, result, applied)
                return _Plan(
                    plan.local, post_push, plan.actions, plan.baseline, plan.include
                )
            except GitSyncConflictError as e:
                attempt += 1
                if attempt > self.max_conflict_retries:
                    logger.warning(
                        f"Branch kept moving after {self.max_conflict_retries} "
                        "re-reconciliations, giving up"
                    )
                    raise
                logger.warning(
                    f"Commit rejected ({e}); re-reconciling "
                    f"(attempt {attempt}/{self.max_conflict_retries})"
                )
                self._checkpoint(result)
                plan = await self._reconcile(mode, state.files, previous=plan)
                self._record_plan(plan, result)
                self._set_phase(SyncPhase.APPLYING)

    async def _push_changes(
        self,
        plan: _Plan,
        result: SyncResult,
        applied: dict[str, Optional[FileEntry]],
    ) -> TreeSnapshot:
        """Read local files and commit all uploads at once.

        Returns:
            Remote snapshot after the commit
        """
        uploads = plan.uploads
        if not uploads:
            return plan.remote

        semaphore = asyncio.Semaphore(self.max_workers)
        operations = SyncOperations(
            self.client, self.vault_path, use_trash=self.config.use_trash
        )
        failures: list[PathFailure] = []

        async def prepare(
            action: ChangeAction,
        ) -> Optional[tuple[FileChange, Optional[FileEntry]]]:
            async with semaphore:
                try:
                    return await operations.prepare_upload(action)
                except GitSyncLocalIOError as e:
                    logger.warning(f"Skipping upload of {action.path}: {e}")
                    failures.append(PathFailure(action.path, str(e)))
                    return None

        prepared = [
            p for p in await asyncio.gather(*(prepare(a) for a in uploads)) if p
        ]
        changes = [change for change, _ in prepared]

        commit_sha = plan.remote.head_sha
        if changes:
            message = render_commit_message(
                self.config.commit_message_template, self.clock()
            )
            commit_sha = await self.client.write_files(
                changes, message, parent_sha=plan.remote.head_sha
            )

        result.failures.extend(failures)
        result.pushed += len(changes)
        result.commit_sha = commit_sha

        updates = [entry for _, entry in prepared if entry is not None]
        removals = [change.path for change in changes if change.is_delete]
        for entry in updates:
            applied[entry.path] = entry
        for path in removals:
            applied[path] = None

        return plan.remote.with_changes(
            updates=updates, removals=removals, head_sha=commit_sha
        )

    async def _pull_changes(
        self,
        downloads: Sequence[ChangeAction],
        result: SyncResult,
        applied: dict[str, Optional[FileEntry]],
    ) -> None:
        """Apply downloads with bounded concurrency, deletions last.

        A remote failure stops the remaining downloads; local failures are
        recorded per path.
        """
        if not downloads:
            return

        operations = SyncOperations(
            self.client, self.vault_path, use_trash=self.config.use_trash
        )
        semaphore = asyncio.Semaphore(self.max_workers)
        remote_errors: list[GitSyncError] = []

        async def apply(action: ChangeAction) -> None:
            async with semaphore:
                if remote_errors:
                    return
                try:
                    entry = await operations.download(action)
                except GitSyncLocalIOError as e:
                    logger.warning(f"Failed to apply {action.path}: {e}")
                    result.failures.append(PathFailure(action.path, str(e)))
                    return
                except GitSyncError as e:
                    remote_errors.append(e)
                    return
                applied[action.path] = entry
                result.pulled += 1

        writes = [a for a in downloads if a.remote_hash is not None]
        deletes = [a for a in downloads if a.remote_hash is None]
        for wave in (writes, deletes):
            await asyncio.gather(*(apply(a) for a in wave))
            if remote_errors:
                raise remote_errors[0]

    def _persist(
        self,
        state: SyncState,
        baseline: TreeSnapshot,
        applied: dict[str, Optional[FileEntry]],
        head_sha: Optional[str],
        successful: bool,
    ) -> None:
        """Save the last-synced snapshot for the work that completed."""
        self._set_phase(SyncPhase.PERSISTING)
        files = baseline.with_changes(
            updates=[entry for entry in applied.values() if entry is not None],
            removals=[path for path, entry in applied.items() if entry is None],
            head_sha=head_sha,
        )
        new_state = SyncState(
            vault_path=str(self.vault_path.resolve()),
            repository=self.state_key,
            files=files,
            head_sha=head_sha,
            last_sync=to_epoch_millis(self.clock()) if successful else state.last_sync,
        )
        self.state_manager.save_state(self.vault_path, new_state)
