"""Three-way comparison of local, remote and last-synced snapshots."""

from typing import Callable, Optional

from ..models import ActionKind, ChangeAction, ConflictResolution, TreeSnapshot
from .modes import SyncMode


def _classify(
    path: str,
    local_hash: Optional[str],
    remote_hash: Optional[str],
    base_hash: Optional[str],
) -> Optional[ChangeAction]:
    """Classify a single path; returns None when no action is needed."""
    local_changed = local_hash != base_hash
    remote_changed = remote_hash != base_hash

    def action(
        kind: ActionKind,
        reason: str,
        resolution: Optional[ConflictResolution] = None,
    ) -> ChangeAction:
        return ChangeAction(
            kind=kind,
            path=path,
            local_hash=local_hash,
            remote_hash=remote_hash,
            base_hash=base_hash,
            resolution=resolution,
            reason=reason,
        )

    if not local_changed and not remote_changed:
        return None

    if local_changed and not remote_changed:
        if local_hash is None:
            return action(ActionKind.UPLOAD_DELETE, "Deleted locally")
        if remote_hash is None:
            return action(ActionKind.UPLOAD_CREATE, "New local file")
        return action(ActionKind.UPLOAD_UPDATE, "Changed locally")

    if remote_changed and not local_changed:
        if remote_hash is None:
            return action(ActionKind.DOWNLOAD_DELETE, "Deleted remotely")
        if local_hash is None:
            return action(ActionKind.DOWNLOAD_CREATE, "New remote file")
        return action(ActionKind.DOWNLOAD_UPDATE, "Changed remotely")

    # Both sides changed
    if local_hash == remote_hash:
        return None
    if local_hash is None:
        return action(
            ActionKind.CONFLICT_SKIP,
            "Deleted locally but changed remotely; remote version restored",
            ConflictResolution.DOWNLOAD_REMOTE,
        )
    if remote_hash is None:
        return action(
            ActionKind.CONFLICT_SKIP,
            "Changed locally but deleted remotely; local version re-uploaded",
            ConflictResolution.UPLOAD_LOCAL,
        )
    return action(
        ActionKind.CONFLICT_SKIP,
        "Changed on both sides; local version kept",
        ConflictResolution.KEEP_LOCAL,
    )


def reconcile(
    local: TreeSnapshot,
    remote: TreeSnapshot,
    last_synced: TreeSnapshot,
) -> list[ChangeAction]:
    """Compute the actions needed to converge local and remote.

    Every path in the union of the three snapshots is classified by
    comparing each side's hash with the last-synced hash. Creations,
    updates and conflicts come first, deletions last; each group is sorted
    by path.

    Args:
        local: Current local snapshot
        remote: Current remote snapshot
        last_synced: Snapshot recorded after the previous successful sync

    Returns:
        Ordered list of ChangeAction
    """
    all_paths = set(local) | set(remote) | set(last_synced)
    writes: list[ChangeAction] = []
    deletes: list[ChangeAction] = []

    for path in sorted(all_paths):
        change = _classify(
            path,
            local.hash_of(path),
            remote.hash_of(path),
            last_synced.hash_of(path),
        )
        if change is None:
            continue
        if change.is_delete:
            deletes.append(change)
        else:
            writes.append(change)

    return writes + deletes


def agreed_state(
    local: TreeSnapshot,
    remote: TreeSnapshot,
    last_synced: TreeSnapshot,
) -> TreeSnapshot:
    """Last-synced snapshot updated with every path both sides agree on.

    Paths with identical content on both sides take the local entry; paths
    absent on both sides are dropped. Everything else keeps its previous
    last-synced entry until an action for it succeeds.
    """
    updates = []
    removals = []
    for path in set(local) | set(remote) | set(last_synced):
        local_hash = local.hash_of(path)
        remote_hash = remote.hash_of(path)
        if local_hash is None and remote_hash is None:
            removals.append(path)
        elif local_hash == remote_hash:
            updates.append(local[path])
    return last_synced.with_changes(updates=updates, removals=removals)


class FileComparator:
    """Reconciles snapshots for a sync mode and exclusion predicate."""

    def __init__(
        self,
        sync_mode: SyncMode,
        include: Optional[Callable[[str], bool]] = None,
    ):
        """Initialize file comparator.

        Args:
            sync_mode: Sync mode restricting the action set
            include: Predicate returning True for paths that take part in
                the sync (excluded paths are dropped from all snapshots)
        """
        self.sync_mode = sync_mode
        self.include = include

    def _restrict(self, snapshot: TreeSnapshot) -> TreeSnapshot:
        if self.include is None:
            return snapshot
        return snapshot.filter(self.include)

    def allows(self, change: ChangeAction) -> bool:
        """Whether the mode allows applying a change (conflicts always reported)."""
        if change.is_upload:
            return self.sync_mode.allows_upload
        if change.is_download:
            return self.sync_mode.allows_download
        return change.is_conflict

    def compare(
        self,
        local: TreeSnapshot,
        remote: TreeSnapshot,
        last_synced: TreeSnapshot,
    ) -> list[ChangeAction]:
        """Reconcile snapshots and keep the actions the mode permits.

        Conflicts are kept in every mode so they are always reported, even
        when their resolution is not applied by this mode.

        Returns:
            Ordered list of ChangeAction
        """
        actions = reconcile(
            self._restrict(local),
            self._restrict(remote),
            self._restrict(last_synced),
        )
        return [a for a in actions if a.is_conflict or self.allows(a)]
