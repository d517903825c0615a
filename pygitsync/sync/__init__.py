"""Sync engine for PyGitSync - push/pull/sync of a vault with a repository."""

from .comparator import FileComparator, agreed_state, reconcile
from .engine import SyncEngine, SyncPhase
from .modes import SyncMode
from .operations import SyncOperations
from .scanner import DirectoryScanner, ExclusionRules, ScanReport
from .state import SyncState, SyncStateManager

__all__ = [
    "SyncEngine",
    "SyncPhase",
    "SyncMode",
    "SyncOperations",
    "DirectoryScanner",
    "ExclusionRules",
    "ScanReport",
    "FileComparator",
    "reconcile",
    "agreed_state",
    "SyncState",
    "SyncStateManager",
]
