"""Sync engine: filtering, copying, git orchestration and Smart Merge."""

from .copier import ChangeCopier, PullStats
from .engine import DetailedStatus, SyncEngine, SyncState, SyncStatus
from .filter import FilterEngine
from .lock import SyncLock
from .merge import MergeDecision, MergeReport, SmartMerge, Winner, decide
from .repository import GitRepository
from .scheduler import AutoSyncScheduler, ChangeDebouncer
from .service import SyncService

__all__ = [
    "ChangeCopier",
    "PullStats",
    "SyncEngine",
    "SyncState",
    "SyncStatus",
    "DetailedStatus",
    "FilterEngine",
    "SyncLock",
    "GitRepository",
    "SmartMerge",
    "MergeDecision",
    "MergeReport",
    "Winner",
    "decide",
    "AutoSyncScheduler",
    "ChangeDebouncer",
    "SyncService",
]
