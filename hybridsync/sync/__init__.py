"""Sync engine for hybridsync stores.

Provides a durable commit queue for local changes and meta index
reconciliation for pulling remote changes.
"""

from .commit import (
    Patch,
    Reason,
    RemoveCommit,
    SetCommit,
    Staging,
    SyncCommit,
    Target,
    UpdateCommit,
    commit_from_dict,
)
from .commit_queue import CommitQueue
from .observer import LoggingObserver, SyncObserver
from .reconciler import diff
from .scheduler import AsyncioIdleScheduler, IdleScheduler, IdleSlice
from .synchronizer import StorageSynchronizer, SyncState

__all__ = [
    "AsyncioIdleScheduler",
    "CommitQueue",
    "IdleScheduler",
    "IdleSlice",
    "LoggingObserver",
    "Patch",
    "Reason",
    "RemoveCommit",
    "SetCommit",
    "Staging",
    "StorageSynchronizer",
    "SyncCommit",
    "SyncObserver",
    "SyncState",
    "Target",
    "UpdateCommit",
    "commit_from_dict",
    "diff",
]
