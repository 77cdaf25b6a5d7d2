"""hybridsync - local-first JSON document storage with remote synchronization."""

from .config import Config, load_config
from .hybrid_storage import HybridStorage
from .log import JSONFormatter, setup_logging
from .storage import (
    MISSING,
    AsyncStorage,
    InvalidKeyError,
    InvalidValueError,
    LocalStore,
    MetaIndex,
    RemoteStore,
    StorageError,
    ValidationError,
)
from .sync import (
    CommitQueue,
    LoggingObserver,
    RemoveCommit,
    SetCommit,
    StorageSynchronizer,
    SyncObserver,
    SyncState,
    UpdateCommit,
    diff,
)

__version__ = "0.1.0"

__all__ = [
    "MISSING",
    "AsyncStorage",
    "CommitQueue",
    "Config",
    "HybridStorage",
    "InvalidKeyError",
    "InvalidValueError",
    "JSONFormatter",
    "LocalStore",
    "LoggingObserver",
    "MetaIndex",
    "RemoteStore",
    "RemoveCommit",
    "SetCommit",
    "StorageError",
    "StorageSynchronizer",
    "SyncObserver",
    "SyncState",
    "UpdateCommit",
    "ValidationError",
    "diff",
    "load_config",
    "setup_logging",
]
