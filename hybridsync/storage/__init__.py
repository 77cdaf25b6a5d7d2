"""Storage backends for hybridsync.

Provides:
- The AsyncStorage contract and meta index type
- A SQLite-backed local store
- An HTTP object-store client for the remote side
"""

from .base import (
    MISSING,
    RESERVED_PREFIX,
    AsyncStorage,
    CorruptQueueError,
    InvalidKeyError,
    InvalidValueError,
    MetaIndex,
    StorageError,
    ValidationError,
)
from .local_store import LocalStore
from .remote_store import RemoteStore
from .serializer import JSONSerializer, Serializer, drop_quotes, md5_fingerprint

__all__ = [
    "MISSING",
    "RESERVED_PREFIX",
    "AsyncStorage",
    "CorruptQueueError",
    "InvalidKeyError",
    "InvalidValueError",
    "JSONSerializer",
    "LocalStore",
    "MetaIndex",
    "RemoteStore",
    "Serializer",
    "StorageError",
    "ValidationError",
    "drop_quotes",
    "md5_fingerprint",
]
