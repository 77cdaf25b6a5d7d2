"""Storage contract shared by the local and remote stores."""

from abc import ABC, abstractmethod
from typing import Any

# Key -> {"etag": fingerprint}
MetaIndex = dict[str, dict[str, str]]

# Keys with this prefix hold store bookkeeping (meta index, commit queues)
RESERVED_PREFIX = "@"


class _Missing:
    """Sentinel type for "no value" (distinct from a stored JSON null)."""

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class StorageError(Exception):
    """Base class for storage errors raised by hybridsync."""


class ValidationError(StorageError):
    """Input rejected before any I/O was attempted."""


class InvalidValueError(ValidationError):
    """The value cannot be stored (absent or not JSON-serializable)."""


class InvalidKeyError(ValidationError):
    """The key is empty, not a string, or uses the reserved prefix."""


class CorruptQueueError(StorageError):
    """Persisted commit queue could not be decoded."""


def validate_key(key: Any) -> str:
    """Check that a user-supplied key is usable.

    Raises:
        InvalidKeyError: If the key is not a non-empty string or is reserved.
    """
    if not isinstance(key, str) or not key:
        raise InvalidKeyError(f"Key must be a non-empty string, got {key!r}")
    if key.startswith(RESERVED_PREFIX):
        raise InvalidKeyError(
            f"Keys starting with {RESERVED_PREFIX!r} are reserved: {key!r}"
        )
    return key


class AsyncStorage(ABC):
    """Abstract base for key-value document stores.

    Implementations keep a meta index (key -> fingerprint) in step with the
    stored values so that two stores can be compared without transferring
    the values themselves.
    """

    instance_name: str

    @abstractmethod
    async def get(self, key: str, default: Any = None) -> Any:
        """Return the value stored under key, or default if absent."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> str:
        """Store value under key.

        Returns:
            The fingerprint of the stored value.
        """
        pass

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Remove key. Removing a missing key is not an error."""
        pass

    @abstractmethod
    async def meta_index(self) -> MetaIndex:
        """Return a snapshot of the store's meta index."""
        pass

    async def keys(self) -> list[str]:
        """List all keys in the store."""
        return list((await self.meta_index()).keys())
