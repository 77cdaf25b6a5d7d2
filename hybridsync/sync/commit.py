"""Sync commits: pending mutation intents against one of the two stores."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar, Union

from ..storage.base import MISSING, InvalidValueError, validate_key
from ..storage.serializer import JSONSerializer

_serializer = JSONSerializer()


class Target(str, Enum):
    """Store a commit mutates."""

    LOCAL = "local"
    REMOTE = "remote"


class Reason(str, Enum):
    """Why a commit was created."""

    LOCAL_WRITE = "local-write"
    LOCAL_DELETE = "local-delete"
    REMOTE_ADDED = "remote-added"
    REMOTE_UPDATED = "remote-updated"
    REMOTE_REMOVED = "remote-removed"


class Staging(str, Enum):
    """Where a commit came from."""

    QUEUED = "queued"  # Direct API call
    PATCHING = "patching"  # Reconciliation


@dataclass(frozen=True)
class SetCommit:
    """Write a carried value."""

    type: ClassVar[str] = "set"

    key: str
    value: Any
    target: Target = Target.REMOTE
    reason: Reason = Reason.LOCAL_WRITE
    staging: Staging = Staging.QUEUED

    def __post_init__(self):
        validate_key(self.key)
        if self.value is MISSING:
            raise InvalidValueError(f"Set commit for {self.key!r} carries no value")
        # Keep a detached copy so later mutation by the caller is not pushed
        data = _serializer.serialize(self.value)
        object.__setattr__(self, "value", _serializer.deserialize(data))

    def to_dict(self) -> dict[str, Any]:
        return {**_base_dict(self), "value": self.value}


@dataclass(frozen=True)
class UpdateCommit:
    """Copy the current value from the non-target store into the target."""

    type: ClassVar[str] = "update"

    key: str
    target: Target = Target.LOCAL
    reason: Reason = Reason.REMOTE_UPDATED
    staging: Staging = Staging.PATCHING

    def __post_init__(self):
        validate_key(self.key)

    def to_dict(self) -> dict[str, Any]:
        return _base_dict(self)


@dataclass(frozen=True)
class RemoveCommit:
    """Remove a key."""

    type: ClassVar[str] = "remove"

    key: str
    target: Target = Target.REMOTE
    reason: Reason = Reason.LOCAL_DELETE
    staging: Staging = Staging.QUEUED

    def __post_init__(self):
        validate_key(self.key)

    def to_dict(self) -> dict[str, Any]:
        return _base_dict(self)


SyncCommit = Union[SetCommit, UpdateCommit, RemoveCommit]

# Reconciliation output is restricted to these
Patch = Union[UpdateCommit, RemoveCommit]

_COMMIT_TYPES: dict[str, type] = {
    SetCommit.type: SetCommit,
    UpdateCommit.type: UpdateCommit,
    RemoveCommit.type: RemoveCommit,
}


def _base_dict(commit: SyncCommit) -> dict[str, Any]:
    return {
        "type": commit.type,
        "target": commit.target.value,
        "key": commit.key,
        "reason": commit.reason.value,
        "staging": commit.staging.value,
    }


def commit_from_dict(data: dict[str, Any]) -> SyncCommit:
    """Create a commit from its persisted dictionary form.

    Raises:
        ValueError: If the type, target, reason or staging is unknown.
        KeyError: If a required field is missing.
    """
    commit_type = data["type"]
    cls = _COMMIT_TYPES.get(commit_type)
    if cls is None:
        raise ValueError(f"Unknown commit type: {commit_type!r}")

    fields: dict[str, Any] = {
        "key": data["key"],
        "target": Target(data["target"]),
        "reason": Reason(data["reason"]),
        "staging": Staging(data["staging"]),
    }
    if cls is SetCommit:
        fields["value"] = data["value"]
    return cls(**fields)
