"""Lifecycle hooks for sync activity."""

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .commit import Patch, SyncCommit
    from .synchronizer import SyncState

logger = logging.getLogger(__name__)


class SyncObserver:
    """Receives notifications at defined points of a sync cycle.

    All hooks are no-ops; subclass and override the ones you need.
    """

    def drain_started(self, queue_name: str, pending: int) -> None:
        pass

    def drain_finished(self, queue_name: str, drained: int) -> None:
        pass

    def slice_timed_out(self, queue_name: str) -> None:
        pass

    def patches_computed(self, patches: "list[Patch]") -> None:
        pass

    def commit_applied(self, commit: "SyncCommit") -> None:
        pass

    def commit_failed(self, commit: "SyncCommit", error: Exception) -> None:
        pass

    def state_changed(self, old: "SyncState", new: "SyncState") -> None:
        pass


def _commit_fields(commit: "SyncCommit") -> dict[str, str]:
    return {
        "key": commit.key,
        "commit_type": commit.type,
        "target": commit.target.value,
    }


class LoggingObserver(SyncObserver):
    """Observer that reports sync activity through the logging module.

    Records carry the queue name, commit key, commit type, target and sync
    state as attributes, which ``JSONFormatter`` emits as separate fields.
    """

    def __init__(self, log: logging.Logger | None = None):
        self._log = log or logger

    def drain_started(self, queue_name: str, pending: int) -> None:
        self._log.debug(
            f"Queue '{queue_name}' drain started, pending={pending}",
            extra={"queue": queue_name},
        )

    def drain_finished(self, queue_name: str, drained: int) -> None:
        self._log.info(
            f"Queue '{queue_name}' drained {drained} commit(s)",
            extra={"queue": queue_name},
        )

    def slice_timed_out(self, queue_name: str) -> None:
        self._log.debug(
            f"Queue '{queue_name}' slice timed out, resubmitting",
            extra={"queue": queue_name},
        )

    def patches_computed(self, patches: "list[Patch]") -> None:
        if not patches:
            self._log.debug("Local store already matches remote")
            return
        self._log.info(f"Computed {len(patches)} patch(es) from remote")
        for patch in patches:
            self._log.debug(
                f"  {patch.type} {patch.key!r} ({patch.reason.value})",
                extra=_commit_fields(patch),
            )

    def commit_applied(self, commit: "SyncCommit") -> None:
        self._log.debug(
            f"Applied {commit.type} {commit.key!r} -> {commit.target.value}",
            extra=_commit_fields(commit),
        )

    def commit_failed(self, commit: "SyncCommit", error: Exception) -> None:
        self._log.warning(
            f"Failed to apply {commit.type} {commit.key!r} "
            f"-> {commit.target.value}: {error}",
            extra=_commit_fields(commit),
        )

    def state_changed(self, old: "SyncState", new: "SyncState") -> None:
        self._log.info(
            f"Sync state {old.name} -> {new.name}", extra={"state": new.value}
        )
