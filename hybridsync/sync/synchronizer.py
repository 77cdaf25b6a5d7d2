"""Synchronizer between a local and a remote store."""

import logging
from datetime import datetime
from enum import Enum
from typing import Any

from ..storage.base import MISSING, AsyncStorage
from ..storage.local_store import LocalStore
from .commit import Patch, RemoveCommit, SetCommit, SyncCommit, Target, UpdateCommit
from .commit_queue import CommitQueue
from .observer import LoggingObserver, SyncObserver
from .reconciler import diff
from .scheduler import IdleScheduler

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Synchronization state of a StorageSynchronizer."""

    INITIALIZED = "initialized"
    SYNCHRONIZING = "synchronizing"
    SYNCHRONIZED = "synchronized"
    FAILED = "failed"


class StorageSynchronizer:
    """Keeps a local store in step with a remote store.

    - Pull: reconcile remote -> local (remote wins on differing fingerprints)
    - Push: drain queued local commits to the remote
    - Synchronize: pull, then push

    Calling ``pull()`` and ``push()`` concurrently is allowed but their
    interleaving is unspecified; use ``synchronize()`` to sequence them.
    """

    def __init__(
        self,
        local: LocalStore,
        remote: AsyncStorage,
        queue_name: str = "default",
        observer: SyncObserver | None = None,
        scheduler: IdleScheduler | None = None,
    ):
        """Initialize the synchronizer.

        Args:
            local: Local store; also holds the persisted commit queue.
            remote: Remote store.
            queue_name: Name of the persisted commit queue.
            observer: Receives sync lifecycle notifications.
            scheduler: Scheduling port for background queue drains.
        """
        self.local = local
        self.remote = remote
        self._observer = observer or LoggingObserver()
        self._state = SyncState.INITIALIZED
        self._last_sync: datetime | None = None
        self._last_error: str | None = None
        self._consecutive_failures = 0
        self.queue = CommitQueue(
            local,
            self.apply_commit,
            error_callback=self._on_commit_failed,
            name=queue_name,
            scheduler=scheduler,
            observer=self._observer,
        )

    @property
    def sync_state(self) -> SyncState:
        return self._state

    @property
    def last_sync(self) -> datetime | None:
        """Timestamp of the last successful synchronize()."""
        return self._last_sync

    @property
    def last_error(self) -> str | None:
        return self._last_error

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def pending_commits(self) -> int:
        return self.queue.length

    def _set_state(self, state: SyncState) -> None:
        old, self._state = self._state, state
        if old is not state:
            self._observer.state_changed(old, state)

    async def _on_commit_failed(self, commit: SyncCommit, error: Exception) -> None:
        self._last_error = f"{type(error).__name__}: {error}"

    async def commit_local_change(
        self, commit: SyncCommit, auto_push_after_commit: bool = True
    ) -> None:
        """Queue a local change for delivery to the remote.

        Args:
            commit: The change to queue.
            auto_push_after_commit: Start a background push without waiting
                for it. Failures of that push are logged and the commit stays
                queued.
        """
        await self.queue.enqueue(commit, auto_run=auto_push_after_commit)

    async def pull(self) -> list[Patch]:
        """Bring the local store in line with the remote.

        Returns:
            The patches that were applied, in order.
        """
        remote_index = await self.remote.meta_index()
        local_index = await self.local.meta_index()
        patches = diff(local_index, remote_index)
        self._observer.patches_computed(patches)

        for patch in patches:
            try:
                await self.apply_commit(patch)
            except Exception as e:
                self._observer.commit_failed(patch, e)
                raise

        return patches

    async def push(self) -> None:
        """Drain the commit queue to the remote.

        Raises:
            Exception: The first commit failure; the commit stays queued.
        """
        await self.queue.run()

    async def synchronize(self) -> SyncState:
        """Pull, then push.

        Errors are not raised; they leave the state at FAILED and are kept in
        ``last_error``. A failed pull skips the push.

        Returns:
            The resulting sync state.
        """
        self._set_state(SyncState.SYNCHRONIZING)
        try:
            await self.pull()
            await self.push()
        except Exception as e:
            self._consecutive_failures += 1
            self._last_error = f"{type(e).__name__}: {e}"
            logger.error(f"Synchronization failed: {e}")
            self._set_state(SyncState.FAILED)
        else:
            self._consecutive_failures = 0
            self._last_error = None
            self._last_sync = datetime.now()
            self._set_state(SyncState.SYNCHRONIZED)
        return self._state

    def _stores_for(self, commit: SyncCommit) -> tuple[AsyncStorage, AsyncStorage]:
        """Return (source, target) stores for a commit."""
        if commit.target is Target.LOCAL:
            return self.remote, self.local
        return self.local, self.remote

    async def apply_commit(self, commit: SyncCommit) -> None:
        """Apply one commit against the store pair.

        - set: write the carried value to both stores
        - update: copy the source value into the target, if it still exists
        - remove: remove the key from both stores
        """
        source, target = self._stores_for(commit)

        if isinstance(commit, SetCommit):
            await source.set(commit.key, commit.value)
            await target.set(commit.key, commit.value)
        elif isinstance(commit, UpdateCommit):
            value = await source.get(commit.key, MISSING)
            if value is MISSING:
                logger.debug(f"Skipping update of {commit.key!r}: source value gone")
                return
            await target.set(commit.key, value)
        elif isinstance(commit, RemoveCommit):
            await source.remove(commit.key)
            await target.remove(commit.key)
        else:
            raise TypeError(f"Unknown commit type: {type(commit).__name__}")

        self._observer.commit_applied(commit)

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync state and queue statistics.
        """
        return {
            "state": self._state.value,
            "last_sync": self._last_sync.isoformat() if self._last_sync else None,
            "last_error": self._last_error,
            "consecutive_failures": self._consecutive_failures,
            "pending_commits": self.queue.length,
            "queue_running": self.queue.is_running,
        }
