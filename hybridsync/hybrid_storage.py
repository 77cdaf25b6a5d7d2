"""Local-first JSON document storage synchronized with a remote object store."""

import asyncio
import logging
from typing import Any

from .config import Config
from .log import setup_logging
from .storage.base import AsyncStorage, MetaIndex
from .storage.local_store import LocalStore
from .storage.remote_store import RemoteStore
from .sync.commit import Reason, RemoveCommit, SetCommit, Staging, Target
from .sync.observer import SyncObserver
from .sync.scheduler import AsyncioIdleScheduler, IdleScheduler
from .sync.synchronizer import StorageSynchronizer, SyncState

logger = logging.getLogger(__name__)

# Upper bound for the back-off between failed sync attempts
MAX_SYNC_BACKOFF_SECONDS = 3600


class HybridStorage(AsyncStorage):
    """Document store that works offline and syncs with a remote.

    Reads are served by the local store. Writes hit the local store
    immediately and are queued for the remote; ``synchronize()`` pulls remote
    changes and then pushes the queue.
    """

    def __init__(
        self,
        local: LocalStore,
        remote: AsyncStorage,
        queue_name: str = "default",
        auto_push: bool = True,
        sync_on_start: bool = True,
        sync_interval_seconds: int = 300,
        observer: SyncObserver | None = None,
        scheduler: IdleScheduler | None = None,
    ):
        """Initialize the hybrid store.

        Args:
            local: Local store; must be connectable synchronously.
            remote: Remote store.
            queue_name: Name of the persisted commit queue.
            auto_push: Push each local change in the background right away.
            sync_on_start: Whether start() synchronizes by default.
            sync_interval_seconds: Default interval for sync_loop().
            observer: Receives sync lifecycle notifications.
            scheduler: Scheduling port for background pushes.
        """
        self.instance_name = local.instance_name
        self.auto_push = auto_push
        self.sync_on_start = sync_on_start
        self.sync_interval_seconds = sync_interval_seconds
        self._local = local
        self._remote = remote
        self._local.connect()
        self._synchronizer = StorageSynchronizer(
            local,
            remote,
            queue_name=queue_name,
            observer=observer,
            scheduler=scheduler,
        )
        self._sync_task: asyncio.Task | None = None

    @classmethod
    def from_config(
        cls, config: Config, configure_logging: bool = False, **kwargs: Any
    ) -> "HybridStorage":
        """Build a hybrid store from configuration.

        Args:
            config: Loaded configuration.
            configure_logging: Also set up the root logger from
                ``config.logging``. Leave off when the host application
                configures logging itself.
            **kwargs: Passed to RemoteStore (e.g. a prebuilt ``client``).
        """
        if configure_logging:
            setup_logging(config.logging)

        local = LocalStore(
            config.storage.instance_name,
            db_path=config.storage.db_path,
        )
        remote = RemoteStore(
            config.storage.instance_name,
            base_url=config.remote.base_url,
            token=config.remote.token,
            page_size=config.remote.page_size,
            timeout=config.remote.timeout_seconds,
            **kwargs,
        )
        return cls(
            local,
            remote,
            queue_name=config.sync.queue_name,
            auto_push=config.sync.auto_push,
            sync_on_start=config.sync.sync_on_start,
            sync_interval_seconds=config.sync.sync_interval_seconds,
            scheduler=AsyncioIdleScheduler(timeout=config.sync.idle_timeout_seconds),
        )

    @property
    def synchronizer(self) -> StorageSynchronizer:
        return self._synchronizer

    @property
    def sync_state(self) -> SyncState:
        return self._synchronizer.sync_state

    async def start(self, synchronize: bool | None = None) -> None:
        """Kick off an initial synchronization in the background."""
        if synchronize is None:
            synchronize = self.sync_on_start
        if synchronize and (self._sync_task is None or self._sync_task.done()):
            self._sync_task = asyncio.create_task(self._synchronizer.synchronize())

    async def wait_synchronized(self) -> SyncState:
        """Wait for the background synchronization started by start()."""
        if self._sync_task is not None:
            await self._sync_task
        return self.sync_state

    async def close(self) -> None:
        """Wait for background work and close both stores."""
        if self._sync_task is not None:
            await self._sync_task
            self._sync_task = None
        await self._synchronizer.queue.join()
        self._local.close()
        if isinstance(self._remote, RemoteStore):
            await self._remote.close()

    async def __aenter__(self) -> "HybridStorage":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ==================== Storage Operations ====================

    async def get(self, key: str, default: Any = None) -> Any:
        return await self._local.get(key, default)

    async def meta_index(self) -> MetaIndex:
        return await self._local.meta_index()

    async def keys(self) -> list[str]:
        return await self._local.keys()

    async def set(self, key: str, value: Any) -> str:
        etag = await self._local.set(key, value)
        await self._synchronizer.commit_local_change(
            SetCommit(
                key=key,
                value=value,
                target=Target.REMOTE,
                reason=Reason.LOCAL_WRITE,
                staging=Staging.QUEUED,
            ),
            auto_push_after_commit=self.auto_push,
        )
        return etag

    async def remove(self, key: str) -> None:
        await self._local.remove(key)
        await self._synchronizer.commit_local_change(
            RemoveCommit(
                key=key,
                target=Target.REMOTE,
                reason=Reason.LOCAL_DELETE,
                staging=Staging.QUEUED,
            ),
            auto_push_after_commit=self.auto_push,
        )

    # ==================== Sync Operations ====================

    async def synchronize(self) -> SyncState:
        """Pull remote changes, then push queued local changes."""
        return await self._synchronizer.synchronize()

    async def push(self) -> None:
        """Push queued local changes. Raises on the first failing commit."""
        await self._synchronizer.push()

    async def pull(self) -> None:
        """Pull remote changes into the local store."""
        await self._synchronizer.pull()

    async def sync_loop(
        self,
        interval_seconds: int | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Run continuous sync loop.

        Args:
            interval_seconds: Seconds between sync attempts. Defaults to
                the configured interval.
            stop_event: Event to signal loop should stop.
        """
        if interval_seconds is None:
            interval_seconds = self.sync_interval_seconds
        logger.info(f"Starting sync loop with {interval_seconds}s interval")

        while True:
            if stop_event and stop_event.is_set():
                break

            state = await self.synchronize()
            logger.info(
                f"Sync: {state.value}, "
                f"pending={self._synchronizer.pending_commits}"
            )

            # Adaptive interval: back off if consecutive failures
            wait_time = interval_seconds
            failures = self._synchronizer.consecutive_failures
            if failures > 0:
                wait_time = min(
                    interval_seconds * (2**failures),
                    MAX_SYNC_BACKOFF_SECONDS,
                )
                logger.debug(f"Backing off sync for {wait_time}s")

            if stop_event:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=wait_time)
                    break
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(wait_time)

        logger.info("Sync loop stopped")

    def get_sync_status(self) -> dict[str, Any]:
        """Get current sync status.

        Returns:
            Dictionary with sync state, queue and local store statistics.
        """
        status = self._synchronizer.get_sync_status()
        status["instance_name"] = self.instance_name
        status["local"] = self._local.get_stats()
        return status
