"""Durable FIFO of sync commits with a single-drain runner."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ..storage.base import CorruptQueueError, ValidationError
from ..storage.local_store import LocalStore
from .commit import SyncCommit, commit_from_dict
from .observer import LoggingObserver, SyncObserver
from .scheduler import AsyncioIdleScheduler, IdleScheduler

logger = logging.getLogger(__name__)

CommitHandler = Callable[[SyncCommit], Awaitable[None]]
ErrorCallback = Callable[[SyncCommit, Exception], Awaitable[None]]


class CommitQueue:
    """Ordered queue of pending commits, persisted in the local store.

    Every enqueue and dequeue rewrites the persisted task list, so a restart
    resumes with exactly the commits that have not been handled yet. A commit
    is only dequeued after its handler returned without error; a failing
    commit stays at the head and is retried first by the next ``run()``.

    At most one drain runs per queue instance. Commits enqueued while a drain
    is in progress are picked up by that drain.
    """

    def __init__(
        self,
        local_store: LocalStore,
        handler: CommitHandler,
        error_callback: ErrorCallback | None = None,
        name: str = "default",
        scheduler: IdleScheduler | None = None,
        observer: SyncObserver | None = None,
        auto_run: bool = False,
    ):
        """Initialize the queue and restore persisted commits.

        Args:
            local_store: Store holding the persisted task list.
            handler: Coroutine applied to each commit, head first.
            error_callback: Awaited with (commit, error) when the handler fails.
            name: Queue name; part of the persisted key.
            scheduler: Grants background slices to the drain loop.
            observer: Receives drain lifecycle notifications.
            auto_run: Schedule a background drain right away. Requires a
                running event loop.
        """
        self.name = name
        self._local = local_store
        self._handler = handler
        self._error_callback = error_callback
        self._scheduler = scheduler or AsyncioIdleScheduler()
        self._observer = observer or LoggingObserver()
        self._running = False
        self._task: asyncio.Task | None = None
        self._commits: list[SyncCommit] = self._load()

        if self._commits:
            logger.info(f"Queue '{name}' restored {len(self._commits)} pending commit(s)")

        if auto_run:
            self.schedule()

    @property
    def storage_key(self) -> str:
        """Reserved local key holding the persisted task list."""
        return f"@queue/{self.name}/tasks"

    @property
    def length(self) -> int:
        return len(self._commits)

    @property
    def is_empty(self) -> bool:
        return not self._commits

    @property
    def peek(self) -> SyncCommit | None:
        """The commit the next drain will handle first."""
        return self._commits[0] if self._commits else None

    @property
    def is_running(self) -> bool:
        return self._running

    def pending(self) -> list[SyncCommit]:
        """Snapshot of queued commits, head first."""
        return list(self._commits)

    def _load(self) -> list[SyncCommit]:
        raw = self._local.get_sync(self.storage_key, [])
        try:
            return [commit_from_dict(item) for item in raw]
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            raise CorruptQueueError(
                f"Cannot decode persisted queue '{self.name}': {e}"
            ) from e

    async def _save(self, commits: list[SyncCommit]) -> None:
        await self._local.set_reserved(
            self.storage_key, [commit.to_dict() for commit in commits]
        )

    async def enqueue(self, commit: SyncCommit, auto_run: bool = True) -> None:
        """Append a commit to the tail and persist the queue.

        Args:
            commit: Commit to append.
            auto_run: Start a background drain without waiting for it.
        """
        # In-memory state only changes once the new list is persisted
        commits = [*self._commits, commit]
        await self._save(commits)
        self._commits = commits
        logger.debug(f"Queue '{self.name}' enqueued {commit.type} {commit.key!r}")

        if auto_run:
            self.schedule()

    async def dequeue(self) -> None:
        """Remove the head commit and persist the queue."""
        if not self._commits:
            return
        commits = self._commits[1:]
        await self._save(commits)
        self._commits = commits

    def schedule(self) -> asyncio.Task | None:
        """Start a background drain unless one is already active.

        Returns:
            The background task, or None when there was nothing to start.
        """
        if self._running or self.is_empty:
            return None
        if self._task is not None and not self._task.done():
            return self._task
        self._task = asyncio.create_task(self._run_in_background())
        return self._task

    async def _run_in_background(self) -> None:
        try:
            await self.run()
        except Exception as e:
            logger.error(
                f"Background drain of queue '{self.name}' stopped: {e}",
                extra={"queue": self.name},
            )

    async def join(self) -> None:
        """Wait for the current background drain, if any, to finish."""
        if self._task is not None:
            await self._task

    async def run(self) -> None:
        """Drain the queue head to tail.

        Returns immediately when another drain is already active.

        Raises:
            Exception: Whatever the handler raised; the failing commit stays
                at the head of the queue.
        """
        if self._running:
            return

        self._running = True
        drained = 0
        self._observer.drain_started(self.name, self.length)
        idle = None
        try:
            while self._commits:
                # One slice may cover several commits until its deadline passes
                if idle is None or idle.time_remaining() <= 0:
                    idle = await self._scheduler.request_slice()
                    if idle.did_timeout:
                        self._observer.slice_timed_out(self.name)
                        idle = None
                        continue

                commit = self._commits[0]
                try:
                    await self._handler(commit)
                except Exception as e:
                    self._running = False
                    self._observer.commit_failed(commit, e)
                    if self._error_callback:
                        await self._error_callback(commit, e)
                    raise

                await self.dequeue()
                drained += 1
        finally:
            self._running = False

        self._observer.drain_finished(self.name, drained)
