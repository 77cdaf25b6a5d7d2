"""Tests for the durable CommitQueue."""

import asyncio

import pytest
from unittest.mock import AsyncMock, patch

from hybridsync.storage import CorruptQueueError, InvalidValueError, StorageError
from hybridsync.sync import (
    CommitQueue,
    IdleScheduler,
    IdleSlice,
    RemoveCommit,
    SetCommit,
    SyncObserver,
)


class ScriptedScheduler(IdleScheduler):
    """Scheduler whose slices time out according to a script."""

    def __init__(self, timeouts=()):
        self.timeouts = list(timeouts)
        self.requests = 0

    async def request_slice(self) -> IdleSlice:
        self.requests += 1
        await asyncio.sleep(0)
        did_timeout = self.timeouts.pop(0) if self.timeouts else False
        return IdleSlice(did_timeout=did_timeout, deadline=0.0)


class GenerousScheduler(IdleScheduler):
    """Scheduler granting slices long enough for any drain."""

    def __init__(self):
        self.requests = 0

    async def request_slice(self) -> IdleSlice:
        self.requests += 1
        loop = asyncio.get_running_loop()
        return IdleSlice(did_timeout=False, deadline=loop.time() + 100)


class RecordingObserver(SyncObserver):
    def __init__(self):
        self.events = []

    def drain_started(self, queue_name, pending):
        self.events.append(("drain_started", pending))

    def drain_finished(self, queue_name, drained):
        self.events.append(("drain_finished", drained))

    def slice_timed_out(self, queue_name):
        self.events.append(("slice_timed_out",))

    def commit_failed(self, commit, error):
        self.events.append(("commit_failed", commit.key))


class Recorder:
    """Handler that records commits and can fail on demand."""

    def __init__(self, fail_keys=()):
        self.handled = []
        self.fail_keys = set(fail_keys)

    async def __call__(self, commit):
        await asyncio.sleep(0)
        if commit.key in self.fail_keys:
            self.fail_keys.discard(commit.key)
            raise ConnectionError(f"remote unavailable for {commit.key}")
        self.handled.append(commit.key)


@pytest.fixture
def handler():
    return Recorder()


@pytest.fixture
def queue(local_store, handler):
    return CommitQueue(local_store, handler, scheduler=ScriptedScheduler())


class TestQueuePersistence:
    """Tests for durability of queued commits."""

    @pytest.mark.asyncio
    async def test_enqueue_persists(self, queue, local_store):
        await queue.enqueue(SetCommit(key="a", value=1), auto_run=False)

        stored = local_store.get_sync("@queue/default/tasks")
        assert stored == [SetCommit(key="a", value=1).to_dict()]

    @pytest.mark.asyncio
    async def test_restart_preserves_order_and_contents(self, queue, local_store):
        """Test that a new queue instance restores exactly what was pending."""
        commits = [
            SetCommit(key="a", value={"x": 1}),
            RemoveCommit(key="b"),
            SetCommit(key="c", value=None),
        ]
        for commit in commits:
            await queue.enqueue(commit, auto_run=False)

        restarted = CommitQueue(local_store, Recorder(), scheduler=ScriptedScheduler())

        assert restarted.pending() == commits
        assert restarted.peek == commits[0]

    @pytest.mark.asyncio
    async def test_queues_are_namespaced(self, local_store, handler):
        first = CommitQueue(local_store, handler, name="first")
        await first.enqueue(RemoveCommit(key="a"), auto_run=False)

        second = CommitQueue(local_store, handler, name="second")

        assert second.is_empty
        assert first.storage_key == "@queue/first/tasks"

    @pytest.mark.asyncio
    async def test_queue_not_in_meta_index(self, queue, local_store):
        await queue.enqueue(RemoveCommit(key="a"), auto_run=False)

        assert await local_store.meta_index() == {}

    def test_corrupt_queue_raises(self, local_store, handler):
        local_store._write_raw(
            local_store._ensure_connected(), "@queue/default/tasks", '[{"type": "merge"}]'
        )

        with pytest.raises(CorruptQueueError):
            CommitQueue(local_store, handler)


class TestQueueDrain:
    """Tests for run()."""

    @pytest.mark.asyncio
    async def test_run_drains_in_order(self, queue, handler, local_store):
        for key in ["a", "b", "c"]:
            await queue.enqueue(RemoveCommit(key=key), auto_run=False)

        await queue.run()

        assert handler.handled == ["a", "b", "c"]
        assert queue.is_empty
        assert local_store.get_sync("@queue/default/tasks") == []

    @pytest.mark.asyncio
    async def test_run_empty_queue(self, queue, handler):
        await queue.run()

        assert handler.handled == []
        assert not queue.is_running

    @pytest.mark.asyncio
    async def test_concurrent_runs_deliver_once(self, queue, handler):
        """Test that two concurrent run() calls share one drain."""
        for key in ["a", "b", "c", "d"]:
            await queue.enqueue(RemoveCommit(key=key), auto_run=False)

        await asyncio.gather(queue.run(), queue.run())

        assert handler.handled == ["a", "b", "c", "d"]
        assert queue.is_empty

    @pytest.mark.asyncio
    async def test_enqueue_during_drain_is_picked_up(self, local_store):
        """Test that the active drain handles commits added meanwhile."""
        handled = []
        queue = None

        async def handler(commit):
            handled.append(commit.key)
            if commit.key == "a":
                await queue.enqueue(RemoveCommit(key="late"), auto_run=True)

        queue = CommitQueue(local_store, handler, scheduler=ScriptedScheduler())
        await queue.enqueue(RemoveCommit(key="a"), auto_run=False)

        await queue.run()

        assert handled == ["a", "late"]
        assert queue.is_empty

    @pytest.mark.asyncio
    async def test_slice_timeout_resubmits(self, local_store, handler):
        """Test that a preempted slice is retried, not treated as failure."""
        scheduler = ScriptedScheduler(timeouts=[True, True, False])
        observer = RecordingObserver()
        queue = CommitQueue(
            local_store, handler, scheduler=scheduler, observer=observer
        )
        await queue.enqueue(RemoveCommit(key="a"), auto_run=False)

        await queue.run()

        assert handler.handled == ["a"]
        assert scheduler.requests == 3
        assert observer.events.count(("slice_timed_out",)) == 2
        assert ("commit_failed", "a") not in observer.events

    @pytest.mark.asyncio
    async def test_slice_covers_several_commits(self, local_store, handler):
        """Test that one slice is used until its deadline passes."""
        scheduler = GenerousScheduler()
        queue = CommitQueue(local_store, handler, scheduler=scheduler)
        for key in ["a", "b", "c"]:
            await queue.enqueue(RemoveCommit(key=key), auto_run=False)

        await queue.run()

        assert handler.handled == ["a", "b", "c"]
        assert scheduler.requests == 1

    @pytest.mark.asyncio
    async def test_expired_slice_requests_another(self, local_store, handler):
        scheduler = ScriptedScheduler()
        queue = CommitQueue(local_store, handler, scheduler=scheduler)
        for key in ["a", "b", "c"]:
            await queue.enqueue(RemoveCommit(key=key), auto_run=False)

        await queue.run()

        assert scheduler.requests == 3

    @pytest.mark.asyncio
    async def test_observer_sees_drain_lifecycle(self, local_store, handler):
        observer = RecordingObserver()
        queue = CommitQueue(
            local_store, handler, scheduler=ScriptedScheduler(), observer=observer
        )
        await queue.enqueue(RemoveCommit(key="a"), auto_run=False)
        await queue.enqueue(RemoveCommit(key="b"), auto_run=False)

        await queue.run()

        assert observer.events == [("drain_started", 2), ("drain_finished", 2)]


class TestQueueFailures:
    """Tests for handler failures and retry."""

    @pytest.mark.asyncio
    async def test_failure_keeps_commit_at_head(self, local_store):
        handler = Recorder(fail_keys={"b"})
        queue = CommitQueue(local_store, handler, scheduler=ScriptedScheduler())
        for key in ["a", "b", "c"]:
            await queue.enqueue(RemoveCommit(key=key), auto_run=False)

        with pytest.raises(ConnectionError):
            await queue.run()

        assert handler.handled == ["a"]
        assert queue.peek == RemoveCommit(key="b")
        assert queue.length == 2
        assert not queue.is_running

    @pytest.mark.asyncio
    async def test_retry_on_next_run(self, local_store):
        """Test that a commit failing once is removed by the second run."""
        handler = Recorder(fail_keys={"a"})
        queue = CommitQueue(local_store, handler, scheduler=ScriptedScheduler())
        await queue.enqueue(RemoveCommit(key="a"), auto_run=False)

        with pytest.raises(ConnectionError):
            await queue.run()
        assert queue.peek == RemoveCommit(key="a")
        assert len(local_store.get_sync("@queue/default/tasks")) == 1

        await queue.run()
        assert queue.is_empty
        assert handler.handled == ["a"]

    @pytest.mark.asyncio
    async def test_error_callback_invoked(self, local_store):
        error_callback = AsyncMock()
        observer = RecordingObserver()
        queue = CommitQueue(
            local_store,
            Recorder(fail_keys={"a"}),
            error_callback=error_callback,
            scheduler=ScriptedScheduler(),
            observer=observer,
        )
        await queue.enqueue(RemoveCommit(key="a"), auto_run=False)

        with pytest.raises(ConnectionError):
            await queue.run()

        error_callback.assert_awaited_once()
        commit, error = error_callback.await_args.args
        assert commit == RemoveCommit(key="a")
        assert isinstance(error, ConnectionError)
        assert ("commit_failed", "a") in observer.events

    @pytest.mark.asyncio
    async def test_failed_commit_survives_restart(self, local_store):
        queue = CommitQueue(
            local_store, Recorder(fail_keys={"a"}), scheduler=ScriptedScheduler()
        )
        await queue.enqueue(SetCommit(key="a", value=1), auto_run=False)
        with pytest.raises(ConnectionError):
            await queue.run()

        restarted = CommitQueue(local_store, Recorder(), scheduler=ScriptedScheduler())

        assert restarted.pending() == [SetCommit(key="a", value=1)]


class TestBackgroundDrain:
    """Tests for fire-and-forget draining."""

    @pytest.mark.asyncio
    async def test_enqueue_auto_run(self, queue, handler):
        await queue.enqueue(RemoveCommit(key="a"))
        await queue.enqueue(RemoveCommit(key="b"))

        await queue.join()

        assert handler.handled == ["a", "b"]
        assert queue.is_empty

    @pytest.mark.asyncio
    async def test_enqueue_does_not_wait_for_drain(self, local_store):
        release = asyncio.Event()
        handled = []

        async def slow_handler(commit):
            await release.wait()
            handled.append(commit.key)

        queue = CommitQueue(local_store, slow_handler, scheduler=ScriptedScheduler())
        await queue.enqueue(RemoveCommit(key="a"))

        assert handled == []
        assert queue.length == 1

        release.set()
        await queue.join()
        assert handled == ["a"]

    @pytest.mark.asyncio
    async def test_background_failure_is_contained(self, local_store):
        handler = Recorder(fail_keys={"a"})
        queue = CommitQueue(local_store, handler, scheduler=ScriptedScheduler())

        await queue.enqueue(RemoveCommit(key="a"))
        await queue.join()

        assert queue.peek == RemoveCommit(key="a")
        assert not queue.is_running

    @pytest.mark.asyncio
    async def test_auto_run_on_construction(self, local_store):
        first = CommitQueue(local_store, Recorder(), scheduler=ScriptedScheduler())
        await first.enqueue(RemoveCommit(key="a"), auto_run=False)

        handler = Recorder()
        restarted = CommitQueue(
            local_store, handler, scheduler=ScriptedScheduler(), auto_run=True
        )
        await restarted.join()

        assert handler.handled == ["a"]

    @pytest.mark.asyncio
    async def test_schedule_skipped_while_running(self, queue, local_store):
        await queue.enqueue(RemoveCommit(key="a"), auto_run=False)
        queue._running = True

        assert queue.schedule() is None
        queue._running = False


class TestQueueWriteFailures:
    """Tests that a failed write of the task list leaves the queue unchanged."""

    @pytest.mark.asyncio
    async def test_failed_enqueue_not_queued(self, queue, handler, local_store):
        await queue.enqueue(RemoveCommit(key="a"), auto_run=False)

        with patch.object(
            local_store, "set_reserved", AsyncMock(side_effect=StorageError("disk full"))
        ):
            with pytest.raises(StorageError):
                await queue.enqueue(RemoveCommit(key="b"), auto_run=False)

        assert queue.pending() == [RemoveCommit(key="a")]
        assert local_store.get_sync("@queue/default/tasks") == [
            RemoveCommit(key="a").to_dict()
        ]

        # The queue keeps working after the failed write
        await queue.enqueue(RemoveCommit(key="c"), auto_run=False)
        await queue.run()
        assert handler.handled == ["a", "c"]
        assert local_store.get_sync("@queue/default/tasks") == []

    @pytest.mark.asyncio
    async def test_failed_dequeue_keeps_head(self, queue, local_store):
        await queue.enqueue(RemoveCommit(key="a"), auto_run=False)

        with patch.object(
            local_store, "set_reserved", AsyncMock(side_effect=StorageError("disk full"))
        ):
            with pytest.raises(StorageError):
                await queue.dequeue()

        assert queue.peek == RemoveCommit(key="a")
        assert len(local_store.get_sync("@queue/default/tasks")) == 1

    @pytest.mark.asyncio
    async def test_unserializable_commit_never_reaches_queue(self, queue, local_store):
        with pytest.raises(InvalidValueError):
            await queue.enqueue(SetCommit(key="a", value={1, 2}), auto_run=False)

        assert queue.is_empty
        await queue.enqueue(SetCommit(key="b", value=[1, 2]), auto_run=False)
        assert queue.length == 1
        assert CommitQueue(local_store, Recorder()).pending() == [
            SetCommit(key="b", value=[1, 2])
        ]
