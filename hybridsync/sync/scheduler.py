"""Low-priority scheduling for background queue drains."""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class IdleSlice:
    """A slice of time granted to background work."""

    did_timeout: bool
    deadline: float  # Event loop time by which the slice should end

    def time_remaining(self) -> float:
        """Seconds left in this slice (never negative)."""
        return max(0.0, self.deadline - asyncio.get_running_loop().time())


class IdleScheduler(ABC):
    """Port for running work on low-priority slices.

    Implementations decide when background work may run and report whether
    the host preempted the slice before it could be used.
    """

    @abstractmethod
    async def request_slice(self) -> IdleSlice:
        """Wait for the next slice of background time."""
        pass


class AsyncioIdleScheduler(IdleScheduler):
    """Yields to the event loop between units of background work.

    A slice is reported as timed out when the event loop took longer than
    ``timeout`` seconds to resume us, meaning the host was busy.
    """

    def __init__(self, slice_budget: float = 0.05, timeout: float | None = None):
        """Initialize the scheduler.

        Args:
            slice_budget: Seconds of work granted per slice.
            timeout: Maximum resume delay before a slice counts as preempted.
                None disables timeout detection.
        """
        self.slice_budget = slice_budget
        self.timeout = timeout

    async def request_slice(self) -> IdleSlice:
        loop = asyncio.get_running_loop()
        requested_at = loop.time()
        await asyncio.sleep(0)
        resumed_at = loop.time()

        did_timeout = (
            self.timeout is not None and resumed_at - requested_at > self.timeout
        )
        return IdleSlice(did_timeout=did_timeout, deadline=resumed_at + self.slice_budget)
