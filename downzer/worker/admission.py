"""
Admission Controller

Counting gate that bounds simultaneous in-flight target operations and
applies the pacing delay between dispatches.
"""

import asyncio
from typing import Awaitable, Optional

from ..core.config import Delay, DEFAULT_MAX_CONCURRENT
from .cancellation import CancellationToken


class AdmissionController:
    """
    Bounds in-flight operations to max_concurrent.

    A slot is acquired before a target is pulled from the generator and is
    released by a done-callback on the spawned operation, so it is returned
    on every exit path (success, failure, cancellation, even cancellation
    before the operation started running).
    """

    def __init__(self, max_concurrent: int = DEFAULT_MAX_CONCURRENT, delay: Optional[Delay] = None):
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self.max_concurrent = max_concurrent
        self.delay = delay
        self._semaphore = asyncio.Semaphore(max_concurrent)

        # Stats
        self.in_flight = 0
        self.peak = 0
        self.admitted = 0

    async def acquire(self, cancel: CancellationToken) -> bool:
        """
        Wait for a free slot.

        Returns:
            True with a slot held, False if cancellation came first
        """
        if cancel.cancelled:
            return False

        acquire_task = asyncio.ensure_future(self._semaphore.acquire())
        cancel_task = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({acquire_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancel_task.cancel()

        if not acquire_task.done():
            acquire_task.cancel()
            try:
                await acquire_task
            except asyncio.CancelledError:
                return False

        # Slot is held from here on
        if cancel.cancelled:
            self._semaphore.release()
            return False

        self.in_flight += 1
        self.admitted += 1
        self.peak = max(self.peak, self.in_flight)
        return True

    def release(self):
        """Return a slot that was acquired but never used for an operation."""
        self.in_flight -= 1
        self._semaphore.release()

    def spawn(self, operation: Awaitable) -> asyncio.Task:
        """Run an admitted operation; its slot is released when it finishes."""
        task = asyncio.ensure_future(operation)
        task.add_done_callback(lambda _t: self.release())
        return task

    async def pace(self, cancel: CancellationToken) -> bool:
        """
        Apply the pacing delay after the latest dispatch if it is due.

        Returns:
            False if cancellation interrupted the delay
        """
        if self.delay is None or not self.delay.is_due(self.admitted):
            return not cancel.cancelled
        interrupted = await cancel.sleep(self.delay.seconds)
        return not interrupted
