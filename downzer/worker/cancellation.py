"""
Cancellation Token

One token per task run, handed by ownership to the mode loop, the
admission controller and the in-flight drain. Replaces a global shutdown
flag.
"""

import asyncio
from enum import Enum
from typing import Optional


class CancelReason(str, Enum):
    """Why a run was asked to stop admitting work"""

    PAUSE = "pause"
    STOP = "stop"
    INTERRUPT = "interrupt"

    @property
    def hard(self) -> bool:
        """Hard reasons also cancel in-flight operations."""
        return self is not CancelReason.PAUSE


class CancellationToken:
    """
    Single-shot cancellation signal.

    The first cancel() wins and later identical signals are no-ops. The only
    allowed change afterwards is escalating a PAUSE to STOP/INTERRUPT.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[CancelReason] = None

    @property
    def cancelled(self) -> bool:
        return self.reason is not None

    @property
    def hard(self) -> bool:
        return self.reason is not None and self.reason.hard

    def cancel(self, reason: CancelReason = CancelReason.STOP) -> bool:
        """
        Signal cancellation.

        Returns:
            True if the signal changed the token's state
        """
        if self.reason is None:
            self.reason = reason
            self._event.set()
            return True
        if reason.hard and not self.reason.hard:
            self.reason = reason
            return True
        return False

    async def wait(self) -> CancelReason:
        await self._event.wait()
        return self.reason

    async def sleep(self, seconds: float) -> bool:
        """
        Sleep unless cancelled first.

        Returns:
            True if the sleep was interrupted by cancellation
        """
        if self.cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False
