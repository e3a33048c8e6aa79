"""
Base Mode

Abstract base class for all execution modes, and the admission-gated
dispatch loop they share.
"""

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Set, TYPE_CHECKING

from loguru import logger

from ..core.config import ModeConfig
from ..core.logging import get_task_logger
from ..core.models import ModeResult
from ..worker.admission import AdmissionController
from ..worker.cancellation import CancellationToken

if TYPE_CHECKING:
    from ..core.engine import Engine
    from ..core.generator import TargetStream


# How often the drain re-checks for a hard cancellation
DRAIN_POLL_INTERVAL = 0.1


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass
class Outcome:
    """Result of one target operation."""

    kind: OutcomeKind
    bytes: int = 0
    counter: Optional[str] = None
    status_code: Optional[int] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, nbytes: int = 0, counter: str = None, **kwargs) -> "Outcome":
        return cls(OutcomeKind.SUCCESS, bytes=nbytes, counter=counter, **kwargs)

    @classmethod
    def failure(cls, counter: str = "errors", **kwargs) -> "Outcome":
        return cls(OutcomeKind.FAILURE, counter=counter, **kwargs)

    @classmethod
    def skipped(cls, counter: str = None, **kwargs) -> "Outcome":
        return cls(OutcomeKind.SKIPPED, counter=counter, **kwargs)


class ResultAccumulator:
    """Lock-protected tallies shared by all in-flight operations of a run."""

    def __init__(self, mode: str, total: int):
        self._lock = threading.Lock()
        self.mode = mode
        self.total = total
        self.successful = 0
        self.failed = 0
        self.skipped = 0
        self.bytes = 0
        self.dispatched = 0
        self.counters: Dict[str, int] = {}

    def dispatch(self):
        with self._lock:
            self.dispatched += 1

    def record(self, outcome: Outcome):
        with self._lock:
            if outcome.kind == OutcomeKind.SUCCESS:
                self.successful += 1
            elif outcome.kind == OutcomeKind.FAILURE:
                self.failed += 1
            else:
                self.skipped += 1
            self.bytes += outcome.bytes
            if outcome.counter:
                self.counters[outcome.counter] = self.counters.get(outcome.counter, 0) + 1

    def to_result(self, elapsed: float) -> ModeResult:
        with self._lock:
            return ModeResult(
                mode=self.mode,
                total=self.total,
                successful=self.successful,
                failed=self.failed,
                skipped=self.skipped,
                bytes=self.bytes,
                dispatched=self.dispatched,
                elapsed=elapsed,
                counters=dict(self.counters),
            )


class BaseMode(ABC):
    """
    Base class for execution modes.

    Each mode implements process() for a single concrete target. The shared
    execute() loop:
    1. Acquires an admission slot, then pulls one target
    2. Spawns the target operation as its own asyncio task
    3. Applies pacing between dispatches
    4. Stops admitting once the cancellation token is set; in-flight
       operations finish on PAUSE and are cancelled on STOP/INTERRUPT
    """

    name: str = ""

    # Unimplemented modes name the capability they are missing
    implemented: bool = True
    requires: Optional[str] = None

    def __init__(self):
        self.config: Optional[ModeConfig] = None
        self.engine: Optional["Engine"] = None
        self.task_id: Optional[int] = None
        self.admission: Optional[AdmissionController] = None
        self.accumulator: Optional[ResultAccumulator] = None
        self.logger = logger

    @property
    def mode_name(self) -> str:
        """Mode name for logging."""
        return self.name or self.__class__.__name__

    @property
    def verbose(self) -> int:
        return self.config.verbose if self.config else 0

    async def execute(
        self,
        config: ModeConfig,
        engine: "Engine",
        targets: "TargetStream",
        cancel: CancellationToken,
        task_id: int,
    ) -> ModeResult:
        """
        Run the mode over the target stream.

        Returns:
            ModeResult for this run segment (partial if cancelled)
        """
        self.config = config
        self.engine = engine
        self.task_id = task_id
        self.logger = get_task_logger(task_id)
        self.admission = AdmissionController(config.max_concurrent, config.delay)
        self.accumulator = ResultAccumulator(self.mode_name, targets.total)

        self.log_info(f"{targets.remaining} targets (concurrency={config.max_concurrent}, timeout={config.timeout}s)")

        start = time.monotonic()
        pending: Set[asyncio.Task] = set()
        try:
            async with self.session() as ctx:
                while True:
                    if not await self.admission.acquire(cancel):
                        break
                    try:
                        index, target = next(targets)
                    except StopIteration:
                        self.admission.release()
                        break

                    self.accumulator.dispatch()
                    task = self.admission.spawn(self._run_one(index, target, ctx))
                    pending.add(task)
                    task.add_done_callback(pending.discard)

                    if not await self.admission.pace(cancel):
                        break

                await self._drain(pending, cancel)
        finally:
            if pending:
                for task in list(pending):
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        result = self.accumulator.to_result(time.monotonic() - start)
        if cancel.cancelled:
            self.log_info(f"Cancelled ({cancel.reason.value}) after {result.dispatched} dispatches")
        result.compute_throughput()
        self.summarize(result)
        return result

    async def _run_one(self, index: int, target: str, ctx: Any):
        try:
            outcome = await self.process(index, target, ctx)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self.verbose >= 1:
                self.log_warning(f"[{index + 1}] {target} - {e}")
            outcome = Outcome.failure(message=str(e))
        self.accumulator.record(outcome)
        return outcome

    async def _drain(self, pending: Set[asyncio.Task], cancel: CancellationToken):
        """Wait for in-flight operations; cancel them on a hard cancellation."""
        while pending:
            if cancel.hard:
                tasks = list(pending)
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                return
            await asyncio.wait(list(pending), timeout=DRAIN_POLL_INTERVAL)

    def session(self):
        """Per-run resource context yielded to process(); HTTP client by default."""
        return self.engine.http_client(self.config)

    @abstractmethod
    async def process(self, index: int, target: str, ctx: Any) -> Outcome:
        """
        Execute a single target operation.

        Args:
            index: Logical combination index of the target
            target: Concrete target
            ctx: Object yielded by session()

        Returns:
            Outcome of the operation
        """
        pass

    def summarize(self, result: ModeResult):
        """Fill in mode-specific detail at the end of a run segment and again at task end."""
        pass

    def log_info(self, msg: str):
        """Log info message with mode context."""
        self.logger.info(f"[{self.mode_name}] {msg}")

    def log_debug(self, msg: str):
        """Log debug message with mode context."""
        self.logger.debug(f"[{self.mode_name}] {msg}")

    def log_warning(self, msg: str):
        """Log warning message with mode context."""
        self.logger.warning(f"[{self.mode_name}] {msg}")

    def log_error(self, msg: str):
        """Log error message with mode context."""
        self.logger.error(f"[{self.mode_name}] {msg}")
