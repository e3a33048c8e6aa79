"""
Task Executor

Runs one task from its persisted offset to a terminal state:
validates its configuration, resolves the mode, runs segments of the
mode loop, flushes progress, and handles Pause/Resume/Stop between
segments.
"""

import asyncio
from typing import Callable, Optional, Tuple

from loguru import logger

from ..core.config import ModeConfig
from ..core.engine import Engine
from ..core.exceptions import ConfigurationError, DownzerError
from ..core.generator import CombinationSpace, CombinationSpec, TargetStream
from ..core.models import ModeResult, Task, TaskStatus
from ..db import TaskRepository
from ..modes.base import BaseMode
from ..modes.registry import create_mode
from .cancellation import CancellationToken, CancelReason


EventCallback = Callable[[str, Task], None]


class TaskExecutor:
    """
    Executes a single task.

    The executor is the only writer of a task's progress and result. State
    changes requested over the control plane are applied to the store by
    the TaskManager and relayed here as signals:
    - request_pause(): stop admitting, let in-flight operations finish
    - request_resume(): start a new segment from the persisted offset
    - request_stop(): cancel outstanding operations, record Stopped
    """

    def __init__(
        self,
        task: Task,
        engine: Engine,
        store: TaskRepository,
        on_event: Optional[EventCallback] = None,
    ):
        self.task = task
        self.task_id = task.task_id
        self.engine = engine
        self.store = store
        self.on_event = on_event

        self.mode: Optional[BaseMode] = None
        self.config: Optional[ModeConfig] = None
        self.space: Optional[CombinationSpace] = None
        self.result: Optional[ModeResult] = None

        self._token = CancellationToken()
        self._want_running = True
        self._stop_reason: Optional[CancelReason] = None
        self._wake = asyncio.Event()
        self._stream: Optional[TargetStream] = None

    # =========================================================================
    # Signals
    # =========================================================================

    @property
    def position(self) -> int:
        """Combinations dispatched so far (the resume offset)."""
        if self._stream is not None:
            return self._stream.position
        return self.task.progress

    def request_pause(self) -> bool:
        if self._stop_reason is not None:
            return False
        self._want_running = False
        self._wake.clear()
        return self._token.cancel(CancelReason.PAUSE)

    def request_resume(self) -> bool:
        if self._stop_reason is not None or self._want_running:
            return False
        self._want_running = True
        self._wake.set()
        return True

    def request_stop(self, reason: CancelReason = CancelReason.STOP) -> bool:
        if self._stop_reason is not None:
            return False
        self._stop_reason = reason
        self._token.cancel(reason)
        self._wake.set()
        return True

    # =========================================================================
    # Execution
    # =========================================================================

    def prepare(self) -> Tuple[BaseMode, ModeConfig, CombinationSpace]:
        """
        Validate the task and resolve its mode. No network activity happens here.

        Raises:
            ConfigurationError: invalid mode configuration or template/spec mismatch
            ModeError: unknown or unimplemented mode
        """
        config = ModeConfig.from_dict(self.task.mode_config)
        errors = config.validate()
        if errors:
            raise ConfigurationError("; ".join(errors))

        spec = CombinationSpec.from_dict(self.task.spec)
        space = CombinationSpace.from_spec(spec, self.task.template)
        mode = create_mode(config.mode)
        return mode, config, space

    async def run(self) -> Task:
        """
        Run the task until it reaches a terminal state.

        Returns:
            Final task record
        """
        log = logger.bind(task_id=self.task_id)

        try:
            self.mode, self.config, self.space = self.prepare()
        except DownzerError as e:
            log.error(f"[Executor] Task {self.task_id} rejected: {e}")
            return self._finish(TaskStatus.FAILED, error_msg=str(e))

        self.store.set_total(self.task_id, len(self.space))
        self.task.total = len(self.space)
        self._emit("started")
        log.info(
            f"[Executor] Task {self.task_id} started: {self.task.template} "
            f"({self.mode.mode_name}, {len(self.space)} combinations, offset {self.task.progress})"
        )

        offset = self.task.progress
        while True:
            if self._stop_reason is not None:
                return self._finish(TaskStatus.STOPPED)

            token = self._token
            self._stream = TargetStream(self.task.template, self.space, offset)
            try:
                segment = await self._run_segment(token)
            except asyncio.CancelledError:
                self._flush_progress()
                self._finish(TaskStatus.STOPPED)
                raise
            except Exception as e:
                log.exception(f"[Executor] Task {self.task_id} crashed: {e}")
                return self._finish(TaskStatus.FAILED, error_msg=str(e))

            offset = self._stream.position
            self.result = segment if self.result is None else self.result.merge(segment)
            self._flush_progress()

            if token.reason is None:
                return self._finish(TaskStatus.COMPLETED)
            if token.hard or self._stop_reason is not None:
                return self._finish(TaskStatus.STOPPED)

            # Paused: wait until resumed or stopped
            log.info(f"[Executor] Task {self.task_id} paused at {offset}/{len(self.space)}")
            self._emit("paused")
            while not (self._want_running or self._stop_reason is not None):
                await self._wake.wait()
                self._wake.clear()

            if self._stop_reason is not None:
                return self._finish(TaskStatus.STOPPED)

            self._token = CancellationToken()
            log.info(f"[Executor] Task {self.task_id} resumed from {offset}")
            self._emit("resumed")

    async def _run_segment(self, token: CancellationToken) -> ModeResult:
        """One pass of the mode loop, with a periodic progress flusher alongside."""
        flusher = asyncio.ensure_future(self._progress_flusher())
        try:
            return await self.mode.execute(
                self.config, self.engine, self._stream, token, self.task_id,
            )
        finally:
            flusher.cancel()
            await asyncio.gather(flusher, return_exceptions=True)

    async def _progress_flusher(self):
        interval = self.engine.config.progress_flush_interval
        while True:
            await asyncio.sleep(interval)
            self._flush_progress()

    def _flush_progress(self):
        self.store.update_progress(self.task_id, self.position)

    def _finish(self, status: TaskStatus, error_msg: str = None) -> Task:
        """Record the terminal state with the merged result."""
        fields = {}
        if self.result is not None:
            self.result.compute_throughput()
            if self.mode is not None:
                self.mode.summarize(self.result)
            fields["result"] = self.result
            fields["progress"] = max(self.position, self.task.progress)
        if error_msg:
            fields["error_msg"] = error_msg

        updated = self.store.transition(self.task_id, status, **fields)
        if updated is None:
            # Already terminal (e.g. reconciled while running); keep the stored state
            updated = self.store.find_by_id(self.task_id) or self.task
            logger.warning(
                f"[Executor] Task {self.task_id} could not move to {status.value}, "
                f"stored state is {updated.status.value}"
            )
        self.task = updated

        level = "ERROR" if status == TaskStatus.FAILED else "INFO"
        summary = self.result.detail if self.result and self.result.detail else ""
        logger.bind(task_id=self.task_id).log(
            level,
            f"[Executor] Task {self.task_id} {status.value}"
            + (f": {error_msg}" if error_msg else "")
            + (f" | {summary}" if summary else ""),
        )
        self._emit("finished")
        return updated

    def _emit(self, event: str):
        if self.on_event is None:
            return
        task = self.task if event == "finished" else (self.store.find_by_id(self.task_id) or self.task)
        self.on_event(event, task)
