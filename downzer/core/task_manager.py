"""
Task Manager

Owns every task of a daemon:
1. Creates task records and applies the run-slot policy
2. Launches a TaskExecutor per running task
3. Relays Pause/Resume/Stop requests to executors
4. Promotes queued tasks when the run slot frees
5. Publishes lifecycle events to subscribers
"""

import asyncio
import os
from collections import deque
from functools import partial
from typing import Callable, Deque, Dict, Iterable, List, Optional, Union

from .config import ModeConfig
from .engine import Engine
from .exceptions import ControlError, TaskNotFoundError, TaskStateError
from .generator import CombinationSpec
from .logging import add_task_log, get_log_dir, logger, remove_task_log
from .models import Task, TaskStatus
from ..db import TaskRepository
from ..worker.cancellation import CancelReason
from ..worker.executor import TaskExecutor


EventCallback = Callable[[str, Task], None]

# Upper bound on how long a Stop request waits for the task to record Stopped
STOP_WAIT_SECONDS = 10.0


def log_event(event: str, task: Task):
    """Default subscriber: one log line per lifecycle event."""
    logger.info(f"[TaskManager] Task {task.task_id} {event} ({task.status.label})")


class TaskManager:
    """
    Task lifecycle and run-slot policy.

    A task is submitted either concurrent (starts Running immediately) or
    serialized. Serialized tasks share a single run slot: a submission starts
    Running when no serialized task is Running or Paused, otherwise it is
    Queued and promoted in FIFO order when the slot frees.
    """

    def __init__(self, store: TaskRepository, engine: Engine):
        """
        Initialize TaskManager.

        Args:
            store: Task repository
            engine: Shared engine handle passed to every executor
        """
        self.store = store
        self.engine = engine
        self.pid = os.getpid()

        self._executors: Dict[int, TaskExecutor] = {}
        self._runners: Dict[int, asyncio.Task] = {}
        self._task_logs: Dict[int, int] = {}
        self._slot_holder: Optional[int] = None
        self._queue: Deque[int] = deque()
        self._subscribers: List[EventCallback] = [log_event]
        self._shutting_down = False
        self._idle = asyncio.Event()
        self._idle.set()

    # =========================================================================
    # Events
    # =========================================================================

    def subscribe(self, callback: EventCallback):
        """Register a lifecycle event subscriber."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: EventCallback):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def _emit(self, event: str, task: Task):
        for callback in list(self._subscribers):
            try:
                callback(event, task)
            except Exception as e:
                logger.warning(f"[TaskManager] Event subscriber failed on {event}: {e}")

    # =========================================================================
    # Startup / state
    # =========================================================================

    def startup(self) -> int:
        """Fail tasks orphaned by a dead daemon. Returns the number reconciled."""
        count = self.store.reconcile_dead_daemons(self.pid)
        if count:
            logger.warning(f"[TaskManager] Reconciled {count} orphaned task(s)")
        return count

    @property
    def is_idle(self) -> bool:
        """No running, paused or queued task is owned by this manager."""
        return not self._runners and not self._queue

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    async def wait_idle(self):
        await self._idle.wait()

    def _update_idle(self):
        if self.is_idle:
            self._idle.set()
        else:
            self._idle.clear()

    # =========================================================================
    # Submission
    # =========================================================================

    def submit(
        self,
        template: str,
        mode_config: Union[ModeConfig, dict],
        spec: Union[CombinationSpec, dict],
        concurrent: bool = False,
    ) -> Task:
        """
        Create a task and start or queue it.

        Args:
            template: Target template
            mode_config: Mode configuration snapshot
            spec: Combination spec; a shuffle seed is fixed here if missing
            concurrent: Bypass the serialized run slot

        Returns:
            Stored task (Running or Queued)
        """
        if self._shutting_down:
            raise ControlError("Daemon is shutting down")

        if isinstance(mode_config, dict):
            mode_config = ModeConfig.from_dict(mode_config)
        if isinstance(spec, dict):
            spec = CombinationSpec.from_dict(spec)
        spec = spec.with_seed()

        if concurrent or self._slot_holder is None:
            status = TaskStatus.RUNNING
        else:
            status = TaskStatus.QUEUED

        task = Task(
            template=template,
            mode=mode_config.mode,
            mode_config=mode_config.to_dict(),
            spec=spec.to_dict(),
            status=status,
            concurrent=concurrent,
            pid=self.pid,
        )
        task = self.store.create(task)
        self._emit("submitted", task)

        if status == TaskStatus.QUEUED:
            self._queue.append(task.task_id)
            logger.info(f"[TaskManager] Task {task.task_id} queued behind task {self._slot_holder}")
        else:
            if not concurrent:
                self._slot_holder = task.task_id
            self._launch(task)

        self._update_idle()
        return task

    def _launch(self, task: Task):
        if get_log_dir() is not None:
            sink_id, _ = add_task_log(task.task_id, {
                "Template": task.template,
                "Mode": task.mode,
                "Concurrent": task.concurrent,
            })
            self._task_logs[task.task_id] = sink_id

        executor = TaskExecutor(task, self.engine, self.store, on_event=self._emit)
        runner = asyncio.ensure_future(executor.run())
        runner.add_done_callback(partial(self._on_task_done, task.task_id))
        self._executors[task.task_id] = executor
        self._runners[task.task_id] = runner

    def _on_task_done(self, task_id: int, runner: asyncio.Task):
        self._executors.pop(task_id, None)
        self._runners.pop(task_id, None)

        sink_id = self._task_logs.pop(task_id, None)
        if sink_id is not None:
            remove_task_log(sink_id)

        if not runner.cancelled() and runner.exception() is not None:
            logger.error(f"[TaskManager] Task {task_id} executor raised: {runner.exception()}")

        if self._slot_holder == task_id:
            self._slot_holder = None
            self._promote()
        self._update_idle()

    def _promote(self):
        """Start queued tasks in FIFO order while the run slot is free."""
        while self._slot_holder is None and self._queue and not self._shutting_down:
            task_id = self._queue.popleft()
            task = self.store.transition(task_id, TaskStatus.RUNNING)
            if task is None:
                continue
            logger.info(f"[TaskManager] Promoting queued task {task_id}")
            self._slot_holder = task_id
            self._launch(task)

    # =========================================================================
    # Control
    # =========================================================================

    def _lookup(self, task_id: int, errors: List[str]) -> Optional[Task]:
        task = self.store.find_by_id(task_id)
        if task is None:
            errors.append(str(TaskNotFoundError(task_id)))
        return task

    def pause(self, task_ids: Iterable[int]) -> List[str]:
        """
        Pause running tasks.

        Returns:
            Error messages for unknown ids and illegal transitions (empty if all applied)
        """
        errors = []
        for task_id in task_ids:
            task = self._lookup(task_id, errors)
            if task is None:
                continue
            executor = self._executors.get(task_id)
            if task.status != TaskStatus.RUNNING or executor is None:
                errors.append(str(TaskStateError(task_id, task.status.label, TaskStatus.PAUSED.label)))
                continue
            if self.store.transition(task_id, TaskStatus.PAUSED) is None:
                errors.append(str(TaskStateError(task_id, task.status.label, TaskStatus.PAUSED.label)))
                continue
            executor.request_pause()
            logger.info(f"[TaskManager] Pause requested for task {task_id}")
        return errors

    def resume(self, task_ids: Iterable[int]) -> List[str]:
        """
        Resume paused tasks from their persisted offset.

        Returns:
            Error messages for unknown ids and illegal transitions
        """
        errors = []
        for task_id in task_ids:
            task = self._lookup(task_id, errors)
            if task is None:
                continue
            executor = self._executors.get(task_id)
            if task.status != TaskStatus.PAUSED or executor is None:
                errors.append(str(TaskStateError(task_id, task.status.label, TaskStatus.RUNNING.label)))
                continue
            if self.store.transition(task_id, TaskStatus.RUNNING) is None:
                errors.append(str(TaskStateError(task_id, task.status.label, TaskStatus.RUNNING.label)))
                continue
            executor.request_resume()
            logger.info(f"[TaskManager] Resume requested for task {task_id}")
        return errors

    async def stop(self, task_ids: Iterable[int]) -> List[str]:
        """
        Stop tasks. Irreversible.

        Queued tasks are stopped directly; running and paused tasks are
        signalled and awaited until they record Stopped.

        Returns:
            Error messages for unknown ids and illegal transitions
        """
        errors = []
        waiting = []
        for task_id in task_ids:
            task = self._lookup(task_id, errors)
            if task is None:
                continue
            if task.status.is_terminal:
                errors.append(str(TaskStateError(task_id, task.status.label, TaskStatus.STOPPED.label)))
                continue

            executor = self._executors.get(task_id)
            if executor is not None:
                executor.request_stop(CancelReason.STOP)
                waiting.append(self._runners[task_id])
            elif self.store.transition(task_id, TaskStatus.STOPPED) is not None:
                if task_id in self._queue:
                    self._queue.remove(task_id)
                self._emit("finished", self.store.find_by_id(task_id))
            else:
                errors.append(str(TaskStateError(task_id, task.status.label, TaskStatus.STOPPED.label)))
                continue
            logger.info(f"[TaskManager] Stop requested for task {task_id}")

        if waiting:
            await asyncio.wait(waiting, timeout=STOP_WAIT_SECONDS)
        self._update_idle()
        return errors

    def list_tasks(self, include_finished: bool = True) -> List[Task]:
        return self.store.list_tasks(include_finished)

    def status(self, task_id: int) -> Task:
        """
        Raises:
            TaskNotFoundError: unknown id
        """
        task = self.store.find_by_id(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def shutdown(self):
        """
        Interrupt every task. Queued tasks are recorded Stopped, running and
        paused tasks stop after cancelling their in-flight operations.
        A second call is a no-op.
        """
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info("[TaskManager] Shutting down, interrupting all tasks")

        while self._queue:
            task_id = self._queue.popleft()
            task = self.store.transition(task_id, TaskStatus.STOPPED, error_msg="Interrupted")
            if task is not None:
                self._emit("finished", task)

        for executor in list(self._executors.values()):
            executor.request_stop(CancelReason.INTERRUPT)

        runners = list(self._runners.values())
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
        self._update_idle()
