"""
Task Repository

Persistent task records. Every state change is a conditional update that
only matches when the transition is allowed from the stored state, so
terminal tasks can never be modified and concurrent writers cannot race
each other into an illegal state.
"""

import os
import threading
from datetime import datetime
from typing import Iterable, List, Optional

import psutil
from loguru import logger
from pymongo import ASCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database

from ..core.models import ALLOWED_TRANSITIONS, ModeResult, Task, TaskStatus


ACTIVE_STATES = (TaskStatus.QUEUED, TaskStatus.RUNNING, TaskStatus.PAUSED)


def _states(statuses: Iterable[TaskStatus]) -> List[str]:
    return [s.value for s in statuses]


def _sources(target: TaskStatus) -> List[str]:
    """States from which target is reachable."""
    return [s.value for s, targets in ALLOWED_TRANSITIONS.items() if target in targets]


class TaskRepository:
    """
    Repository for Task records.

    Ids come from an atomic counter document, so they are never reused even
    after a task is deleted. Writes are serialized by a re-entrant lock.
    """

    COUNTER_ID = "task_id"

    def __init__(self, db: Database):
        self.db = db
        self.collection: Collection = db["tasks"]
        self.counters: Collection = db["counters"]
        self._lock = threading.RLock()

    # =========================================================================
    # Ids and creation
    # =========================================================================

    def next_id(self) -> int:
        """Issue the next task id."""
        with self._lock:
            doc = self.counters.find_one_and_update(
                {"_id": self.COUNTER_ID},
                {"$inc": {"seq": 1}},
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
            return int(doc["seq"])

    def create(self, task: Task) -> Task:
        """Assign an id and insert the task. Returns the stored task."""
        with self._lock:
            now = datetime.now()
            task.task_id = self.next_id()
            task.created_at = now
            task.updated_at = now
            if task.status == TaskStatus.RUNNING and task.started_at is None:
                task.started_at = now
            self.collection.insert_one(task.to_dict())
            logger.debug(f"[Store] Created task {task.task_id} ({task.status.value})")
            return task

    # =========================================================================
    # Queries
    # =========================================================================

    def find_by_id(self, task_id: int) -> Optional[Task]:
        """Find task by id"""
        data = self.collection.find_one({"_id": int(task_id)})
        return Task.from_dict(data) if data else None

    def find_all(self, query: dict = None, limit: int = 0) -> List[Task]:
        """Find tasks matching query, oldest first"""
        cursor = self.collection.find(query or {}).sort("_id", ASCENDING)
        if limit > 0:
            cursor = cursor.limit(limit)
        return [Task.from_dict(doc) for doc in cursor]

    def find_by_status(self, *statuses: TaskStatus) -> List[Task]:
        """Find tasks in any of the given states"""
        return self.find_all({"status": {"$in": _states(statuses)}})

    def find_active(self) -> List[Task]:
        """Queued, Running and Paused tasks"""
        return self.find_by_status(*ACTIVE_STATES)

    def find_queued(self) -> List[Task]:
        """Queued tasks in submission order"""
        return self.find_by_status(TaskStatus.QUEUED)

    def list_tasks(self, include_finished: bool = True) -> List[Task]:
        """All tasks, or only the non-terminal ones"""
        if include_finished:
            return self.find_all()
        return self.find_active()

    def exists(self, task_id: int) -> bool:
        """Check if a task exists"""
        return self.collection.count_documents({"_id": int(task_id)}, limit=1) > 0

    # =========================================================================
    # Mutations
    # =========================================================================

    def transition(self, task_id: int, target: TaskStatus, **fields) -> Optional[Task]:
        """
        Move a task to target if the transition is allowed from its stored state.

        Extra fields are set in the same update. Timestamps are filled in:
        started_at on the first move to Running, ended_at on any terminal state.

        Returns:
            Updated task, or None if the task does not exist or the
            transition is not allowed
        """
        with self._lock:
            now = datetime.now()
            updates = {"status": target.value, "updated_at": now}
            updates.update(fields)
            if "result" in updates and isinstance(updates["result"], ModeResult):
                updates["result"] = updates["result"].to_dict()
            if target.is_terminal:
                updates.setdefault("ended_at", now)

            doc = self.collection.find_one_and_update(
                {"_id": int(task_id), "status": {"$in": _sources(target)}},
                {"$set": updates},
                return_document=ReturnDocument.AFTER,
            )
            if doc is None:
                return None

            if target == TaskStatus.RUNNING and doc.get("started_at") is None:
                self.collection.update_one({"_id": int(task_id)}, {"$set": {"started_at": now}})
                doc["started_at"] = now

            logger.debug(f"[Store] Task {task_id} -> {target.value}")
            return Task.from_dict(doc)

    def update_progress(self, task_id: int, progress: int, result: ModeResult = None) -> bool:
        """
        Record progress of a Running or Paused task. Progress never decreases.

        Paused is included because in-flight operations of a paused task
        drain after the state change.

        Returns:
            True if the update was applied
        """
        with self._lock:
            update = {
                "$max": {"progress": int(progress)},
                "$set": {"updated_at": datetime.now()},
            }
            if result is not None:
                update["$set"]["result"] = result.to_dict()
            res = self.collection.update_one(
                {"_id": int(task_id), "status": {"$in": _states((TaskStatus.RUNNING, TaskStatus.PAUSED))}},
                update,
            )
            return res.matched_count > 0

    def set_total(self, task_id: int, total: int) -> bool:
        """Record the size of the combination space of a non-terminal task"""
        with self._lock:
            res = self.collection.update_one(
                {"_id": int(task_id), "status": {"$in": _states(ACTIVE_STATES)}},
                {"$set": {"total": int(total), "updated_at": datetime.now()}},
            )
            return res.matched_count > 0

    def delete(self, task_id: int) -> bool:
        """Delete task by id. Its id is not reissued."""
        with self._lock:
            res = self.collection.delete_one({"_id": int(task_id)})
            return res.deleted_count > 0

    def reconcile_dead_daemons(self, current_pid: int = None) -> int:
        """
        Fail tasks left non-terminal by a daemon process that no longer exists.

        Returns:
            Number of tasks marked Failed
        """
        current_pid = current_pid or os.getpid()
        reconciled = 0
        for task in self.find_active():
            if task.pid is None or task.pid == current_pid:
                continue
            if psutil.pid_exists(task.pid):
                continue
            updated = self.transition(
                task.task_id,
                TaskStatus.FAILED,
                error_msg=f"Owning daemon (pid {task.pid}) is no longer running",
            )
            if updated:
                reconciled += 1
                logger.warning(f"[Store] Task {task.task_id} orphaned by dead daemon {task.pid}, marked failed")
        return reconciled
