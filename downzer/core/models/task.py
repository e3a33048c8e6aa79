"""
Task Model - Represents a single fuzzing/download run
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .result import ModeResult


def _parse_time(value):
    """Accept datetimes or the ISO strings produced for control replies"""
    if isinstance(value, str):
        return datetime.fromisoformat(value)
    return value


class TaskStatus(str, Enum):
    """Task status enum"""

    QUEUED = "queued"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in (TaskStatus.RUNNING, TaskStatus.PAUSED)

    def can_transition(self, target: "TaskStatus") -> bool:
        return target in ALLOWED_TRANSITIONS.get(self, ())


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.STOPPED})

# Queued/Paused -> Failed only happens when a dead daemon's tasks are reconciled
ALLOWED_TRANSITIONS = {
    TaskStatus.QUEUED: frozenset({TaskStatus.RUNNING, TaskStatus.STOPPED, TaskStatus.FAILED}),
    TaskStatus.RUNNING: frozenset({
        TaskStatus.PAUSED, TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.STOPPED,
    }),
    TaskStatus.PAUSED: frozenset({TaskStatus.RUNNING, TaskStatus.STOPPED, TaskStatus.FAILED}),
}


@dataclass
class Task:
    """
    Task represents one template expanded over its combination space and
    executed through a single mode.

    mode_config and spec are stored as plain dicts (ModeConfig.to_dict() and
    CombinationSpec.to_dict()) so the record is self-contained in the store.
    """

    # Assigned by the store on insert
    task_id: int = 0

    template: str = ""
    mode: str = "download"
    mode_config: dict = field(default_factory=dict)
    spec: dict = field(default_factory=dict)

    status: TaskStatus = TaskStatus.QUEUED
    concurrent: bool = False

    # Progress
    total: int = 0
    progress: int = 0

    # Owning daemon
    pid: Optional[int] = None

    # Timestamps
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=datetime.now)

    # Latest aggregated result
    result: Optional[ModeResult] = None
    error_msg: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for MongoDB storage"""
        return {
            "_id": self.task_id,
            "task_id": self.task_id,
            "template": self.template,
            "mode": self.mode,
            "mode_config": self.mode_config,
            "spec": self.spec,
            "status": self.status.value,
            "concurrent": self.concurrent,
            "total": self.total,
            "progress": self.progress,
            "pid": self.pid,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "updated_at": self.updated_at,
            "result": self.result.to_dict() if self.result else None,
            "error_msg": self.error_msg,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Task":
        """Create Task from dictionary"""
        result = data.get("result")
        return cls(
            task_id=int(data.get("task_id", data.get("_id", 0))),
            template=data.get("template", ""),
            mode=data.get("mode", "download"),
            mode_config=data.get("mode_config") or {},
            spec=data.get("spec") or {},
            status=TaskStatus(data.get("status", "queued")),
            concurrent=data.get("concurrent", False),
            total=data.get("total", 0),
            progress=data.get("progress", 0),
            pid=data.get("pid"),
            created_at=_parse_time(data.get("created_at")) or datetime.now(),
            started_at=_parse_time(data.get("started_at")),
            ended_at=_parse_time(data.get("ended_at")),
            updated_at=_parse_time(data.get("updated_at")) or datetime.now(),
            result=ModeResult.from_dict(result) if result else None,
            error_msg=data.get("error_msg"),
        )

    def to_summary(self) -> dict:
        """Compact view used by the control-plane List snapshot"""
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "template": self.template,
            "mode": self.mode,
            "progress": self.progress,
            "total": self.total,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "error_msg": self.error_msg,
        }
