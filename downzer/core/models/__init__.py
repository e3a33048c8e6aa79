"""
Downzer Data Models

Models for Task and ModeResult.
"""

from .result import ModeResult
from .task import Task, TaskStatus, TERMINAL_STATUSES, ALLOWED_TRANSITIONS

__all__ = [
    "ModeResult",
    "Task", "TaskStatus", "TERMINAL_STATUSES", "ALLOWED_TRANSITIONS",
]
