"""
Downzer Core Module

Configuration, models, the combination generator and logging.
"""

from .config import Config, ModeConfig, Delay
from .exceptions import (
    DownzerError,
    ConfigurationError,
    PlaceholderError,
    ModeError,
    UnknownModeError,
    ModeNotImplementedError,
    TaskNotFoundError,
    TaskStateError,
    ControlError,
    DaemonNotRunningError,
    DaemonAlreadyRunningError,
    ProtocolError,
)
from .generator import CombinationSpec, CombinationSpace, TargetStream
from .logging import (
    logger,
    setup_logging,
    setup_console,
    get_log_dir,
    add_task_log,
    get_task_logger,
)
from .models import Task, TaskStatus, ModeResult

__all__ = [
    # Config
    "Config",
    "ModeConfig",
    "Delay",
    # Exceptions
    "DownzerError",
    "ConfigurationError",
    "PlaceholderError",
    "ModeError",
    "UnknownModeError",
    "ModeNotImplementedError",
    "TaskNotFoundError",
    "TaskStateError",
    "ControlError",
    "DaemonNotRunningError",
    "DaemonAlreadyRunningError",
    "ProtocolError",
    # Generator
    "CombinationSpec",
    "CombinationSpace",
    "TargetStream",
    # Logging
    "logger",
    "setup_logging",
    "setup_console",
    "get_log_dir",
    "add_task_log",
    "get_task_logger",
    # Models
    "Task",
    "TaskStatus",
    "ModeResult",
]
