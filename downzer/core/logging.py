"""
Downzer Logging

Centralized logging configuration using loguru.
A daemon run can additionally write a per-task log directory.
"""

import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from loguru import logger


# Global exception handler to ensure all errors are logged
def _global_exception_handler(exc_type, exc_value, exc_tb):
    """Handle uncaught exceptions globally."""
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_tb)
        return

    error_msg = "".join(traceback.format_exception(exc_type, exc_value, exc_tb))
    logger.error(f"Uncaught exception:\n{error_msg}")


sys.excepthook = _global_exception_handler


# Remove default handler
logger.remove()

_current_log_dir: Optional[Path] = None

CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"

_LOGO = """╔════════════════════════════════════════╗
║    Downzer - Resource Fuzzer/Download  ║
╚════════════════════════════════════════╝"""


def get_logo() -> str:
    return _LOGO + "\n"


def _create_task_header(metadata: Dict[str, Any]) -> str:
    """Create a formatted task metadata header"""
    present = {k: v for k, v in metadata.items() if v is not None}
    max_key_len = max(len(str(k)) for k in present)

    content_lines = []
    for key, value in present.items():
        key_padded = f"{key}:".ljust(max_key_len + 2)
        content_lines.append(f"  {key_padded} {value}")

    width = max(max(len(line) for line in content_lines) + 2, 80)

    lines = []
    lines.append("┌" + "─" * width + "┐")
    lines.append("│" + " TASK METADATA ".center(width) + "│")
    lines.append("├" + "─" * width + "┤")
    for content in content_lines:
        lines.append("│" + content.ljust(width) + "│")
    lines.append("└" + "─" * width + "┘")
    lines.append("")
    lines.append(" LOG START ".center(width + 2, "="))
    lines.append("")

    return "\n".join(lines)


def verbosity_to_level(verbose: int = 0, quiet: bool = False) -> str:
    """Map -q / -v / -vv / -vvv to a console log level."""
    if quiet:
        return "WARNING"
    if verbose >= 3:
        return "DEBUG"
    return "INFO"


def get_log_dir() -> Optional[Path]:
    """Get current run's log directory"""
    return _current_log_dir


def setup_console(level: str = "INFO"):
    """
    Setup console-only logging.

    Args:
        level: Log level
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=CONSOLE_FORMAT,
        colorize=True,
    )


def setup_logging(
    log_dir: Path,
    task_id: Optional[int] = None,
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    metadata: Optional[Dict[str, Any]] = None,
) -> Path:
    """
    Setup console and file logging for a daemon run.

    Creates {log_dir}/downzer_{task_id}_{timestamp}/ holding downzer.log
    (with a metadata header) and error.log.

    Returns:
        Path to the run log directory
    """
    global _current_log_dir

    logger.remove()

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    suffix = f"{task_id}_{timestamp}" if task_id is not None else timestamp
    run_dir = Path(log_dir) / f"downzer_{suffix}"
    run_dir.mkdir(parents=True, exist_ok=True)
    _current_log_dir = run_dir

    log_file = run_dir / "downzer.log"
    full_metadata = {
        "Task ID": task_id,
        "Start Time": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        "Log Directory": str(run_dir),
        **(metadata or {}),
    }
    with open(log_file, "w", encoding="utf-8") as f:
        f.write(get_logo())
        f.write("\n")
        f.write(_create_task_header(full_metadata))
        f.write("\n")

    logger.add(
        sys.stderr,
        level=console_level,
        format=CONSOLE_FORMAT,
        colorize=True,
    )

    logger.add(
        log_file,
        level=file_level,
        format=FILE_FORMAT,
        rotation="50 MB",
        retention="7 days",
        encoding="utf-8",
        mode="a",
    )

    logger.add(
        run_dir / "error.log",
        level="ERROR",
        format=FILE_FORMAT,
        rotation="10 MB",
        encoding="utf-8",
    )

    logger.info(f"Logging initialized: {run_dir}")
    return run_dir


def add_task_log(task_id: int, metadata: Optional[Dict[str, Any]] = None, level: str = "DEBUG") -> Tuple[int, Path]:
    """
    Add a separate log file for one task.

    Records logged through get_task_logger(task_id) go to
    {run_dir}/task_{task_id}.log, which starts with a metadata header.

    Returns:
        (sink id for remove_task_log, path to the log file)
    """
    if _current_log_dir is None:
        raise RuntimeError("Logging not initialized. Call setup_logging() first.")

    log_file = _current_log_dir / f"task_{task_id}.log"
    with open(log_file, "w", encoding="utf-8") as f:
        f.write(_create_task_header({"Task ID": task_id, **(metadata or {})}))
        f.write("\n")

    sink_id = logger.add(
        log_file,
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {message}",
        filter=lambda record: record["extra"].get("task_id") == task_id,
        encoding="utf-8",
        mode="a",
    )
    return sink_id, log_file


def remove_task_log(sink_id: int):
    """Detach a task log sink added by add_task_log."""
    try:
        logger.remove(sink_id)
    except ValueError:
        pass


def get_task_logger(task_id: Optional[int]):
    """Logger bound to a task, so its records also reach the task log."""
    return logger.bind(task_id=task_id)
