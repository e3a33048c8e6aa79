"""
Downzer Exceptions

Custom exceptions for configuration, mode dispatch, task lifecycle and the
control plane.
"""


class DownzerError(Exception):
    """Base exception for Downzer errors"""

    def __init__(self, message: str, **context):
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = [self.message]
        for key, value in self.context.items():
            parts.append(f"{key}={value}")
        return " | ".join(parts)


# =========================================================================
# Configuration
# =========================================================================

class ConfigurationError(DownzerError):
    """Invalid run configuration, detected before any network activity"""
    pass


class PlaceholderError(ConfigurationError):
    """Template placeholder has no range or wordlist bound to it"""

    def __init__(self, message: str, placeholder: str = None, **kwargs):
        self.placeholder = placeholder
        super().__init__(message, placeholder=placeholder, **kwargs)


class RangeFormatError(ConfigurationError):
    """Range spec is not of the form start-end with start <= end"""
    pass


class WordlistError(ConfigurationError):
    """Wordlist tokens cannot be resolved"""
    pass


class DelayFormatError(ConfigurationError):
    """Pacing delay is not <ms> or <sec>x<N>"""
    pass


# =========================================================================
# Modes
# =========================================================================

class ModeError(DownzerError):
    """Mode resolution or execution failed"""

    def __init__(self, message: str, mode: str = None, **kwargs):
        self.mode = mode
        super().__init__(message, mode=mode, **kwargs)


class UnknownModeError(ModeError):
    """Mode name does not match any known mode"""

    def __init__(self, mode: str, available: list = None):
        self.available = available or []
        message = f"Unknown mode: {mode}"
        if self.available:
            message += f". Available: {', '.join(self.available)}"
        super().__init__(message, mode=mode)


class ModeNotImplementedError(ModeError):
    """Mode is known but its capability is not available (non-retryable)"""

    def __init__(self, mode: str, capability: str):
        self.capability = capability
        super().__init__(
            f"{mode} mode not yet implemented",
            mode=mode,
            missing=capability,
        )


# =========================================================================
# Task lifecycle
# =========================================================================

class TaskNotFoundError(DownzerError):
    """No task with the given id"""

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class TaskStateError(DownzerError):
    """Requested transition is not allowed from the task's current state"""

    def __init__(self, task_id: int, current: str, target: str):
        self.task_id = task_id
        self.current = current
        self.target = target
        super().__init__(f"Task {task_id} is {current.lower()}, cannot move to {target.lower()}")


# =========================================================================
# Control plane
# =========================================================================

class ControlError(DownzerError):
    """Control-plane communication failed"""
    pass


class DaemonNotRunningError(ControlError):
    """No daemon is listening on the control socket"""

    def __init__(self, socket_path: str):
        self.socket_path = socket_path
        super().__init__("No running Downzer daemon found", socket=socket_path)


class DaemonAlreadyRunningError(ControlError):
    """Another daemon already owns the control socket"""

    def __init__(self, socket_path: str):
        self.socket_path = socket_path
        super().__init__("A Downzer daemon is already running", socket=socket_path)


class ProtocolError(ControlError):
    """Malformed control-plane message"""
    pass
