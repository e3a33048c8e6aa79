"""
Execution Modes

Each mode implements the per-target operation for one kind of network
activity. The shared dispatch loop lives in BaseMode.
"""

from .base import BaseMode, Outcome, OutcomeKind, ResultAccumulator
from .download import DownloadMode
from .webrequest import WebRequestMode
from .registry import (
    ModeKind,
    MODE_ALIASES,
    MODE_REGISTRY,
    available_modes,
    parse_mode_kind,
    resolve_mode,
    create_mode,
)

__all__ = [
    "BaseMode",
    "Outcome",
    "OutcomeKind",
    "ResultAccumulator",
    "DownloadMode",
    "WebRequestMode",
    "ModeKind",
    "MODE_ALIASES",
    "MODE_REGISTRY",
    "available_modes",
    "parse_mode_kind",
    "resolve_mode",
    "create_mode",
]
