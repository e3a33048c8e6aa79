"""
Downzer Worker Package

Contains task execution machinery:
- admission: bounds in-flight target operations and applies pacing
- cancellation: per-run cancellation token
- executor: runs one task through its mode (import downzer.worker.executor)
"""

from .admission import AdmissionController
from .cancellation import CancellationToken, CancelReason

__all__ = [
    "AdmissionController",
    "CancellationToken",
    "CancelReason",
]
