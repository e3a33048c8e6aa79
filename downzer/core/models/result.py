"""
ModeResult Model - Aggregate outcome of a task
"""

from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class ModeResult:
    """
    Aggregate outcome of one task (or one run segment of it).

    successful/failed/skipped are per-target tallies; counters carries
    mode-specific breakdowns such as not_found or duplicates.
    """

    mode: str = ""
    total: int = 0
    successful: int = 0
    failed: int = 0
    skipped: int = 0
    bytes: int = 0
    dispatched: int = 0
    elapsed: float = 0.0
    throughput: float = 0.0
    detail: Optional[str] = None
    counters: Dict[str, int] = field(default_factory=dict)

    @property
    def completed(self) -> int:
        return self.successful + self.failed + self.skipped

    def compute_throughput(self) -> float:
        """Completed operations per second of elapsed wall time."""
        self.throughput = self.completed / self.elapsed if self.elapsed > 0 else 0.0
        return self.throughput

    def merge(self, other: "ModeResult") -> "ModeResult":
        """Fold a later run segment (after resume) into this result."""
        self.successful += other.successful
        self.failed += other.failed
        self.skipped += other.skipped
        self.bytes += other.bytes
        self.dispatched += other.dispatched
        self.elapsed += other.elapsed
        self.total = max(self.total, other.total)
        for key, value in other.counters.items():
            self.counters[key] = self.counters.get(key, 0) + value
        if other.detail:
            self.detail = other.detail
        return self

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "bytes": self.bytes,
            "dispatched": self.dispatched,
            "elapsed": self.elapsed,
            "throughput": self.throughput,
            "detail": self.detail,
            "counters": dict(self.counters),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ModeResult":
        return cls(
            mode=data.get("mode", ""),
            total=data.get("total", 0),
            successful=data.get("successful", 0),
            failed=data.get("failed", 0),
            skipped=data.get("skipped", 0),
            bytes=data.get("bytes", 0),
            dispatched=data.get("dispatched", 0),
            elapsed=data.get("elapsed", 0.0),
            throughput=data.get("throughput", 0.0),
            detail=data.get("detail"),
            counters=dict(data.get("counters") or {}),
        )
