"""Invocation metrics collection and reporting.

Provides InvocationMetrics for per-invocation counters, StageTimer for
measuring elapsed time, and log_invocation_metrics() for emitting them as
a single structured JSON line to stdout.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass
from datetime import UTC, datetime


@dataclass
class InvocationMetrics:
    """Counters collected for one intake invocation."""

    claimed: int = 0
    valid: int = 0
    discarded: int = 0
    skipped: int = 0
    jobs_submitted: int = 0
    jobs_failed: int = 0
    files_submitted: int = 0
    requeued: int = 0
    failed: int = 0
    lease_renewals: int = 0
    wall_time_seconds: float = 0.0


class StageTimer:
    """Context manager that records wall-clock duration of a stage.

    Usage:
        timer = StageTimer("submit")
        with timer:
            do_work()
        print(timer.duration_seconds)
    """

    def __init__(self, stage_name: str) -> None:
        self.stage_name = stage_name
        self.duration_seconds: float = 0.0
        self._mono_start: float = 0.0

    def __enter__(self) -> StageTimer:
        self._mono_start = time.monotonic()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.duration_seconds = time.monotonic() - self._mono_start


def log_invocation_metrics(metrics: InvocationMetrics, trigger: str = "intake") -> None:
    """Emit invocation metrics as one structured JSON line to stdout."""
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO",
        "metric_type": "invocation_completion",
        "trigger": trigger,
        **asdict(metrics),
    }
    print(json.dumps(entry))
