"""Group notifications into bounded-size transcription jobs."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from transcription_ingest.models import JobBatch, Notification

JOB_NAME_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S"


def make_job_name(started_at: datetime, index: int) -> str:
    """Job name for the ``index``-th chunk of an invocation started at ``started_at``."""
    return f"{started_at.strftime(JOB_NAME_TIME_FORMAT)}_{index}"


def chunk(
    notifications: Sequence[Notification],
    batch_size: int,
    started_at: datetime,
) -> list[JobBatch]:
    """Partition notifications into contiguous, order-preserving batches.

    Args:
        notifications: Validated notifications in claim order.
        batch_size: Maximum number of files per job (at least 1).
        started_at: Invocation start time used for job names.

    Returns:
        Batches of at most ``batch_size`` notifications, without endpoints.

    Raises:
        ValueError: If ``batch_size`` is smaller than 1.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")

    return [
        JobBatch(
            job_name=make_job_name(started_at, index),
            notifications=tuple(notifications[start : start + batch_size]),
        )
        for index, start in enumerate(range(0, len(notifications), batch_size))
    ]
