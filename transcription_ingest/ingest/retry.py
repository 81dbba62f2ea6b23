"""Submission failure classification and re-queue backoff.

A failed submission is classified once as retryable or fatal. Retryable
failures re-enter the queue with an incremented retry count and an
exponential delivery delay until the retry limit is passed; everything
else ends in a failed disposition.

The state transition itself is the pure function ``advance()``; the
RetryEngine applies transitions against the queue and object store.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from transcription_ingest.config import Settings
from transcription_ingest.ingest.disposition import FileDisposition
from transcription_ingest.ingest.router import SubmissionRouter
from transcription_ingest.models import JobBatch, Notification
from transcription_ingest.provider.interface import (
    FailureKind,
    SubmissionFailure,
    SubmissionOutcome,
    TranscriptionProvider,
)
from transcription_ingest.queue.interface import QueueClient
from transcription_ingest.utils.errors import QueueError, StorageError

logger = logging.getLogger(__name__)

MAX_BACKOFF_EXPONENT = 8
RETRYABLE_STATUS_CODES = frozenset({408, 429})


class ErrorClass(enum.Enum):
    RETRYABLE = "retryable"
    FATAL = "fatal"


class TransitionKind(enum.Enum):
    SUCCEED = "succeed"
    REQUEUE = "requeue"
    FAIL = "fail"


@dataclass(frozen=True)
class Transition:
    """Next state of one notification after a submission attempt."""

    kind: TransitionKind
    notification: Notification
    delay: timedelta | None = None
    error_class: ErrorClass | None = None
    lease_token: str | None = None


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS_CODES or status_code >= 500


def classify(failure: SubmissionFailure) -> ErrorClass:
    """Classify a tagged submission failure.

    Timeouts are always retryable. Otherwise an HTTP status, whether from
    the provider response or embedded in a transport error, decides.
    Anything without a status is fatal.
    """
    if failure.kind is FailureKind.TIMEOUT:
        return ErrorClass.RETRYABLE
    if failure.kind in (FailureKind.HTTP_STATUS, FailureKind.TRANSPORT):
        if failure.status_code is not None and is_retryable_status(failure.status_code):
            return ErrorClass.RETRYABLE
    return ErrorClass.FATAL


def compute_retry_delay(
    retry_count: int, initial_delay: timedelta, max_delay: timedelta
) -> timedelta:
    """Delivery delay for a notification that has been retried ``retry_count`` times.

    ``retry_count == 0`` waits exactly ``initial_delay``; later retries
    double it per attempt (exponent capped at 8) up to ``max_delay``.
    """
    if retry_count == 0:
        return initial_delay
    return min(max_delay, initial_delay * 2 ** min(retry_count, MAX_BACKOFF_EXPONENT))


def advance(
    notification: Notification,
    outcome: SubmissionOutcome,
    retry_limit: int,
    initial_delay: timedelta,
    max_delay: timedelta,
) -> Transition:
    """Compute the next state of a notification after a submission attempt.

    The returned transition keeps the lease of the claimed message so the
    caller can acknowledge it once the transition has been applied.
    """
    lease_token = notification.lease_token
    if outcome.failure is None:
        return Transition(TransitionKind.SUCCEED, notification, lease_token=lease_token)

    error_class = classify(outcome.failure)
    if error_class is ErrorClass.FATAL:
        return Transition(
            TransitionKind.FAIL,
            notification,
            error_class=error_class,
            lease_token=lease_token,
        )

    if notification.retry_count <= retry_limit:
        delay = compute_retry_delay(notification.retry_count, initial_delay, max_delay)
        return Transition(
            TransitionKind.REQUEUE,
            notification.with_retry_count(notification.retry_count + 1),
            delay=delay,
            error_class=error_class,
            lease_token=lease_token,
        )
    return Transition(
        TransitionKind.FAIL,
        notification,
        error_class=error_class,
        lease_token=lease_token,
    )


class RetryEngine:
    """Drives submissions and applies their outcomes.

    Args:
        queue: Queue that retried notifications are sent back to.
        disposition: Writes failed dispositions.
        settings: Retry limit and delays.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        queue: QueueClient,
        disposition: FileDisposition,
        settings: Settings,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._queue = queue
        self._disposition = disposition
        self._retry_limit = settings.retry_limit
        self._initial_delay = timedelta(minutes=settings.initial_retry_delay_minutes)
        self._max_delay = timedelta(minutes=settings.max_retry_delay_minutes)
        self._clock = clock or (lambda: datetime.now(UTC))

    async def submit(
        self,
        batch: JobBatch,
        router: SubmissionRouter,
        provider: TranscriptionProvider,
    ) -> list[Transition]:
        """Build and submit a routed batch, then apply the outcome."""
        try:
            request = router.build_request(batch)
            outcome = await provider.submit_job(request, batch.endpoint)
        except (StorageError, ValueError) as exc:
            outcome = SubmissionOutcome.failed(FailureKind.OTHER, str(exc))
        except Exception as exc:
            logger.error(
                "Unexpected error submitting job %s",
                batch.job_name,
                exc_info=True,
                extra={"job_name": batch.job_name},
            )
            outcome = SubmissionOutcome.failed(
                FailureKind.OTHER, f"{type(exc).__name__}: {exc}"
            )
        return await self.on_submission_result(batch, outcome)

    async def on_submission_result(
        self, batch: JobBatch, outcome: SubmissionOutcome
    ) -> list[Transition]:
        """Apply the outcome of a submission to every file of the batch.

        Returns:
            Transitions that were applied. A notification whose re-queue
            failed is left out so its lease is not acknowledged and the
            queue redelivers it.
        """
        if outcome.succeeded:
            logger.info(
                "Job %s accepted: %s",
                batch.job_name,
                outcome.job_location,
                extra={"job_name": batch.job_name},
            )
            return [
                advance(n, outcome, self._retry_limit, self._initial_delay, self._max_delay)
                for n in batch.notifications
            ]

        failure = outcome.failure
        error_class = classify(failure)
        if error_class is ErrorClass.FATAL:
            message = f"Exception {failure} in job {batch.job_name}"
            logger.error(
                message,
                extra={"job_name": batch.job_name, "error": failure.kind.value},
            )
            self._disposition.write_job_report(batch.job_name, message)
        else:
            message = f"Error in job {batch.job_name}: {failure}"
            logger.error(
                message,
                extra={"job_name": batch.job_name, "error": failure.kind.value},
            )

        applied = []
        for notification in batch.notifications:
            transition = advance(
                notification,
                outcome,
                self._retry_limit,
                self._initial_delay,
                self._max_delay,
            )
            if await self._apply(transition, message, batch.job_name):
                applied.append(transition)
        return applied

    async def _apply(
        self, transition: Transition, message: str, job_name: str
    ) -> bool:
        notification = transition.notification
        extra = {
            "job_name": job_name,
            "source_url": notification.source_url,
            "retry_count": notification.retry_count,
        }

        if transition.kind is TransitionKind.REQUEUE:
            deliver_after = self._clock() + transition.delay
            try:
                await self._queue.enqueue(
                    notification.to_message_body(), deliver_after=deliver_after
                )
            except QueueError:
                logger.error(
                    "Could not re-queue %s, leaving it for redelivery",
                    notification.source_url,
                    exc_info=True,
                    extra=extra,
                )
                return False
            logger.info(
                "Re-queued %s with retry count %d, delayed %s",
                notification.file_name,
                notification.retry_count,
                transition.delay,
                extra=extra,
            )
            return True

        if transition.kind is TransitionKind.FAIL:
            file_name = notification.file_name
            if transition.error_class is ErrorClass.RETRYABLE:
                diagnostic = (
                    f"Exceeded retry count for transcription {file_name} "
                    f"with error message {message}."
                )
                logger.error(diagnostic, extra=extra)
            else:
                diagnostic = message
            if not self._disposition.fail(file_name, diagnostic):
                logger.error(
                    "Failed disposition for %s in job %s did not complete, source "
                    "left in the input container",
                    file_name,
                    job_name,
                    extra=extra,
                )
            return True

        return True


def summarize(transitions: Sequence[Transition]) -> dict[TransitionKind, int]:
    """Count transitions per kind, with every kind present."""
    counts = {kind: 0 for kind in TransitionKind}
    for transition in transitions:
        counts[transition.kind] += 1
    return counts
