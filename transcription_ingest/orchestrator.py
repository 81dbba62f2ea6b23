"""Orchestrates one invocation of transcription intake or reconciliation.

Intake: claim -> chunk -> route -> submit -> retry/dispose -> acknowledge,
one job at a time. Reconciliation: claim result notifications -> reconcile
each artifact -> acknowledge.

Both run sequentially over their claimed batch. A job that fails never
stops the rest of the invocation.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime

from transcription_ingest.config import Settings
from transcription_ingest.ingest.chunker import chunk
from transcription_ingest.ingest.retry import RetryEngine, TransitionKind, summarize
from transcription_ingest.ingest.router import SubmissionRouter
from transcription_ingest.models import JobBatch
from transcription_ingest.observability.metrics import (
    InvocationMetrics,
    StageTimer,
    log_invocation_metrics,
)
from transcription_ingest.provider.interface import TranscriptionProvider
from transcription_ingest.queue.intake import NotificationIntake, parse_notification
from transcription_ingest.queue.interface import QueueClient
from transcription_ingest.reconcile.reconciler import ResultReconciler
from transcription_ingest.utils.errors import NotificationValidationError, StorageError

logger = logging.getLogger(__name__)

LEASE_RENEWAL_THRESHOLD_SECONDS = 120.0
INTER_JOB_DELAY_SECONDS = 0.2
RESULT_MESSAGES_PER_POLL = 32


class TranscriptionOrchestrator:
    """Runs intake and reconciliation invocations over injected collaborators.

    Args:
        settings: Process configuration.
        intake: Claims audio-uploaded notifications.
        router: Assigns endpoints and builds requests.
        retry_engine: Submits jobs and applies outcomes.
        provider: Transcription provider client.
        reconciler: Reconciles result artifacts.
        result_queue: Queue carrying result-uploaded notifications.
        clock: Returns the current UTC time.
        monotonic: Monotonic seconds, for lease renewal bookkeeping.
        inter_job_delay: Pause between job submissions.
    """

    def __init__(
        self,
        settings: Settings,
        intake: NotificationIntake,
        router: SubmissionRouter,
        retry_engine: RetryEngine,
        provider: TranscriptionProvider,
        reconciler: ResultReconciler | None = None,
        result_queue: QueueClient | None = None,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
        inter_job_delay: float = INTER_JOB_DELAY_SECONDS,
    ) -> None:
        self.settings = settings
        self.intake = intake
        self.router = router
        self.retry_engine = retry_engine
        self.provider = provider
        self.reconciler = reconciler
        self.result_queue = result_queue
        self._clock = clock or (lambda: datetime.now(UTC))
        self._monotonic = monotonic
        self._inter_job_delay = inter_job_delay

    async def start_transcriptions(self) -> InvocationMetrics:
        """Run one intake invocation.

        Returns:
            Metrics for the invocation (also logged).
        """
        started_at = self._clock()
        metrics = InvocationMetrics()
        timer = StageTimer("intake")
        with timer:
            notifications = await self.intake.claim(
                self.settings.messages_per_function_execution
            )
            stats = self.intake.stats
            metrics.claimed = stats.claimed
            metrics.valid = stats.valid
            metrics.discarded = stats.discarded
            metrics.skipped = stats.skipped

            batches = chunk(
                notifications, self.settings.files_per_transcription_job, started_at
            )
            await self._submit_batches(batches, metrics)

        metrics.wall_time_seconds = timer.duration_seconds
        if metrics.claimed:
            log_invocation_metrics(metrics, trigger="intake")
        return metrics

    async def _submit_batches(
        self, batches: list[JobBatch], metrics: InvocationMetrics
    ) -> None:
        lease_clock = self._monotonic()
        for index, batch in enumerate(batches):
            try:
                await self._submit_batch(batch, metrics)
            except Exception:
                logger.error(
                    "Unexpected error processing job %s, leaving its messages "
                    "for redelivery",
                    batch.job_name,
                    exc_info=True,
                    extra={"job_name": batch.job_name},
                )

            remaining = batches[index + 1 :]
            if not remaining:
                break

            if self._monotonic() - lease_clock > LEASE_RENEWAL_THRESHOLD_SECONDS:
                pending = [n for b in remaining for n in b.notifications]
                metrics.lease_renewals += await self.intake.renew(pending)
                lease_clock = self._monotonic()

            # Stay under the provider request-rate ceiling
            await asyncio.sleep(self._inter_job_delay)

    async def _submit_batch(self, batch: JobBatch, metrics: InvocationMetrics) -> None:
        for routed in self.router.assign(batch):
            transitions = await self.retry_engine.submit(
                routed, self.router, self.provider
            )
            counts = summarize(transitions)
            if counts[TransitionKind.SUCCEED]:
                metrics.jobs_submitted += 1
                metrics.files_submitted += counts[TransitionKind.SUCCEED]
            else:
                metrics.jobs_failed += 1
            metrics.requeued += counts[TransitionKind.REQUEUE]
            metrics.failed += counts[TransitionKind.FAIL]

            await self.intake.acknowledge(t.lease_token for t in transitions)
            logger.info(
                "Completed processing of job %s",
                routed.job_name,
                extra={"job_name": routed.job_name},
            )

    async def reconcile_results(self) -> int:
        """Run one reconciliation invocation over result notifications.

        Returns:
            Number of result notifications handled and acknowledged.
        """
        if self.result_queue is None or self.reconciler is None:
            raise RuntimeError("Result queue and reconciler are required")

        messages = await self.result_queue.claim(RESULT_MESSAGES_PER_POLL)
        handled = 0
        for message in messages:
            if await self.handle_result_message(message.body):
                await self.result_queue.acknowledge([message.lease_token])
                handled += 1
        return handled

    async def handle_result_message(self, body: str | bytes | None) -> bool:
        """Reconcile the artifact named by one result-uploaded notification.

        Returns:
            True if the message is done with (reconciled or unusable),
            False if it should be redelivered.
        """
        if self.reconciler is None:
            raise RuntimeError("Reconciler is required")
        try:
            notification = parse_notification(body, input_container=None)
        except NotificationValidationError as exc:
            logger.error("Discarding result notification: %s", exc)
            return True

        logger.info(
            "Received result file %s",
            notification.source_url,
            extra={"source_url": notification.source_url},
        )
        try:
            await self.reconciler.reconcile(notification.source_url)
        except StorageError:
            logger.error(
                "Could not read result file %s, will retry on redelivery",
                notification.source_url,
                exc_info=True,
                extra={"source_url": notification.source_url},
            )
            return False
        except Exception:
            logger.error(
                "Unexpected error reconciling %s, will retry on redelivery",
                notification.source_url,
                exc_info=True,
                extra={"source_url": notification.source_url},
            )
            return False
        return True
