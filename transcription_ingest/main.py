"""Service entry point for transcription ingestion.

Runs the intake timer loop and the result reconciliation loop alongside a
lightweight HTTP health check server. Handles SIGTERM for graceful
shutdown.
"""

import asyncio
import logging
import os
import signal
from asyncio import StreamReader, StreamWriter
from collections.abc import Awaitable, Callable

from transcription_ingest.config import Settings
from transcription_ingest.ingest.disposition import FileDisposition
from transcription_ingest.ingest.retry import RetryEngine
from transcription_ingest.ingest.router import SubmissionRouter, build_policy
from transcription_ingest.observability.logger import setup_logging
from transcription_ingest.orchestrator import TranscriptionOrchestrator
from transcription_ingest.provider.batch_client import BatchTranscriptionClient
from transcription_ingest.queue.http_queue import HttpQueueClient
from transcription_ingest.queue.intake import NotificationIntake
from transcription_ingest.reconcile.reconciler import ResultReconciler
from transcription_ingest.storage.blob_client import BlobClient

logger = logging.getLogger(__name__)

RESULT_POLL_INTERVAL_SECONDS = 5.0
SHUTDOWN_TIMEOUT_SECONDS = 25


async def _health_handler(reader: StreamReader, writer: StreamWriter) -> None:
    """Minimal HTTP handler that returns 200 OK for liveness probes."""
    await reader.read(4096)
    response = (
        "HTTP/1.1 200 OK\r\n"
        "Content-Type: text/plain\r\n"
        "Content-Length: 2\r\n"
        "\r\n"
        "ok"
    )
    writer.write(response.encode())
    await writer.drain()
    writer.close()


def build_orchestrator(settings: Settings) -> TranscriptionOrchestrator:
    """Construct the orchestrator and its collaborators from configuration."""
    store = BlobClient()
    audio_queue = HttpQueueClient(os.environ.get("AUDIO_UPLOADED_QUEUE_ID", ""))
    result_queue = HttpQueueClient(os.environ.get("RESULT_UPLOADED_QUEUE_ID", ""))
    provider = BatchTranscriptionClient()

    disposition = FileDisposition(store, settings)
    return TranscriptionOrchestrator(
        settings=settings,
        intake=NotificationIntake(audio_queue, settings.audio_input_container),
        router=SubmissionRouter(
            build_policy(settings), settings, store.create_temporary_access_url
        ),
        retry_engine=RetryEngine(audio_queue, disposition, settings),
        provider=provider,
        reconciler=ResultReconciler(store, disposition, settings),
        result_queue=result_queue,
    )


async def _periodic(
    name: str,
    interval: float,
    func: Callable[[], Awaitable[object]],
    stop_event: asyncio.Event,
) -> None:
    """Call ``func`` every ``interval`` seconds until ``stop_event`` is set."""
    while not stop_event.is_set():
        try:
            await func()
        except Exception:
            logger.error("Unexpected error in %s cycle", name, exc_info=True)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass


async def _run(orchestrator: TranscriptionOrchestrator) -> None:
    """Run the health server, intake loop and reconciliation loop."""
    port = int(os.environ.get("PORT", "8080"))
    server = await asyncio.start_server(_health_handler, "0.0.0.0", port)
    logger.info("Health server listening on port %d", port)

    stop_event = asyncio.Event()
    tasks = [
        asyncio.create_task(
            _periodic(
                "intake",
                orchestrator.settings.intake_interval_seconds,
                orchestrator.start_transcriptions,
                stop_event,
            )
        ),
        asyncio.create_task(
            _periodic(
                "reconciliation",
                RESULT_POLL_INTERVAL_SECONDS,
                orchestrator.reconcile_results,
                stop_event,
            )
        ),
    ]

    loop = asyncio.get_running_loop()

    def _shutdown() -> None:
        logger.info("Received shutdown signal")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _shutdown)

    await stop_event.wait()
    _, pending = await asyncio.wait(tasks, timeout=SHUTDOWN_TIMEOUT_SECONDS)
    if pending:
        logger.warning(
            "Invocation still running after %ds, cancelling",
            SHUTDOWN_TIMEOUT_SECONDS,
        )
        for task in pending:
            task.cancel()
    server.close()
    await server.wait_closed()


def main() -> None:
    """Load configuration and run until stopped."""
    setup_logging()
    logger.info("Transcription ingestion starting")

    settings = Settings.from_env()
    orchestrator = build_orchestrator(settings)

    asyncio.run(_run(orchestrator))


if __name__ == "__main__":
    main()
