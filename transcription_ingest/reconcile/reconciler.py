"""Reconcile provider result artifacts into per-file dispositions.

An artifact is recognized by its shape: a job report carries integer
success/failure counts, a transcript carries ``source``,
``combinedRecognizedPhrases`` and ``recognizedPhrases``. Anything else is
left in place for manual investigation.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from transcription_ingest.config import Settings
from transcription_ingest.ingest.disposition import FileDisposition
from transcription_ingest.storage.interface import ObjectStore
from transcription_ingest.storage.paths import (
    get_container_and_file_name_from_url,
    get_file_name_from_url,
)
from transcription_ingest.utils.errors import ReconciliationFormatError, StorageError
from transcription_ingest.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

TRANSCRIPT_FIELDS = ("source", "combinedRecognizedPhrases", "recognizedPhrases")


class ArtifactKind(enum.Enum):
    JOB_REPORT = "job_report"
    TRANSCRIPT = "transcript"


@dataclass(frozen=True)
class FailedTranscription:
    """A failed entry of a job report."""

    source: str
    container: str
    file_name: str
    error_message: str
    error_kind: str

    @property
    def diagnostic(self) -> str:
        return (
            f"Transcription {self.file_name} in container {self.container} "
            f'failed with error "{self.error_message}" ({self.error_kind}).'
        )


@dataclass
class ReconciliationResult:
    """What a reconcile call did."""

    kind: ArtifactKind | None
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    incomplete: list[str] = field(default_factory=list)
    artifact_deleted: bool = False


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def detect_artifact_kind(document: Any) -> ArtifactKind:
    """Tell a job report from a transcript by its fields.

    Raises:
        ReconciliationFormatError: If the document matches neither shape.
    """
    if isinstance(document, dict):
        if (
            _is_int(document.get("successfulTranscriptionsCount"))
            and _is_int(document.get("failedTranscriptionsCount"))
            and isinstance(document.get("details") or [], list)
        ):
            return ArtifactKind.JOB_REPORT
        if all(key in document for key in TRANSCRIPT_FIELDS):
            return ArtifactKind.TRANSCRIPT
    raise ReconciliationFormatError("Unexpected result file format")


def failed_transcriptions(report: dict[str, Any]) -> list[FailedTranscription]:
    """Extract the failed entries of a job report, in report order.

    Raises:
        ReconciliationFormatError: If ``details`` is not a list.
    """
    details = report.get("details") or []
    if not isinstance(details, list):
        raise ReconciliationFormatError("Job report details is not a list")
    failures = []
    for detail in details:
        if not isinstance(detail, dict):
            continue
        status = detail.get("status")
        if not isinstance(status, str) or status.lower() != "failed":
            continue
        source = detail.get("source")
        try:
            container, file_name = get_container_and_file_name_from_url(source)
        except (TypeError, ValueError):
            logger.warning("Skipping failed report entry without a usable source: %r", source)
            continue
        failures.append(
            FailedTranscription(
                source=source,
                container=container,
                file_name=file_name,
                error_message=detail.get("errorMessage") or "Unknown",
                error_kind=detail.get("errorKind") or "Unknown",
            )
        )
    return failures


class ResultReconciler:
    """Turns result artifacts into dispositions for the source audio.

    Args:
        store: Object store holding artifacts, audio and outputs.
        disposition: Writes success/failure dispositions.
        settings: Container names and artifact deletion flag.
    """

    def __init__(
        self, store: ObjectStore, disposition: FileDisposition, settings: Settings
    ) -> None:
        self._store = store
        self._disposition = disposition
        self._delete_artifacts = settings.delete_result_artifacts

    @retry_with_backoff(retryable_exceptions=(StorageError,))
    async def _read_artifact(self, container: str, name: str) -> bytes:
        return self._store.read(container, name)

    async def reconcile(self, artifact_url: str) -> ReconciliationResult:
        """Reconcile the artifact at ``artifact_url``.

        Raises:
            StorageError: If the artifact cannot be read.
        """
        container, name = get_container_and_file_name_from_url(artifact_url)
        return await self.reconcile_blob(container, name)

    async def reconcile_blob(self, container: str, name: str) -> ReconciliationResult:
        """Reconcile the artifact stored at ``container/name``.

        Raises:
            StorageError: If the artifact cannot be read.
        """
        raw = await self._read_artifact(container, name)

        try:
            try:
                text = raw.decode("utf-8-sig") if isinstance(raw, bytes) else raw
            except UnicodeDecodeError as exc:
                raise ReconciliationFormatError(
                    f"Result file is not valid UTF-8: {exc}"
                ) from exc
            try:
                document = json.loads(text)
            except json.JSONDecodeError as exc:
                raise ReconciliationFormatError(
                    f"Result file is not valid JSON: {exc}"
                ) from exc
            kind = detect_artifact_kind(document)
        except ReconciliationFormatError as exc:
            logger.error(
                "%s for file %s in container %s, leaving it for investigation",
                exc,
                name,
                container,
            )
            return ReconciliationResult(kind=None)

        if kind is ArtifactKind.JOB_REPORT:
            result = self._reconcile_report(document)
        else:
            result = self._reconcile_transcript(document, text)

        if self._delete_artifacts and not result.incomplete:
            try:
                self._store.delete(container, name)
                result.artifact_deleted = True
            except StorageError:
                logger.error(
                    "Could not delete processed artifact %s/%s",
                    container,
                    name,
                    exc_info=True,
                )
        return result

    def _reconcile_report(self, report: dict[str, Any]) -> ReconciliationResult:
        result = ReconciliationResult(kind=ArtifactKind.JOB_REPORT)
        succeeded = report["successfulTranscriptionsCount"]
        failed = report["failedTranscriptionsCount"]
        logger.info(
            "Received report file with %d succeeded and %d failed transcriptions",
            succeeded,
            failed,
        )
        # Successful files are reconciled from their own transcripts.
        if failed == 0:
            return result

        for failure in failed_transcriptions(report):
            logger.warning(failure.diagnostic, extra={"source_url": failure.source})
            if self._disposition.fail(failure.file_name, failure.diagnostic):
                result.failed.append(failure.file_name)
            else:
                result.incomplete.append(failure.file_name)
        return result

    def _reconcile_transcript(
        self, transcript: dict[str, Any], text: str
    ) -> ReconciliationResult:
        result = ReconciliationResult(kind=ArtifactKind.TRANSCRIPT)
        source = transcript["source"]
        try:
            file_name = get_file_name_from_url(source)
        except (TypeError, ValueError):
            logger.error(
                "Transcript has unusable source %r, leaving it for investigation",
                source,
            )
            result.kind = None
            result.incomplete.append(str(source))
            return result

        if self._disposition.succeed(file_name, text):
            result.succeeded.append(file_name)
        else:
            result.incomplete.append(file_name)
        return result
