"""Terminal storage outcomes for source audio files.

Every disposition writes its trace (canonical transcript or diagnostic)
before the source blob is moved or deleted. If any storage call fails the
source blob stays where it is so nothing is lost.
"""

from __future__ import annotations

import logging

from transcription_ingest.config import Settings
from transcription_ingest.storage.interface import ObjectStore
from transcription_ingest.utils.errors import StorageError

logger = logging.getLogger(__name__)

JOB_REPORT_PREFIX = "jobs/"


def error_report_name(file_name: str) -> str:
    return f"{file_name}.txt"


def result_name(file_name: str) -> str:
    return f"{file_name}.json"


class FileDisposition:
    """Writes dispositions for files in the audio input container."""

    def __init__(self, store: ObjectStore, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    def succeed(self, file_name: str, transcript_json: str) -> bool:
        """Write the transcript to the results container, then retire the source.

        Returns:
            True if both steps completed, False if a storage error stopped them.
        """
        settings = self._settings
        try:
            self._store.write(
                settings.json_result_container,
                result_name(file_name),
                transcript_json,
                "application/json",
            )
            logger.info(
                "Wrote transcription file %s to results container",
                result_name(file_name),
            )
            self._retire_source(file_name, settings.audio_processed_container)
        except StorageError:
            logger.error(
                "Storage failure while completing %s, source left in place",
                file_name,
                exc_info=True,
                extra={"stage": "succeed"},
            )
            return False
        return True

    def fail(self, file_name: str, diagnostic: str) -> bool:
        """Write a diagnostic for the file, then retire the source.

        Returns:
            True if both steps completed, False if a storage error stopped them.
        """
        settings = self._settings
        try:
            self._store.write(
                settings.error_report_container,
                error_report_name(file_name),
                diagnostic,
            )
            self._retire_source(file_name, settings.audio_failed_container)
        except StorageError:
            logger.error(
                "Storage failure while writing error log for %s, source left "
                "in place",
                file_name,
                exc_info=True,
                extra={"stage": "fail", "error": diagnostic},
            )
            return False
        return True

    def write_job_report(self, job_name: str, text: str) -> bool:
        """Write a job-level error report under ``jobs/``."""
        try:
            self._store.write(
                self._settings.error_report_container,
                f"{JOB_REPORT_PREFIX}{job_name}.txt",
                text,
            )
        except StorageError:
            logger.error(
                "Could not write job report for %s",
                job_name,
                exc_info=True,
                extra={"job_name": job_name},
            )
            return False
        return True

    def _retire_source(self, file_name: str, destination: str) -> None:
        settings = self._settings
        if settings.delete_processed_audio_files:
            self._store.delete(settings.audio_input_container, file_name)
        else:
            self._store.move(
                settings.audio_input_container,
                file_name,
                destination,
                file_name,
                overwrite=False,
            )
