"""Abstract transcription provider interface.

Submission never raises for provider or transport failures: it returns a
SubmissionOutcome tagged with the failure kind so the retry engine can
classify it in one place.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass

from transcription_ingest.models import Endpoint
from transcription_ingest.provider.request import TranscriptionRequest


class FailureKind(enum.Enum):
    """What went wrong with a provider call."""

    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    TRANSPORT = "transport"
    OTHER = "other"


@dataclass(frozen=True)
class SubmissionFailure:
    """Tagged failure of a submission attempt."""

    kind: FailureKind
    message: str
    status_code: int | None = None

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (status code: {self.status_code})"
        return self.message


@dataclass(frozen=True)
class SubmissionOutcome:
    """Result of submitting one job: a job location or a failure."""

    job_location: str | None = None
    failure: SubmissionFailure | None = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, job_location: str) -> SubmissionOutcome:
        return cls(job_location=job_location)

    @classmethod
    def failed(
        cls, kind: FailureKind, message: str, status_code: int | None = None
    ) -> SubmissionOutcome:
        return cls(failure=SubmissionFailure(kind, message, status_code))


class TranscriptionProvider(ABC):
    """Abstract base class for batch transcription providers."""

    @abstractmethod
    async def submit_job(
        self, request: TranscriptionRequest, endpoint: Endpoint
    ) -> SubmissionOutcome:
        """Submit a transcription job to ``endpoint``.

        Args:
            request: Job payload.
            endpoint: Provider endpoint (credential and region).

        Returns:
            SubmissionOutcome carrying the job location or a tagged failure.
        """
