"""Speech batch transcription REST client.

Submits transcription definitions to the regional batch transcription
API and reports the created job's location. Failures come back as tagged
outcomes rather than exceptions.
"""

from __future__ import annotations

import logging

import httpx

from transcription_ingest.models import Endpoint
from transcription_ingest.provider.interface import (
    FailureKind,
    SubmissionOutcome,
    TranscriptionProvider,
)
from transcription_ingest.provider.request import (
    TRANSCRIPTIONS_API_PATH,
    TranscriptionRequest,
)

logger = logging.getLogger(__name__)

POST_TIMEOUT_SECONDS = 60.0
SUBSCRIPTION_KEY_HEADER = "Ocp-Apim-Subscription-Key"


class BatchTranscriptionClient(TranscriptionProvider):
    """Batch transcription client for regional speech endpoints.

    Args:
        timeout: Seconds allowed for a submission call (default 60).
        client: Optional shared httpx client (created when omitted).
    """

    def __init__(
        self,
        timeout: float = POST_TIMEOUT_SECONDS,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close the shared HTTP client and release connection pool."""
        await self._client.aclose()

    async def submit_job(
        self, request: TranscriptionRequest, endpoint: Endpoint
    ) -> SubmissionOutcome:
        """Post a transcription definition and return the job location."""
        url = f"{endpoint.host_name}{TRANSCRIPTIONS_API_PATH}"
        headers = {
            SUBSCRIPTION_KEY_HEADER: endpoint.key,
            "Content-Type": "application/json",
        }

        try:
            response = await self._client.post(
                url,
                headers=headers,
                json=request.to_payload(),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            return SubmissionOutcome.failed(
                FailureKind.TIMEOUT,
                f"Submission to {endpoint.label} timed out after "
                f"{self._timeout:.0f}s: {exc}",
            )
        except httpx.TransportError as exc:
            return SubmissionOutcome.failed(
                FailureKind.TRANSPORT,
                f"Submission to {endpoint.label} failed: {exc}",
            )
        except httpx.HTTPError as exc:
            return SubmissionOutcome.failed(
                FailureKind.OTHER,
                f"Submission to {endpoint.label} failed: {exc}",
            )

        if response.status_code not in (200, 201, 202):
            return SubmissionOutcome.failed(
                FailureKind.HTTP_STATUS,
                f"Submission to {endpoint.label} failed with status "
                f"{response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        location = response.headers.get("location")
        if not location:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                location = body.get("self")
        if not location:
            return SubmissionOutcome.failed(
                FailureKind.OTHER,
                f"No job location in submission response from {endpoint.label}",
                status_code=response.status_code,
            )

        logger.info(
            "Submitted job %s to %s: %s",
            request.name,
            endpoint.label,
            location,
            extra={"job_name": request.name, "endpoint": endpoint.label},
        )
        return SubmissionOutcome.success(location)
