"""Transcription job request payload.

Builds the provider's batch transcription definition from a JobBatch and
the process configuration.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from transcription_ingest.config import Settings
from transcription_ingest.models import Endpoint

logger = logging.getLogger(__name__)

TRANSCRIPTIONS_API_PATH = "speechtotext/v3.0/transcriptions"
MODELS_API_PATH = "speechtotext/v3.0/models"
JOB_DESCRIPTION = "StartByTimerTranscription"


def model_identity(endpoint: Endpoint) -> dict[str, str] | None:
    """Return the custom model reference, or None when the id is not a UUID."""
    if not endpoint.model_id:
        return None
    try:
        model_uuid = uuid.UUID(endpoint.model_id)
    except ValueError:
        logger.warning(
            "Ignoring custom model id %r for %s: not a UUID",
            endpoint.model_id,
            endpoint.label,
        )
        return None
    return {"self": f"{endpoint.host_name}{MODELS_API_PATH}/{model_uuid}"}


@dataclass
class TranscriptionRequest:
    """Serialized job submission for one JobBatch."""

    name: str
    locale: str
    content_urls: list[str]
    properties: dict[str, Any] = field(default_factory=dict)
    model: dict[str, str] | None = None
    description: str = JOB_DESCRIPTION

    def to_payload(self) -> dict[str, Any]:
        """Render the JSON body the provider expects."""
        payload: dict[str, Any] = {
            "displayName": self.name,
            "description": self.description,
            "locale": self.locale,
            "contentUrls": list(self.content_urls),
            "properties": dict(self.properties),
        }
        if self.model is not None:
            payload["model"] = dict(self.model)
        return payload


def build_properties(settings: Settings) -> dict[str, Any]:
    """Request properties shared by every job of this process."""
    properties: dict[str, Any] = {
        "profanityFilterMode": settings.profanity_filter_mode,
        "punctuationMode": settings.punctuation_mode,
        "diarizationEnabled": settings.add_diarization,
        "wordLevelTimestampsEnabled": settings.add_word_level_timestamps,
    }
    if len(settings.locales) > 1:
        properties["languageIdentification"] = {
            "candidateLocales": list(settings.locales)
        }
    if settings.transcription_time_to_live:
        properties["timeToLive"] = settings.transcription_time_to_live
    return properties


def build_transcription_request(
    job_name: str,
    content_urls: list[str],
    endpoint: Endpoint,
    settings: Settings,
) -> TranscriptionRequest:
    """Build the request for one job routed to ``endpoint``.

    Args:
        job_name: Display name of the job.
        content_urls: Provider-readable (pre-signed) audio URLs.
        endpoint: Endpoint the job will be submitted to.
        settings: Process configuration.

    Returns:
        TranscriptionRequest ready for submission.
    """
    return TranscriptionRequest(
        name=job_name,
        locale=settings.locale,
        content_urls=content_urls,
        properties=build_properties(settings),
        model=model_identity(endpoint),
    )
