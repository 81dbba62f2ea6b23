"""Endpoint selection and job payload construction.

Two mutually exclusive policies choose the provider endpoint of a job:
primary/fallback keyed on the retry count, or a weighted random draw
across N endpoints. Exactly one policy is active per deployment.
"""

from __future__ import annotations

import logging
import random
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import replace

from transcription_ingest.config import SELECTION_MODE_WEIGHTED, Settings
from transcription_ingest.models import Endpoint, JobBatch
from transcription_ingest.provider.request import (
    TranscriptionRequest,
    build_transcription_request,
)
from transcription_ingest.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

FALLBACK_JOB_SUFFIX = "_fallback"


class EndpointSelectionPolicy(ABC):
    """Chooses the endpoint for a job."""

    @abstractmethod
    def select(self, retry_count: int) -> Endpoint:
        """Return the endpoint for a job whose files carry ``retry_count``."""

    def partition_key(self, retry_count: int) -> object:
        """Key grouping files of one chunk that must share an endpoint."""
        return None


class PrimaryFallbackPolicy(EndpointSelectionPolicy):
    """First attempts go to the primary endpoint, retries to the fallback."""

    def __init__(self, primary: Endpoint, fallback: Endpoint) -> None:
        self.primary = primary
        self.fallback = fallback

    def select(self, retry_count: int) -> Endpoint:
        return self.primary if retry_count == 0 else self.fallback

    def partition_key(self, retry_count: int) -> object:
        return retry_count == 0


class WeightedRandomPolicy(EndpointSelectionPolicy):
    """Draws an endpoint according to configured percentages.

    A uniform integer in [0, 100) is compared against the running sum of
    the percentages; the first endpoint whose cumulative threshold exceeds
    the draw wins. Draws past the configured total go to endpoint 0.
    """

    def __init__(
        self, endpoints: Sequence[Endpoint], rng: random.Random | None = None
    ) -> None:
        if not endpoints:
            raise ConfigurationError("At least one endpoint is required")
        self.endpoints = tuple(endpoints)
        self._rng = rng or random.Random()

    def select_for_draw(self, draw: int) -> Endpoint:
        threshold = 0
        for endpoint in self.endpoints:
            threshold += endpoint.weight
            if draw < threshold:
                return endpoint
        return self.endpoints[0]

    def select(self, retry_count: int) -> Endpoint:
        return self.select_for_draw(self._rng.randrange(100))


def build_policy(
    settings: Settings, rng: random.Random | None = None
) -> EndpointSelectionPolicy:
    """Create the policy configured for this deployment."""
    if settings.endpoint_selection_mode == SELECTION_MODE_WEIGHTED:
        return WeightedRandomPolicy(settings.endpoints, rng)
    if len(settings.endpoints) < 2:
        raise ConfigurationError(
            "Primary and fallback endpoints are required for fallback selection"
        )
    return PrimaryFallbackPolicy(
        settings.primary_endpoint, settings.fallback_endpoint
    )


class SubmissionRouter:
    """Assigns endpoints to job batches and builds their requests.

    Args:
        policy: Active endpoint selection policy.
        settings: Process configuration (locale and request properties).
        access_url_factory: Turns a source blob URL into a URL the
            provider can read (e.g., a pre-signed URL).
    """

    def __init__(
        self,
        policy: EndpointSelectionPolicy,
        settings: Settings,
        access_url_factory: Callable[[str], str],
    ) -> None:
        self.policy = policy
        self._settings = settings
        self._access_url_factory = access_url_factory

    def route(self, batch: JobBatch, retry_count: int) -> Endpoint:
        return self.policy.select(retry_count)

    def assign(self, batch: JobBatch) -> list[JobBatch]:
        """Split a chunk by policy partition and attach endpoints.

        Under the primary/fallback policy a chunk mixing first attempts
        and retries yields a primary batch (original name) and a fallback
        batch (name suffixed ``_fallback``). Otherwise the chunk is routed
        as a whole.
        """
        groups: dict[object, list] = {}
        for notification in batch.notifications:
            key = self.policy.partition_key(notification.retry_count)
            groups.setdefault(key, []).append(notification)

        assigned = []
        for notifications in groups.values():
            endpoint = self.route(batch, notifications[0].retry_count)
            job_name = batch.job_name
            if len(groups) > 1 and notifications[0].retry_count != 0:
                job_name = f"{batch.job_name}{FALLBACK_JOB_SUFFIX}"
            routed = replace(
                batch,
                job_name=job_name,
                notifications=tuple(notifications),
                endpoint=endpoint,
            )
            logger.info(
                "Sending %d files to %s in job %s: %s",
                len(routed),
                endpoint.label,
                routed.job_name,
                ", ".join(routed.file_names),
                extra={"job_name": routed.job_name, "endpoint": endpoint.label},
            )
            assigned.append(routed)
        return assigned

    def build_request(self, batch: JobBatch) -> TranscriptionRequest:
        """Build the provider request for a routed batch.

        Raises:
            ValueError: If the batch has no endpoint assigned.
            StorageError: If a temporary access URL cannot be created.
        """
        if batch.endpoint is None:
            raise ValueError(f"Job {batch.job_name} has no endpoint assigned")
        content_urls = [
            self._access_url_factory(n.source_url) for n in batch.notifications
        ]
        return build_transcription_request(
            batch.job_name, content_urls, batch.endpoint, self._settings
        )
