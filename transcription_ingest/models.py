"""Core data models shared across intake, routing, retry and reconciliation."""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass, field, replace
from typing import Any

from transcription_ingest.storage.paths import get_file_name_from_url


class EndpointRole(enum.Enum):
    """Role of an endpoint under the primary/fallback policy."""

    PRIMARY = "primary"
    FALLBACK = "fallback"
    WEIGHTED = "weighted"


@dataclass(frozen=True)
class Endpoint:
    """A provider credential/region pair capable of accepting jobs."""

    key: str = field(repr=False)
    region: str
    model_id: str | None = None
    role: EndpointRole = EndpointRole.PRIMARY
    weight: int = 0

    @property
    def host_name(self) -> str:
        return f"https://{self.region}.api.cognitive.microsoft.com/"

    @property
    def label(self) -> str:
        """Log-safe identifier (never includes the key)."""
        if self.role is EndpointRole.WEIGHTED:
            return f"{self.region}({self.weight}%)"
        return f"{self.region}({self.role.value})"


@dataclass(frozen=True)
class Notification:
    """One uploaded audio file awaiting transcription.

    ``body`` keeps the original event payload so that re-queueing
    preserves every field the producer sent.
    """

    source_url: str
    retry_count: int
    lease_token: str | None = None
    body: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def file_name(self) -> str:
        return get_file_name_from_url(self.source_url)

    def with_retry_count(self, retry_count: int) -> Notification:
        """Return a copy carrying a new retry count and no lease."""
        return replace(self, retry_count=retry_count, lease_token=None)

    def to_message_body(self) -> dict[str, Any]:
        """Serialize for (re-)queueing, keeping the original event fields."""
        body = copy.deepcopy(self.body)
        data = body.get("data")
        if not isinstance(data, dict):
            data = {}
            body["data"] = data
        data["url"] = self.source_url
        body["retryCount"] = self.retry_count
        return body


@dataclass(frozen=True)
class JobBatch:
    """A group of notifications submitted together as one provider job."""

    job_name: str
    notifications: tuple[Notification, ...]
    endpoint: Endpoint | None = None

    def __len__(self) -> int:
        return len(self.notifications)

    @property
    def file_names(self) -> list[str]:
        return [n.file_name for n in self.notifications]
