"""Shared fixtures and in-memory fakes for the queue, object store and provider."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from transcription_ingest.config import Settings
from transcription_ingest.models import Endpoint, EndpointRole, Notification
from transcription_ingest.provider.interface import (
    SubmissionOutcome,
    TranscriptionProvider,
)
from transcription_ingest.queue.interface import (
    DEFAULT_LEASE_TIMEOUT,
    QueueClient,
    QueueMessage,
)
from transcription_ingest.utils.errors import QueueError, StorageError

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
STORAGE_HOST = "https://storage.example.com"

PRIMARY = Endpoint(key="primary-key", region="westeurope", role=EndpointRole.PRIMARY)
FALLBACK = Endpoint(key="fallback-key", region="northeurope", role=EndpointRole.FALLBACK)


def audio_url(file_name: str, container: str = "audio-input") -> str:
    return f"{STORAGE_HOST}/{container}/{file_name}"


def creation_event(url: str, retry_count: int | None = None, **extra: Any) -> dict:
    event: dict[str, Any] = {
        "id": "evt-1",
        "eventType": "Microsoft.Storage.BlobCreated",
        "subject": url,
        "data": {"url": url, "contentType": "audio/wav"},
        **extra,
    }
    if retry_count is not None:
        event["retryCount"] = retry_count
    return event


def make_notification(
    file_name: str, retry_count: int = 0, lease_token: str | None = None
) -> Notification:
    url = audio_url(file_name)
    return Notification(
        source_url=url,
        retry_count=retry_count,
        lease_token=lease_token or f"lease-{file_name}",
        body=creation_event(url, retry_count),
    )


class FakeQueue(QueueClient):
    """In-memory lease-based queue."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now
        self.pending: list[QueueMessage] = []
        self.acknowledged: list[str] = []
        self.renewed: list[str] = []
        self.enqueued: list[tuple[dict[str, Any], datetime | None]] = []
        self.lost_leases: set[str] = set()
        self.fail_enqueue = False

    def add(
        self,
        body: str | bytes | dict | None,
        lease_token: str | None = None,
        leased_for: timedelta = DEFAULT_LEASE_TIMEOUT,
    ) -> QueueMessage:
        if isinstance(body, dict):
            body = json.dumps(body)
        index = len(self.pending)
        message = QueueMessage(
            message_id=f"msg-{index}",
            lease_token=lease_token or f"lease-{index}",
            body=body,
            leased_until=self.now + leased_for,
        )
        self.pending.append(message)
        return message

    async def claim(self, max_count, lease_timeout=DEFAULT_LEASE_TIMEOUT):
        claimed, self.pending = self.pending[:max_count], self.pending[max_count:]
        return claimed

    async def renew_lease(self, lease_token, lease_timeout=DEFAULT_LEASE_TIMEOUT):
        if lease_token in self.lost_leases:
            raise QueueError("lease lost", operation="renew")
        self.renewed.append(lease_token)
        return self.now + lease_timeout

    async def acknowledge(self, lease_tokens):
        self.acknowledged.extend(lease_tokens)

    async def enqueue(self, payload, deliver_after=None):
        if self.fail_enqueue:
            raise QueueError("send failed", operation="send")
        self.enqueued.append((payload, deliver_after))


class InMemoryObjectStore:
    """Object store keeping blobs in a dict keyed by (container, name)."""

    def __init__(self) -> None:
        self.blobs: dict[tuple[str, str], bytes] = {}
        self.writes: list[tuple[str, str]] = []
        self.moves: list[tuple[str, str, str, str]] = []
        self.deletes: list[tuple[str, str]] = []
        self.fail_writes_to: set[str] = set()
        self.fail_reads = 0

    def put(self, container: str, name: str, data: bytes | str) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.blobs[(container, name)] = data

    def text(self, container: str, name: str) -> str:
        return self.blobs[(container, name)].decode("utf-8")

    def read(self, container, name):
        if self.fail_reads:
            self.fail_reads -= 1
            raise StorageError("read failed", file_name=name, operation="read")
        try:
            return self.blobs[(container, name)]
        except KeyError:
            raise StorageError(
                f"Failed to read '{container}/{name}': NoSuchKey",
                file_name=name,
                operation="read",
            ) from None

    def write(self, container, name, data, content_type=""):
        if container in self.fail_writes_to:
            raise StorageError("write failed", file_name=name, operation="write")
        self.put(container, name, data)
        self.writes.append((container, name))

    def move(self, src_container, src_name, dst_container, dst_name, overwrite=False):
        if (src_container, src_name) not in self.blobs:
            return False
        data = self.blobs.pop((src_container, src_name))
        if overwrite or (dst_container, dst_name) not in self.blobs:
            self.blobs[(dst_container, dst_name)] = data
        self.moves.append((src_container, src_name, dst_container, dst_name))
        return True

    def delete(self, container, name):
        self.blobs.pop((container, name), None)
        self.deletes.append((container, name))

    def create_temporary_access_url(self, url):
        return f"{url}?sig=test"


class FakeProvider(TranscriptionProvider):
    """Provider returning queued outcomes (default: success)."""

    def __init__(self, *outcomes: SubmissionOutcome) -> None:
        self.outcomes = list(outcomes)
        self.submissions: list[tuple[Any, Endpoint]] = []

    async def submit_job(self, request, endpoint):
        self.submissions.append((request, endpoint))
        if self.outcomes:
            return self.outcomes.pop(0)
        return SubmissionOutcome.success(
            f"https://{endpoint.region}.api.example.com/transcriptions/{request.name}"
        )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        files_per_transcription_job=5,
        retry_limit=3,
        initial_retry_delay_minutes=2,
        max_retry_delay_minutes=60,
        endpoints=(PRIMARY, FALLBACK),
    )


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()
