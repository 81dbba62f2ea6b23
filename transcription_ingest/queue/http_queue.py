"""HTTP pull client for the lease-based notification queues.

Messages are pulled under a visibility lease, renewed while a long batch
is in progress, acknowledged once handled, and (re-)sent with an optional
delivery delay.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from transcription_ingest.queue.interface import (
    DEFAULT_LEASE_TIMEOUT,
    QueueClient,
    QueueMessage,
)
from transcription_ingest.utils.errors import QueueError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 30.0


class HttpQueueClient(QueueClient):
    """Queue client for a single queue behind the HTTP pull API.

    Configuration from environment variables:
        QUEUE_API_URL, QUEUE_API_TOKEN
    """

    def __init__(
        self,
        queue_id: str,
        queue_api_url: str | None = None,
        api_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.queue_id = queue_id
        self.queue_api_url = (
            queue_api_url or os.environ.get("QUEUE_API_URL", "")
        ).rstrip("/")
        self.api_token = api_token or os.environ.get("QUEUE_API_TOKEN", "")

        if not self.queue_api_url:
            raise QueueError("QUEUE_API_URL is required", operation="init")
        if not self.queue_id:
            raise QueueError("queue_id is required", operation="init")

        self._client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS)

    def _headers(self) -> dict[str, str]:
        """Build authentication headers for the queue API."""
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    def _url(self, suffix: str) -> str:
        return f"{self.queue_api_url}/queues/{self.queue_id}/messages{suffix}"

    async def close(self) -> None:
        """Close the shared HTTP client and release connection pool."""
        await self._client.aclose()

    async def _post(
        self, suffix: str, payload: dict[str, Any], operation: str
    ) -> httpx.Response:
        try:
            response = await self._client.post(
                self._url(suffix), headers=self._headers(), json=payload
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise QueueError(
                f"Queue {operation} failed for {self.queue_id}: "
                f"HTTP {exc.response.status_code}",
                operation=operation,
            ) from exc
        except httpx.RequestError as exc:
            raise QueueError(
                f"Queue {operation} failed for {self.queue_id}: {exc}",
                operation=operation,
            ) from exc
        return response

    async def claim(
        self, max_count: int, lease_timeout: timedelta = DEFAULT_LEASE_TIMEOUT
    ) -> list[QueueMessage]:
        """Pull up to ``max_count`` messages under lease.

        Returns:
            List of QueueMessage objects. Empty list on error or no messages.
        """
        try:
            response = await self._post(
                "/pull",
                {
                    "batch_size": max_count,
                    "visibility_timeout_ms": int(lease_timeout.total_seconds() * 1000),
                },
                "pull",
            )
        except QueueError as exc:
            logger.error("%s", exc)
            return []

        pulled_at = datetime.now(UTC)
        messages_data = response.json().get("result", {}).get("messages", [])

        messages: list[QueueMessage] = []
        for msg in messages_data:
            try:
                leased_until_ms = msg.get("leased_until_ms")
                if leased_until_ms is not None:
                    leased_until = datetime.fromtimestamp(leased_until_ms / 1000, UTC)
                else:
                    leased_until = pulled_at + lease_timeout
                body = msg.get("body")
                if isinstance(body, (dict, list)):
                    body = json.dumps(body)
                messages.append(
                    QueueMessage(
                        message_id=msg["id"],
                        lease_token=msg["lease_id"],
                        body=body,
                        leased_until=leased_until,
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Malformed queue message structure: %s", exc)

        return messages

    async def renew_lease(
        self, lease_token: str, lease_timeout: timedelta = DEFAULT_LEASE_TIMEOUT
    ) -> datetime:
        """Extend a message lease.

        Raises:
            QueueError: If the lease was lost or the call failed.
        """
        await self._post(
            "/renew",
            {
                "lease_id": lease_token,
                "visibility_timeout_ms": int(lease_timeout.total_seconds() * 1000),
            },
            "renew",
        )
        return datetime.now(UTC) + lease_timeout

    async def acknowledge(self, lease_tokens: list[str]) -> None:
        """Acknowledge handled messages.

        A failed ack only means the message is redelivered later, so the
        error is logged rather than raised.
        """
        if not lease_tokens:
            return
        try:
            await self._post(
                "/ack",
                {"acks": [{"lease_id": token} for token in lease_tokens]},
                "ack",
            )
        except QueueError as exc:
            logger.error("%s", exc)

    async def enqueue(
        self, payload: dict[str, Any], deliver_after: datetime | None = None
    ) -> None:
        """Send a message, delayed until ``deliver_after`` when given.

        Raises:
            QueueError: If the message could not be sent.
        """
        request: dict[str, Any] = {"body": payload, "content_type": "json"}
        if deliver_after is not None:
            delay = (deliver_after - datetime.now(UTC)).total_seconds()
            request["delay_seconds"] = max(0, int(round(delay)))
        await self._post("", request, "send")
