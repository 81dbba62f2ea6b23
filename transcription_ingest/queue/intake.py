"""Notification intake: claim, validate and lease-manage queued uploads.

Claims a batch of storage-creation notifications under lease, drops
anything that is not a creation event for the audio input container, and
keeps leases alive for notifications that are still waiting their turn.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from transcription_ingest.models import Notification
from transcription_ingest.queue.interface import (
    DEFAULT_LEASE_TIMEOUT,
    QueueClient,
    QueueMessage,
)
from transcription_ingest.storage.paths import get_container_name_from_url
from transcription_ingest.utils.errors import NotificationValidationError, QueueError

logger = logging.getLogger(__name__)

LEASE_SAFETY_MARGIN = timedelta(seconds=5)
CREATION_EVENT_MARKERS = ("blobcreated", "objectcreated")
_LOGGED_BODY_LIMIT = 1024


def parse_notification(
    body: str | bytes | None,
    input_container: str | None,
    lease_token: str | None = None,
) -> Notification:
    """Deserialize and validate a storage-creation event.

    Args:
        body: Raw message body.
        input_container: Container the event must refer to, or None to
            accept any container.
        lease_token: Lease of the claimed message, if any.

    Returns:
        Validated Notification.

    Raises:
        NotificationValidationError: If the body is empty, not JSON, not a
            creation event, or refers to another container.
    """
    if not body:
        raise NotificationValidationError("Message body is empty")
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise NotificationValidationError(
                f"Message body is not UTF-8: {exc}"
            ) from exc

    try:
        event: Any = json.loads(body)
    except json.JSONDecodeError as exc:
        raise NotificationValidationError(
            f"Message body is not valid JSON: {exc}"
        ) from exc
    if not isinstance(event, dict):
        raise NotificationValidationError("Message body is not a JSON object")

    event_type = event.get("eventType") or event.get("eventName") or ""
    if not isinstance(event_type, str) or not any(
        marker in event_type.lower() for marker in CREATION_EVENT_MARKERS
    ):
        raise NotificationValidationError(
            f"Unexpected event type: '{event_type}'"
        )

    data = event.get("data")
    url = data.get("url") if isinstance(data, dict) else None
    if not url or not isinstance(url, str):
        raise NotificationValidationError("Missing or invalid 'data.url' in message")

    try:
        container = get_container_name_from_url(url)
    except ValueError as exc:
        raise NotificationValidationError(str(exc)) from exc
    if input_container is not None and container != input_container:
        raise NotificationValidationError(
            f"Event for container '{container}', expected '{input_container}'"
        )

    retry_count = event.get("retryCount", 0)
    if isinstance(retry_count, bool) or not isinstance(retry_count, int) or retry_count < 0:
        raise NotificationValidationError(
            f"Invalid 'retryCount': {retry_count!r}"
        )

    return Notification(
        source_url=url,
        retry_count=retry_count,
        lease_token=lease_token,
        body=event,
    )


@dataclass
class IntakeStats:
    """Counters for the most recent claim."""

    claimed: int = 0
    valid: int = 0
    discarded: int = 0
    skipped: int = 0


class NotificationIntake:
    """Claims and validates audio-uploaded notifications.

    Args:
        queue: Queue substrate holding the notifications.
        input_container: Container that uploads must land in.
        lease_timeout: Lease requested on claim and renewal.
        clock: Returns the current UTC time (injectable for tests).
    """

    def __init__(
        self,
        queue: QueueClient,
        input_container: str,
        lease_timeout: timedelta = DEFAULT_LEASE_TIMEOUT,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._queue = queue
        self._input_container = input_container
        self._lease_timeout = lease_timeout
        self._clock = clock or (lambda: datetime.now(UTC))
        self.stats = IntakeStats()

    async def claim(self, max_count: int) -> list[Notification]:
        """Claim up to ``max_count`` valid notifications.

        Messages whose lease is about to expire are left for a later
        cycle. Invalid messages are acknowledged so they never re-enter
        the pipeline; valid ones get a fresh lease.
        """
        messages = await self._queue.claim(max_count, self._lease_timeout)
        self.stats = IntakeStats(claimed=len(messages))
        if not messages:
            logger.info("Got no messages in this iteration")
            return []

        logger.info("Got %d messages in this iteration", len(messages))
        now = self._clock()
        notifications: list[Notification] = []
        for message in messages:
            if message.leased_until <= now + LEASE_SAFETY_MARGIN:
                logger.info(
                    "Lease for message %s expires too soon, skipping",
                    message.message_id,
                )
                self.stats.skipped += 1
                continue

            notification = self._validate(message)
            try:
                if notification is None:
                    await self._queue.acknowledge([message.lease_token])
                    self.stats.discarded += 1
                    continue
                await self._queue.renew_lease(message.lease_token, self._lease_timeout)
            except QueueError:
                logger.info(
                    "Lease lost for message %s, ignoring it in this iteration",
                    message.message_id,
                )
                self.stats.skipped += 1
                continue
            notifications.append(notification)

        self.stats.valid = len(notifications)
        if not notifications:
            logger.info("No valid messages were found in this iteration")
        else:
            logger.info("Pulled %d valid messages from queue", len(notifications))
        return notifications

    def _validate(self, message: QueueMessage) -> Notification | None:
        try:
            return parse_notification(
                message.body, self._input_container, message.lease_token
            )
        except NotificationValidationError as exc:
            body = message.body
            if isinstance(body, bytes):
                body = body.decode("utf-8", errors="replace")
            logger.error(
                "Discarding message %s: %s",
                message.message_id,
                exc,
                extra={"error": (body or "")[:_LOGGED_BODY_LIMIT]},
            )
            return None

    async def renew(self, notifications: Iterable[Notification]) -> int:
        """Renew leases of notifications that are still pending.

        A lost lease is logged; the queue will redeliver that message.

        Returns:
            Number of leases renewed.
        """
        renewed = 0
        for notification in notifications:
            if notification.lease_token is None:
                continue
            try:
                await self._queue.renew_lease(
                    notification.lease_token, self._lease_timeout
                )
            except QueueError:
                logger.warning(
                    "Could not renew lease for %s",
                    notification.source_url,
                    exc_info=True,
                    extra={"source_url": notification.source_url},
                )
            else:
                renewed += 1
        return renewed

    async def acknowledge(self, lease_tokens: Iterable[str | None]) -> None:
        tokens = [token for token in lease_tokens if token]
        await self._queue.acknowledge(tokens)
