"""Abstract queue substrate interface.

The substrate supplies at-least-once delivery with a renewable lease.
Concrete implementations (e.g., HttpQueueClient) subclass QueueClient.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

DEFAULT_LEASE_TIMEOUT = timedelta(minutes=5)


@dataclass
class QueueMessage:
    """A message claimed from the queue under lease."""

    message_id: str
    lease_token: str
    body: str | bytes | None
    leased_until: datetime


class QueueClient(ABC):
    """Abstract base class for lease-based queue clients."""

    @abstractmethod
    async def claim(
        self, max_count: int, lease_timeout: timedelta = DEFAULT_LEASE_TIMEOUT
    ) -> list[QueueMessage]:
        """Claim up to ``max_count`` pending messages under lease."""

    @abstractmethod
    async def renew_lease(
        self, lease_token: str, lease_timeout: timedelta = DEFAULT_LEASE_TIMEOUT
    ) -> datetime:
        """Extend a lease and return its new expiry."""

    @abstractmethod
    async def acknowledge(self, lease_tokens: list[str]) -> None:
        """Remove the messages holding these leases from the queue."""

    @abstractmethod
    async def enqueue(
        self, payload: dict[str, Any], deliver_after: datetime | None = None
    ) -> None:
        """Add a message, optionally invisible until ``deliver_after``."""
