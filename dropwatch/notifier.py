"""Notifications sent to downstream consumers.

Two kinds of message leave the scheduler: a discovery notification for
every newly created DiscoveredFile, and an outcome notification for every
execution that reaches Completed or Failed. Both carry an idempotency key
(the discovery's composite identity, or the execution id for outcomes) so
at-least-once consumers can deduplicate.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from dropwatch.domain import DiscoveryNotification, OutcomeNotification

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """Raised when a notification could not be delivered."""
    pass


class Notifier(ABC):
    """Publishes discovery and outcome notifications."""

    @abstractmethod
    async def publish_discovery(self, notification: DiscoveryNotification) -> None:
        """Publish a discovery notification.

        Raises:
            NotificationError: If delivery failed
        """

    @abstractmethod
    async def publish_outcome(self, notification: OutcomeNotification) -> None:
        """Publish an execution outcome notification.

        Raises:
            NotificationError: If delivery failed
        """

    async def close(self) -> None:
        """Release any resources held by the notifier."""
        return None


class LoggingNotifier(Notifier):
    """Writes notifications to the log as JSON lines."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger

    async def publish_discovery(self, notification: DiscoveryNotification) -> None:
        self._log.info(f"file discovered: {json.dumps(notification.to_dict())}")

    async def publish_outcome(self, notification: OutcomeNotification) -> None:
        self._log.info(f"check finished: {json.dumps(notification.to_dict())}")


class WebhookNotifier(Notifier):
    """POSTs notifications as JSON to a webhook endpoint.

    Every notification also sends its idempotency key in the
    ``Idempotency-Key`` header.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = url
        self._client = httpx.AsyncClient(
            timeout=timeout,
            headers={"Content-Type": "application/json", **(headers or {})},
            transport=transport,
        )

    async def publish_discovery(self, notification: DiscoveryNotification) -> None:
        await self._post(
            {"type": "file_discovered", "data": notification.to_dict()},
            {"Idempotency-Key": notification.idempotency_key},
        )

    async def publish_outcome(self, notification: OutcomeNotification) -> None:
        await self._post(
            {"type": "check_finished", "data": notification.to_dict()},
            {"Idempotency-Key": notification.idempotency_key},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _post(self, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> None:
        try:
            response = await self._client.post(self._url, json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationError(
                f"Webhook {self._url} returned {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise NotificationError(f"Webhook {self._url} unreachable: {e}") from e
