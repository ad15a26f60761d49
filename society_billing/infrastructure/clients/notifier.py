"""Reminder notification webhook client with exponential backoff retry logic"""

import asyncio
import logging
from typing import Any, Dict

import httpx

from society_billing.config import settings
from society_billing.infrastructure.observability.metrics import webhook_failure_counter, webhook_latency_histogram

logger = logging.getLogger(__name__)


class ReminderNotifier:
    """Client for handing reminders to the messaging service"""

    def __init__(self, webhook_url: str | None = None, timeout: float | None = None):
        self.webhook_url = webhook_url or settings.reminder_webhook_url
        self.timeout = timeout or settings.http_timeout_seconds
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def send_reminder(self, payload: Dict[str, Any]) -> bool:
        """
        Deliver a reminder event to the messaging webhook.

        Retry strategy:
        - Exponential backoff: base, 2x base, 4x base, ...
        - Retries on 5xx errors and network failures
        - Tracks latency histogram and failure counter

        The ledger entry is already committed when this runs, so a final
        failure is logged and reported as False rather than raised.
        """
        if not self.enabled:
            return False

        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            while attempt < self.max_retries:
                try:
                    with webhook_latency_histogram.time():
                        response = await client.post(self.webhook_url, json=payload)
                        response.raise_for_status()
                        return True

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    webhook_failure_counter.inc()

                    if attempt >= self.max_retries:
                        logger.error(
                            f"Reminder delivery failed after {attempt} attempts: {e}",
                            extra={"unit_id": payload.get("unit_id"), "event_id": payload.get("event_id")},
                        )
                        return False

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)

        return False
