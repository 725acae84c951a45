"""
Ticket Event Sinks
==================

Delivery of domain events to notification and analytics collaborators:
- In-memory sink (tests, local development)
- Logging sink (events as structured log lines)
- Webhook sink (HTTP POST with retry and circuit breaker)

Delivery is at-least-once; every payload carries ``dedup_key`` so
consumers can discard repeats.
"""

import asyncio
from typing import List, Optional, Sequence

import httpx

from helpdesk.config import settings
from helpdesk.core import EventDeliveryException
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.shared.infrastructure.resilience import CircuitBreaker
from helpdesk.tickets.application import IEventSink
from helpdesk.tickets.domain import DomainEvent

logger = get_logger(__name__)


class InMemoryEventSink(IEventSink):
    """Collects published events in a list."""

    def __init__(self):
        self.events: List[DomainEvent] = []

    async def publish(self, events: Sequence[DomainEvent]) -> None:
        self.events.extend(events)

    def of_type(self, event_type: type) -> List[DomainEvent]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        self.events.clear()


class LoggingEventSink(IEventSink):
    """Writes each event as a structured log record."""

    async def publish(self, events: Sequence[DomainEvent]) -> None:
        for event in events:
            logger.info(
                "Domain event",
                extra={
                    "event_type": event.event_type,
                    "ticket_id": event.ticket_id,
                    "dedup_key": list(event.dedup_key),
                    "payload": event.to_payload(),
                }
            )


class WebhookEventSink(IEventSink):
    """
    POSTs event batches to a webhook.

    Retries with exponential backoff; after repeated failures the circuit
    breaker opens and batches are refused until it recovers. Failure to
    deliver raises EventDeliveryException.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._url = url or settings.event_webhook_url
        if not self._url:
            raise ValueError("Event webhook URL not configured")
        self._timeout = timeout or settings.event_webhook_timeout_seconds
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._http_client = http_client
        self._circuit_breaker = CircuitBreaker("event-webhook", failure_threshold=5, recovery_timeout=60)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    @staticmethod
    def _build_payload(events: Sequence[DomainEvent]) -> dict:
        return {
            "events": [
                {**event.to_payload(), "dedup_key": list(event.dedup_key)}
                for event in events
            ]
        }

    async def publish(self, events: Sequence[DomainEvent]) -> None:
        if not events:
            return

        if not self._circuit_breaker.allow_request():
            raise EventDeliveryException(
                "Circuit breaker open, events not delivered",
                {"event_count": len(events)}
            )

        payload = self._build_payload(events)
        last_error: Optional[str] = None

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._url, json=payload)
                if response.is_success:
                    self._circuit_breaker.record_success()
                    logger.debug("Events delivered", extra={"event_count": len(events)})
                    return
                last_error = f"HTTP {response.status_code}"
                logger.warning(
                    "Event webhook returned non-2xx",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
            except httpx.HTTPError as e:
                last_error = str(e)
                logger.warning(
                    "Event webhook request failed",
                    extra={"error": str(e), "attempt": attempt + 1}
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_base * 2 ** attempt)

        self._circuit_breaker.record_failure()
        raise EventDeliveryException(
            f"Delivery failed after {self._max_retries} attempts: {last_error}",
            {"event_count": len(events)}
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
