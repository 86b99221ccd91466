"""Outbound real-time events.

The engine only knows :class:`EventPublisher`. The production publisher
POSTs each event envelope to the configured webhook URLs (the real-time
gateway subscribes there and fans out to browser rooms). Delivery happens on
a small worker pool so a slow or dead endpoint never blocks a request.
"""
import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Protocol

import httpx

from campus_store.config import settings

logger = logging.getLogger(__name__)

NEW_ORDER = "new-order"
ORDER_STATUS_UPDATED = "order-status-updated"
INVENTORY_UPDATED = "inventory-updated"
NEW_NOTIFICATION = "new-notification"

TOPICS = (NEW_ORDER, ORDER_STATUS_UPDATED, INVENTORY_UPDATED, NEW_NOTIFICATION)


def build_envelope(topic: str, payload: dict) -> dict:
    return {
        "event": topic,
        "payload": payload,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


class EventPublisher(Protocol):
    def publish(self, topic: str, payload: dict) -> None: ...


class InMemoryEventPublisher:
    """Keeps published envelopes in a list. Used by tests and when no webhook is configured."""

    def __init__(self, max_events: int | None = None):
        self.events: deque[dict] = deque(maxlen=max_events)

    def publish(self, topic: str, payload: dict) -> None:
        self.events.append(build_envelope(topic, payload))

    def topics(self) -> list[str]:
        return [e["event"] for e in self.events]

    def of(self, topic: str) -> list[dict]:
        return [e["payload"] for e in self.events if e["event"] == topic]


class WebhookEventPublisher:
    def __init__(self, urls: list[str], timeout: float = 10.0, max_workers: int = 2):
        self.urls = urls
        self.timeout = timeout
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="event-webhook")

    def publish(self, topic: str, payload: dict) -> None:
        if topic not in TOPICS:
            raise ValueError(f"Unknown event topic '{topic}'")
        envelope = build_envelope(topic, payload)
        self._executor.submit(self._deliver, envelope)

    def _deliver(self, envelope: dict) -> list[dict]:
        results = []
        with httpx.Client(timeout=self.timeout) as client:
            for url in self.urls:
                try:
                    resp = client.post(url, json=envelope)
                    results.append({"url": url, "status": resp.status_code, "success": resp.is_success})
                    if not resp.is_success:
                        logger.warning("Event %s to %s returned %s", envelope["event"], url, resp.status_code)
                except Exception as e:
                    logger.error("Event %s delivery failed for %s: %s", envelope["event"], url, e)
                    results.append({"url": url, "status": 0, "success": False, "error": str(e)})
        return results

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


def webhook_urls() -> list[str]:
    return [u.strip() for u in settings.EVENT_WEBHOOK_URLS.split(",") if u.strip()]


def build_publisher() -> EventPublisher:
    urls = webhook_urls()
    if not urls:
        logger.info("No EVENT_WEBHOOK_URLS configured; events are kept in memory only")
        return InMemoryEventPublisher(max_events=1000)
    return WebhookEventPublisher(urls, timeout=settings.WEBHOOK_TIMEOUT_SECONDS)
