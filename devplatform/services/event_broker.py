"""In-process pub/sub for server-sent events.

One :class:`EventBroker` lives for the lifetime of the Flask app (see
``app.extensions["event_broker"]``). Stream endpoints subscribe a bounded
queue per connection; services publish to every queue of a tenant's
channel. Delivery is fire and forget: nobody connected means nobody
receives the event, and a listener that stops draining its queue loses
events instead of slowing publishers down.
"""


from __future__ import annotations

import json
import logging
import queue
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Protocol, Set, Tuple


logger = logging.getLogger(__name__)

CRON_JOBS_CHANNEL = "cron-jobs"
FEATURE_FLAGS_CHANNEL = "feature-flags"

DEFAULT_QUEUE_SIZE = 100


class EventPublisher(Protocol):
    """What services need from the broker."""

    def publish(
        self, tenant_id: str, channel: str, event: str, data: Mapping[str, Any]
    ) -> int:
        ...


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def format_sse(event: str, data: Mapping[str, Any]) -> str:
    """Frame one event in the ``text/event-stream`` wire format."""
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


class EventBroker:
    """Thread-safe registry of listeners keyed by ``(tenant, channel)``."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._lock = threading.Lock()
        self._listeners: Dict[Tuple[str, str], Set[queue.Queue]] = {}

    def subscribe(self, tenant_id: str, channel: str) -> queue.Queue:
        """Register a new listener and return the queue it should drain."""
        listener: queue.Queue = queue.Queue(maxsize=self._queue_size)
        with self._lock:
            self._listeners.setdefault((str(tenant_id), channel), set()).add(listener)
        return listener

    def unsubscribe(self, tenant_id: str, channel: str, listener: queue.Queue) -> None:
        """Remove a listener; unknown listeners are ignored."""
        slot = (str(tenant_id), channel)
        with self._lock:
            listeners = self._listeners.get(slot)
            if listeners is None:
                return
            listeners.discard(listener)
            if not listeners:
                del self._listeners[slot]

    def listener_count(self, tenant_id: str, channel: str) -> int:
        with self._lock:
            return len(self._listeners.get((str(tenant_id), channel), ()))

    def publish(
        self, tenant_id: str, channel: str, event: str, data: Mapping[str, Any]
    ) -> int:
        """Broadcast an event to the tenant's current listeners.

        A ``timestamp`` is added to the payload when missing.

        Returns:
            int: How many listeners the event was queued for.
        """
        payload = dict(data)
        payload.setdefault("timestamp", utc_timestamp())
        message = format_sse(event, payload)

        with self._lock:
            listeners = list(self._listeners.get((str(tenant_id), channel), ()))

        delivered = 0
        for listener in listeners:
            try:
                listener.put_nowait(message)
                delivered += 1
            except queue.Full:
                logger.debug("Dropping %s for a slow %s listener", event, channel)
        return delivered
