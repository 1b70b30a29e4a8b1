"""Server-sent event plumbing shared by the stream endpoints."""


from __future__ import annotations

import queue
from typing import Iterator

from flask import Response, current_app, g, stream_with_context

from devplatform.services.event_broker import EventBroker, format_sse, utc_timestamp


def get_event_broker() -> EventBroker:
    """Return the broker created by the app factory."""
    return current_app.extensions["event_broker"]


def event_stream_response(channel: str) -> Response:
    """Open a ``text/event-stream`` response for the current organization.

    The stream starts with a ``connected`` event, relays every event
    published on ``channel`` for the tenant and sends a ``heartbeat`` after
    ``SSE_HEARTBEAT_SECONDS`` of silence. The listener is unregistered when
    the client goes away.
    """
    broker = get_event_broker()
    tenant_id = str(g.organization_id)
    heartbeat_seconds = current_app.config["SSE_HEARTBEAT_SECONDS"]

    def generate() -> Iterator[str]:
        listener = broker.subscribe(tenant_id, channel)
        try:
            yield format_sse(
                "connected",
                {"message": f"Connected to {channel} events", "organization_id": tenant_id},
            )
            while True:
                try:
                    yield listener.get(timeout=heartbeat_seconds)
                except queue.Empty:
                    yield format_sse("heartbeat", {"timestamp": utc_timestamp()})
        finally:
            broker.unsubscribe(tenant_id, channel, listener)

    return Response(
        stream_with_context(generate()),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )
