"""Cron job lifecycle and webhook execution.

Jobs are never run by a timer in this service: ``execute_job`` is called
from the API, performs exactly one outbound HTTP call, records an
immutable history entry and updates the job's counters. "Retrying" a job
means executing it again later; once ``retry_count`` reaches
``max_retries`` the job is parked in ``failed`` until someone re-activates
it.

Every state change is announced on the tenant's ``cron-jobs`` channel of
the event publisher passed in by the caller.
"""


from __future__ import annotations

import logging
import socket
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

import httpx

from devplatform.errors.handlers import NotFound
from devplatform.repositories import cron_history_repo, cron_jobs_repo
from .event_broker import CRON_JOBS_CHANNEL, EventPublisher


logger = logging.getLogger(__name__)

RESPONSE_BODY_LIMIT = 5000
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
MAX_RECORD_ATTEMPTS = 3


# ---------- Scheduling ----------


def next_execution_at(cron_expression: str, now: Optional[datetime] = None) -> datetime:
    """Estimate the next run from the minute field only.

    Hour, day, month and weekday are ignored. A ``*`` minute (or anything
    that is not a plain minute number, such as ``*/5`` or ``0,30``) means
    "in one minute"; a literal minute means its next occurrence in the
    current or the following hour.
    """
    now = now or datetime.now(timezone.utc)
    fields = cron_expression.split()
    minute = fields[0] if fields else "*"

    if minute.isdigit() and int(minute) < 60:
        candidate = now.replace(minute=int(minute), second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(hours=1)
        return candidate

    return now + timedelta(seconds=60)


# ---------- Retry policy ----------


def apply_execution_outcome(
    job: Dict[str, Any],
    succeeded: bool,
    executed_at: datetime,
) -> Dict[str, Any]:
    """Compute the job's counters after one execution.

    success -> ``success_count + 1`` and ``retry_count`` back to 0.
    failure -> ``failure_count + 1``, ``retry_count + 1`` and status
    ``failed`` once ``retry_count >= max_retries``. A success never lifts
    ``failed`` by itself.

    Returns:
        dict: Values for every column of
        :data:`cron_jobs_repo.EXECUTION_COLUMNS`.
    """
    state = {
        "status": job["status"],
        "retry_count": job["retry_count"],
        "execution_count": job["execution_count"] + 1,
        "success_count": job["success_count"],
        "failure_count": job["failure_count"],
        "last_executed_at": executed_at,
        "next_execution_at": next_execution_at(job["cron_expression"], executed_at),
    }

    if succeeded:
        state["success_count"] += 1
        state["retry_count"] = 0
    else:
        state["failure_count"] += 1
        state["retry_count"] += 1
        if state["retry_count"] >= job["max_retries"]:
            state["status"] = "failed"

    return state


# ---------- Webhook call ----------


@dataclass(frozen=True)
class WebhookOutcome:
    """Result of one outbound call. Failures are values, not exceptions."""

    succeeded: bool
    response_status: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None


class _Deadline:
    """Hard limit on a whole call, connect and response headers included.

    httpx timeouts apply to each network step, so a peer that trickles
    bytes can hold a request open indefinitely. Sockets opened for the call
    are captured through httpcore's ``trace`` extension and shut down by a
    timer after ``seconds``, which wakes any blocked read.
    """

    def __init__(self, seconds: float) -> None:
        self.expired = False
        self._lock = threading.Lock()
        self._sockets: List[socket.socket] = []
        self._timer = threading.Timer(seconds, self._expire)
        self._timer.daemon = True

    def __enter__(self) -> "_Deadline":
        self._timer.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._timer.cancel()

    def trace(self, event: str, info: Dict[str, Any]) -> None:
        if not event.endswith((".connect_tcp.complete", ".start_tls.complete")):
            return
        stream = info.get("return_value")
        sock = stream.get_extra_info("socket") if stream is not None else None
        if sock is None:
            return
        with self._lock:
            if self.expired:
                _shutdown(sock)
            else:
                self._sockets.append(sock)

    def _expire(self) -> None:
        with self._lock:
            self.expired = True
            sockets, self._sockets = self._sockets, []
        for sock in sockets:
            _shutdown(sock)


def _shutdown(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as exc:
        # already closed by the connection pool
        logger.debug("Webhook socket shutdown failed: %s", exc)


def _read_body(response: httpx.Response) -> str:
    """Read at most ``RESPONSE_BODY_LIMIT`` characters.

    A body that cannot be read does not change the outcome of the call.
    """
    chunks = []
    size = 0
    try:
        for chunk in response.iter_text():
            chunks.append(chunk)
            size += len(chunk)
            if size >= RESPONSE_BODY_LIMIT:
                break
    except httpx.HTTPError as exc:
        logger.debug("Could not read webhook response body: %s", exc)
    return "".join(chunks)[:RESPONSE_BODY_LIMIT]


def call_webhook(job: Dict[str, Any], http_client: httpx.Client) -> WebhookOutcome:
    """Send the job's HTTP request and classify the result.

    - transport error or timeout -> failure carrying the error message
    - status outside 200..399    -> failure, ``"HTTP <code>: <reason>"``
    - anything else              -> success

    ``job["timeout"]`` bounds the entire call, body included. A call still
    running at that point is aborted and reported as timed out.
    """
    method = job["method"]
    timeout_ms = job["timeout"]
    headers = {"Content-Type": "application/json", **(job.get("headers") or {})}
    content = job.get("body") if method in BODY_METHODS and job.get("body") else None
    timed_out = WebhookOutcome(False, error=f"Request timed out after {timeout_ms} ms")
    deadline = _Deadline(timeout_ms / 1000)

    try:
        with deadline, http_client.stream(
            method,
            job["webhook_url"],
            headers=headers,
            content=content,
            timeout=timeout_ms / 1000,
            extensions={"trace": deadline.trace},
        ) as response:
            body = _read_body(response)
    except httpx.TimeoutException:
        return timed_out
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        if deadline.expired:
            return timed_out
        return WebhookOutcome(False, error=str(exc) or exc.__class__.__name__)
    except UnicodeEncodeError as exc:
        return WebhookOutcome(False, error=f"Invalid request header: {exc}")

    if deadline.expired:
        return timed_out

    if 200 <= response.status_code < 400:
        return WebhookOutcome(True, response.status_code, body)

    return WebhookOutcome(
        False,
        response.status_code,
        body,
        error=f"HTTP {response.status_code}: {response.reason_phrase}",
    )


# ---------- Lifecycle ----------


def _announce(
    publisher: EventPublisher, organization_id: UUID, event: str, job: Dict[str, Any]
) -> None:
    publisher.publish(
        str(organization_id),
        CRON_JOBS_CHANNEL,
        event,
        {"job_id": str(job["id"]), "name": job["name"], "status": job["status"]},
    )


def create_job(
    organization_id: UUID, job_data: Dict[str, Any], publisher: EventPublisher
) -> Dict[str, Any]:
    """Store a validated job and announce ``job:created``."""
    data = dict(job_data)
    data["next_execution_at"] = next_execution_at(data["cron_expression"])

    job = cron_jobs_repo.create_job(organization_id, data)
    _announce(publisher, organization_id, "job:created", job)
    return job


def update_job(
    organization_id: UUID,
    job_id: UUID,
    changes: Dict[str, Any],
    publisher: EventPublisher,
) -> Dict[str, Any]:
    """Apply a partial update and announce ``job:updated``.

    Raises:
        NotFound: If the job does not belong to the organization.
    """
    existing = cron_jobs_repo.get_job(organization_id, job_id)
    if existing is None:
        raise NotFound("Cron job not found")

    data = dict(changes)
    if "cron_expression" in data:
        data["next_execution_at"] = next_execution_at(data["cron_expression"])
    if data.get("status") == "active" and existing["status"] != "active":
        data["retry_count"] = 0

    job = cron_jobs_repo.update_job(organization_id, job_id, data)
    if job is None:
        raise NotFound("Cron job not found")

    _announce(publisher, organization_id, "job:updated", job)
    return job


def toggle_job(
    organization_id: UUID, job_id: UUID, publisher: EventPublisher
) -> Dict[str, Any]:
    """Pause an active job, or (re-)activate any other one.

    Re-activating a ``failed`` job is the manual reset: ``retry_count``
    starts again from 0.
    """
    existing = cron_jobs_repo.get_job(organization_id, job_id)
    if existing is None:
        raise NotFound("Cron job not found")

    if existing["status"] == "active":
        changes: Dict[str, Any] = {"status": "paused"}
    else:
        changes = {
            "status": "active",
            "next_execution_at": next_execution_at(existing["cron_expression"]),
        }
        if existing["status"] == "failed":
            changes["retry_count"] = 0

    job = cron_jobs_repo.update_job(organization_id, job_id, changes)
    if job is None:
        raise NotFound("Cron job not found")

    _announce(publisher, organization_id, "job:toggled", job)
    return job


def delete_job(
    organization_id: UUID, job_id: UUID, publisher: EventPublisher
) -> None:
    """Delete a job together with its history and announce ``job:deleted``."""
    if not cron_jobs_repo.delete_job(organization_id, job_id):
        raise NotFound("Cron job not found")

    publisher.publish(
        str(organization_id),
        CRON_JOBS_CHANNEL,
        "job:deleted",
        {"job_id": str(job_id)},
    )


def get_stats(organization_id: UUID) -> Dict[str, Any]:
    """Job counts merged with execution-duration figures."""
    jobs = cron_jobs_repo.job_stats(organization_id)
    history = cron_history_repo.history_stats(organization_id)

    return {
        **jobs,
        "avg_duration": round(float(history["avg_duration"] or 0)),
        "max_duration": history["max_duration"] or 0,
        "history_count": history["history_count"],
    }


# ---------- Execution ----------


def _record_outcome(
    organization_id: UUID,
    job: Dict[str, Any],
    succeeded: bool,
    executed_at: datetime,
) -> Dict[str, Any]:
    """Write counters with an optimistic ``version`` check, re-reading on races."""
    for _ in range(MAX_RECORD_ATTEMPTS):
        state = apply_execution_outcome(job, succeeded, executed_at)
        row = cron_jobs_repo.record_execution(
            organization_id, job["id"], job["version"], state
        )
        if row is not None:
            return row

        job = cron_jobs_repo.get_job(organization_id, job["id"])
        if job is None:
            raise NotFound("Cron job not found")

    raise RuntimeError("Cron job kept changing while recording its execution.")


def execute_job(
    organization_id: UUID,
    job_id: UUID,
    publisher: EventPublisher,
    http_client: Optional[httpx.Client] = None,
) -> Dict[str, Any]:
    """Run a job's webhook once and record the outcome.

    The history row is written first and the job counters second, in
    separate transactions. If the counters cannot be written (the job keeps
    changing underneath, or the database fails) the history row stays as
    the record that the call happened, ``RuntimeError`` propagates and no
    ``job:execution:complete`` event is published.

    Args:
        organization_id: UUID of the organization (tenant).
        job_id: UUID of the job.
        publisher: Receives ``job:execution:start`` and
            ``job:execution:complete``.
        http_client: Client used for the call; a short-lived one is created
            when omitted.

    Returns:
        ``{"success": bool, "execution": {...}}``. A failed webhook is a
        normal return value, not an exception.

    Raises:
        NotFound: If the job does not belong to the organization.
    """
    job = cron_jobs_repo.get_job(organization_id, job_id)
    if job is None:
        raise NotFound("Cron job not found")

    tenant = str(organization_id)
    publisher.publish(
        tenant,
        CRON_JOBS_CHANNEL,
        "job:execution:start",
        {
            "job_id": str(job["id"]),
            "name": job["name"],
            "webhook_url": job["webhook_url"],
            "method": job["method"],
        },
    )

    started = time.monotonic()
    if http_client is None:
        with httpx.Client() as client:
            outcome = call_webhook(job, client)
    else:
        outcome = call_webhook(job, http_client)
    duration = int((time.monotonic() - started) * 1000)
    executed_at = datetime.now(timezone.utc)

    status = "success" if outcome.succeeded else "failure"
    if not outcome.succeeded:
        logger.warning("Cron job %s failed: %s", job["id"], outcome.error)

    history = cron_history_repo.insert_history(
        organization_id,
        {
            "cron_job_id": job["id"],
            "job_name": job["name"],
            "executed_at": executed_at,
            "status": status,
            "response_status": outcome.response_status,
            "response_body": outcome.response_body,
            "request_url": job["webhook_url"],
            "request_method": job["method"],
            "error": outcome.error,
            "duration": duration,
            "retry_attempt": job["retry_count"],
        },
    )

    updated = _record_outcome(organization_id, job, outcome.succeeded, executed_at)
    logger.info(
        "Cron job %s executed: %s in %d ms (status=%s, retry_count=%d)",
        job["id"],
        status,
        duration,
        updated["status"],
        updated["retry_count"],
    )

    execution = {
        "id": str(history["id"]),
        "job_id": str(job["id"]),
        "job_name": job["name"],
        "status": status,
        "response_status": outcome.response_status,
        "duration": duration,
        "error": outcome.error,
        "executed_at": executed_at.isoformat(),
    }
    publisher.publish(tenant, CRON_JOBS_CHANNEL, "job:execution:complete", execution)

    return {"success": outcome.succeeded, "execution": execution}
