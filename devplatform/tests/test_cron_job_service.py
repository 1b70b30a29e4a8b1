# devplatform/tests/test_cron_job_service.py
"""
Unit tests for cron job execution, the retry policy and job lifecycle.

Webhooks are answered by ``httpx.MockTransport`` handlers; the repositories
are the in-memory store from ``conftest.py``.
"""


import json
import socket
import threading
import time
from datetime import datetime, timezone
from uuid import uuid4

import httpx
import pytest

from devplatform.errors.handlers import NotFound
from devplatform.repositories import cron_jobs_repo
from devplatform.services import cron_job_service
from devplatform.services.cron_job_service import (
    RESPONSE_BODY_LIMIT,
    apply_execution_outcome,
    call_webhook,
    execute_job,
)
from devplatform.services.event_broker import CRON_JOBS_CHANNEL
from devplatform.validators.cron_job_validator import validate_cron_job_create


ORG_ID = uuid4()


def _mock_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def _status_handler(status_code, text=""):
    def handler(request):
        return httpx.Response(status_code, text=text)

    return handler


@pytest.fixture
def job(store, publisher):
    data = validate_cron_job_create(
        {
            "name": "Nightly sync",
            "cron_expression": "*/5 * * * *",
            "webhook_url": "https://hooks.example.com/sync",
            "max_retries": 3,
        }
    )
    return cron_job_service.create_job(ORG_ID, data, publisher)


# ---------- Retry policy ----------


def _job_state(**overrides):
    state = {
        "status": "active",
        "retry_count": 0,
        "max_retries": 3,
        "execution_count": 0,
        "success_count": 0,
        "failure_count": 0,
        "cron_expression": "* * * * *",
    }
    state.update(overrides)
    return state


def test_failure_increments_counters():
    now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    state = apply_execution_outcome(_job_state(retry_count=1), False, now)

    assert state["retry_count"] == 2
    assert state["failure_count"] == 1
    assert state["execution_count"] == 1
    assert state["status"] == "active"
    assert state["last_executed_at"] == now


def test_failure_reaching_max_retries_marks_failed():
    state = apply_execution_outcome(
        _job_state(retry_count=2), False, datetime.now(timezone.utc)
    )
    assert state["retry_count"] == 3
    assert state["status"] == "failed"


def test_zero_max_retries_fails_on_first_failure():
    state = apply_execution_outcome(
        _job_state(max_retries=0), False, datetime.now(timezone.utc)
    )
    assert state["status"] == "failed"


def test_success_resets_retry_count_but_keeps_failed_status():
    state = apply_execution_outcome(
        _job_state(status="failed", retry_count=3, failure_count=3),
        True,
        datetime.now(timezone.utc),
    )
    assert state["retry_count"] == 0
    assert state["success_count"] == 1
    assert state["failure_count"] == 3
    assert state["status"] == "failed"


# ---------- Webhook call ----------


def _webhook_job(**overrides):
    job = {
        "webhook_url": "https://hooks.example.com/run",
        "method": "GET",
        "headers": {},
        "body": "",
        "timeout": 5000,
    }
    job.update(overrides)
    return job


def test_call_webhook_sends_json_content_type_by_default():
    seen = {}

    def handler(request):
        seen["content_type"] = request.headers.get("content-type")
        seen["token"] = request.headers.get("x-token")
        return httpx.Response(204)

    outcome = call_webhook(
        _webhook_job(headers={"X-Token": "abc"}), _mock_client(handler)
    )

    assert outcome.succeeded is True
    assert outcome.response_status == 204
    assert seen == {"content_type": "application/json", "token": "abc"}


def test_call_webhook_job_headers_override_defaults():
    seen = {}

    def handler(request):
        seen["content_type"] = request.headers.get("content-type")
        return httpx.Response(200)

    call_webhook(
        _webhook_job(method="POST", body="hi", headers={"Content-Type": "text/plain"}),
        _mock_client(handler),
    )

    assert seen["content_type"] == "text/plain"


@pytest.mark.parametrize(
    "method, sent",
    [
        ("GET", b""),
        ("DELETE", b""),
        ("POST", b'{"run": true}'),
        ("PUT", b'{"run": true}'),
        ("PATCH", b'{"run": true}'),
    ],
)
def test_call_webhook_body_only_for_body_methods(method, sent):
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["content"] = request.content
        return httpx.Response(200)

    call_webhook(
        _webhook_job(method=method, body='{"run": true}'), _mock_client(handler)
    )

    assert seen == {"method": method, "content": sent}


def test_call_webhook_redirect_status_counts_as_success():
    outcome = call_webhook(_webhook_job(), _mock_client(_status_handler(302)))
    assert outcome.succeeded is True
    assert outcome.error is None


def test_call_webhook_http_error_status():
    outcome = call_webhook(
        _webhook_job(), _mock_client(_status_handler(503, "maintenance"))
    )

    assert outcome.succeeded is False
    assert outcome.response_status == 503
    assert outcome.response_body == "maintenance"
    assert outcome.error == "HTTP 503: Service Unavailable"


def test_call_webhook_truncates_response_body():
    outcome = call_webhook(
        _webhook_job(), _mock_client(_status_handler(200, "x" * 12000))
    )
    assert outcome.response_body == "x" * RESPONSE_BODY_LIMIT


def test_call_webhook_timeout_is_a_failure():
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    outcome = call_webhook(_webhook_job(timeout=1500), _mock_client(handler))

    assert outcome.succeeded is False
    assert outcome.response_status is None
    assert outcome.error == "Request timed out after 1500 ms"


def test_call_webhook_connection_error_is_a_failure():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    outcome = call_webhook(_webhook_job(), _mock_client(handler))

    assert outcome.succeeded is False
    assert outcome.error == "connection refused"


def test_call_webhook_unencodable_header_is_a_failure():
    outcome = call_webhook(
        _webhook_job(headers={"X-Name": "café"}), _mock_client(_status_handler(200))
    )

    assert outcome.succeeded is False
    assert outcome.response_status is None
    assert outcome.error.startswith("Invalid request header")


@pytest.fixture
def trickling_server():
    """Local server that starts a response and never finishes its headers."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    stop = threading.Event()

    def serve():
        conn, _ = listener.accept()
        with conn:
            conn.recv(65536)
            conn.sendall(b"HTTP/1.1 200 OK\r\nX-Slow: ")
            while not stop.wait(0.2):
                try:
                    conn.sendall(b"a")
                except OSError:
                    return

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{listener.getsockname()[1]}/hook"
    stop.set()
    listener.close()
    thread.join(timeout=5)


def test_call_webhook_timeout_bounds_the_whole_call(trickling_server):
    job = _webhook_job(webhook_url=trickling_server, timeout=1000)

    started = time.monotonic()
    with httpx.Client(trust_env=False) as client:
        outcome = call_webhook(job, client)
    elapsed = time.monotonic() - started

    assert outcome.succeeded is False
    assert outcome.response_status is None
    assert outcome.error == "Request timed out after 1000 ms"
    assert elapsed < 2.5


# ---------- execute_job ----------


def test_execute_job_three_http_500_marks_job_failed(store, publisher, job):
    client = _mock_client(_status_handler(500, "boom"))

    for _ in range(3):
        result = execute_job(ORG_ID, job["id"], publisher, http_client=client)
        assert result["success"] is False
        assert result["execution"]["status"] == "failure"
        assert result["execution"]["response_status"] == 500

    stored = store.jobs[job["id"]]
    assert stored["status"] == "failed"
    assert stored["failure_count"] == 3
    assert stored["retry_count"] == 3
    assert stored["execution_count"] == 3
    assert stored["success_count"] == 0

    assert [h["status"] for h in store.history] == ["failure"] * 3
    assert [h["response_status"] for h in store.history] == [500] * 3
    assert [h["retry_attempt"] for h in store.history] == [0, 1, 2]
    assert store.history[0]["error"] == "HTTP 500: Internal Server Error"


def test_execute_job_single_failure_appends_history(store, publisher, job):
    execute_job(ORG_ID, job["id"], publisher, http_client=_mock_client(_status_handler(500)))

    stored = store.jobs[job["id"]]
    assert stored["retry_count"] == 1
    assert stored["failure_count"] == 1
    assert stored["status"] == "active"
    assert len(store.history) == 1
    assert store.history[0]["request_url"] == "https://hooks.example.com/sync"
    assert store.history[0]["request_method"] == "GET"


def test_success_after_failures_resets_retry_count_only(store, publisher, job):
    failing = _mock_client(_status_handler(500))
    for _ in range(3):
        execute_job(ORG_ID, job["id"], publisher, http_client=failing)

    result = execute_job(
        ORG_ID, job["id"], publisher, http_client=_mock_client(_status_handler(200, "ok"))
    )

    stored = store.jobs[job["id"]]
    assert result["success"] is True
    assert stored["retry_count"] == 0
    assert stored["success_count"] == 1
    assert stored["status"] == "failed"
    assert store.history[-1]["response_body"] == "ok"


def test_execute_job_publishes_start_and_complete(store, publisher, job):
    publisher.events.clear()

    result = execute_job(
        ORG_ID, job["id"], publisher, http_client=_mock_client(_status_handler(200))
    )

    assert publisher.names() == ["job:execution:start", "job:execution:complete"]
    tenant, channel, _, start = publisher.events[0]
    assert tenant == str(ORG_ID)
    assert channel == CRON_JOBS_CHANNEL
    assert start["job_id"] == str(job["id"])
    assert start["webhook_url"] == "https://hooks.example.com/sync"

    complete = publisher.events[1][3]
    assert complete == result["execution"]
    assert complete["job_name"] == "Nightly sync"
    json.dumps(complete)


def test_execute_job_updates_schedule_fields(store, publisher, job):
    execute_job(ORG_ID, job["id"], publisher, http_client=_mock_client(_status_handler(200)))

    stored = store.jobs[job["id"]]
    assert stored["last_executed_at"] is not None
    assert stored["next_execution_at"] > stored["last_executed_at"]


def test_execute_unknown_job_raises_not_found(store, publisher):
    with pytest.raises(NotFound):
        execute_job(ORG_ID, uuid4(), publisher, http_client=_mock_client(_status_handler(200)))
    assert publisher.events == []


def test_execute_job_of_another_organization_is_not_found(store, publisher, job):
    with pytest.raises(NotFound):
        execute_job(uuid4(), job["id"], publisher)


def test_execute_job_rereads_on_concurrent_change(store, publisher, job, monkeypatch):
    """A concurrent execution bumps the version; the second write re-reads."""
    real_record = store.record_execution
    calls = []

    def racing_record(organization_id, job_id, expected_version, state):
        calls.append(expected_version)
        if len(calls) == 1:
            row = store.jobs[job_id]
            row["execution_count"] += 1
            row["failure_count"] += 1
            row["retry_count"] += 1
            row["version"] += 1
            return None
        return real_record(organization_id, job_id, expected_version, state)

    monkeypatch.setattr(cron_jobs_repo, "record_execution", racing_record)

    execute_job(ORG_ID, job["id"], publisher, http_client=_mock_client(_status_handler(500)))

    stored = store.jobs[job["id"]]
    assert len(calls) == 2
    assert calls[1] == calls[0] + 1
    assert stored["execution_count"] == 2
    assert stored["failure_count"] == 2
    assert stored["retry_count"] == 2


def test_execute_job_gives_up_when_version_never_matches(store, publisher, job, monkeypatch):
    monkeypatch.setattr(cron_jobs_repo, "record_execution", lambda *args: None)
    publisher.events.clear()

    with pytest.raises(RuntimeError):
        execute_job(
            ORG_ID, job["id"], publisher, http_client=_mock_client(_status_handler(200))
        )

    # the call is still on record, the counters are not
    assert [h["status"] for h in store.history] == ["success"]
    assert store.jobs[job["id"]]["execution_count"] == 0
    assert publisher.names() == ["job:execution:start"]


# ---------- Lifecycle ----------


def test_create_job_sets_next_execution_and_announces(store, publisher, job):
    assert job["next_execution_at"] is not None
    assert job["status"] == "active"
    assert publisher.names() == ["job:created"]


def test_toggle_pauses_then_reactivates(store, publisher, job):
    paused = cron_job_service.toggle_job(ORG_ID, job["id"], publisher)
    assert paused["status"] == "paused"

    active = cron_job_service.toggle_job(ORG_ID, job["id"], publisher)
    assert active["status"] == "active"
    assert publisher.names()[-2:] == ["job:toggled", "job:toggled"]


def test_toggle_failed_job_resets_retry_count(store, publisher, job):
    failing = _mock_client(_status_handler(500))
    for _ in range(3):
        execute_job(ORG_ID, job["id"], publisher, http_client=failing)
    assert store.jobs[job["id"]]["status"] == "failed"

    reactivated = cron_job_service.toggle_job(ORG_ID, job["id"], publisher)

    assert reactivated["status"] == "active"
    assert reactivated["retry_count"] == 0
    assert reactivated["failure_count"] == 3


def test_update_job_recomputes_next_execution(store, publisher, job):
    before = store.jobs[job["id"]]["next_execution_at"]

    updated = cron_job_service.update_job(
        ORG_ID, job["id"], {"cron_expression": "59 * * * *"}, publisher
    )

    assert updated["cron_expression"] == "59 * * * *"
    assert updated["next_execution_at"].minute == 59
    assert updated["next_execution_at"] != before
    assert publisher.names()[-1] == "job:updated"


def test_update_status_to_active_resets_retry_count(store, publisher, job):
    store.jobs[job["id"]].update({"status": "failed", "retry_count": 3})

    updated = cron_job_service.update_job(
        ORG_ID, job["id"], {"status": "active"}, publisher
    )

    assert updated["status"] == "active"
    assert updated["retry_count"] == 0


def test_update_unknown_job_raises_not_found(store, publisher):
    with pytest.raises(NotFound):
        cron_job_service.update_job(ORG_ID, uuid4(), {"name": "x"}, publisher)


def test_delete_job_removes_history(store, publisher, job):
    execute_job(ORG_ID, job["id"], publisher, http_client=_mock_client(_status_handler(200)))
    assert len(store.history) == 1

    cron_job_service.delete_job(ORG_ID, job["id"], publisher)

    assert job["id"] not in store.jobs
    assert store.history == []
    assert publisher.names()[-1] == "job:deleted"

    with pytest.raises(NotFound):
        cron_job_service.delete_job(ORG_ID, job["id"], publisher)


def test_get_stats_merges_job_and_history_figures(store, publisher, job):
    client = _mock_client(_status_handler(200))
    execute_job(ORG_ID, job["id"], publisher, http_client=client)
    execute_job(ORG_ID, job["id"], publisher, http_client=client)

    stats = cron_job_service.get_stats(ORG_ID)

    assert stats["total"] == 1
    assert stats["active"] == 1
    assert stats["total_executions"] == 2
    assert stats["total_success"] == 2
    assert stats["history_count"] == 2
    assert isinstance(stats["avg_duration"], int)
