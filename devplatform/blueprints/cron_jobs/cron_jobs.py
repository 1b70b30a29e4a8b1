"""Cron job endpoints: CRUD, pause/resume, manual execution, history,
statistics and the live event stream.

Jobs are addressed by UUID; malformed ids fail the route converter and
return 404 like unknown ones.
"""


from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from flask import Blueprint, Response, g, jsonify, request

from devplatform.errors.handlers import NotFound
from devplatform.repositories import cron_history_repo, cron_jobs_repo
from devplatform.services import cron_job_service
from devplatform.services.auth_service import require_api_key
from devplatform.services.event_broker import CRON_JOBS_CHANNEL
from devplatform.validators.cron_job_validator import (
    validate_cron_job_create,
    validate_cron_job_update,
)
from devplatform.validators.query_validator import (
    pagination_meta,
    parse_choice,
    parse_csv,
    parse_datetime,
    parse_pagination,
    parse_uuid,
)
from ..streaming import event_stream_response, get_event_broker


cron_jobs_bp = Blueprint("cron_jobs", __name__, url_prefix="/cron-jobs")

JOB_STATUSES = ("active", "paused", "completed", "failed")
EXECUTION_STATUSES = ("success", "failure")


def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if value else None


def _serialize_job(row: dict) -> dict:
    """Serialize a cron job row into a JSON-safe dict."""
    return {
        "id": str(row["id"]),
        "organization_id": str(row["organization_id"]),
        "name": row["name"],
        "description": row["description"],
        "cron_expression": row["cron_expression"],
        "timezone": row["timezone"],
        "webhook_url": row["webhook_url"],
        "method": row["method"],
        "headers": row["headers"] or {},
        "body": row["body"],
        "status": row["status"],
        "retry_count": row["retry_count"],
        "max_retries": row["max_retries"],
        "timeout": row["timeout"],
        "last_executed_at": _iso(row.get("last_executed_at")),
        "next_execution_at": _iso(row.get("next_execution_at")),
        "execution_count": row["execution_count"],
        "success_count": row["success_count"],
        "failure_count": row["failure_count"],
        "tags": list(row["tags"] or []),
        "metadata": row["metadata"] or {},
        "created_at": _iso(row.get("created_at")),
        "updated_at": _iso(row.get("updated_at")),
    }


def _serialize_history(row: dict) -> dict:
    return {
        "id": str(row["id"]),
        "cron_job_id": str(row["cron_job_id"]),
        "job_name": row["job_name"],
        "executed_at": _iso(row["executed_at"]),
        "status": row["status"],
        "response_status": row["response_status"],
        "response_body": row["response_body"],
        "request_url": row["request_url"],
        "request_method": row["request_method"],
        "error": row["error"],
        "duration": row["duration"],
        "retry_attempt": row["retry_attempt"],
    }


@cron_jobs_bp.post("/")
@require_api_key
def create_job() -> tuple[Any, int]:
    """Create a cron job; ``next_execution_at`` is computed server-side."""
    job_data = validate_cron_job_create(request.get_json(silent=True))
    row = cron_job_service.create_job(g.organization_id, job_data, get_event_broker())
    return jsonify(_serialize_job(row)), 201


@cron_jobs_bp.get("/")
@require_api_key
def list_jobs() -> tuple[Any, int]:
    """
    List cron jobs, newest first.

    Query params: page, limit, status, tags (comma-separated), search.
    """
    page, limit = parse_pagination(request.args)

    rows, total = cron_jobs_repo.list_jobs(
        g.organization_id,
        limit=limit,
        offset=(page - 1) * limit,
        status=parse_choice(request.args, "status", JOB_STATUSES),
        tags=parse_csv(request.args, "tags"),
        search=request.args.get("search", "").strip() or None,
    )

    return (
        jsonify(
            {
                "data": [_serialize_job(r) for r in rows],
                "pagination": pagination_meta(page, limit, total),
            }
        ),
        200,
    )


@cron_jobs_bp.get("/stats")
@require_api_key
def get_stats() -> tuple[Any, int]:
    """Job counts, execution totals and duration figures."""
    return jsonify(cron_job_service.get_stats(g.organization_id)), 200


@cron_jobs_bp.get("/history")
@require_api_key
def list_history() -> tuple[Any, int]:
    """
    List execution records, newest first.

    Query params: page, limit, cron_job_id, status (success | failure),
    start_date / end_date (ISO 8601, inclusive).
    """
    page, limit = parse_pagination(request.args)

    rows, total = cron_history_repo.list_history(
        g.organization_id,
        limit=limit,
        offset=(page - 1) * limit,
        cron_job_id=parse_uuid(request.args, "cron_job_id"),
        status=parse_choice(request.args, "status", EXECUTION_STATUSES),
        start_date=parse_datetime(request.args, "start_date"),
        end_date=parse_datetime(request.args, "end_date"),
    )

    return (
        jsonify(
            {
                "data": [_serialize_history(r) for r in rows],
                "pagination": pagination_meta(page, limit, total),
            }
        ),
        200,
    )


@cron_jobs_bp.get("/events")
@require_api_key
def stream_events() -> Response:
    """Server-sent events: job:created, job:updated, job:toggled,
    job:deleted, job:execution:start, job:execution:complete, heartbeat."""
    return event_stream_response(CRON_JOBS_CHANNEL)


@cron_jobs_bp.get("/<uuid:job_id>")
@require_api_key
def get_job(job_id: UUID) -> tuple[Any, int]:
    row = cron_jobs_repo.get_job(g.organization_id, job_id)
    if row is None:
        raise NotFound("Cron job not found")
    return jsonify(_serialize_job(row)), 200


@cron_jobs_bp.put("/<uuid:job_id>")
@require_api_key
def update_job(job_id: UUID) -> tuple[Any, int]:
    """Partially update a job, including its status."""
    changes = validate_cron_job_update(request.get_json(silent=True))
    row = cron_job_service.update_job(
        g.organization_id, job_id, changes, get_event_broker()
    )
    return jsonify(_serialize_job(row)), 200


@cron_jobs_bp.patch("/<uuid:job_id>/toggle")
@require_api_key
def toggle_job(job_id: UUID) -> tuple[Any, int]:
    """Pause an active job or re-activate a paused/failed/completed one."""
    row = cron_job_service.toggle_job(g.organization_id, job_id, get_event_broker())
    return jsonify(_serialize_job(row)), 200


@cron_jobs_bp.post("/<uuid:job_id>/execute")
@require_api_key
def execute_job(job_id: UUID) -> tuple[Any, int]:
    """Run the job's webhook now.

    Returns 200 with ``success: false`` when the webhook itself failed;
    only an unknown job (404) or an internal fault (500) is an error.
    """
    result = cron_job_service.execute_job(
        g.organization_id, job_id, get_event_broker()
    )
    return jsonify(result), 200


@cron_jobs_bp.delete("/<uuid:job_id>")
@require_api_key
def delete_job(job_id: UUID) -> tuple[str, int]:
    """Delete a job and its execution history."""
    cron_job_service.delete_job(g.organization_id, job_id, get_event_broker())
    return "", 204
