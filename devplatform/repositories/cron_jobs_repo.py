"""PostgreSQL-backed cron job repository.

Jobs live in ``cron_jobs``, scoped per organization. Every write bumps the
``version`` column so that execution bookkeeping can use optimistic
concurrency (see :func:`record_execution`).
"""


from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID, uuid4

from psycopg import DatabaseError, sql
from psycopg.types.json import Json

from .db import get_connection
from .flags_repo import escape_like


UPDATABLE_COLUMNS = (
    "name",
    "description",
    "cron_expression",
    "timezone",
    "webhook_url",
    "method",
    "headers",
    "body",
    "status",
    "retry_count",
    "max_retries",
    "timeout",
    "next_execution_at",
    "tags",
    "metadata",
)

JSON_COLUMNS = frozenset({"headers", "metadata"})

# Columns written after an execution, guarded by ``version``.
EXECUTION_COLUMNS = (
    "status",
    "retry_count",
    "execution_count",
    "success_count",
    "failure_count",
    "last_executed_at",
    "next_execution_at",
)


def _adapt(column: str, value: Any) -> Any:
    return Json(value) if column in JSON_COLUMNS else value


def create_job(organization_id: UUID, job_data: dict) -> dict:
    """Insert a new cron job.

    ``job_data`` carries every column of :data:`UPDATABLE_COLUMNS` except
    ``status`` and ``retry_count``, which start at their database defaults.
    """
    columns = [c for c in UPDATABLE_COLUMNS if c in job_data]
    query = sql.SQL(
        "INSERT INTO cron_jobs (id, organization_id, {columns}) "
        "VALUES (%(id)s, %(organization_id)s, {values}) RETURNING *"
    ).format(
        columns=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
        values=sql.SQL(", ").join(sql.Placeholder(c) for c in columns),
    )

    params = {c: _adapt(c, job_data[c]) for c in columns}
    params.update({"id": uuid4(), "organization_id": organization_id})

    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchone()
    except DatabaseError as exc:
        raise RuntimeError("Failed to create cron job.") from exc


def get_job(organization_id: UUID, job_id: UUID) -> Optional[dict]:
    """Fetch a single job for a given organization."""
    query = """
        SELECT *
        FROM cron_jobs
        WHERE organization_id = %(organization_id)s
          AND id = %(id)s;
    """

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(query, {"organization_id": organization_id, "id": job_id})
            return cur.fetchone()


def list_jobs(
    organization_id: UUID,
    limit: int = 20,
    offset: int = 0,
    status: Optional[str] = None,
    tags: Optional[List[str]] = None,
    search: Optional[str] = None,
) -> Tuple[List[dict], int]:
    """List jobs newest first. Returns ``(rows, total)``."""
    conditions = [sql.SQL("organization_id = %(organization_id)s")]
    params: Dict[str, Any] = {
        "organization_id": organization_id,
        "limit": limit,
        "offset": offset,
    }

    if status:
        conditions.append(sql.SQL("status = %(status)s"))
        params["status"] = status
    if tags:
        conditions.append(sql.SQL("tags && %(tags)s::text[]"))
        params["tags"] = tags
    if search:
        conditions.append(
            sql.SQL("(name ILIKE %(search)s OR description ILIKE %(search)s)")
        )
        params["search"] = f"%{escape_like(search)}%"

    where = sql.SQL(" AND ").join(conditions)

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                sql.SQL(
                    "SELECT * FROM cron_jobs WHERE {where} "
                    "ORDER BY created_at DESC LIMIT %(limit)s OFFSET %(offset)s"
                ).format(where=where),
                params,
            )
            rows = cur.fetchall()
            cur.execute(
                sql.SQL("SELECT COUNT(*) AS total FROM cron_jobs WHERE {where}").format(
                    where=where
                ),
                params,
            )
            return rows, cur.fetchone()["total"]


def update_job(organization_id: UUID, job_id: UUID, changes: dict) -> Optional[dict]:
    """Apply a partial update. Returns the new row or ``None`` if missing."""
    columns = [c for c in UPDATABLE_COLUMNS if c in changes]
    if not columns:
        return get_job(organization_id, job_id)

    assignments = sql.SQL(", ").join(
        sql.SQL("{} = {}").format(sql.Identifier(c), sql.Placeholder(c))
        for c in columns
    )
    query = sql.SQL(
        "UPDATE cron_jobs SET {assignments}, version = version + 1, "
        "updated_at = NOW() "
        "WHERE organization_id = %(organization_id)s AND id = %(id)s "
        "RETURNING *"
    ).format(assignments=assignments)

    params = {c: _adapt(c, changes[c]) for c in columns}
    params.update({"organization_id": organization_id, "id": job_id})

    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchone()
    except DatabaseError as exc:
        raise RuntimeError("Failed to update cron job.") from exc


def record_execution(
    organization_id: UUID, job_id: UUID, expected_version: int, state: dict
) -> Optional[dict]:
    """Persist post-execution counters if nobody changed the job meanwhile.

    Args:
        organization_id: UUID of the organization (tenant).
        job_id: UUID of the job.
        expected_version: ``version`` the caller read before computing
            ``state``.
        state: New values for :data:`EXECUTION_COLUMNS`.

    Returns:
        The updated row, or ``None`` when the version no longer matches (or
        the job is gone); the caller should re-read and retry.
    """
    query = """
        UPDATE cron_jobs
        SET status = %(status)s,
            retry_count = %(retry_count)s,
            execution_count = %(execution_count)s,
            success_count = %(success_count)s,
            failure_count = %(failure_count)s,
            last_executed_at = %(last_executed_at)s,
            next_execution_at = %(next_execution_at)s,
            version = version + 1,
            updated_at = NOW()
        WHERE organization_id = %(organization_id)s
          AND id = %(id)s
          AND version = %(expected_version)s
        RETURNING *;
    """

    params = {c: state[c] for c in EXECUTION_COLUMNS}
    params.update(
        {
            "organization_id": organization_id,
            "id": job_id,
            "expected_version": expected_version,
        }
    )

    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchone()
    except DatabaseError as exc:
        raise RuntimeError("Failed to record cron job execution.") from exc


def delete_job(organization_id: UUID, job_id: UUID) -> bool:
    """Delete a job; its history goes with it (ON DELETE CASCADE)."""
    query = """
        DELETE FROM cron_jobs
        WHERE organization_id = %(organization_id)s
          AND id = %(id)s;
    """

    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, {"organization_id": organization_id, "id": job_id})
                return cur.rowcount > 0
    except DatabaseError as exc:
        raise RuntimeError("Failed to delete cron job.") from exc


def job_stats(organization_id: UUID) -> dict:
    """Aggregate job counts and execution totals for an organization."""
    query = """
        SELECT
            COUNT(*) AS total,
            COUNT(*) FILTER (WHERE status = 'active') AS active,
            COUNT(*) FILTER (WHERE status = 'paused') AS paused,
            COUNT(*) FILTER (WHERE status = 'failed') AS failed,
            COALESCE(SUM(execution_count), 0) AS total_executions,
            COALESCE(SUM(success_count), 0) AS total_success,
            COALESCE(SUM(failure_count), 0) AS total_failures
        FROM cron_jobs
        WHERE organization_id = %(organization_id)s;
    """

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(query, {"organization_id": organization_id})
            return cur.fetchone()
