"""PostgreSQL repository for the append-only ``cron_job_history`` table."""


from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID, uuid4

from psycopg import DatabaseError, sql

from .db import get_connection


def insert_history(organization_id: UUID, entry: dict) -> dict:
    """Append one execution record.

    ``entry`` keys: ``cron_job_id``, ``job_name``, ``executed_at``,
    ``status``, ``response_status``, ``response_body``, ``request_url``,
    ``request_method``, ``error``, ``duration``, ``retry_attempt``.
    """
    query = """
        INSERT INTO cron_job_history (
            id, organization_id, cron_job_id, job_name, executed_at, status,
            response_status, response_body, request_url, request_method,
            error, duration, retry_attempt
        )
        VALUES (
            %(id)s, %(organization_id)s, %(cron_job_id)s, %(job_name)s,
            %(executed_at)s, %(status)s, %(response_status)s,
            %(response_body)s, %(request_url)s, %(request_method)s,
            %(error)s, %(duration)s, %(retry_attempt)s
        )
        RETURNING *;
    """

    params = dict(entry)
    params.update({"id": uuid4(), "organization_id": organization_id})

    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchone()
    except DatabaseError as exc:
        raise RuntimeError("Failed to store cron job history.") from exc


def list_history(
    organization_id: UUID,
    limit: int = 20,
    offset: int = 0,
    cron_job_id: Optional[UUID] = None,
    status: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Tuple[List[dict], int]:
    """List execution records newest first. Returns ``(rows, total)``."""
    conditions = [sql.SQL("organization_id = %(organization_id)s")]
    params: Dict[str, Any] = {
        "organization_id": organization_id,
        "limit": limit,
        "offset": offset,
    }

    if cron_job_id is not None:
        conditions.append(sql.SQL("cron_job_id = %(cron_job_id)s"))
        params["cron_job_id"] = cron_job_id
    if status:
        conditions.append(sql.SQL("status = %(status)s"))
        params["status"] = status
    if start_date is not None:
        conditions.append(sql.SQL("executed_at >= %(start_date)s"))
        params["start_date"] = start_date
    if end_date is not None:
        conditions.append(sql.SQL("executed_at <= %(end_date)s"))
        params["end_date"] = end_date

    where = sql.SQL(" AND ").join(conditions)

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                sql.SQL(
                    "SELECT * FROM cron_job_history WHERE {where} "
                    "ORDER BY executed_at DESC LIMIT %(limit)s OFFSET %(offset)s"
                ).format(where=where),
                params,
            )
            rows = cur.fetchall()
            cur.execute(
                sql.SQL(
                    "SELECT COUNT(*) AS total FROM cron_job_history WHERE {where}"
                ).format(where=where),
                params,
            )
            return rows, cur.fetchone()["total"]


def history_stats(organization_id: UUID) -> dict:
    """Average / max duration and record count for an organization."""
    query = """
        SELECT
            COALESCE(AVG(duration), 0) AS avg_duration,
            COALESCE(MAX(duration), 0) AS max_duration,
            COUNT(*) AS history_count
        FROM cron_job_history
        WHERE organization_id = %(organization_id)s;
    """

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(query, {"organization_id": organization_id})
            return cur.fetchone()


def purge_history_before(cutoff: datetime) -> int:
    """Delete every record created before ``cutoff`` (all tenants).

    Returns:
        int: Number of deleted rows.
    """
    query = """
        DELETE FROM cron_job_history
        WHERE created_at < %(cutoff)s;
    """

    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, {"cutoff": cutoff})
                return cur.rowcount
    except DatabaseError as exc:
        raise RuntimeError("Failed to purge cron job history.") from exc
