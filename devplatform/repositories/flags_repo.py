"""PostgreSQL-backed feature flag repository.

This module provides CRUD-style helpers to store and retrieve feature flags
in the ``feature_flags`` table, scoped per organization (multi-tenant).
"""


from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID, uuid4

from psycopg import DatabaseError, errors, sql
from psycopg.types.json import Json

from devplatform.errors.handlers import Conflict
from .db import get_connection


# Columns an update may touch. ``key`` is the lookup handle and stays fixed.
UPDATABLE_COLUMNS = (
    "name",
    "description",
    "status",
    "enabled",
    "rollout_type",
    "rollout_percentage",
    "target_users",
    "targeting_rules",
    "tags",
    "default_value",
    "metadata",
)

JSON_COLUMNS = frozenset({"targeting_rules", "metadata"})


def _adapt(column: str, value: Any) -> Any:
    # JSONB columns need an explicit wrapper; text[] columns take lists as-is.
    return Json(value) if column in JSON_COLUMNS else value


def escape_like(term: str) -> str:
    """Escape ``%``, ``_`` and ``\\`` for use inside an ILIKE pattern."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def create_flag(organization_id: UUID, flag_data: dict) -> dict:
    """Insert a new flag for an organization.

    ``flag_data`` must already carry every column (defaults are applied by
    the validator).

    Raises:
        Conflict: If ``(organization_id, key)`` already exists.
        RuntimeError: If the underlying database operation fails.
    """
    query = """
        INSERT INTO feature_flags (
            id, organization_id, key, name, description, status, enabled,
            rollout_type, rollout_percentage, target_users, targeting_rules,
            tags, default_value, metadata
        )
        VALUES (
            %(id)s, %(organization_id)s, %(key)s, %(name)s, %(description)s,
            %(status)s, %(enabled)s, %(rollout_type)s, %(rollout_percentage)s,
            %(target_users)s, %(targeting_rules)s, %(tags)s,
            %(default_value)s, %(metadata)s
        )
        RETURNING *;
    """

    params = {column: _adapt(column, flag_data[column]) for column in UPDATABLE_COLUMNS}
    params.update({"id": uuid4(), "organization_id": organization_id, "key": flag_data["key"]})

    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchone()
    except errors.UniqueViolation as exc:
        raise Conflict(
            f"A feature flag with key '{flag_data['key']}' already exists."
        ) from exc
    except DatabaseError as exc:
        raise RuntimeError("Failed to create feature flag.") from exc


def get_flag_by_key(organization_id: UUID, key: str) -> Optional[dict]:
    """Fetch a single flag for a given organization and flag key."""
    query = """
        SELECT *
        FROM feature_flags
        WHERE organization_id = %(organization_id)s
          AND key = %(key)s;
    """

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(query, {"organization_id": organization_id, "key": key})
            return cur.fetchone()


def list_flags(
    organization_id: UUID,
    limit: int = 20,
    offset: int = 0,
    status: Optional[str] = None,
    enabled: Optional[bool] = None,
    tags: Optional[List[str]] = None,
    search: Optional[str] = None,
) -> Tuple[List[dict], int]:
    """List flags for an organization, newest first, with filters.

    Args:
        organization_id: UUID of the organization (tenant).
        limit: Maximum number of flags to return.
        offset: Offset used for pagination.
        status: Only flags with this status.
        enabled: Only flags whose kill switch matches.
        tags: Only flags carrying at least one of these tags.
        search: Case-insensitive substring over key, name and description.

    Returns:
        ``(rows, total)`` where ``total`` ignores pagination.
    """
    conditions = [sql.SQL("organization_id = %(organization_id)s")]
    params: Dict[str, Any] = {
        "organization_id": organization_id,
        "limit": limit,
        "offset": offset,
    }

    if status:
        conditions.append(sql.SQL("status = %(status)s"))
        params["status"] = status
    if enabled is not None:
        conditions.append(sql.SQL("enabled = %(enabled)s"))
        params["enabled"] = enabled
    if tags:
        conditions.append(sql.SQL("tags && %(tags)s::text[]"))
        params["tags"] = tags
    if search:
        conditions.append(
            sql.SQL(
                "(key ILIKE %(search)s OR name ILIKE %(search)s"
                " OR description ILIKE %(search)s)"
            )
        )
        params["search"] = f"%{escape_like(search)}%"

    where = sql.SQL(" AND ").join(conditions)
    select_query = sql.SQL(
        "SELECT * FROM feature_flags WHERE {where} "
        "ORDER BY created_at DESC LIMIT %(limit)s OFFSET %(offset)s"
    ).format(where=where)
    count_query = sql.SQL(
        "SELECT COUNT(*) AS total FROM feature_flags WHERE {where}"
    ).format(where=where)

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(select_query, params)
            rows = cur.fetchall()
            cur.execute(count_query, params)
            total = cur.fetchone()["total"]
            return rows, total


def update_flag(organization_id: UUID, key: str, changes: dict) -> Optional[dict]:
    """Apply a partial update to a flag.

    Unknown keys in ``changes`` are ignored.

    Returns:
        The updated row, or ``None`` when the flag does not exist.
    """
    columns = [column for column in UPDATABLE_COLUMNS if column in changes]
    if not columns:
        return get_flag_by_key(organization_id, key)

    assignments = sql.SQL(", ").join(
        sql.SQL("{} = {}").format(sql.Identifier(column), sql.Placeholder(column))
        for column in columns
    )
    query = sql.SQL(
        "UPDATE feature_flags SET {assignments}, updated_at = NOW() "
        "WHERE organization_id = %(organization_id)s AND key = %(key)s "
        "RETURNING *"
    ).format(assignments=assignments)

    params = {column: _adapt(column, changes[column]) for column in columns}
    params.update({"organization_id": organization_id, "key": key})

    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchone()
    except DatabaseError as exc:
        raise RuntimeError("Failed to update feature flag.") from exc


def toggle_flag(organization_id: UUID, key: str) -> Optional[dict]:
    """Flip the ``enabled`` kill switch in a single statement."""
    query = """
        UPDATE feature_flags
        SET enabled = NOT enabled,
            updated_at = NOW()
        WHERE organization_id = %(organization_id)s
          AND key = %(key)s
        RETURNING *;
    """

    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, {"organization_id": organization_id, "key": key})
                return cur.fetchone()
    except DatabaseError as exc:
        raise RuntimeError("Failed to toggle feature flag.") from exc


def delete_flag(organization_id: UUID, key: str) -> bool:
    """Delete a flag. Returns whether a row was removed."""
    query = """
        DELETE FROM feature_flags
        WHERE organization_id = %(organization_id)s
          AND key = %(key)s;
    """

    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, {"organization_id": organization_id, "key": key})
                return cur.rowcount > 0
    except DatabaseError as exc:
        raise RuntimeError("Failed to delete feature flag.") from exc


def flag_stats(organization_id: UUID) -> dict:
    """Count flags per status and kill-switch state."""
    query = """
        SELECT
            COUNT(*) AS total,
            COUNT(*) FILTER (WHERE status = 'active') AS active,
            COUNT(*) FILTER (WHERE status = 'inactive') AS inactive,
            COUNT(*) FILTER (WHERE status = 'archived') AS archived,
            COUNT(*) FILTER (WHERE enabled) AS enabled
        FROM feature_flags
        WHERE organization_id = %(organization_id)s;
    """

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(query, {"organization_id": organization_id})
            row = cur.fetchone()

    return {**row, "disabled": row["total"] - row["enabled"]}
