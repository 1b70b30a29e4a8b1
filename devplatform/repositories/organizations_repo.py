# devplatform/repositories/organizations_repo.py
"""PostgreSQL repository helpers for the `organizations` table.

This module contains low-level data access functions for creating and
retrieving organizations (tenants). Business rules and validation live in
the `services.organizations_service` layer.
"""


from __future__ import annotations

from typing import Optional
from uuid import UUID, uuid4

from psycopg import DatabaseError, errors

from devplatform.errors.handlers import Conflict
from .db import get_connection


def create_organization(
    name: str,
    email: str,
    password_hash: str,
    api_key_hash: str,
) -> dict:
    """Insert a new organization into the database.

    The UUID is generated in Python (uuid4); the database sets `active`
    (DEFAULT TRUE) and `created_at` (DEFAULT NOW()).

    Args:
        name: Display name of the organization.
        email: Owner email address (must be unique).
        password_hash: Bcrypt-hashed password string.
        api_key_hash: SHA-256 hash of the organization's API key.

    Returns:
        The newly created organization record as a dictionary.

    Raises:
        Conflict: If the email is already registered.
        RuntimeError: If the underlying database operation fails.
    """
    sql = """
        INSERT INTO organizations (
            id,
            name,
            email,
            password_hash,
            api_key_hash
        )
        VALUES (
            %(id)s,
            %(name)s,
            %(email)s,
            %(password_hash)s,
            %(api_key_hash)s
        )
        RETURNING *;
    """

    params = {
        "id": uuid4(),
        "name": name,
        "email": email,
        "password_hash": password_hash,
        "api_key_hash": api_key_hash,
    }

    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                return cur.fetchone()
    except errors.UniqueViolation as exc:
        raise Conflict(f"Email '{email}' is already registered.") from exc
    except DatabaseError as exc:
        raise RuntimeError("Failed to create organization.") from exc


def get_organization_by_id(organization_id: UUID) -> Optional[dict]:
    """Fetch an organization by its UUID."""
    sql = """
        SELECT *
        FROM organizations
        WHERE id = %(id)s;
    """

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(sql, {"id": organization_id})
            return cur.fetchone()


def get_organization_by_email(email: str) -> Optional[dict]:
    """Fetch an organization by its owner email address."""
    sql = """
        SELECT *
        FROM organizations
        WHERE email = %(email)s;
    """

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(sql, {"email": email})
            return cur.fetchone()


def get_organization_by_api_key_hash(api_key_hash: str) -> Optional[dict]:
    """Fetch an organization by its API key hash.

    Args:
        api_key_hash: The SHA-256 hash of the organization's API key.

    Returns:
        The organization record as a dictionary if found, otherwise None.
    """
    sql = """
        SELECT *
        FROM organizations
        WHERE api_key_hash = %(api_key_hash)s;
    """

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(sql, {"api_key_hash": api_key_hash})
            return cur.fetchone()


def update_api_key_hash(organization_id: UUID, api_key_hash: str) -> Optional[dict]:
    """Replace the stored API key hash, invalidating the previous key.

    Returns:
        The updated organization record, or None if it no longer exists.
    """
    sql = """
        UPDATE organizations
        SET api_key_hash = %(api_key_hash)s
        WHERE id = %(id)s
        RETURNING *;
    """

    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    sql, {"id": organization_id, "api_key_hash": api_key_hash}
                )
                return cur.fetchone()
    except DatabaseError as exc:
        raise RuntimeError("Failed to rotate API key.") from exc
