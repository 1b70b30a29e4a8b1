# devplatform/services/organizations_service.py
"""Organization (tenant) domain model and credential helpers.

This module centralizes:
- The Organization dataclass (internal representation of a tenant).
- Password hashing/verification (bcrypt).
- API key generation + hashing.
- Registration, lookup and API key rotation.
"""


from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

import bcrypt

from devplatform.errors.handlers import Conflict
from devplatform.repositories import organizations_repo


API_KEY_PREFIX = "dp_live_"


@dataclass(frozen=True)
class Organization:
    """Domain model for a tenant.

    We never store or expose password_hash or api_key_hash on this model.
    """
    id: UUID
    name: str
    email: str
    active: bool
    created_at: datetime


class OrganizationAlreadyExistsError(Conflict):
    """Raised when registering an organization with an existing email."""


def hash_password(plain_password: str) -> str:
    """Hash a plaintext password using bcrypt.

    Raises:
        ValueError: If the password is empty.
    """
    if not plain_password:
        raise ValueError("Password cannot be empty.")

    hashed = bcrypt.hashpw(plain_password.encode("utf-8"), bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plaintext password against a bcrypt hash."""
    if not plain_password or not password_hash:
        return False

    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"), password_hash.encode("utf-8")
        )
    except ValueError:
        # Malformed stored hash
        return False


def generate_api_key() -> str:
    """Generate a new API key: ``"dp_live_<random_urlsafe_token>"``.

    The plaintext value is returned ONCE to the caller; only its hash is
    persisted.
    """
    return f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"


def hash_api_key(api_key: str) -> str:
    """Hash the API key using SHA-256 (hex digest)."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def _row_to_organization(row: dict) -> Organization:
    return Organization(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        active=row["active"],
        created_at=row["created_at"],
    )


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def register_organization(
    name: str, email: str, password: str
) -> tuple[Organization, str]:
    """Register a new organization.

    Steps:
        - Normalize and validate name and email.
        - Check if email is already in use.
        - Hash password with bcrypt.
        - Generate an API key (plaintext) and hash it (SHA-256).
        - Persist via ``organizations_repo.create_organization(...)``.

    Raises:
        OrganizationAlreadyExistsError: If the email is already registered.
        ValueError: For an invalid name, email or an empty password.

    Returns:
        tuple[Organization, str]: The organization and its plaintext API key.
    """
    normalized_name = (name or "").strip()
    if not normalized_name:
        raise ValueError("Organization name cannot be empty.")

    normalized_email = _normalize_email(email)
    if "@" not in normalized_email:
        raise ValueError("Invalid email format.")

    if not password:
        raise ValueError("Password cannot be empty.")

    if organizations_repo.get_organization_by_email(normalized_email) is not None:
        raise OrganizationAlreadyExistsError(
            f"Email '{normalized_email}' is already registered."
        )

    api_key_plain = generate_api_key()
    row = organizations_repo.create_organization(
        name=normalized_name,
        email=normalized_email,
        password_hash=hash_password(password),
        api_key_hash=hash_api_key(api_key_plain),
    )

    return _row_to_organization(row), api_key_plain


def resolve_organization_by_api_key(api_key: str) -> Optional[Organization]:
    """Resolve an organization from a given API key.

    Returns ``None`` (rather than raising) for missing keys, keys with the
    wrong prefix, unknown keys and inactive organizations, so the HTTP layer
    can translate it to a 401.
    """
    if not api_key or not api_key.startswith(API_KEY_PREFIX):
        return None

    row = organizations_repo.get_organization_by_api_key_hash(hash_api_key(api_key))
    if row is None or not row.get("active", False):
        return None

    return _row_to_organization(row)


def authenticate_organization(email: str, password: str) -> Optional[Organization]:
    """Check owner credentials without leaking whether the email exists."""
    row = organizations_repo.get_organization_by_email(_normalize_email(email))
    if row is None:
        return None

    if not verify_password(password, row["password_hash"]):
        return None

    if not row["active"]:
        return None

    return _row_to_organization(row)


def rotate_api_key(email: str, password: str) -> Optional[tuple[Organization, str]]:
    """Issue a new API key for the organization owning these credentials.

    The previous key stops resolving as soon as the new hash is stored.

    Returns:
        ``(organization, api_key_plaintext)`` or ``None`` on bad credentials.
    """
    organization = authenticate_organization(email, password)
    if organization is None:
        return None

    api_key_plain = generate_api_key()
    row = organizations_repo.update_api_key_hash(
        organization.id, hash_api_key(api_key_plain)
    )
    if row is None:
        return None

    return _row_to_organization(row), api_key_plain
