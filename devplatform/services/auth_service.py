# devplatform/services/auth_service.py

"""
Authentication helpers and decorators.

Every tenant-scoped endpoint authenticates with an organization API key
sent in the ``X-Api-Key`` header.
"""

from __future__ import annotations

from functools import wraps
from typing import Callable, Optional, TypeVar, cast

from flask import g, request

from devplatform.errors.handlers import Unauthorized
from devplatform.services.organizations_service import (
    Organization,
    resolve_organization_by_api_key,
)


F = TypeVar("F", bound=Callable[..., object])


def get_current_organization() -> Optional[Organization]:
    """Return the organization attached by :func:`require_api_key`, if any."""
    return getattr(g, "organization", None)


def require_api_key(func: F) -> F:
    """Flask view decorator that enforces API key authentication.

    Behaviour:
        - Reads the ``X-Api-Key`` header from the request.
        - Uses :func:`resolve_organization_by_api_key` to resolve the tenant.
        - If invalid or missing -> raises :class:`Unauthorized` (401 JSON).
        - If valid -> stores ``organization`` and ``organization_id`` on
            ``flask.g`` and calls the wrapped view.

    Usage example:

        @bp.get("/")
        @require_api_key
        def list_flags():
            organization_id = g.organization_id  # UUID
            ...
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        api_key = request.headers.get("X-Api-Key", "").strip()

        organization = resolve_organization_by_api_key(api_key)
        if organization is None:
            raise Unauthorized(
                "Invalid or missing API key", code="auth.api_key_invalid"
            )

        g.organization = organization
        g.organization_id = organization.id

        return func(*args, **kwargs)

    return cast(F, wrapper)
