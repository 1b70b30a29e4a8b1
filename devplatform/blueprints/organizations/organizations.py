"""Organization endpoints (signup, profile, API key rotation)."""


from __future__ import annotations

from flask import Blueprint, Response, g, jsonify, request

from devplatform.services.auth_service import require_api_key
from devplatform.services.organizations_service import (
    Organization,
    OrganizationAlreadyExistsError,
    register_organization,
    rotate_api_key,
)


organizations_bp = Blueprint(
    "organizations_bp",
    __name__,
    url_prefix="/organizations",
)


def _organization_to_dict(organization: Organization) -> dict:
    """Serialize an Organization into a JSON-safe dict.

    We never expose password_hash or api_key_hash.
    """
    return {
        "id": str(organization.id),
        "name": organization.name,
        "email": organization.email,
        "active": organization.active,
        "created_at": organization.created_at.isoformat(),
    }


@organizations_bp.post("/signup")
def post_signup() -> tuple[Response, int]:
    """Register a new organization (tenant).

    Body JSON:
    {
        "name": "Acme",
        "email": "owner@example.com",
        "password": "plain-text-password"
    }

    Behaviour:
        - 201 + { "organization": {...}, "api_key": "<plaintext>" } on success
        - 400 if name/email/password are invalid
        - 409 if the email already exists
    """
    payload = request.get_json(silent=True) or {}

    name = str(payload.get("name") or "").strip()
    email = str(payload.get("email") or "").strip()
    password = str(payload.get("password") or "")

    if not name:
        return (
            jsonify({
                "error": "Organization name cannot be empty.",
                "code": "organizations.invalid_name",
                }
            ),
            400,
        )

    if not email or "@" not in email:
        return (
            jsonify({
                "error": "Invalid email address provided.",
                "code": "organizations.invalid_email",
                }
            ),
            400,
        )

    if not password:
        return (
            jsonify({
                "error": "Password cannot be empty.",
                "code": "organizations.invalid_password",
                }
            ),
            400,
        )

    try:
        organization, api_key_plain = register_organization(
            name=name, email=email, password=password
        )
    except OrganizationAlreadyExistsError:
        return (
            jsonify(
                {
                    "error": "Email already registered",
                    "code": "organizations.email_conflict",
                }
            ),
            409,
        )
    except ValueError as e:
        return (
            jsonify(
                {
                    "error": str(e),
                    "code": "organizations.invalid_input",
                }
            ),
            400,
        )

    response_body = {
        "organization": _organization_to_dict(organization),
        # The plaintext API key is only ever returned here and on rotation.
        "api_key": api_key_plain,
    }

    return jsonify(response_body), 201


@organizations_bp.get("/me")
@require_api_key
def get_current_organization_profile() -> tuple[Response, int]:
    """Fetch the profile of the organization owning the ``X-Api-Key``."""
    return jsonify({"organization": _organization_to_dict(g.organization)}), 200


@organizations_bp.post("/api-key")
def post_rotate_api_key() -> tuple[Response, int]:
    """Issue a new API key after checking the owner's credentials.

    Body JSON: {"email": "...", "password": "..."}

    Behaviour:
        - 200 + { "organization": {...}, "api_key": "<new plaintext>" }
        - 400 when a credential is missing
        - 401 on bad credentials, without saying which part was wrong
    """
    data = request.get_json(silent=True) or {}

    email = str(data.get("email", "")).strip()
    password = str(data.get("password", ""))

    if not email or not password:
        return (
            jsonify(
                {
                    "error": "Email and password are required.",
                    "code": "auth.missing_credentials",
                }
            ),
            400,
        )

    rotated = rotate_api_key(email=email, password=password)
    if rotated is None:
        return (
            jsonify(
                {
                    "error": "Invalid email or password.",
                    "code": "auth.invalid_credentials",
                }
            ),
            401,
        )

    organization, api_key_plain = rotated
    return (
        jsonify(
            {
                "organization": _organization_to_dict(organization),
                "api_key": api_key_plain,
            }
        ),
        200,
    )
