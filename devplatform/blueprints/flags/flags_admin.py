# devplatform/blueprints/flags/flags_admin.py
"""Feature flag management endpoints.

Provides CRUD, toggling, statistics and a change-event stream for the
feature flags of the authenticated organization. Flags are addressed by
their key, which is unique per organization.
"""


from __future__ import annotations

from typing import Any

from flask import Blueprint, Response, g, jsonify, request

from devplatform.errors.handlers import NotFound
from devplatform.repositories import flags_repo
from devplatform.services.auth_service import require_api_key
from devplatform.services.event_broker import FEATURE_FLAGS_CHANNEL
from devplatform.validators.flag_config_validator import (
    validate_flag_create,
    validate_flag_update,
)
from devplatform.validators.query_validator import (
    pagination_meta,
    parse_bool,
    parse_choice,
    parse_csv,
    parse_pagination,
)
from ..streaming import event_stream_response, get_event_broker


flags_admin_bp = Blueprint("flags_admin", __name__, url_prefix="/feature-flags")

FLAG_STATUSES = ("active", "inactive", "archived")


def _serialize_flag(row: dict) -> dict:
    """Serialize a flag row (dict_row from psycopg) into a JSON-safe dict."""
    return {
        "id": str(row["id"]),
        "organization_id": str(row["organization_id"]),
        "key": row["key"],
        "name": row["name"],
        "description": row["description"],
        "status": row["status"],
        "enabled": row["enabled"],
        "rollout_type": row["rollout_type"],
        "rollout_percentage": row["rollout_percentage"],
        "target_users": list(row["target_users"] or []),
        "targeting_rules": row["targeting_rules"] or [],
        "tags": list(row["tags"] or []),
        "default_value": row["default_value"],
        "metadata": row["metadata"] or {},
        "created_at": (
            row["created_at"].isoformat() if row.get("created_at") else None
        ),
        "updated_at": (
            row["updated_at"].isoformat() if row.get("updated_at") else None
        ),
    }


def _announce(event: str, row: dict) -> None:
    get_event_broker().publish(
        str(g.organization_id),
        FEATURE_FLAGS_CHANNEL,
        event,
        {
            "key": row["key"],
            "name": row["name"],
            "enabled": row["enabled"],
            "status": row["status"],
        },
    )


@flags_admin_bp.post("/")
@require_api_key
def create_flag() -> tuple[Any, int]:
    """Create a flag for the authenticated organization.

    - Validates the payload against ``FlagCreate.schema.json``.
    - Returns 409 if the key is already used by this organization.

    Returns:
        tuple: (JSON flag representation, 201).
    """
    payload = request.get_json(silent=True)
    flag_data = validate_flag_create(payload)

    row = flags_repo.create_flag(g.organization_id, flag_data)
    _announce("flag:created", row)

    return jsonify(_serialize_flag(row)), 201


@flags_admin_bp.get("/")
@require_api_key
def list_flags() -> tuple[Any, int]:
    """
    List flags for the authenticated organization, newest first.

    Query params:
        - page (default 1), limit (default 20, max 100)
        - status: active | inactive | archived
        - enabled: true | false
        - tags: comma-separated, matches flags carrying any of them
        - search: substring of key, name or description

    Returns:
        tuple: ({"data": [...], "pagination": {...}}, 200).
    """
    page, limit = parse_pagination(request.args)

    rows, total = flags_repo.list_flags(
        g.organization_id,
        limit=limit,
        offset=(page - 1) * limit,
        status=parse_choice(request.args, "status", FLAG_STATUSES),
        enabled=parse_bool(request.args, "enabled"),
        tags=parse_csv(request.args, "tags"),
        search=request.args.get("search", "").strip() or None,
    )

    return (
        jsonify(
            {
                "data": [_serialize_flag(r) for r in rows],
                "pagination": pagination_meta(page, limit, total),
            }
        ),
        200,
    )


@flags_admin_bp.get("/stats")
@require_api_key
def get_stats() -> tuple[Any, int]:
    """Counts of flags per status and per kill-switch state."""
    return jsonify(flags_repo.flag_stats(g.organization_id)), 200


@flags_admin_bp.get("/events")
@require_api_key
def stream_events() -> Response:
    """Server-sent events for flag changes of the organization."""
    return event_stream_response(FEATURE_FLAGS_CHANNEL)


@flags_admin_bp.get("/<string:key>")
@require_api_key
def get_flag(key: str) -> tuple[Any, int]:
    """Retrieve a flag by its key; 404 if it does not exist."""
    row = flags_repo.get_flag_by_key(g.organization_id, key)
    if row is None:
        raise NotFound("Feature flag not found")

    return jsonify(_serialize_flag(row)), 200


@flags_admin_bp.put("/<string:key>")
@require_api_key
def update_flag(key: str) -> tuple[Any, int]:
    """Partially update a flag. The key itself cannot change."""
    changes = validate_flag_update(request.get_json(silent=True))

    row = flags_repo.update_flag(g.organization_id, key, changes)
    if row is None:
        raise NotFound("Feature flag not found")

    _announce("flag:updated", row)
    return jsonify(_serialize_flag(row)), 200


@flags_admin_bp.patch("/<string:key>/toggle")
@require_api_key
def toggle_flag(key: str) -> tuple[Any, int]:
    """Flip the flag's ``enabled`` kill switch."""
    row = flags_repo.toggle_flag(g.organization_id, key)
    if row is None:
        raise NotFound("Feature flag not found")

    _announce("flag:toggled", row)
    return jsonify(_serialize_flag(row)), 200


@flags_admin_bp.delete("/<string:key>")
@require_api_key
def delete_flag(key: str) -> tuple[str, int]:
    """Delete a flag by its key.

    Returns:
        tuple: ("", 204) on success; 404 if the flag does not exist.
    """
    if not flags_repo.delete_flag(g.organization_id, key):
        raise NotFound("Feature flag not found")

    get_event_broker().publish(
        str(g.organization_id), FEATURE_FLAGS_CHANNEL, "flag:deleted", {"key": key}
    )
    return "", 204
