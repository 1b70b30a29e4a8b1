"""Runtime evaluation endpoint for feature flags.

This blueprint exposes the public ``/feature-flags/evaluate`` API used by
client applications to check whether a flag is enabled for a given user
context.
"""

from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify, g, request

from devplatform.repositories import flags_repo
from devplatform.services.auth_service import require_api_key
from devplatform.services.flag_service import evaluate_flag
from devplatform.validators.evaluate_validator import validate_eval_payload


evaluate_bp = Blueprint("evaluate_bp", __name__, url_prefix="/feature-flags")


@evaluate_bp.post("/evaluate")
@require_api_key
def post_evaluate() -> tuple[Any, int]:
    """Evaluate a flag for a user (public API).

    Request JSON body (EvaluateRequest):
        {
            "key": "string",
            "user_id": "string",          (optional)
            "attributes": {"k": "v", ...} (optional, strings only)
        }

    Behaviour:
        - Requires a valid ``X-Api-Key`` header (tenant authentication).
        - Looks up the flag for the authenticated organization.
        - An unknown key is not an error: the response is 200 with
            ``enabled: false`` and ``reason: "flag_not_found"``.

    Returns:
        A tuple ``(response, 200)`` where ``response`` follows
        ``EvaluateResponse.schema.json``.
    """
    payload = request.get_json(silent=True)
    validate_eval_payload(payload)

    key = payload["key"]
    row = flags_repo.get_flag_by_key(g.organization_id, key)

    result = evaluate_flag(
        flag=row,
        key=key,
        user_id=payload.get("user_id"),
        attributes=payload.get("attributes"),
    )

    return jsonify(result), 200
