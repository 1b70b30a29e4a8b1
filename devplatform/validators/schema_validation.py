"""
Shared JSON Schema helpers for request validation.

Schemas live in ``devplatform/schemas`` and are also served by the docs
blueprint, so the files double as public API documentation.
"""


from pathlib import Path
import json
from typing import Any, Dict

from jsonschema import Draft202012Validator, ValidationError
from jsonschema.exceptions import best_match

from devplatform.errors.handlers import BadRequest


# Resolve schema directory
SCHEMAS_DIR = Path(__file__).resolve().parent.parent / "schemas"


def load_schema(filename: str) -> Dict[str, Any]:
    """Load a schema file from ``SCHEMAS_DIR``."""
    with (SCHEMAS_DIR / filename).open("r", encoding="utf-8") as f:
        return json.load(f)


def _field_path(error: ValidationError) -> str | None:
    path = list(error.absolute_path)
    if error.validator == "required":
        # The missing property is named in the message, not in the path.
        missing = error.message.split("'")[1] if "'" in error.message else None
        if missing:
            path.append(missing)
    if error.validator == "additionalProperties" and "'" in error.message:
        path.append(error.message.split("'")[1])
    return ".".join(str(part) for part in path) or None


def validate_payload(
    validator: Draft202012Validator, payload: Any, label: str
) -> None:
    """
    Validate a parsed JSON body against a compiled schema.

    Args:
        validator: Compiled validator for the expected schema.
        payload: Parsed JSON body.
        label: Name of the contract, used in error messages.

    Raises:
        BadRequest: If payload is not an object or violates the schema.
    """
    if not isinstance(payload, dict):
        raise BadRequest("Body must be a JSON object.")

    error = best_match(validator.iter_errors(payload))
    if error is not None:
        field = _field_path(error)
        raise BadRequest(f"Invalid {label}: {error.message}", field=field)
