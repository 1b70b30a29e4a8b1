"""
Validator for ``/feature-flags/evaluate`` requests using JSON Schema.

This module loads the EvaluateRequest JSON Schema once at import time and
exposes a helper to validate incoming payloads, raising BadRequest on error.
"""


from jsonschema import Draft202012Validator

from .schema_validation import load_schema, validate_payload


EVALUATE_REQUEST_SCHEMA = load_schema("EvaluateRequest.schema.json")
_VALIDATOR = Draft202012Validator(EVALUATE_REQUEST_SCHEMA)


def validate_eval_payload(payload: dict) -> None:
    """
    Validate the evaluation request body against the EvaluateRequest schema.

    ``attributes`` must be a flat map of strings: numbers, booleans or
    nested objects are rejected rather than coerced.

    Raises:
        BadRequest: If payload is not JSON or doesn't match the schema.
    """
    validate_payload(_VALIDATOR, payload, "EvaluateRequest")
