"""
Validators for feature flag create/update payloads.

Create payloads get the documented defaults filled in after validation so
that the repository always receives every column.
"""


import copy
from typing import Any, Dict

from jsonschema import Draft202012Validator

from .schema_validation import load_schema, validate_payload


FLAG_CREATE_SCHEMA = load_schema("FlagCreate.schema.json")
FLAG_UPDATE_SCHEMA = load_schema("FlagUpdate.schema.json")

_CREATE_VALIDATOR = Draft202012Validator(FLAG_CREATE_SCHEMA)
_UPDATE_VALIDATOR = Draft202012Validator(FLAG_UPDATE_SCHEMA)

FLAG_DEFAULTS: Dict[str, Any] = {
    "description": "",
    "status": "active",
    "enabled": False,
    "rollout_type": "boolean",
    "rollout_percentage": 100,
    "target_users": [],
    "targeting_rules": [],
    "tags": [],
    "default_value": False,
    "metadata": {},
}


def validate_flag_create(payload: dict) -> Dict[str, Any]:
    """
    Validate a new flag and return it with defaults applied.

    Raises:
        BadRequest: If payload is not an object or violates the schema.
    """
    validate_payload(_CREATE_VALIDATOR, payload, "FlagCreate")
    return {**copy.deepcopy(FLAG_DEFAULTS), **payload}


def validate_flag_update(payload: dict) -> Dict[str, Any]:
    """
    Validate a partial flag update. ``key`` cannot be changed.

    Raises:
        BadRequest: If payload is not an object or violates the schema.
    """
    validate_payload(_UPDATE_VALIDATOR, payload, "FlagUpdate")
    return dict(payload)
