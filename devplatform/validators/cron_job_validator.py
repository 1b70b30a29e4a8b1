"""
Validators for cron job create/update payloads.

The cron expression check is purely syntactic: five whitespace-separated
fields, each ``*`` or made of digits, commas, hyphens and slashes. Field
ranges are not checked.
"""


import copy
from typing import Any, Dict

from jsonschema import Draft202012Validator

from .schema_validation import load_schema, validate_payload


CRON_JOB_CREATE_SCHEMA = load_schema("CronJobCreate.schema.json")
CRON_JOB_UPDATE_SCHEMA = load_schema("CronJobUpdate.schema.json")

_CREATE_VALIDATOR = Draft202012Validator(CRON_JOB_CREATE_SCHEMA)
_UPDATE_VALIDATOR = Draft202012Validator(CRON_JOB_UPDATE_SCHEMA)

CRON_JOB_DEFAULTS: Dict[str, Any] = {
    "description": "",
    "timezone": "UTC",
    "method": "GET",
    "headers": {},
    "body": "",
    "max_retries": 3,
    "timeout": 30000,
    "tags": [],
    "metadata": {},
}


def validate_cron_job_create(payload: dict) -> Dict[str, Any]:
    """
    Validate a new cron job and return it with defaults applied.

    Raises:
        BadRequest: If payload is not an object or violates the schema.
    """
    validate_payload(_CREATE_VALIDATOR, payload, "CronJobCreate")
    return {**copy.deepcopy(CRON_JOB_DEFAULTS), **payload}


def validate_cron_job_update(payload: dict) -> Dict[str, Any]:
    """
    Validate a partial cron job update (``status`` may be set directly).

    Raises:
        BadRequest: If payload is not an object or violates the schema.
    """
    validate_payload(_UPDATE_VALIDATOR, payload, "CronJobUpdate")
    return dict(payload)
