# devplatform/errors/handlers.py
"""Domain exceptions and their JSON rendering.

Services and repositories raise the :class:`ApiError` subclasses below;
:func:`register_error_handlers` turns them (and any other failure) into
JSON bodies so clients never receive an HTML error page.
"""


from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException


logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Base class for errors that map onto an HTTP status code."""

    status_code = 500
    error = "InternalServerError"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "detail": self.detail}


class BadRequest(ApiError):
    """Invalid payload or query string (HTTP 400).

    Attributes:
        detail: Human-readable description of the error.
        field: Dotted path of the offending field, when known.
    """

    status_code = 400
    error = "BadRequest"

    def __init__(self, detail: str, field: Optional[str] = None) -> None:
        super().__init__(detail)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.field:
            body["field"] = self.field
        return body


class Unauthorized(ApiError):
    """Missing or invalid credentials (HTTP 401).

    The body carries a machine-readable ``code`` next to the message.
    """

    status_code = 401
    error = "Unauthorized"

    def __init__(self, detail: str, code: str) -> None:
        super().__init__(detail)
        self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.detail, "code": self.code}


class NotFound(ApiError):
    """Unknown resource for the current organization (HTTP 404)."""

    status_code = 404
    error = "NotFound"


class Conflict(ApiError):
    """Uniqueness violation, e.g. a reused flag key (HTTP 409)."""

    status_code = 409
    error = "Conflict"


def register_error_handlers(app: Flask) -> None:
    """Attach the JSON error handlers to ``app``.

    Args:
        app: The Flask application instance to configure.
    """

    @app.errorhandler(ApiError)
    def _on_api_error(err: ApiError) -> tuple[Any, int]:
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(HTTPException)
    def _on_http_exception(err: HTTPException) -> tuple[Any, int]:
        """Routing errors and aborts (404 on unknown URLs, 405, ...)."""
        return (
            jsonify({"error": err.name or "HTTPException", "detail": err.description}),
            err.code or 500,
        )

    @app.errorhandler(Exception)
    def _on_unexpected(err: Exception) -> tuple[Any, int]:
        logger.exception("Unhandled error: %s", err)
        return (
            jsonify(
                {
                    "error": "InternalServerError",
                    "detail": "An unexpected error occurred.",
                }
            ),
            500,
        )
