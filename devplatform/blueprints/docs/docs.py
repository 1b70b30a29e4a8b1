"""Documentation endpoints: OpenAPI document, JSON schemas, Swagger UI.

The JSON schemas served here are the very files the request validators
load, so the published contract cannot drift from the enforced one.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from flask import Blueprint, current_app, jsonify, send_from_directory

# Absolute routes: /openapi.yaml, /schemas/, /schemas/*, /docs
docs_bp = Blueprint("docs_bp", __name__)

SWAGGER_UI_PAGE = """
<!doctype html>
<html>
<head>
    <meta charset="utf-8"/>
    <title>Developer Platform API Docs</title>
    <link rel="stylesheet"
          href="https://unpkg.com/swagger-ui-dist/swagger-ui.css"/>
</head>
<body>
    <div id="swagger-ui"></div>
    <script src="https://unpkg.com/swagger-ui-dist/swagger-ui-bundle.js"></script>
    <script>
    window.ui = SwaggerUIBundle({url: '/openapi.yaml', dom_id: '#swagger-ui'});
    </script>
</body>
</html>
"""


def _package_dir(name: str) -> Path:
    # resolved at request time
    return Path(current_app.root_path) / name


def _serve(directory: Path, filename: str, mimetype: str) -> Any:
    """Stream ``directory/filename`` or answer with a JSON 404."""
    if not (directory / filename).is_file():
        return jsonify({"error": "NotFound", "detail": filename}), 404
    return send_from_directory(directory, filename, mimetype=mimetype)


@docs_bp.get("/openapi.yaml")
def get_openapi_yaml() -> Any:
    """Serve ``devplatform/docs/openapi.yaml`` as ``text/yaml``."""
    return _serve(_package_dir("docs"), "openapi.yaml", "text/yaml")


@docs_bp.get("/schemas/")
def list_schema_files() -> Any:
    """List the schema files available under ``/schemas/``."""
    names = sorted(p.name for p in _package_dir("schemas").glob("*.schema.json"))
    return jsonify({"schemas": names})


@docs_bp.get("/schemas/<path:filename>")
def get_schema_file(filename: str) -> Any:
    """Serve one JSON schema referenced by the OpenAPI document."""
    return _serve(_package_dir("schemas"), filename, "application/json")


@docs_bp.get("/docs")
def swagger_ui() -> tuple[str, int, dict[str, str]]:
    """Serve a minimal Swagger UI pointing to ``/openapi.yaml``."""
    return SWAGGER_UI_PAGE, 200, {"Content-Type": "text/html; charset=utf-8"}
