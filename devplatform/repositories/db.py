# devplatform/repositories/db.py
"""PostgreSQL connections for the repository modules.

``DATABASE_URL`` is resolved on first use rather than at import time, so
modules that never touch the database (validators, the evaluator, the
test-suite with its in-memory store) import without a configured server.
"""


from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

import psycopg
from psycopg.rows import dict_row
from dotenv import load_dotenv


load_dotenv()


def get_database_url() -> str:
    """Return ``DATABASE_URL`` from the environment.

    Raises:
        RuntimeError: If the variable is missing or empty.
    """
    url = os.getenv("DATABASE_URL", "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL is not set. Make sure .env is configured.")
    return url


@contextmanager
def get_connection() -> Iterator[psycopg.Connection]:
    """Open a connection whose cursors return ``dict`` rows.

    Leaving the block commits (or rolls back on error) and closes the
    connection. Connection failures surface as ``RuntimeError``.
    """
    try:
        conn = psycopg.connect(get_database_url(), row_factory=dict_row)
    except psycopg.OperationalError as exc:
        raise RuntimeError("Database connection failed.") from exc

    with conn:
        yield conn
