# devplatform/tests/conftest.py
"""
Shared fixtures for the developer platform test-suite.

The repositories are swapped for an in-memory store (via monkeypatch), so
the whole Flask stack (blueprints, validators, services, error handlers)
runs without PostgreSQL.
"""


from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID, uuid4

import pytest

from devplatform.app import create_app
from devplatform.errors.handlers import Conflict
from devplatform.repositories import (
    cron_history_repo,
    cron_jobs_repo,
    flags_repo,
    organizations_repo,
)
from devplatform.services.organizations_service import register_organization


class InMemoryStore:
    """Dict-backed stand-in for the PostgreSQL repositories.

    Rows are plain dicts shaped like psycopg ``dict_row`` results.
    """

    def __init__(self) -> None:
        self.organizations: Dict[UUID, dict] = {}
        self.flags: Dict[Tuple[UUID, str], dict] = {}
        self.jobs: Dict[UUID, dict] = {}
        self.history: List[dict] = []
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _tick(self) -> datetime:
        # strictly increasing timestamps keep "newest first" deterministic
        self._clock += timedelta(seconds=1)
        return self._clock

    # ---------- organizations ----------

    def create_organization(self, name, email, password_hash, api_key_hash):
        if any(o["email"] == email for o in self.organizations.values()):
            raise Conflict(f"Email '{email}' is already registered.")
        row = {
            "id": uuid4(),
            "name": name,
            "email": email,
            "password_hash": password_hash,
            "api_key_hash": api_key_hash,
            "active": True,
            "created_at": self._tick(),
        }
        self.organizations[row["id"]] = row
        return dict(row)

    def get_organization_by_id(self, organization_id):
        row = self.organizations.get(organization_id)
        return dict(row) if row else None

    def get_organization_by_email(self, email):
        for row in self.organizations.values():
            if row["email"] == email:
                return dict(row)
        return None

    def get_organization_by_api_key_hash(self, api_key_hash):
        for row in self.organizations.values():
            if row["api_key_hash"] == api_key_hash:
                return dict(row)
        return None

    def update_api_key_hash(self, organization_id, api_key_hash):
        row = self.organizations.get(organization_id)
        if row is None:
            return None
        row["api_key_hash"] = api_key_hash
        return dict(row)

    # ---------- feature flags ----------

    def create_flag(self, organization_id, flag_data):
        slot = (organization_id, flag_data["key"])
        if slot in self.flags:
            raise Conflict(f"Flag key '{flag_data['key']}' already exists.")
        now = self._tick()
        row = {
            **copy.deepcopy(flag_data),
            "id": uuid4(),
            "organization_id": organization_id,
            "created_at": now,
            "updated_at": now,
        }
        self.flags[slot] = row
        return copy.deepcopy(row)

    def get_flag_by_key(self, organization_id, key):
        row = self.flags.get((organization_id, key))
        return copy.deepcopy(row) if row else None

    def list_flags(
        self,
        organization_id,
        limit=20,
        offset=0,
        status=None,
        enabled=None,
        tags=None,
        search=None,
    ):
        rows = [r for (org, _), r in self.flags.items() if org == organization_id]
        if status:
            rows = [r for r in rows if r["status"] == status]
        if enabled is not None:
            rows = [r for r in rows if r["enabled"] is enabled]
        if tags:
            rows = [r for r in rows if set(tags) & set(r["tags"])]
        if search:
            term = search.lower()
            rows = [
                r
                for r in rows
                if any(term in (r[f] or "").lower() for f in ("key", "name", "description"))
            ]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return copy.deepcopy(rows[offset:offset + limit]), len(rows)

    def update_flag(self, organization_id, key, changes):
        row = self.flags.get((organization_id, key))
        if row is None:
            return None
        row.update(copy.deepcopy(changes))
        row["updated_at"] = self._tick()
        return copy.deepcopy(row)

    def toggle_flag(self, organization_id, key):
        row = self.flags.get((organization_id, key))
        if row is None:
            return None
        row["enabled"] = not row["enabled"]
        row["updated_at"] = self._tick()
        return copy.deepcopy(row)

    def delete_flag(self, organization_id, key):
        return self.flags.pop((organization_id, key), None) is not None

    def flag_stats(self, organization_id):
        rows = [r for (org, _), r in self.flags.items() if org == organization_id]
        enabled = sum(1 for r in rows if r["enabled"])
        return {
            "total": len(rows),
            "active": sum(1 for r in rows if r["status"] == "active"),
            "inactive": sum(1 for r in rows if r["status"] == "inactive"),
            "archived": sum(1 for r in rows if r["status"] == "archived"),
            "enabled": enabled,
            "disabled": len(rows) - enabled,
        }

    # ---------- cron jobs ----------

    def create_job(self, organization_id, job_data):
        now = self._tick()
        row = {
            "status": "active",
            "retry_count": 0,
            **copy.deepcopy(job_data),
            "id": uuid4(),
            "organization_id": organization_id,
            "last_executed_at": None,
            "execution_count": 0,
            "success_count": 0,
            "failure_count": 0,
            "version": 0,
            "created_at": now,
            "updated_at": now,
        }
        row.setdefault("next_execution_at", None)
        self.jobs[row["id"]] = row
        return copy.deepcopy(row)

    def _job(self, organization_id, job_id) -> Optional[dict]:
        row = self.jobs.get(job_id)
        if row is None or row["organization_id"] != organization_id:
            return None
        return row

    def get_job(self, organization_id, job_id):
        row = self._job(organization_id, job_id)
        return copy.deepcopy(row) if row else None

    def list_jobs(self, organization_id, limit=20, offset=0, status=None, tags=None, search=None):
        rows = [r for r in self.jobs.values() if r["organization_id"] == organization_id]
        if status:
            rows = [r for r in rows if r["status"] == status]
        if tags:
            rows = [r for r in rows if set(tags) & set(r["tags"])]
        if search:
            term = search.lower()
            rows = [
                r
                for r in rows
                if term in r["name"].lower() or term in r["description"].lower()
            ]
        rows.sort(key=lambda r: r["created_at"], reverse=True)
        return copy.deepcopy(rows[offset:offset + limit]), len(rows)

    def update_job(self, organization_id, job_id, changes):
        row = self._job(organization_id, job_id)
        if row is None:
            return None
        row.update(copy.deepcopy(changes))
        row["version"] += 1
        row["updated_at"] = self._tick()
        return copy.deepcopy(row)

    def record_execution(self, organization_id, job_id, expected_version, state):
        row = self._job(organization_id, job_id)
        if row is None or row["version"] != expected_version:
            return None
        row.update({c: state[c] for c in cron_jobs_repo.EXECUTION_COLUMNS})
        row["version"] += 1
        row["updated_at"] = self._tick()
        return copy.deepcopy(row)

    def delete_job(self, organization_id, job_id):
        if self._job(organization_id, job_id) is None:
            return False
        del self.jobs[job_id]
        self.history = [h for h in self.history if h["cron_job_id"] != job_id]
        return True

    def job_stats(self, organization_id):
        rows = [r for r in self.jobs.values() if r["organization_id"] == organization_id]
        return {
            "total": len(rows),
            "active": sum(1 for r in rows if r["status"] == "active"),
            "paused": sum(1 for r in rows if r["status"] == "paused"),
            "failed": sum(1 for r in rows if r["status"] == "failed"),
            "total_executions": sum(r["execution_count"] for r in rows),
            "total_success": sum(r["success_count"] for r in rows),
            "total_failures": sum(r["failure_count"] for r in rows),
        }

    # ---------- history ----------

    def insert_history(self, organization_id, entry):
        row = {
            **entry,
            "id": uuid4(),
            "organization_id": organization_id,
            "created_at": self._tick(),
        }
        self.history.append(row)
        return dict(row)

    def list_history(
        self,
        organization_id,
        limit=20,
        offset=0,
        cron_job_id=None,
        status=None,
        start_date=None,
        end_date=None,
    ):
        rows = [h for h in self.history if h["organization_id"] == organization_id]
        if cron_job_id is not None:
            rows = [h for h in rows if h["cron_job_id"] == cron_job_id]
        if status:
            rows = [h for h in rows if h["status"] == status]
        if start_date is not None:
            rows = [h for h in rows if h["executed_at"] >= start_date]
        if end_date is not None:
            rows = [h for h in rows if h["executed_at"] <= end_date]
        rows.sort(key=lambda h: h["executed_at"], reverse=True)
        return [dict(h) for h in rows[offset:offset + limit]], len(rows)

    def history_stats(self, organization_id):
        durations = [
            h["duration"] for h in self.history if h["organization_id"] == organization_id
        ]
        return {
            "avg_duration": sum(durations) / len(durations) if durations else 0,
            "max_duration": max(durations) if durations else 0,
            "history_count": len(durations),
        }

    def purge_history_before(self, cutoff):
        kept = [h for h in self.history if h["created_at"] >= cutoff]
        deleted = len(self.history) - len(kept)
        self.history = kept
        return deleted


REPOSITORY_FUNCTIONS = {
    organizations_repo: (
        "create_organization",
        "get_organization_by_id",
        "get_organization_by_email",
        "get_organization_by_api_key_hash",
        "update_api_key_hash",
    ),
    flags_repo: (
        "create_flag",
        "get_flag_by_key",
        "list_flags",
        "update_flag",
        "toggle_flag",
        "delete_flag",
        "flag_stats",
    ),
    cron_jobs_repo: (
        "create_job",
        "get_job",
        "list_jobs",
        "update_job",
        "record_execution",
        "delete_job",
        "job_stats",
    ),
    cron_history_repo: (
        "insert_history",
        "list_history",
        "history_stats",
        "purge_history_before",
    ),
}


class RecordingPublisher:
    """Event publisher that keeps every call for assertions."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, str, str, Dict[str, Any]]] = []

    def publish(self, tenant_id, channel, event, data):
        self.events.append((tenant_id, channel, event, dict(data)))
        return 0

    def names(self) -> List[str]:
        return [event for _, _, event, _ in self.events]


@pytest.fixture
def store(monkeypatch):
    """Replace every repository function with the in-memory store."""
    memory = InMemoryStore()
    for module, names in REPOSITORY_FUNCTIONS.items():
        for name in names:
            monkeypatch.setattr(module, name, getattr(memory, name))
    return memory


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def app(store):
    return create_app(
        {
            "TESTING": True,
            "LOG_LEVEL": "WARNING",
            "SSE_HEARTBEAT_SECONDS": 0.05,
        }
    )


@pytest.fixture
def client(app):
    with app.test_client() as c:
        yield c


@pytest.fixture
def organization(store):
    """Register an organization and return ``(organization, api_key)``."""
    return register_organization("Acme", "owner@acme.test", "secret123")


@pytest.fixture
def auth_headers(organization):
    _, api_key = organization
    return {"X-Api-Key": api_key}
