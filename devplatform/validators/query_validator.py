"""Helpers to read and validate list/filter query parameters."""


from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, List, Mapping, Optional, Tuple
from uuid import UUID

from devplatform.errors.handlers import BadRequest


DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _optional(args: Mapping[str, str], name: str) -> Optional[str]:
    value = args.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _positive_int(args: Mapping[str, str], name: str, default: int) -> int:
    raw = _optional(args, name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise BadRequest(f"'{name}' must be an integer.", field=name)
    if value < 1:
        raise BadRequest(f"'{name}' must be at least 1.", field=name)
    return value


def parse_pagination(args: Mapping[str, str]) -> Tuple[int, int]:
    """Return ``(page, limit)``; page defaults to 1, limit to 20 (max 100)."""
    page = _positive_int(args, "page", 1)
    limit = _positive_int(args, "limit", DEFAULT_PAGE_SIZE)
    if limit > MAX_PAGE_SIZE:
        raise BadRequest(f"'limit' must be at most {MAX_PAGE_SIZE}.", field="limit")
    return page, limit


def parse_choice(
    args: Mapping[str, str], name: str, allowed: Iterable[str]
) -> Optional[str]:
    value = _optional(args, name)
    allowed = tuple(allowed)
    if value is not None and value not in allowed:
        raise BadRequest(
            f"'{name}' must be one of: {', '.join(allowed)}.", field=name
        )
    return value


def parse_bool(args: Mapping[str, str], name: str) -> Optional[bool]:
    value = _optional(args, name)
    if value is None:
        return None
    return value.lower() == "true"


def parse_csv(args: Mapping[str, str], name: str) -> Optional[List[str]]:
    value = _optional(args, name)
    if value is None:
        return None
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or None


def parse_datetime(args: Mapping[str, str], name: str) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    value = _optional(args, name)
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise BadRequest(f"'{name}' must be an ISO 8601 date.", field=name)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_uuid(args: Mapping[str, str], name: str) -> Optional[UUID]:
    value = _optional(args, name)
    if value is None:
        return None
    try:
        return UUID(value)
    except ValueError:
        raise BadRequest(f"'{name}' must be a UUID.", field=name)


def pagination_meta(page: int, limit: int, total: int) -> dict:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": -(-total // limit),
    }
