"""Deterministic user bucketing for percentage rollouts."""


from __future__ import annotations


ANONYMOUS_USER = "anonymous"
BUCKET_COUNT = 100


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def rolling_hash(text: str) -> int:
    """Return ``abs`` of the 32-bit ``h = h * 31 + code`` hash of ``text``.

    Wraps to a signed 32-bit integer after every character, so the result is
    always in ``[0, 2**31]``.
    """
    h = 0
    for char in text:
        h = _to_int32(h * 31 + ord(char))
    return abs(h)


def bucket_for(user_id: str | None) -> int:
    """Map a user id to a stable bucket in ``[0, 100)``.

    Users without an id share the ``"anonymous"`` bucket.
    """
    return rolling_hash(user_id or ANONYMOUS_USER) % BUCKET_COUNT
