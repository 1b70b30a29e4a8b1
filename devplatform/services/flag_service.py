# devplatform/services/flag_service.py
"""Flag evaluation service.

Provides a pure, stateless function to evaluate a single feature flag
for a given user id and attribute context.
"""


from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from .bucketing import bucket_for


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",")]


def rule_matches(rule: Mapping[str, Any], attributes: Mapping[str, str]) -> bool:
    """Check one targeting rule against the caller's attributes.

    An absent or empty attribute never matches, whatever the operator:
    ``not-equals`` and ``not-in`` are false for it too.
    """
    actual = attributes.get(rule.get("attribute"))
    if not actual:
        return False

    operator = rule.get("operator")
    expected = rule.get("value", "")

    if operator == "equals":
        return actual == expected
    if operator == "not-equals":
        return actual != expected
    if operator == "contains":
        return expected in actual
    if operator == "in":
        return actual in _split_list(expected)
    if operator == "not-in":
        return actual not in _split_list(expected)

    # Unknown operator -> fail closed
    return False


def rules_match(
    rules: List[Mapping[str, Any]], attributes: Mapping[str, str]
) -> bool:
    """All rules must pass (logical AND)."""
    return all(rule_matches(rule, attributes) for rule in rules)


def evaluate_flag(
    flag: Optional[Dict[str, Any]],
    key: str,
    user_id: Optional[str] = None,
    attributes: Optional[Mapping[str, str]] = None,
) -> Dict[str, Any]:
    """Pure evaluation of a single feature flag.

    Args:
        flag: the stored flag row, or ``None`` when the key is unknown.
            Uses ``status``, ``enabled``, ``rollout_type``,
            ``rollout_percentage``, ``target_users``, ``targeting_rules``
            and ``default_value``.
        key: the requested flag key, echoed back.
        user_id: optional caller id, used for bucketing and user lists.
        attributes: optional flat string map for targeting rules.

    Order of checks:
        - unknown flag            -> disabled, ``flag_not_found``
        - status is not active    -> disabled, ``flag_inactive``
        - kill switch off         -> default value, ``flag_disabled``
        - then by rollout type (boolean, percentage, user-list)

    Returns:
        ``{"key", "enabled", "reason"}`` plus ``"percentage"`` for
        percentage rollouts.
    """
    if flag is None:
        return {"key": key, "enabled": False, "reason": "flag_not_found"}

    if flag.get("status") != "active":
        return {"key": key, "enabled": False, "reason": "flag_inactive"}

    default_value = bool(flag.get("default_value", False))

    # Kill switch
    if not flag.get("enabled", False):
        return {"key": key, "enabled": default_value, "reason": "flag_disabled"}

    rollout_type = flag.get("rollout_type")

    if rollout_type == "boolean":
        return {"key": key, "enabled": True, "reason": "boolean_flag"}

    if rollout_type == "percentage":
        percentage = flag.get("rollout_percentage", 100)
        return {
            "key": key,
            "enabled": bucket_for(user_id) < percentage,
            "reason": "percentage_rollout",
            "percentage": percentage,
        }

    if rollout_type == "user-list":
        if user_id and user_id in (flag.get("target_users") or []):
            return {"key": key, "enabled": True, "reason": "user_targeted"}

        rules = flag.get("targeting_rules") or []
        if attributes is not None and rules:
            matched = rules_match(rules, attributes)
            return {
                "key": key,
                "enabled": matched,
                "reason": "rule_matched" if matched else "rule_not_matched",
            }

        return {"key": key, "enabled": default_value, "reason": "no_match"}

    return {"key": key, "enabled": default_value, "reason": "unknown_rollout_type"}
