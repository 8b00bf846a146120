"""
Status condition helpers.

Conditions follow the Kubernetes convention: one entry per type, and
``lastTransitionTime`` only moves when the status value changes.
"""

from datetime import UTC, datetime

from nebari_operator import constants
from nebari_operator.models.nebariapp import Condition


def now_rfc3339() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def set_condition(
    conditions: list[Condition],
    condition_type: str,
    status: str,
    reason: str,
    message: str,
    observed_generation: int | None = None,
    now: str | None = None,
) -> list[Condition]:
    """
    Set or update a condition, returning the new condition list.

    When a condition of the same type already carries the same status only
    reason, message and observed generation are refreshed; otherwise
    ``lastTransitionTime`` is stamped with the current time.

    Args:
        conditions: Existing conditions, left unmodified
        condition_type: Condition type (Ready, RoutingReady, AuthReady, ...)
        status: "True", "False" or "Unknown"
        reason: CamelCase machine readable reason
        message: Human-readable message
        observed_generation: Generation the condition was computed from
        now: Timestamp override, defaults to the current UTC time

    Returns:
        New list with at most one condition per type
    """
    existing = get_condition(conditions, condition_type)
    if existing is not None and existing.status == status:
        transition_time = existing.last_transition_time
    else:
        transition_time = now or now_rfc3339()

    updated = Condition(
        type=condition_type,
        status=status,
        reason=reason,
        message=message,
        last_transition_time=transition_time,
        observed_generation=observed_generation,
    )

    result: list[Condition] = []
    replaced = False
    for condition in conditions:
        if condition.type != condition_type:
            result.append(condition)
        elif not replaced:
            result.append(updated)
            replaced = True
    if not replaced:
        result.append(updated)
    return result


def get_condition(conditions: list[Condition], condition_type: str) -> Condition | None:
    for condition in conditions:
        if condition.type == condition_type:
            return condition
    return None


def is_condition_true(conditions: list[Condition], condition_type: str) -> bool:
    condition = get_condition(conditions, condition_type)
    return condition is not None and condition.status == constants.CONDITION_TRUE


def is_condition_false(conditions: list[Condition], condition_type: str) -> bool:
    condition = get_condition(conditions, condition_type)
    return condition is not None and condition.status == constants.CONDITION_FALSE
