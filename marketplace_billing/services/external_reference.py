"""
External reference codec.

Every preapproval created by this service carries
``subscription_{planId}_{userId}`` so provider objects can be correlated back to
local rows when the provider id is not (yet) known locally.
"""
from typing import NamedTuple

PREFIX = "subscription"
SEPARATOR = "_"


class SubscriptionReference(NamedTuple):
    plan_id: str
    user_id: str


def _check_component(name: str, value) -> str:
    value = "" if value is None else str(value)
    if not value:
        raise ValueError(f"{name} is required to build an external reference")
    if SEPARATOR in value:
        raise ValueError(f"{name} must not contain '{SEPARATOR}': {value!r}")
    return value


def encode(plan_id, user_id) -> str:
    """Build the external reference for a (plan, user) creation attempt."""
    plan_id = _check_component("plan_id", plan_id)
    user_id = _check_component("user_id", user_id)
    return SEPARATOR.join((PREFIX, plan_id, user_id))


def decode(reference) -> SubscriptionReference:
    """
    Parse an external reference back into (plan_id, user_id).

    Raises:
        ValueError: If the reference is empty, has another prefix, or does not
            have exactly two non-empty identifiers.
    """
    if not reference or not isinstance(reference, str):
        raise ValueError(f"Invalid external reference: {reference!r}")

    parts = reference.split(SEPARATOR)
    if len(parts) != 3 or parts[0] != PREFIX or not parts[1] or not parts[2]:
        raise ValueError(f"Invalid external reference: {reference!r}")

    return SubscriptionReference(plan_id=parts[1], user_id=parts[2])


def try_decode(reference):
    """Like ``decode`` but returns None instead of raising."""
    try:
        return decode(reference)
    except ValueError:
        return None


def is_subscription_reference(reference) -> bool:
    return try_decode(reference) is not None
