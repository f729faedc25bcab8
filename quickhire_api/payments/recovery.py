"""Decide whether a payment failure should trigger an automatic customer repair.

The message is bucketed by substring (case-insensitive) and the code is
checked against recoverable / non-recoverable lists:

- permission errors never recover
- profile / email errors recover, unless the code says our own validation
  rejected the profile (the user has to fix it)
- customer errors and recoverable codes recover
"""

from __future__ import annotations

from typing import Any, Tuple

from .errors import INCOMPLETE_PROFILE, MISSING_EMAIL, normalize_code

CUSTOMER_MESSAGES: Tuple[str, ...] = (
    "incomplete",
    "not found",
    "no such customer",
    "customer not found",
    "payment profile",
    "stripe customer id not found",
    "resource-exhausted",
)

PROFILE_MESSAGES: Tuple[str, ...] = (
    "user profile",
    "profile is incomplete",
    "profile setup",
)

EMAIL_MESSAGES: Tuple[str, ...] = (
    "email is required",
    "email address is required",
    "missing email",
)

PERMISSION_MESSAGES: Tuple[str, ...] = (
    "permission denied",
    "not authorized",
    "unauthorized",
)

RECOVERABLE_CODES = frozenset({
    "customer-not-found",
    "setup-failed",
    INCOMPLETE_PROFILE,
    MISSING_EMAIL,
    "400",
    "not-found",
    "failed-precondition",
    "resource-exhausted",
})

NON_RECOVERABLE_CODES = frozenset({
    "permission-denied",
    "unauthenticated",
    "not-authenticated",
})

# Raised by our own profile checks; retrying cannot fix them
USER_ACTION_CODES = frozenset({INCOMPLETE_PROFILE, MISSING_EMAIL})


def _contains_any(message: str, needles: Tuple[str, ...]) -> bool:
    return any(needle in message for needle in needles)


def should_attempt_recovery(message: str, code: Any = None) -> bool:
    """Return True when an ensure-customer retry is worth trying before surfacing ``message``."""
    text = (message or "").lower()
    normalized = normalize_code(code)

    if _contains_any(text, PERMISSION_MESSAGES) or normalized in NON_RECOVERABLE_CODES:
        return False

    if _contains_any(text, PROFILE_MESSAGES) or _contains_any(text, EMAIL_MESSAGES):
        return normalized not in USER_ACTION_CODES

    return _contains_any(text, CUSTOMER_MESSAGES) or normalized in RECOVERABLE_CODES
