"""Payment error taxonomy.

Every failure in the payments layer is a ``PaymentError`` carrying a
human-readable message and a short string code. Codes are unprefixed
(``missing-email``, not ``stripe/missing-email``); ``normalize_code`` strips
the legacy prefixes the web client used to send.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

NOT_AUTHENTICATED = "not-authenticated"
INCOMPLETE_PROFILE = "incomplete-profile"
MISSING_EMAIL = "missing-email"
INVALID_EMAIL = "invalid-email"
PERMISSION_DENIED = "permission-denied"
CUSTOMER_NOT_FOUND = "customer-not-found"
CUSTOMER_CREATION_FAILED = "customer-creation-failed"
SETUP_FAILED = "setup-failed"
PORTAL_FAILED = "portal-failed"
PAYMENT_FAILED = "payment-failed"
API_ERROR = "api-error"
INVALID_USER = "invalid-user"
DEADLINE_EXCEEDED = "deadline-exceeded"
UNAVAILABLE = "unavailable"
UNKNOWN = "unknown"

_LEGACY_PREFIXES = ("stripe/", "auth/", "functions/")

# HTTP status used when a PaymentError escapes to the API layer
HTTP_STATUS_BY_CODE: Dict[str, int] = {
    NOT_AUTHENTICATED: 401,
    "unauthenticated": 401,
    PERMISSION_DENIED: 403,
    INCOMPLETE_PROFILE: 422,
    MISSING_EMAIL: 422,
    INVALID_EMAIL: 422,
    INVALID_USER: 400,
    "invalid-argument": 400,
    "not-found": 404,
    CUSTOMER_NOT_FOUND: 404,
    "failed-precondition": 409,
    "resource-exhausted": 429,
    DEADLINE_EXCEEDED: 504,
}


def normalize_code(code: Any) -> str:
    """Return ``code`` as a bare string (``None`` -> ``""``, ``400`` -> ``"400"``)."""
    if code is None:
        return ""
    value = str(code).strip()
    for prefix in _LEGACY_PREFIXES:
        if value.startswith(prefix):
            return value[len(prefix):]
    return value


class PaymentError(Exception):
    """Payment-related failure with a message and a string code."""

    def __init__(self, message: str, code: Any = UNKNOWN) -> None:
        super().__init__(message)
        self.message = message
        self.code = normalize_code(code) or UNKNOWN

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_CODE.get(self.code, 502)

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.message, "code": self.code}

    def __repr__(self) -> str:
        return f"PaymentError({self.message!r}, {self.code!r})"


class CallableError(PaymentError):
    """Failure returned by (or while reaching) a Firebase callable function."""

    def __init__(
        self,
        message: str,
        code: Any = UNKNOWN,
        *,
        function_name: str = "",
        http_status: Optional[int] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message, code)
        self.function_name = function_name
        self.status_code = http_status
        self.details = details


def error_message(error: BaseException) -> str:
    if isinstance(error, PaymentError):
        return error.message
    return str(error)


def error_code(error: BaseException) -> str:
    """Code used for recovery classification; non-payment errors have none."""
    if isinstance(error, PaymentError):
        return error.code
    return ""
