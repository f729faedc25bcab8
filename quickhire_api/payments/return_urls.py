"""Return-URL convention for provider-hosted pages.

The portal and checkout send the browser back to ``<origin>/<path>?<flag>``:

    /account?setup=complete    payment method added in the portal
    /account?payment=success   checkout finished
    /pricing?payment=canceled  checkout abandoned
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Mapping, Union
from urllib import parse as url_parse


class ReturnState(str, Enum):
    NONE = "none"
    SETUP_COMPLETE = "setup_complete"
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_CANCELED = "payment_canceled"


ACCOUNT_PATH = "/account"
PRICING_PATH = "/pricing"


def normalize_origin(origin: str) -> str:
    return str(origin or "").strip().rstrip("/")


def build_return_url(origin: str, path: str = ACCOUNT_PATH, **params: str) -> str:
    base = f"{normalize_origin(origin)}/{path.lstrip('/')}"
    if not params:
        return base
    return f"{base}?{url_parse.urlencode(params)}"


def parse_return_state(query: Union[str, Mapping[str, str]]) -> ReturnState:
    if isinstance(query, str):
        raw = query.split("?", 1)[1] if "?" in query else query
        params = {k: v[-1] for k, v in url_parse.parse_qs(raw).items() if v}
    else:
        params = dict(query)

    if params.get("setup", "").lower() == "complete":
        return ReturnState.SETUP_COMPLETE
    payment = params.get("payment", "").lower()
    if payment == "success":
        return ReturnState.PAYMENT_SUCCESS
    if payment in ("canceled", "cancelled"):
        return ReturnState.PAYMENT_CANCELED
    return ReturnState.NONE


def is_allowed_origin(origin: str, allowed_origins: Iterable[str]) -> bool:
    try:
        parsed = url_parse.urlparse(normalize_origin(origin))
    except Exception:
        return False
    if parsed.scheme not in ("https", "http") or not parsed.netloc:
        return False
    candidate = f"{parsed.scheme}://{parsed.netloc}"
    return candidate in {normalize_origin(o) for o in allowed_origins}


def resolve_origin(requested: str, allowed_origins: Iterable[str], default_origin: str) -> str:
    """Use the caller's origin when it is allow-listed, else the configured app origin."""
    allowed = list(allowed_origins)
    if requested and is_allowed_origin(requested, allowed):
        return normalize_origin(requested)
    return normalize_origin(default_origin)
