"""Client IP resolution for rate-limit keys and security logs.

Forwarding headers are honoured only with TRUST_PROXY=1, i.e. when the API
sits behind Firebase Hosting / Cloud Run or another proxy that overwrites them.
"""

from __future__ import annotations

import os

from fastapi import Request

TRUST_PROXY = os.environ.get("TRUST_PROXY", "").strip().lower() in ("1", "true", "yes", "on")

# First match wins
_FORWARDED_HEADERS = ("X-Forwarded-For", "X-Real-IP")


def get_client_ip(request: Request) -> str:
    if TRUST_PROXY:
        for header in _FORWARDED_HEADERS:
            value = request.headers.get(header)
            if value:
                # Left-most entry is the original client
                return value.split(",")[0].strip()

    return request.client.host if request.client else "unknown"
