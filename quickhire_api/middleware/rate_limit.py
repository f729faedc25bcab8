"""Per-IP rate limits for the payments API (slowapi).

Limits:
- Global default: 100 req/min
- Reads (session, plans, subscription): 60 req/min
- Payment actions that call Stripe: 10 req/min
- Health: 120 req/min

RATE_LIMIT_ENABLED=0 turns every limit off.
"""

from __future__ import annotations

import logging
import os

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from ..utils.client_ip import get_client_ip

logger = logging.getLogger("api.rate_limit")
security_logger = logging.getLogger("security")

RATE_LIMIT_ENABLED = os.environ.get("RATE_LIMIT_ENABLED", "true").strip().lower() in ("1", "true", "yes", "on")
RETRY_AFTER_SECONDS = 60

limiter = Limiter(
    key_func=get_client_ip,
    default_limits=["100/minute"],
    storage_uri="memory://",
    enabled=RATE_LIMIT_ENABLED,
)

rate_limit_read = limiter.limit("60/minute")
rate_limit_payment = limiter.limit("10/minute")
rate_limit_health = limiter.limit("120/minute")


def setup_rate_limiting(app) -> None:
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)
    app.add_middleware(SlowAPIMiddleware)
    logger.info("Rate limiting %s", "enabled" if limiter.enabled else "disabled")


async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    security_logger.warning({
        "event": "rate_limit_exceeded",
        "ip": get_client_ip(request),
        "path": request.url.path,
        "method": request.method,
        "limit": str(exc.detail),
    })
    return JSONResponse(
        status_code=429,
        content={
            "error": "Too many requests",
            "code": "RATE_LIMIT_EXCEEDED",
            "detail": str(exc.detail),
        },
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )
