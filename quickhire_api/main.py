"""QuickHireCrew Payments API - Main Application.

FastAPI application backing the dashboard's payment and subscription
screens: per-user payment session state, Stripe customer repair, portal
and checkout redirects, plan catalog and translations.

Security: every endpoint requires Firebase Auth except /api/health and /api/i18n.

Usage:
    uvicorn quickhire_api.main:app --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .dependencies import ALLOWED_ORIGINS, DEBUG_MODE, PAYMENT_SESSION_TTL_SEC, get_firebase_app, get_firestore
from .i18n import get_translation_service
from .middleware.rate_limit import setup_rate_limiting
from .payments.errors import PaymentError
from .payments.session import PaymentStateStore
from .routers import billing, health, i18n, payments

API_VERSION = "1.0.0"

logging.basicConfig(
    level=logging.DEBUG if DEBUG_MODE else logging.INFO,
    format='%(asctime)s [%(name)s] %(levelname)s: %(message)s'
)
logger = logging.getLogger("api.main")


# =============================================================================
# LIFESPAN (Startup/Shutdown)
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting QuickHireCrew Payments API v%s", API_VERSION)
    logger.info("Debug mode: %s", DEBUG_MODE)

    try:
        get_firebase_app()
        get_firestore()
        logger.info("Firestore connected")
        get_translation_service()
    except Exception as e:
        logger.error("Startup failed: %s", e)
        raise

    yield

    logger.info("Shutting down QuickHireCrew Payments API (%d payment sessions)", len(app.state.payment_sessions))


# =============================================================================
# APPLICATION
# =============================================================================

if DEBUG_MODE:
    app = FastAPI(
        title="QuickHireCrew Payments API",
        version=API_VERSION,
        lifespan=lifespan,
    )
else:
    # Production: no docs endpoints
    app = FastAPI(
        title="QuickHireCrew Payments API",
        version=API_VERSION,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

app.state.payment_sessions = PaymentStateStore(ttl=PAYMENT_SESSION_TTL_SEC)


# =============================================================================
# MIDDLEWARE
# =============================================================================

setup_rate_limiting(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
    max_age=3600,
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)

    if "server" in response.headers:
        del response.headers["server"]

    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    # Payment state is per user
    response.headers["Cache-Control"] = "no-store"

    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = datetime.now(timezone.utc)

    response = await call_next(request)

    duration_ms = (datetime.now(timezone.utc) - start_time).total_seconds() * 1000
    logger.debug(
        "%s %s -> %s (%.0fms)",
        request.method, request.url.path, response.status_code, duration_ms,
    )

    return response


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    """Expected payment failures: message and code are safe to show the user."""
    logger.warning("Payment error on %s: %s (%s)", request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception on %s", request.url.path)

    if DEBUG_MODE:
        return JSONResponse(
            status_code=500,
            content={
                "error": str(exc),
                "code": "INTERNAL_ERROR",
                "type": type(exc).__name__
            }
        )
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "code": "INTERNAL_ERROR"
        }
    )


# =============================================================================
# ROUTERS
# =============================================================================

app.include_router(health.router, prefix="/api", tags=["Health"])
app.include_router(payments.router, prefix="/api", tags=["Payments"])
app.include_router(billing.router, prefix="/api", tags=["Billing"])
app.include_router(i18n.router, prefix="/api", tags=["Translations"])


@app.get("/")
async def root():
    return {
        "name": "QuickHireCrew Payments API",
        "version": API_VERSION,
        "status": "running"
    }


@app.get("/api")
async def api_root():
    return {
        "endpoints": {
            "health": "/api/health",
            "payments": "/api/payments/session",
            "billing": "/api/billing/plans",
            "i18n": "/api/i18n/languages",
        }
    }
