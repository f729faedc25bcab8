"""Health check router - no auth required.

Endpoints:
    GET /api/health - API status
    GET /api/health/firebase - Firestore connectivity
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from ..dependencies import DEBUG_MODE, get_firestore
from ..middleware.rate_limit import rate_limit_health

router = APIRouter()
logger = logging.getLogger("api.health")

API_VERSION = "1.0.0"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
@rate_limit_health
async def health_check(request: Request) -> dict:
    return {
        "status": "healthy",
        "timestamp": _now(),
        "version": API_VERSION,
    }


@router.get("/health/firebase")
@rate_limit_health
def firebase_health(request: Request, db=Depends(get_firestore)) -> dict:
    """Reads a ping document; a missing document still proves connectivity."""
    try:
        db.document("_health/ping").get()
        return {"status": "healthy", "timestamp": _now()}
    except Exception as e:
        logger.error("Firestore health check failed: %s", e)
        return {
            "status": "unhealthy",
            "error": str(e) if DEBUG_MODE else "Firestore connection failed",
            "timestamp": _now(),
        }
