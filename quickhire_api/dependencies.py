"""FastAPI dependencies for authentication, Firestore access and payment collaborators.

Endpoints use these dependencies for:
- Firebase token verification
- Firestore client access
- The per-user extension client, customer service and payment controller
"""

from __future__ import annotations

import os
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any, List

from fastapi import HTTPException, Request, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

import firebase_admin
from firebase_admin import auth, credentials, firestore

from .payments.attempts import PaymentFailureRecorder
from .payments.customers import AuthenticatedUser, CustomerService
from .payments.extension import DEFAULT_TIMEOUT_SEC, ExtensionClient, functions_base_url
from .payments.return_urls import resolve_origin
from .payments.session import (
    RECOVERY_RETRY_DELAY_SEC as DEFAULT_RETRY_DELAY_SEC,
    SESSION_TTL_SEC as DEFAULT_SESSION_TTL_SEC,
    PaymentController,
    PaymentStateStore,
    RedirectCapture,
    ToastCollector,
)

# =============================================================================
# CONFIGURATION
# =============================================================================


def _bool_env(name: str, default: bool = False) -> bool:
    raw = str(os.environ.get(name, "")).strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _list_env(name: str, default: str) -> List[str]:
    return [item.strip().rstrip("/") for item in str(os.environ.get(name, default)).split(",") if item.strip()]


API_DIR = Path(__file__).parent
PROJECT_DIR = API_DIR.parent

SERVICE_ACCOUNT_PATH = os.environ.get(
    "GOOGLE_APPLICATION_CREDENTIALS",
    str(PROJECT_DIR / "quickhire-firebase-adminsdk.json"),
)

FIREBASE_PROJECT_ID = str(os.environ.get("FIREBASE_PROJECT_ID", "quickhirecrew")).strip()
FUNCTIONS_REGION = str(os.environ.get("FUNCTIONS_REGION", "us-central1")).strip()
FUNCTIONS_BASE_URL = str(os.environ.get("FUNCTIONS_BASE_URL", "")).strip()
EXTENSION_TIMEOUT_SEC = float(os.environ.get("EXTENSION_TIMEOUT_SEC", DEFAULT_TIMEOUT_SEC))
RECOVERY_RETRY_DELAY_SEC = float(os.environ.get("RECOVERY_RETRY_DELAY_SEC", DEFAULT_RETRY_DELAY_SEC))
PAYMENT_SESSION_TTL_SEC = float(os.environ.get("PAYMENT_SESSION_TTL_SEC", DEFAULT_SESSION_TTL_SEC))

APP_ORIGIN = str(os.environ.get("APP_ORIGIN", "https://quickhirecrew.com")).strip().rstrip("/")
ALLOWED_ORIGINS = _list_env(
    "ALLOWED_ORIGINS",
    "https://quickhirecrew.com,https://quickhirecrew.web.app,http://localhost:5173,http://localhost:3000",
)

DEBUG_MODE = _bool_env("DEBUG", False)

# Security settings
MAX_TOKEN_AGE_SECONDS = int(os.environ.get("MAX_TOKEN_AGE_SECONDS", 3600))
CLOCK_SKEW_SECONDS = int(os.environ.get("CLOCK_SKEW_SECONDS", 300))
SKIP_TOKEN_AGE_CHECK = _bool_env("SKIP_TOKEN_AGE_CHECK", False)

logger = logging.getLogger("api.dependencies")
security_logger = logging.getLogger("security")

bearer_scheme = HTTPBearer(auto_error=False)


# =============================================================================
# FIREBASE INITIALIZATION
# =============================================================================

_firebase_app: Optional[firebase_admin.App] = None
_firestore_client = None


def get_firebase_app() -> firebase_admin.App:
    """Get or initialize Firebase Admin app."""
    global _firebase_app

    if _firebase_app is not None:
        return _firebase_app

    try:
        _firebase_app = firebase_admin.get_app()
        return _firebase_app
    except ValueError:
        pass

    if not Path(SERVICE_ACCOUNT_PATH).exists():
        raise RuntimeError(f"Service account not found: {SERVICE_ACCOUNT_PATH}")

    cred = credentials.Certificate(SERVICE_ACCOUNT_PATH)
    _firebase_app = firebase_admin.initialize_app(cred, {"projectId": FIREBASE_PROJECT_ID})
    logger.info("Firebase Admin initialized project=%s", FIREBASE_PROJECT_ID)
    return _firebase_app


def get_firestore() -> firestore.Client:
    """Get Firestore client (singleton)."""
    global _firestore_client

    if _firestore_client is None:
        get_firebase_app()
        _firestore_client = firestore.client()
        logger.info("Firestore client initialized")

    return _firestore_client


# =============================================================================
# AUTHENTICATION
# =============================================================================

async def verify_firebase_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Dict[str, Any]:
    """Verify Firebase ID token from Authorization header.

    Security checks:
    - Valid signature
    - Not expired
    - Not revoked
    - Token age below MAX_TOKEN_AGE_SECONDS
    - Not issued in the future beyond CLOCK_SKEW_SECONDS

    Returns:
        Decoded token claims including 'uid'

    Raises:
        HTTPException 401 on any auth failure
    """
    if credentials is None:
        _log_auth_failure(request, "missing_auth_header")
        raise HTTPException(401, "Missing Authorization header")

    token = credentials.credentials

    try:
        get_firebase_app()
        decoded = auth.verify_id_token(token, check_revoked=True)
    except auth.RevokedIdTokenError:
        _log_auth_failure(request, "revoked_token")
        raise HTTPException(401, "Token has been revoked")
    except auth.ExpiredIdTokenError:
        _log_auth_failure(request, "expired_token")
        raise HTTPException(401, "Token has expired")
    except auth.InvalidIdTokenError as e:
        _log_auth_failure(request, "invalid_token", error=str(e))
        raise HTTPException(401, "Invalid token")
    except Exception as e:
        _log_auth_failure(request, "auth_error", error=str(e))
        raise HTTPException(401, "Authentication failed")

    if not SKIP_TOKEN_AGE_CHECK:
        now = datetime.now(timezone.utc).timestamp()
        issued_at = decoded.get('iat', 0)

        if now - issued_at > MAX_TOKEN_AGE_SECONDS:
            _log_auth_failure(request, "token_too_old", uid=decoded.get('uid'))
            raise HTTPException(401, "Token too old, please re-authenticate")

        if issued_at > now + CLOCK_SKEW_SECONDS:
            _log_auth_failure(request, "future_token", uid=decoded.get('uid'))
            raise HTTPException(401, "Invalid token timestamp")

    decoded["_raw_token"] = token
    return decoded


def _log_auth_failure(request: Request, reason: str, **extra):
    """Log authentication failure for security monitoring."""
    security_logger.warning({
        "event": "auth_failure",
        "reason": reason,
        "ip": request.client.host if request.client else "unknown",
        "user_agent": request.headers.get("user-agent", "unknown"),
        "path": request.url.path,
        **extra
    })


async def get_current_user(
    decoded_token: Dict[str, Any] = Depends(verify_firebase_token),
) -> AuthenticatedUser:
    """Signed-in caller; ``stripeRole`` is the custom claim the extension sets."""
    return AuthenticatedUser(
        uid=decoded_token["uid"],
        id_token=decoded_token.get("_raw_token"),
        email=decoded_token.get("email"),
        stripe_role=decoded_token.get("stripeRole"),
    )


# =============================================================================
# PAYMENT COLLABORATORS
# =============================================================================

def get_extension_client(user: AuthenticatedUser = Depends(get_current_user)) -> ExtensionClient:
    base_url = FUNCTIONS_BASE_URL or functions_base_url(FIREBASE_PROJECT_ID, FUNCTIONS_REGION)
    return ExtensionClient(base_url=base_url, id_token=user.id_token, timeout=EXTENSION_TIMEOUT_SEC)


def get_customer_service(
    user: AuthenticatedUser = Depends(get_current_user),
    db: firestore.Client = Depends(get_firestore),
    client: ExtensionClient = Depends(get_extension_client),
) -> CustomerService:
    return CustomerService(db, client, user)


def get_state_store(request: Request) -> PaymentStateStore:
    return request.app.state.payment_sessions


def get_request_origin(request: Request) -> str:
    """Origin used to build return URLs: the caller's if allow-listed, else APP_ORIGIN."""
    return resolve_origin(request.headers.get("origin", ""), ALLOWED_ORIGINS, APP_ORIGIN)


def get_payment_controller(
    user: AuthenticatedUser = Depends(get_current_user),
    db: firestore.Client = Depends(get_firestore),
    client: ExtensionClient = Depends(get_extension_client),
    customers: CustomerService = Depends(get_customer_service),
    store: PaymentStateStore = Depends(get_state_store),
    origin: str = Depends(get_request_origin),
) -> PaymentController:
    """Controller over the caller's session state, with side effects captured for the response."""
    return PaymentController(
        store.get(user.uid),
        customers=customers,
        portal=client,
        notifier=ToastCollector(),
        navigator=RedirectCapture(),
        origin=origin,
        record_failure=PaymentFailureRecorder(db),
        retry_delay=RECOVERY_RETRY_DELAY_SEC,
    )
