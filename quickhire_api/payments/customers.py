"""Make sure a Stripe customer exists for a user.

Firestore documents touched:
  users/{uid}                       (read profile, merge stripeCustomerId)
  customers/{uid}                   (merge customerId/email/name)
  users/{uid}/logs/stripe_recovery  (diagnostic trail, merge-only)

Every log write is best-effort: a failed log never changes the outcome.
"""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore  # type: ignore

from .errors import (
    API_ERROR,
    CUSTOMER_CREATION_FAILED,
    INCOMPLETE_PROFILE,
    INVALID_EMAIL,
    MISSING_EMAIL,
    NOT_AUTHENTICATED,
    PERMISSION_DENIED,
    UNKNOWN,
    PaymentError,
)

logger = logging.getLogger("api.customers")

WORKER_ID = f"quickhire-api-{socket.gethostname()}"


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller identity taken from a verified Firebase ID token."""
    uid: str
    id_token: Optional[str] = None
    email: Optional[str] = None
    stripe_role: Optional[str] = None


class CustomerCreator(Protocol):
    def create_customer(self, *, email: str, name: str = "") -> str:
        ...


def recovery_log_path(uid: str) -> str:
    return f"users/{uid}/logs/stripe_recovery"


def display_name(user_data: Dict[str, Any]) -> str:
    return str(user_data.get("fullName") or user_data.get("displayName") or "")


def classify_failure(error: BaseException) -> PaymentError:
    """Map an arbitrary failure to a user-facing PaymentError."""
    if isinstance(error, PaymentError):
        return error

    message = str(error).lower()
    if "not found" in message or "profile" in message:
        return PaymentError(
            "Your user profile is incomplete. Please complete your profile setup first.",
            INCOMPLETE_PROFILE,
        )
    if "email" in message:
        return PaymentError(
            "Your email is missing or invalid. Please update your profile with a valid email address.",
            INVALID_EMAIL,
        )
    if "permission" in message:
        return PaymentError(
            "You do not have permission to access payment features.",
            PERMISSION_DENIED,
        )
    if "stripe" in message or "customer" in message:
        return PaymentError(
            "There was an issue with the payment service. Please try again later.",
            API_ERROR,
        )
    return PaymentError(
        "Unable to set up your payment profile. Please try again later.",
        CUSTOMER_CREATION_FAILED,
    )


class CustomerService:
    """Ensures ``customers/{uid}`` is backed by a real Stripe customer."""

    def __init__(
        self,
        db: firestore.Client,
        creator: CustomerCreator,
        current_user: Optional[AuthenticatedUser] = None,
        *,
        triggered_from: str = "ensureStripeCustomer",
    ) -> None:
        self.db = db
        self.creator = creator
        self.current_user = current_user
        self.triggered_from = triggered_from

    def ensure_customer(self, user_id: Optional[str] = None) -> str:
        """Create (or re-link) the Stripe customer and return its id.

        Raises:
            PaymentError: ``not-authenticated`` with no user, ``incomplete-profile``
                when ``users/{uid}`` is missing, ``missing-email`` when it has no
                email; other failures are classified by ``classify_failure``.
        """
        if not user_id:
            if self.current_user is None:
                raise PaymentError("You must be logged in to use payment features.", NOT_AUTHENTICATED)
            user_id = self.current_user.uid

        try:
            return self._ensure(user_id)
        except Exception as exc:
            logger.error("Error ensuring Stripe customer exists uid=%s: %s", user_id, exc)
            self._log_recovery(
                user_id,
                {
                    "status": "failed",
                    "error": str(exc),
                    "errorCode": exc.code if isinstance(exc, PaymentError) else UNKNOWN,
                    "failedAt": firestore.SERVER_TIMESTAMP,
                    "result": "error",
                },
                "failure",
            )
            raise classify_failure(exc) from exc

    def _ensure(self, uid: str) -> str:
        self._log_recovery(
            uid,
            {
                "attempts": firestore.Increment(1),
                "lastAttemptAt": firestore.SERVER_TIMESTAMP,
                "triggeredFrom": self.triggered_from,
                "status": "started",
                "metadata": {
                    "worker": WORKER_ID,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            },
            "attempt",
        )

        user_doc = self.db.document(f"users/{uid}").get()
        if not user_doc.exists:
            logger.error("User document not found uid=%s, cannot create Stripe customer", uid)
            raise PaymentError(
                "Your user profile is incomplete. Please complete your profile setup to access payment features.",
                INCOMPLETE_PROFILE,
            )

        user_data = user_doc.to_dict() or {}
        email = str(user_data.get("email") or "").strip()
        if not email:
            logger.error("User uid=%s has no email address, required for Stripe customer", uid)
            raise PaymentError(
                "An email address is required for payment setup. Please update your profile with an email address.",
                MISSING_EMAIL,
            )

        name = display_name(user_data)
        logger.info("Ensuring Stripe customer exists uid=%s", uid)
        customer_id = self.creator.create_customer(email=email, name=name)
        logger.info("Stripe customer ensured uid=%s customer=%s", uid, customer_id)

        self._log_recovery(
            uid,
            {
                "status": "completed",
                "customerId": customer_id,
                "customerCreated": True,
                "completedAt": firestore.SERVER_TIMESTAMP,
                "result": "success",
            },
            "completion",
        )
        self._link_customer(uid, customer_id, email=email, name=name)
        return customer_id

    def _link_customer(self, uid: str, customer_id: str, *, email: str, name: str) -> None:
        customer_ref = self.db.document(f"customers/{uid}")
        try:
            try:
                customer_ref.update({
                    "customerId": customer_id,
                    "email": email,
                    "name": name,
                    "updatedAt": firestore.SERVER_TIMESTAMP,
                })
            except gcp_exceptions.NotFound:
                customer_ref.set({
                    "customerId": customer_id,
                    "email": email,
                    "name": name,
                    "createdAt": firestore.SERVER_TIMESTAMP,
                    "updatedAt": firestore.SERVER_TIMESTAMP,
                })
        except Exception as exc:
            logger.error("Error updating customers/%s with customer ID: %s", uid, exc)

        try:
            self.db.document(f"users/{uid}").update({
                "stripeCustomerId": customer_id,
                "updatedAt": firestore.SERVER_TIMESTAMP,
            })
        except Exception as exc:
            logger.warning("Could not update users/%s with Stripe customer ID: %s", uid, exc)

    def _log_recovery(self, uid: str, fields: Dict[str, Any], stage: str) -> None:
        try:
            self.db.document(recovery_log_path(uid)).set(fields, merge=True)
        except Exception as exc:
            logger.warning("Failed to log recovery %s uid=%s: %s", stage, uid, exc)
