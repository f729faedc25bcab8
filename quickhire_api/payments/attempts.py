"""Job-acceptance charges and payment-failure bookkeeping.

Firestore documents written:
  users/{uid}/logs/payment_attempts   (merge-only trail of failed charges)
  jobs/{jobId}, applications/{id}     (paymentStatus: failed)
  users/{uid}                         (paymentIssue flag)
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional, Protocol, Tuple

from google.cloud import firestore  # type: ignore

from ..models import DOCUMENT_ID_PATTERN
from .customers import CustomerService
from .errors import INVALID_USER, PAYMENT_FAILED, PaymentError, error_code, error_message

logger = logging.getLogger("api.payment_attempts")

JOB_ACCEPTANCE = "job_acceptance"

_DOCUMENT_ID_RE = re.compile(DOCUMENT_ID_PATTERN)

JOB_OWNER_FIELDS = ("userId", "ownerId", "createdBy")
APPLICATION_OWNER_FIELDS = ("userId", "applicantId", "jobOwnerId")


class JobAcceptanceCharger(Protocol):
    def process_job_acceptance(self, *, application_id: str, job_id: str) -> Dict[str, Any]:
        ...


def is_document_id(value: str) -> bool:
    return bool(_DOCUMENT_ID_RE.match(value or ""))


def payment_attempts_path(uid: str) -> str:
    return f"users/{uid}/logs/payment_attempts"


def process_job_acceptance_payment(
    *,
    customers: CustomerService,
    charger: JobAcceptanceCharger,
    db: firestore.Client,
    user_id: Optional[str],
    application_id: str,
    job_id: str,
) -> Dict[str, Any]:
    """Charge the hiring user for accepting an application.

    Never raises: returns ``{"success": True}`` or
    ``{"success": False, "error": <message>}``.
    """
    try:
        if not user_id:
            raise PaymentError("User ID is required to process payment", INVALID_USER)

        logger.info("Processing job acceptance payment application=%s job=%s", application_id, job_id)
        customers.ensure_customer(user_id)

        result = charger.process_job_acceptance(application_id=application_id, job_id=job_id)
        if not result.get("success"):
            raise PaymentError(str(result.get("message") or "Payment processing failed"), PAYMENT_FAILED)

        return {"success": True}
    except Exception as exc:
        message = error_message(exc)
        logger.error("Error processing job acceptance payment application=%s: %s", application_id, message)
        if user_id:
            _log_payment_attempt(
                db,
                user_id,
                {
                    "attempts": firestore.Increment(1),
                    "lastAttemptAt": firestore.SERVER_TIMESTAMP,
                    "type": JOB_ACCEPTANCE,
                    "status": "failed",
                    "applicationId": application_id,
                    "jobId": job_id,
                    "error": message,
                    "errorCode": error_code(exc),
                },
            )
        return {"success": False, "error": message}


def _log_payment_attempt(db: firestore.Client, uid: str, fields: Dict[str, Any]) -> None:
    try:
        db.document(payment_attempts_path(uid)).set(fields, merge=True)
    except Exception as exc:
        logger.warning("Failed to log payment attempt uid=%s: %s", uid, exc)


class PaymentFailureRecorder:
    """Marks the job/application and the user after a declined payment.

    Runs with admin credentials, so a job or application is only touched when
    one of its owner fields names the caller.
    """

    def __init__(self, db: firestore.Client) -> None:
        self.db = db

    def __call__(self, uid: str, job_id: Optional[str] = None, application_id: Optional[str] = None) -> None:
        if job_id:
            self._mark_failed("jobs", job_id, uid, JOB_OWNER_FIELDS)
        if application_id:
            self._mark_failed("applications", application_id, uid, APPLICATION_OWNER_FIELDS)
        self.db.document(f"users/{uid}").update({
            "paymentIssue": True,
            "lastPaymentFailure": firestore.SERVER_TIMESTAMP,
        })

    def _mark_failed(self, collection: str, doc_id: str, uid: str, owner_fields: Tuple[str, ...]) -> None:
        if not is_document_id(doc_id):
            logger.warning("Rejected %s id %r uid=%s", collection, doc_id, uid)
            return
        ref = self.db.document(f"{collection}/{doc_id}")
        snapshot = ref.get()
        data = snapshot.to_dict() if snapshot.exists else None
        if not data:
            logger.warning("Skipping payment status for missing %s/%s uid=%s", collection, doc_id, uid)
            return
        if not any(data.get(f) == uid for f in owner_fields):
            logger.warning("Skipping payment status for %s/%s not owned by uid=%s", collection, doc_id, uid)
            return
        ref.update({
            "paymentStatus": "failed",
            "paymentDeclinedAt": firestore.SERVER_TIMESTAMP,
        })
