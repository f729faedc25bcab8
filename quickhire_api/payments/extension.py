"""Client for the Stripe Firestore extension's callable functions.

Callables are plain HTTPS endpoints speaking the Firebase callable protocol:

    POST {base_url}/{function_name}
    Authorization: Bearer <Firebase ID token>
    {"data": {...}}

and answer either ``{"result": {...}}`` or
``{"error": {"status": "NOT_FOUND", "message": "..."}}``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from .errors import DEADLINE_EXCEEDED, PAYMENT_FAILED, PORTAL_FAILED, UNAVAILABLE, CallableError, PaymentError

logger = logging.getLogger("api.extension")

CREATE_PORTAL_LINK = "ext-firestore-stripe-payments-createPortalLink"
CREATE_CHECKOUT_SESSION = "ext-firestore-stripe-payments-createCheckoutSession"
CREATE_CUSTOMER = "ext-firestore-stripe-payments-createCustomer"
PROCESS_JOB_ACCEPTANCE = "processJobAcceptance"

DEFAULT_TIMEOUT_SEC = 10.0


def status_to_code(status: Any) -> str:
    """``"FAILED_PRECONDITION"`` -> ``"failed-precondition"``."""
    return str(status or "").strip().lower().replace("_", "-")


def functions_base_url(project_id: str, region: str = "us-central1") -> str:
    return f"https://{region}-{project_id}.cloudfunctions.net"


class ExtensionClient:
    """Calls callables on behalf of one signed-in user."""

    def __init__(
        self,
        *,
        base_url: str,
        id_token: Optional[str],
        timeout: float = DEFAULT_TIMEOUT_SEC,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.id_token = id_token
        self.timeout = timeout
        self._post = session.post if session is not None else requests.post

    def call(self, function_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.id_token:
            headers["Authorization"] = f"Bearer {self.id_token}"

        url = f"{self.base_url}/{function_name}"
        try:
            resp = self._post(url, json={"data": data}, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise CallableError(
                f"{function_name} timed out after {self.timeout:g}s",
                DEADLINE_EXCEEDED,
                function_name=function_name,
            ) from exc
        except requests.RequestException as exc:
            raise CallableError(
                f"Unable to reach {function_name}: {exc}",
                UNAVAILABLE,
                function_name=function_name,
            ) from exc

        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            body = {}

        error = body.get("error")
        if isinstance(error, dict):
            message = str(error.get("message") or f"{function_name} failed")
            code = status_to_code(error.get("status")) or str(resp.status_code)
            logger.warning("Callable %s failed status=%s code=%s: %s", function_name, resp.status_code, code, message)
            raise CallableError(
                message,
                code,
                function_name=function_name,
                http_status=resp.status_code,
                details=error.get("details"),
            )

        if resp.status_code >= 400:
            logger.warning("Callable %s returned HTTP %s", function_name, resp.status_code)
            raise CallableError(
                f"{function_name} returned HTTP {resp.status_code}",
                str(resp.status_code),
                function_name=function_name,
                http_status=resp.status_code,
            )

        result = body.get("result", body.get("data"))
        return result if isinstance(result, dict) else {}

    def create_portal_link(self, return_url: str) -> str:
        result = self.call(CREATE_PORTAL_LINK, {"return_url": return_url})
        url = str(result.get("url") or "").strip()
        if not url:
            raise PaymentError("Portal session did not return a URL", PORTAL_FAILED)
        return url

    def create_checkout_session(self, payload: Dict[str, Any]) -> str:
        result = self.call(CREATE_CHECKOUT_SESSION, payload)
        url = str(result.get("url") or "").strip()
        if not url:
            raise PaymentError("Failed to create checkout session: no URL returned", PAYMENT_FAILED)
        return url

    def create_customer(self, *, email: str, name: str = "") -> str:
        result = self.call(CREATE_CUSTOMER, {"email": email, "name": name})
        customer_id = str(result.get("customerId") or "").strip()
        if not customer_id:
            raise PaymentError("Stripe customer ID not found in createCustomer response", "customer-not-found")
        return customer_id

    def process_job_acceptance(self, *, application_id: str, job_id: str) -> Dict[str, Any]:
        return self.call(PROCESS_JOB_ACCEPTANCE, {"applicationId": application_id, "jobId": job_id})
