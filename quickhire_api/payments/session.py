"""Per-user payment session state and the operations that drive it.

States::

    uninitialized --initialize()--> initializing --> ready
          ^                                            |
          +------------------- reset() ----------------+

``ready`` carries sub-flags (has_payment_method, payment_error, is_recovering).
Payment-method changes are portal-only: remove / set-default / add never touch
local or remote state, they send the browser to the provider portal and come
back through a return URL.

The state object is plain data kept in a ``PaymentStateStore``; a
``PaymentController`` is built around it for each request with that request's
collaborators (customer service, portal client, toast sink, navigator).
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol

from ..models import PaymentMethod, PaymentStateResponse, ToastModel
from .errors import (
    INCOMPLETE_PROFILE,
    INVALID_EMAIL,
    MISSING_EMAIL,
    NOT_AUTHENTICATED,
    PERMISSION_DENIED,
    SETUP_FAILED,
    PaymentError,
    error_code,
    error_message,
)
from .recovery import should_attempt_recovery
from .return_urls import ACCOUNT_PATH, ReturnState, build_return_url, parse_return_state

logger = logging.getLogger("api.payment_session")

DEFAULT_ERROR_MESSAGE = "An error occurred processing your payment."
INIT_FAILED_MESSAGE = "Failed to initialize payment system. Please try again later."
PORTAL_FAILED_MESSAGE = "Failed to open payment portal. Please try again."
RECOVERY_RETRY_DELAY_SEC = 0.5
SESSION_TTL_SEC = 4 * 60 * 60

AUTH_GUIDANCE_CODES = (PERMISSION_DENIED, NOT_AUTHENTICATED)
EMAIL_GUIDANCE_CODES = (MISSING_EMAIL, INVALID_EMAIL)


class SessionStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


@dataclass
class PaymentState:
    """Everything the dashboard knows about a user's payment setup."""
    user_id: Optional[str] = None
    status: SessionStatus = SessionStatus.UNINITIALIZED
    customer_id: Optional[str] = None
    has_payment_method: bool = False
    payment_methods: List[PaymentMethod] = field(default_factory=list)
    payment_error: Optional[str] = None
    payment_loading: bool = False
    is_recovering: bool = False
    # Not atomic: two overlapping setups may both see False
    recovery_attempted: bool = False

    def reset(self) -> None:
        self.status = SessionStatus.UNINITIALIZED
        self.customer_id = None
        self.has_payment_method = False
        self.payment_methods = []
        self.payment_error = None
        self.payment_loading = False
        self.is_recovering = False
        self.recovery_attempted = False

    def to_response(self) -> PaymentStateResponse:
        return PaymentStateResponse(
            status=self.status.value,
            userId=self.user_id,
            customerId=self.customer_id,
            hasPaymentMethod=self.has_payment_method,
            paymentMethods=list(self.payment_methods),
            paymentError=self.payment_error,
            paymentLoading=self.payment_loading,
            isRecovering=self.is_recovering,
            recoveryAttempted=self.recovery_attempted,
        )


class PaymentStateStore:
    """Process-local map of uid -> PaymentState.

    Entries idle for longer than ``ttl`` seconds are dropped on the next ``get``;
    a dropped session comes back as ``uninitialized``.
    """

    def __init__(self, ttl: float = SESSION_TTL_SEC, clock: Callable[[], float] = time.monotonic) -> None:
        self._lock = threading.Lock()
        self._states: Dict[str, PaymentState] = {}
        self._touched: Dict[str, float] = {}
        self.ttl = ttl
        self._clock = clock

    def _prune(self, now: float) -> None:
        expired = [uid for uid, at in self._touched.items() if now - at > self.ttl]
        for uid in expired:
            self._states.pop(uid, None)
            self._touched.pop(uid, None)
        if expired:
            logger.info("Expired %d idle payment sessions", len(expired))

    def get(self, uid: str) -> PaymentState:
        with self._lock:
            now = self._clock()
            self._prune(now)
            state = self._states.get(uid)
            if state is None:
                state = PaymentState(user_id=uid)
                self._states[uid] = state
            self._touched[uid] = now
            return state

    def peek(self, uid: str) -> PaymentState:
        """Stored state for ``uid``, or a detached fresh one; never adds an entry."""
        with self._lock:
            now = self._clock()
            state = self._states.get(uid)
            if state is None or now - self._touched[uid] > self.ttl:
                return PaymentState(user_id=uid)
            self._touched[uid] = now
            return state

    def discard(self, uid: str) -> None:
        with self._lock:
            self._states.pop(uid, None)
            self._touched.pop(uid, None)

    def __contains__(self, uid: object) -> bool:
        with self._lock:
            return uid in self._states

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)


# =============================================================================
# SIDE-EFFECT SINKS
# =============================================================================

class Notifier(Protocol):
    def toast(self, toast: ToastModel) -> None:
        ...


class Navigator(Protocol):
    def assign(self, url: str) -> None:
        ...


class ToastCollector:
    """Buffers toasts so the HTTP layer can return them with the response."""

    def __init__(self) -> None:
        self.toasts: List[ToastModel] = []

    def toast(self, toast: ToastModel) -> None:
        self.toasts.append(toast)


class RedirectCapture:
    """Records the last navigation instead of moving a browser."""

    def __init__(self) -> None:
        self.url: Optional[str] = None

    def assign(self, url: str) -> None:
        self.url = url


class CustomerEnsurer(Protocol):
    def ensure_customer(self, user_id: Optional[str] = None) -> str:
        ...


class PortalLinks(Protocol):
    def create_portal_link(self, return_url: str) -> str:
        ...


FailureRecorder = Callable[[str, Optional[str], Optional[str]], None]


# =============================================================================
# CONTROLLER
# =============================================================================

class PaymentController:
    """Runs session operations against one ``PaymentState``."""

    def __init__(
        self,
        state: PaymentState,
        *,
        customers: CustomerEnsurer,
        portal: PortalLinks,
        notifier: Notifier,
        navigator: Navigator,
        origin: str,
        record_failure: Optional[FailureRecorder] = None,
        sleep: Callable[[float], None] = time.sleep,
        retry_delay: float = RECOVERY_RETRY_DELAY_SEC,
    ) -> None:
        self.state = state
        self.customers = customers
        self.portal = portal
        self.notifier = notifier
        self.navigator = navigator
        self.origin = origin
        self.record_failure = record_failure
        self.sleep = sleep
        self.retry_delay = retry_delay

    def _toast(self, title: str, description: str, *, variant: str = "default", duration: Optional[int] = None) -> None:
        self.notifier.toast(ToastModel(title=title, description=description, variant=variant, duration=duration))

    # -- lifecycle ----------------------------------------------------------

    def initialize(self) -> PaymentState:
        """Ensure the customer exists after login; always ends in ``ready``."""
        state = self.state
        if not state.user_id:
            state.reset()
            return state

        state.status = SessionStatus.INITIALIZING
        try:
            try:
                state.customer_id = self.customers.ensure_customer(state.user_id)
            except PaymentError as exc:
                logger.error("Error ensuring Stripe customer uid=%s: %s (%s)", state.user_id, exc.message, exc.code)
            # Portal-only: we never fetch methods ourselves
            state.payment_methods = []
            state.has_payment_method = False
        except Exception:
            logger.exception("Error initializing payment uid=%s", state.user_id)
            state.payment_error = INIT_FAILED_MESSAGE
        finally:
            state.payment_loading = False
            state.status = SessionStatus.READY
        return state

    def reset(self) -> PaymentState:
        self.state.reset()
        return self.state

    def refresh_payment_methods(self) -> None:
        if not self.state.user_id:
            return
        self.state.payment_methods = []
        self.state.has_payment_method = False
        self.state.payment_loading = False

    def clear_payment_error(self) -> None:
        self.state.payment_error = None

    def check_valid_payment(self) -> bool:
        # Real validation happens when a charge is attempted
        return True

    # -- error handling -----------------------------------------------------

    def handle_payment_error(
        self,
        error: BaseException,
        job_id: Optional[str] = None,
        application_id: Optional[str] = None,
    ) -> None:
        """Route a failure through the recovery heuristic, or surface it."""
        state = self.state
        message = error_message(error) or DEFAULT_ERROR_MESSAGE
        code = error_code(error)
        logger.warning("Payment error uid=%s code=%s: %s", state.user_id, code or "-", message)

        if state.user_id and should_attempt_recovery(message, code):
            self._toast(
                "Updating payment profile",
                "We're updating your payment information. Please try again in a moment.",
                duration=3000,
            )
            state.is_recovering = True
            try:
                self.customers.ensure_customer(state.user_id)
            except Exception as recovery_error:
                logger.error("Recovery failed uid=%s: %s", state.user_id, recovery_error)
                state.payment_error = message
                self._toast("Payment Failed", message, variant="destructive")
            else:
                state.payment_error = None
                self._toast("Payment profile updated", "Please try your payment again.", duration=3000)
            finally:
                state.is_recovering = False
            return

        state.payment_error = message
        self._toast("Payment Failed", message, variant="destructive")

        if state.user_id and self.record_failure is not None:
            try:
                self.record_failure(state.user_id, job_id, application_id)
            except Exception as exc:
                logger.error("Error updating payment failure status uid=%s: %s", state.user_id, exc)

    # -- portal redirects ---------------------------------------------------

    def redirect_to_portal(self, return_url: Optional[str] = None) -> Optional[str]:
        """Send the browser to the customer portal; failures end in a toast, not a retry."""
        if not self.state.user_id:
            return None
        try:
            url = self.portal.create_portal_link(return_url or build_return_url(self.origin, ACCOUNT_PATH))
        except Exception as exc:
            logger.error("Error redirecting to Stripe portal uid=%s: %s", self.state.user_id, exc)
            self._toast("Error", PORTAL_FAILED_MESSAGE, variant="destructive")
            return None
        self.navigator.assign(url)
        return url

    def remove_payment_method(self, payment_method_id: str) -> bool:
        logger.info("Remove payment method %s uid=%s via portal", payment_method_id, self.state.user_id)
        self.redirect_to_portal()
        return False

    def set_default_payment_method(self, payment_method_id: str) -> bool:
        logger.info("Set default payment method %s uid=%s via portal", payment_method_id, self.state.user_id)
        self.redirect_to_portal()
        return False

    def _setup_redirect(self) -> str:
        return_url = build_return_url(self.origin, ACCOUNT_PATH, setup="complete")
        try:
            url = self.portal.create_portal_link(return_url)
        except PaymentError as exc:
            if exc.code in (INCOMPLETE_PROFILE,) + EMAIL_GUIDANCE_CODES + AUTH_GUIDANCE_CODES:
                raise
            raise PaymentError("Failed to set up payment method. Please try again.", SETUP_FAILED) from exc
        except Exception as exc:
            raise PaymentError("Failed to set up payment method. Please try again.", SETUP_FAILED) from exc
        self.navigator.assign(url)
        return url

    def setup_payment_method(self) -> Optional[str]:
        """Start adding a payment method in the portal.

        A recoverable failure gets one ensure-customer repair and a single
        delayed retry; ``reset_setup()`` re-arms it.
        """
        state = self.state
        state.payment_loading = True
        state.payment_error = None
        try:
            return self._setup_redirect()
        except PaymentError as err:
            if self._guide_user(err):
                return None

            if should_attempt_recovery(err.message, err.code) and not state.recovery_attempted:
                state.recovery_attempted = True
                return self._recover_setup()

            state.payment_error = err.message
            self._toast("Payment setup failed", err.message, variant="destructive")
            return None
        finally:
            state.payment_loading = False

    def _guide_user(self, err: PaymentError) -> bool:
        if err.code == INCOMPLETE_PROFILE:
            self.state.payment_error = (
                "Your profile is incomplete. Please complete your profile setup before adding a payment method."
            )
            self._toast(
                "Profile Incomplete",
                "Please complete your profile setup with all required information.",
                variant="destructive",
            )
            return True
        if err.code in EMAIL_GUIDANCE_CODES:
            self.state.payment_error = "A valid email address is required for payment setup. Please update your profile."
            self._toast("Email Required", "Please add a valid email address to your profile to continue.", variant="destructive")
            return True
        if err.code in AUTH_GUIDANCE_CODES:
            self.state.payment_error = "You do not have permission to access payment features. Please log in again."
            self._toast("Authentication Error", "Please log in again to access payment features.", variant="destructive")
            return True
        return False

    def _recover_setup(self) -> Optional[str]:
        state = self.state
        self._toast("Recovering payment profile", "Please wait while we fix your payment profile...")
        try:
            self.customers.ensure_customer(state.user_id)
            self.sleep(self.retry_delay)
            self._toast("Recovery successful", "Your payment profile has been fixed.")
            url = self._setup_redirect()
        except PaymentError as recovery_err:
            if recovery_err.code == INCOMPLETE_PROFILE:
                state.payment_error = "Your profile is incomplete. Please update your profile information."
                self._toast("Profile Update Required", "Please complete your profile before trying again.", variant="destructive")
            elif recovery_err.code == MISSING_EMAIL:
                state.payment_error = "An email address is required. Please add an email to your profile."
                self._toast(
                    "Email Required",
                    "Please add an email address to your profile before trying again.",
                    variant="destructive",
                )
            else:
                state.payment_error = recovery_err.message
                self._toast("Recovery failed", "Unable to set up payment method. Please try again later.", variant="destructive")
            return None
        except Exception as recovery_err:
            state.payment_error = str(recovery_err)
            self._toast("Recovery failed", "Unable to set up payment method. Please try again later.", variant="destructive")
            return None
        state.payment_error = None
        return url

    def reset_setup(self) -> None:
        self.state.recovery_attempted = False

    # -- return from provider pages ----------------------------------------

    def complete_return(self, query: str) -> ReturnState:
        result = parse_return_state(query)
        if result is ReturnState.SETUP_COMPLETE:
            self.refresh_payment_methods()
            self.reset_setup()
            self._toast("Payment method updated", "Your payment methods have been updated.")
        elif result is ReturnState.PAYMENT_SUCCESS:
            self.state.payment_error = None
            self._toast("Payment successful", "Your subscription is now active.")
        elif result is ReturnState.PAYMENT_CANCELED:
            self._toast("Checkout canceled", "No charges were made.")
        return result
