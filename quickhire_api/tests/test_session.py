from __future__ import annotations

from typing import List, Optional, Tuple

import pytest

from quickhire_api.payments.errors import CallableError, PaymentError
from quickhire_api.payments.return_urls import ReturnState
from quickhire_api.payments.session import (
    INIT_FAILED_MESSAGE,
    PORTAL_FAILED_MESSAGE,
    PaymentController,
    PaymentState,
    PaymentStateStore,
    SessionStatus,
)

from .conftest import FakeCustomers, FakeExtension, FakeNavigator, FakeNotifier

ORIGIN = "https://quickhirecrew.com"


class Harness:
    def __init__(self, uid: Optional[str] = "user-1") -> None:
        self.state = PaymentState(user_id=uid)
        self.customers = FakeCustomers()
        self.portal = FakeExtension()
        self.notifier = FakeNotifier()
        self.navigator = FakeNavigator()
        self.failures: List[Tuple[str, Optional[str], Optional[str]]] = []
        self.sleeps: List[float] = []
        self.controller = PaymentController(
            self.state,
            customers=self.customers,
            portal=self.portal,
            notifier=self.notifier,
            navigator=self.navigator,
            origin=ORIGIN,
            record_failure=lambda uid, job, app: self.failures.append((uid, job, app)),
            sleep=self.sleeps.append,
        )


@pytest.fixture
def h() -> Harness:
    return Harness()


# -- lifecycle ---------------------------------------------------------------

def test_initialize_ensures_customer_and_becomes_ready(h):
    h.controller.initialize()

    assert h.state.status is SessionStatus.READY
    assert h.state.customer_id == "cus_123"
    assert h.state.payment_methods == []
    assert h.state.has_payment_method is False
    assert h.state.payment_error is None
    assert h.customers.calls == ["user-1"]


def test_initialize_swallows_customer_errors(h):
    h.customers.errors.append(PaymentError("An email address is required", "missing-email"))

    h.controller.initialize()

    assert h.state.status is SessionStatus.READY
    assert h.state.customer_id is None
    assert h.state.payment_error is None


def test_initialize_unexpected_failure_sets_generic_error(h):
    h.customers.errors.append(RuntimeError("boom"))

    h.controller.initialize()

    assert h.state.status is SessionStatus.READY
    assert h.state.payment_error == INIT_FAILED_MESSAGE


def test_initialize_without_user_resets():
    h = Harness(uid=None)
    h.state.payment_error = "stale"

    h.controller.initialize()

    assert h.state.status is SessionStatus.UNINITIALIZED
    assert h.state.payment_error is None
    assert h.customers.calls == []


def test_reset_clears_everything_but_user(h):
    h.controller.initialize()
    h.state.payment_error = "x"
    h.state.recovery_attempted = True

    h.controller.reset()

    assert h.state.status is SessionStatus.UNINITIALIZED
    assert h.state.customer_id is None
    assert h.state.payment_error is None
    assert h.state.recovery_attempted is False
    assert h.state.user_id == "user-1"


def test_check_valid_payment_is_always_true(h):
    assert h.controller.check_valid_payment() is True


def test_clear_payment_error(h):
    h.state.payment_error = "declined"
    h.controller.clear_payment_error()
    assert h.state.payment_error is None


def test_state_store_returns_same_state_per_uid():
    store = PaymentStateStore()
    first = store.get("a")
    first.customer_id = "cus_a"

    assert store.get("a") is first
    assert store.get("b") is not first
    assert len(store) == 2

    store.discard("a")
    assert "a" not in store
    assert store.get("a").customer_id is None


def test_state_store_peek_does_not_add_entries():
    store = PaymentStateStore()

    state = store.peek("a")

    assert state.user_id == "a"
    assert state.status is SessionStatus.UNINITIALIZED
    assert "a" not in store
    assert len(store) == 0


def test_state_store_drops_idle_sessions():
    now = [0.0]
    store = PaymentStateStore(ttl=60, clock=lambda: now[0])
    store.get("idle").customer_id = "cus_idle"
    store.get("busy")

    now[0] = 50.0
    store.get("busy")
    now[0] = 100.0
    assert store.peek("idle").customer_id is None

    store.get("other")

    assert "idle" not in store
    assert "busy" in store
    assert len(store) == 2


# -- error handling ------------------------------------------------------------

def test_non_recoverable_error_surfaces_and_records_failure(h):
    h.controller.handle_payment_error(
        PaymentError("Your card was declined.", "card-declined"), job_id="job-9", application_id="app-3"
    )

    assert h.state.payment_error == "Your card was declined."
    assert h.notifier.titles() == ["Payment Failed"]
    assert h.notifier.toasts[0].variant == "destructive"
    assert h.failures == [("user-1", "job-9", "app-3")]
    assert h.customers.calls == []


def test_recoverable_error_repairs_customer_quietly(h):
    h.controller.handle_payment_error(PaymentError("No such customer: cus_old", "not-found"))

    assert h.customers.calls == ["user-1"]
    assert h.state.payment_error is None
    assert h.state.is_recovering is False
    assert h.notifier.titles() == ["Updating payment profile", "Payment profile updated"]
    assert h.failures == []


def test_failed_recovery_surfaces_original_message(h):
    h.customers.errors.append(RuntimeError("still broken"))

    h.controller.handle_payment_error(PaymentError("No such customer: cus_old", "not-found"))

    assert h.state.payment_error == "No such customer: cus_old"
    assert h.state.is_recovering is False
    assert h.notifier.titles() == ["Updating payment profile", "Payment Failed"]


def test_plain_exception_uses_its_text(h):
    h.controller.handle_payment_error(ValueError("network down"))

    assert h.state.payment_error == "network down"


def test_failure_recorder_errors_are_swallowed(h):
    def broken(uid, job, app):
        raise RuntimeError("firestore down")

    h.controller.record_failure = broken
    h.controller.handle_payment_error(PaymentError("Your card was declined.", "card-declined"))

    assert h.state.payment_error == "Your card was declined."


# -- portal redirects ---------------------------------------------------------

def test_remove_and_set_default_redirect_to_portal_url(h):
    assert h.controller.remove_payment_method("pm_1") is False
    assert h.controller.set_default_payment_method("pm_1") is False

    assert h.navigator.assigned == [h.portal.portal_url, h.portal.portal_url]
    assert h.state.payment_methods == []
    assert h.state.has_payment_method is False


def test_portal_return_url_points_at_account(h):
    h.controller.redirect_to_portal()

    assert h.portal.calls == [("create_portal_link", {"return_url": f"{ORIGIN}/account"})]


def test_portal_failure_shows_toast_and_does_not_navigate(h):
    h.portal.portal_errors.append(CallableError("internal", "internal"))

    assert h.controller.redirect_to_portal() is None
    assert h.navigator.assigned == []
    assert h.notifier.toasts[0].title == "Error"
    assert h.notifier.toasts[0].description == PORTAL_FAILED_MESSAGE


# -- setup with recovery --------------------------------------------------------

def test_setup_redirects_with_setup_complete_flag(h):
    url = h.controller.setup_payment_method()

    assert url == h.portal.portal_url
    assert h.navigator.assigned == [url]
    assert h.portal.calls[0][1]["return_url"] == f"{ORIGIN}/account?setup=complete"
    assert h.state.payment_loading is False


def test_setup_recovers_once_then_retries(h):
    h.portal.portal_errors.append(CallableError("customer not found", "not-found"))

    url = h.controller.setup_payment_method()

    assert url == h.portal.portal_url
    assert h.customers.calls == ["user-1"]
    assert h.sleeps == [0.5]
    assert h.state.recovery_attempted is True
    assert h.state.payment_error is None
    assert "Recovery successful" in h.notifier.titles()


def test_setup_recovery_is_not_repeated_until_reset(h):
    h.portal.portal_errors.extend([
        CallableError("customer not found", "not-found"),
        CallableError("customer not found", "not-found"),
        CallableError("customer not found", "not-found"),
        CallableError("customer not found", "not-found"),
    ])

    assert h.controller.setup_payment_method() is None
    assert h.controller.setup_payment_method() is None
    assert h.customers.calls == ["user-1"]
    assert h.state.payment_error == "Failed to set up payment method. Please try again."

    h.controller.reset_setup()
    h.controller.setup_payment_method()
    assert h.customers.calls == ["user-1", "user-1"]


def test_setup_profile_guidance_skips_recovery(h):
    h.portal.portal_errors.append(PaymentError("Your user profile is incomplete.", "incomplete-profile"))

    assert h.controller.setup_payment_method() is None
    assert h.customers.calls == []
    assert h.notifier.titles() == ["Profile Incomplete"]
    assert "profile is incomplete" in h.state.payment_error


def test_setup_auth_guidance(h):
    h.portal.portal_errors.append(PaymentError("nope", "permission-denied"))

    h.controller.setup_payment_method()

    assert h.notifier.titles() == ["Authentication Error"]
    assert h.customers.calls == []


def test_setup_recovery_hitting_missing_email_guides_user(h):
    h.portal.portal_errors.append(CallableError("customer not found", "not-found"))
    h.customers.errors.append(PaymentError("An email address is required", "missing-email"))

    assert h.controller.setup_payment_method() is None
    assert h.notifier.titles()[-1] == "Email Required"
    assert h.state.payment_error == "An email address is required. Please add an email to your profile."
    assert h.navigator.assigned == []


# -- return handling -------------------------------------------------------------

def test_setup_return_rearms_recovery_and_toasts(h):
    h.state.recovery_attempted = True

    result = h.controller.complete_return("?setup=complete")

    assert result is ReturnState.SETUP_COMPLETE
    assert h.state.recovery_attempted is False
    assert h.notifier.titles() == ["Payment method updated"]


def test_payment_success_return_clears_error(h):
    h.state.payment_error = "old"

    assert h.controller.complete_return("payment=success") is ReturnState.PAYMENT_SUCCESS
    assert h.state.payment_error is None


def test_plain_return_does_nothing(h):
    assert h.controller.complete_return("") is ReturnState.NONE
    assert h.notifier.toasts == []
