from __future__ import annotations

import pytest

from quickhire_api.payments.customers import AuthenticatedUser, CustomerService, classify_failure, recovery_log_path
from quickhire_api.payments.errors import CallableError, PaymentError

from .conftest import FakeExtension, FakeFirestore

UID = "user-1"


def make_service(db, extension=None, current_user=None) -> CustomerService:
    return CustomerService(db, extension or FakeExtension(), current_user)


def test_ensure_without_user_fails_without_writes():
    db = FakeFirestore()
    extension = FakeExtension()

    with pytest.raises(PaymentError) as excinfo:
        make_service(db, extension).ensure_customer()

    assert excinfo.value.code == "not-authenticated"
    assert db.writes == []
    assert extension.calls == []


def test_ensure_uses_current_user_when_uid_omitted():
    db = FakeFirestore({f"users/{UID}": {"email": "pat@example.com"}})
    service = make_service(db, current_user=AuthenticatedUser(uid=UID))

    assert service.ensure_customer() == "cus_123"


def test_missing_email_fails_before_calling_extension():
    db = FakeFirestore({f"users/{UID}": {"fullName": "Pat Rivera"}})
    extension = FakeExtension()

    with pytest.raises(PaymentError) as excinfo:
        make_service(db, extension).ensure_customer(UID)

    assert excinfo.value.code == "missing-email"
    assert extension.calls == []
    assert db.docs[recovery_log_path(UID)]["status"] == "failed"
    assert db.docs[recovery_log_path(UID)]["errorCode"] == "missing-email"


def test_missing_user_document_is_incomplete_profile():
    db = FakeFirestore()

    with pytest.raises(PaymentError) as excinfo:
        make_service(db).ensure_customer(UID)

    assert excinfo.value.code == "incomplete-profile"
    assert f"users/{UID}" not in db.docs


def test_valid_profile_links_customer_id_in_both_documents():
    db = FakeFirestore({f"users/{UID}": {"email": "pat@example.com", "fullName": "Pat Rivera"}})
    extension = FakeExtension()

    customer_id = make_service(db, extension).ensure_customer(UID)

    assert customer_id == "cus_123"
    assert db.docs[f"users/{UID}"]["stripeCustomerId"] == "cus_123"
    assert db.docs[f"customers/{UID}"]["customerId"] == "cus_123"
    assert db.docs[f"customers/{UID}"]["email"] == "pat@example.com"
    assert extension.calls == [("create_customer", {"email": "pat@example.com", "name": "Pat Rivera"})]


def test_existing_customer_document_is_updated_not_replaced():
    db = FakeFirestore({
        f"users/{UID}": {"email": "pat@example.com", "displayName": "Pat"},
        f"customers/{UID}": {"stripeLink": "https://dashboard.stripe.com/x"},
    })

    make_service(db).ensure_customer(UID)

    customer = db.docs[f"customers/{UID}"]
    assert customer["stripeLink"] == "https://dashboard.stripe.com/x"
    assert customer["customerId"] == "cus_123"
    assert customer["name"] == "Pat"
    assert "createdAt" not in customer


def test_recovery_log_counts_attempts_and_records_completion():
    db = FakeFirestore({f"users/{UID}": {"email": "pat@example.com"}})
    service = make_service(db)

    service.ensure_customer(UID)
    service.ensure_customer(UID)

    log = db.docs[recovery_log_path(UID)]
    assert log["attempts"] == 2
    assert log["status"] == "completed"
    assert log["customerId"] == "cus_123"
    assert log["triggeredFrom"] == "ensureStripeCustomer"


def test_failed_log_write_does_not_change_outcome():
    db = FakeFirestore({f"users/{UID}": {"email": "pat@example.com"}})
    db.failing_paths.add(recovery_log_path(UID))

    assert make_service(db).ensure_customer(UID) == "cus_123"


def test_callable_failure_is_classified_and_logged():
    db = FakeFirestore({f"users/{UID}": {"email": "pat@example.com"}})
    extension = FakeExtension()
    extension.customer_errors.append(RuntimeError("Stripe API unreachable"))

    with pytest.raises(PaymentError) as excinfo:
        make_service(db, extension).ensure_customer(UID)

    assert excinfo.value.code == "api-error"
    assert db.docs[recovery_log_path(UID)]["status"] == "failed"
    assert "stripeCustomerId" not in db.docs[f"users/{UID}"]


def test_payment_errors_pass_through_classification_unchanged():
    original = CallableError("No such customer", "not-found", function_name="createCustomer")
    assert classify_failure(original) is original


@pytest.mark.parametrize(
    "message, code",
    [
        ("document not found", "incomplete-profile"),
        ("bad email", "invalid-email"),
        ("permission check failed", "permission-denied"),
        ("customer lookup broke", "api-error"),
        ("boom", "customer-creation-failed"),
    ],
)
def test_classify_failure_buckets_generic_errors(message, code):
    assert classify_failure(RuntimeError(message)).code == code
