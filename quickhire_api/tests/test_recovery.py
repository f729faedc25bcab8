from __future__ import annotations

import pytest

from quickhire_api.payments.recovery import NON_RECOVERABLE_CODES, RECOVERABLE_CODES, should_attempt_recovery


@pytest.mark.parametrize("code", sorted(RECOVERABLE_CODES | NON_RECOVERABLE_CODES) + ["", None, 400])
def test_permission_denied_message_never_recovers(code):
    assert should_attempt_recovery("Permission denied: caller cannot read customers", code) is False


@pytest.mark.parametrize("code", ["not-found", "failed-precondition", "customer-not-found", "setup-failed", "400"])
def test_recoverable_codes_trigger_recovery(code):
    assert should_attempt_recovery("Something went wrong", code) is True


def test_legacy_prefixed_codes_are_normalized():
    assert should_attempt_recovery("Something went wrong", "stripe/customer-not-found") is True
    assert should_attempt_recovery("Something went wrong", "auth/not-authenticated") is False


def test_numeric_400_code_recovers():
    assert should_attempt_recovery("Bad request", 400) is True


def test_resource_exhausted_recovers_by_code_and_message():
    assert should_attempt_recovery("quota", "resource-exhausted") is True
    assert should_attempt_recovery("resource-exhausted: try later", None) is True


def test_non_recoverable_code_wins_over_customer_message():
    assert should_attempt_recovery("No such customer: cus_1", "permission-denied") is False
    assert should_attempt_recovery("customer not found", "unauthenticated") is False


def test_customer_messages_recover_case_insensitively():
    assert should_attempt_recovery("No such customer: cus_123") is True
    assert should_attempt_recovery("Stripe customer ID not found in createCustomer response") is True
    assert should_attempt_recovery("Your Payment Profile needs an update") is True


def test_profile_errors_from_our_own_validation_need_user_action():
    message = "Your user profile is incomplete. Please complete your profile setup first."
    assert should_attempt_recovery(message, "incomplete-profile") is False
    assert should_attempt_recovery(message, "stripe/incomplete-profile") is False
    assert should_attempt_recovery("An email address is required for payment setup.", "missing-email") is False


def test_profile_errors_without_validation_code_recover():
    assert should_attempt_recovery("user profile could not be loaded", "internal") is True
    assert should_attempt_recovery("missing email on customer", None) is True


def test_unrelated_error_does_not_recover():
    assert should_attempt_recovery("Your card was declined.", "card-declined") is False
    assert should_attempt_recovery("", None) is False
