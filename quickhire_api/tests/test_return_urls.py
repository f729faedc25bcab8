from __future__ import annotations

import pytest

from quickhire_api.payments.return_urls import (
    ReturnState,
    build_return_url,
    is_allowed_origin,
    parse_return_state,
    resolve_origin,
)

ALLOWED = ["https://quickhirecrew.com", "http://localhost:5173/"]


def test_build_return_url():
    assert build_return_url("https://quickhirecrew.com/", "/account") == "https://quickhirecrew.com/account"
    assert build_return_url("https://quickhirecrew.com", "account", setup="complete") == (
        "https://quickhirecrew.com/account?setup=complete"
    )


@pytest.mark.parametrize(
    "query, expected",
    [
        ("?setup=complete", ReturnState.SETUP_COMPLETE),
        ("https://quickhirecrew.com/account?setup=complete", ReturnState.SETUP_COMPLETE),
        ("payment=success", ReturnState.PAYMENT_SUCCESS),
        ("payment=canceled", ReturnState.PAYMENT_CANCELED),
        ("payment=cancelled", ReturnState.PAYMENT_CANCELED),
        ("tab=billing", ReturnState.NONE),
        ("", ReturnState.NONE),
        ({"setup": "complete"}, ReturnState.SETUP_COMPLETE),
    ],
)
def test_parse_return_state(query, expected):
    assert parse_return_state(query) is expected


def test_allowed_origin_checks_scheme_and_host():
    assert is_allowed_origin("https://quickhirecrew.com", ALLOWED)
    assert is_allowed_origin("http://localhost:5173", ALLOWED)
    assert not is_allowed_origin("https://evil.example", ALLOWED)
    assert not is_allowed_origin("javascript:alert(1)", ALLOWED)
    assert not is_allowed_origin("", ALLOWED)


def test_resolve_origin_falls_back_to_default():
    assert resolve_origin("http://localhost:5173", ALLOWED, "https://quickhirecrew.com") == "http://localhost:5173"
    assert resolve_origin("https://evil.example", ALLOWED, "https://quickhirecrew.com/") == "https://quickhirecrew.com"
    assert resolve_origin("", ALLOWED, "https://quickhirecrew.com") == "https://quickhirecrew.com"
