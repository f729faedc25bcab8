#!/usr/bin/env python3
"""Real-time payment mirror listener - follows one user's Stripe extension data.

Prints the user's payment methods and subscription status every time the
extension rewrites them. Useful for checking that portal changes and
checkout webhooks actually land in Firestore.

Firestore paths (written by the extension):
  customers/{uid}/payment_methods/{paymentMethodId}
  customers/{uid}/subscriptions/{subscriptionId}

Usage:
  python scripts/payment_mirror_listener.py --serviceAccount /path/to/sa.json --uid <firebase uid>
"""

from __future__ import annotations

import argparse
import os
import socket
import time
from typing import List

from google.cloud import firestore  # type: ignore

from quickhire_api.models import PaymentMethod, Subscription
from quickhire_api.payments.catalog import format_currency, format_date
from quickhire_api.payments.mirrors import (
    FirestoreCollectionSubscriber,
    PaymentMethodMirror,
    SubscriptionMirror,
    select_active_subscription,
)

WORKER_ID = f"payment-mirror-listener-{socket.gethostname()}-{os.getpid()}"


def get_firestore_client(sa_path: str) -> firestore.Client:
    return firestore.Client.from_service_account_json(sa_path)


def describe_method(method: PaymentMethod) -> str:
    card = method.card
    default = " (default)" if method.is_default else ""
    return f"{card.brand} ****{card.last4} exp {card.exp_month:02d}/{card.exp_year}{default}"


def describe_subscription(sub: Subscription) -> str:
    plan = sub.product.name if sub.product and sub.product.name else (sub.product.id if sub.product else "?")
    price = ""
    if sub.price is not None and sub.price.unit_amount:
        price = f" {format_currency(sub.price.unit_amount, sub.price.currency)}/{sub.price.interval or '?'}"
    return f"{sub.id} [{sub.status}] {plan}{price} until {format_date(sub.current_period_end)}"


def on_methods(methods: List[PaymentMethod]) -> None:
    print(f"  [Methods] {len(methods)} payment method(s)")
    for method in methods:
        print(f"    - {describe_method(method)}")


def on_subscriptions(subscriptions: List[Subscription]) -> None:
    active = select_active_subscription(subscriptions)
    print(f"  [Subscriptions] {len(subscriptions)} total, active: {describe_subscription(active) if active else 'none'}")


def watch_user(sa_path: str, uid: str) -> None:
    print("\n" + "=" * 70)
    print("Payment Mirror Listener (Stripe extension -> Firestore)")
    print(f"Worker: {WORKER_ID}")
    print(f"User:   {uid}")
    print("=" * 70)

    db = get_firestore_client(sa_path)
    subscriber = FirestoreCollectionSubscriber(db)

    methods = PaymentMethodMirror(subscriber, on_update=on_methods)
    subscriptions = SubscriptionMirror(subscriber, on_update=on_subscriptions)
    methods.bind(uid)
    subscriptions.bind(uid)
    print("[+] Listening for payment changes...")

    try:
        while True:
            time.sleep(5)
    except KeyboardInterrupt:
        print("\n\nStopping payment mirror listener...")
    finally:
        methods.close()
        subscriptions.close()


def main():
    parser = argparse.ArgumentParser(
        description="Payment mirror listener - live view of a user's Stripe extension data",
    )
    parser.add_argument("--serviceAccount", required=True, help="Path to Firebase service account JSON")
    parser.add_argument("--uid", required=True, help="Firebase uid whose customer documents to follow")
    args = parser.parse_args()

    watch_user(args.serviceAccount, args.uid)


if __name__ == "__main__":
    main()
