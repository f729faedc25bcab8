"""Billing router - plans, subscription status and checkout.

Reads come from the collections the Stripe extension keeps in Firestore;
checkout goes through the extension's createCheckoutSession callable.
"""

import logging

from fastapi import APIRouter, Depends, Request
from firebase_admin import firestore

from ..dependencies import get_current_user, get_extension_client, get_firestore, get_request_origin
from ..middleware.rate_limit import rate_limit_payment, rate_limit_read
from ..models import (
    CheckoutRequest,
    ErrorResponse,
    PaymentMethodsResponse,
    PlansResponse,
    RedirectResponseModel,
    SubscriptionResponse,
)
from ..payments.catalog import build_plan_views, create_checkout_session, load_products, summarize_subscription
from ..payments.customers import AuthenticatedUser
from ..payments.extension import ExtensionClient
from ..payments.mirrors import (
    parse_payment_method,
    parse_subscription,
    payment_methods_path,
    read_collection,
    select_active_subscription,
    subscription_status_for,
    subscriptions_path,
)

router = APIRouter()
logger = logging.getLogger("api.billing")


def _load_subscriptions(db: firestore.Client, uid: str):
    subscriptions = []
    for record in read_collection(db, subscriptions_path(uid)):
        try:
            subscriptions.append(parse_subscription(record))
        except Exception as exc:
            logger.warning("Skipping unparseable subscription %s uid=%s: %s", record.id, uid, exc)
    return subscriptions


@router.get("/billing/payment-methods", response_model=PaymentMethodsResponse)
@rate_limit_read
def get_payment_methods(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    db: firestore.Client = Depends(get_firestore),
) -> PaymentMethodsResponse:
    methods = [parse_payment_method(r) for r in read_collection(db, payment_methods_path(user.uid))]
    return PaymentMethodsResponse(paymentMethods=methods, hasPaymentMethod=bool(methods))


@router.get("/billing/subscription", response_model=SubscriptionResponse)
@rate_limit_read
def get_subscription(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    db: firestore.Client = Depends(get_firestore),
) -> SubscriptionResponse:
    """Newest active or trialing subscription, or ``null``."""
    active = select_active_subscription(_load_subscriptions(db, user.uid))
    return SubscriptionResponse(subscription=summarize_subscription(active) if active else None)


@router.get("/billing/plans", response_model=PlansResponse)
@rate_limit_read
def get_plans(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    db: firestore.Client = Depends(get_firestore),
) -> PlansResponse:
    status = subscription_status_for(_load_subscriptions(db, user.uid))
    plans = build_plan_views(load_products(db), status, user.stripe_role)
    return PlansResponse(plans=plans, subscriptionStatus=status)


@router.post(
    "/billing/checkout",
    response_model=RedirectResponseModel,
    responses={502: {"model": ErrorResponse}},
)
@rate_limit_payment
def start_checkout(
    request: Request,
    body: CheckoutRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    client: ExtensionClient = Depends(get_extension_client),
    origin: str = Depends(get_request_origin),
) -> RedirectResponseModel:
    logger.info("Starting checkout uid=%s price=%s", user.uid, body.priceId)
    return RedirectResponseModel(url=create_checkout_session(client, body.priceId, origin))
