"""Pricing plans, checkout sessions and display formatting.

Products and prices are synced by the extension into
``products/{productId}`` and ``products/{productId}/prices/{priceId}``.
A plan is the user's current plan when their subscription is ``active`` and
the product's ``metadata.firebaseRole`` equals the ``stripeRole`` claim.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from google.cloud import firestore  # type: ignore

from ..models import PlanPriceView, PlanView, Price, Product, Subscription, SubscriptionSummary
from .mirrors import parse_price, parse_product_info
from .return_urls import ACCOUNT_PATH, PRICING_PATH, build_return_url

logger = logging.getLogger("api.catalog")

ROLE_METADATA_KEY = "firebaseRole"
CURRENT_PLAN_LABEL = "Current Plan"

CURRENCY_SYMBOLS: Dict[str, str] = {
    "usd": "$",
    "eur": "€",
    "gbp": "£",
    "cad": "CA$",
    "aud": "A$",
    "mxn": "MX$",
}


class CheckoutSessions(Protocol):
    def create_checkout_session(self, payload: Dict[str, Any]) -> str:
        ...


def format_currency(amount: int, currency: Optional[str]) -> str:
    """Format Stripe minor units: ``format_currency(1250, "usd") == "$12.50"``."""
    code = (currency or "usd").lower()
    value = (amount or 0) / 100
    symbol = CURRENCY_SYMBOLS.get(code)
    if symbol is None:
        return f"{code.upper()} {value:,.2f}"
    sign = "-" if value < 0 else ""
    return f"{sign}{symbol}{abs(value):,.2f}"


def format_date(value: Optional[datetime]) -> str:
    if value is None:
        return "N/A"
    return f"{value.strftime('%B')} {value.day}, {value.year}"


def status_label(status: str) -> str:
    return status[:1].upper() + status[1:] if status else ""


def load_products(db: firestore.Client) -> List[Product]:
    """Active products with their active prices."""
    products: List[Product] = []
    for product_doc in db.collection("products").stream():
        data = product_doc.to_dict() or {}
        if not data.get("active"):
            continue

        prices: List[Price] = []
        for price_doc in db.collection(f"products/{product_doc.id}/prices").stream():
            price_data = price_doc.to_dict() or {}
            if price_data.get("active") is not True:
                continue
            prices.append(parse_price(price_doc.id, price_data))

        info = parse_product_info(product_doc.id, data)
        products.append(Product(**info.model_dump(), prices=prices))
    logger.debug("Loaded %d active products", len(products))
    return products


def _price_for_interval(prices: Sequence[Price], interval: str) -> Optional[Price]:
    return next((p for p in prices if p.interval == interval), None)


def yearly_savings_percent(monthly: Price, yearly: Price) -> Optional[int]:
    if not monthly.unit_amount:
        return None
    # half-up, not banker's rounding
    return int(math.floor(100 - ((yearly.unit_amount / 12) * 100) / monthly.unit_amount + 0.5))


def is_current_plan(product: Product, subscription_status: Optional[str], stripe_role: Optional[str]) -> bool:
    role = product.metadata.get(ROLE_METADATA_KEY, "")
    return subscription_status == "active" and role == stripe_role


def build_plan_views(
    products: Sequence[Product],
    subscription_status: Optional[str],
    stripe_role: Optional[str],
) -> List[PlanView]:
    views: List[PlanView] = []
    for product in products:
        current = is_current_plan(product, subscription_status, stripe_role)
        monthly = _price_for_interval(product.prices, "month")
        yearly = _price_for_interval(product.prices, "year")

        def price_view(price: Optional[Price], interval: str, label: str) -> Optional[PlanPriceView]:
            if price is None:
                return None
            return PlanPriceView(
                priceId=price.id,
                amountLabel=format_currency(price.unit_amount, price.currency),
                interval=interval,
                buttonLabel=CURRENT_PLAN_LABEL if current else label,
                disabled=current,
            )

        views.append(
            PlanView(
                productId=product.id,
                name=product.name,
                description=product.description,
                isCurrentPlan=current,
                monthly=price_view(monthly, "month", "Subscribe Monthly"),
                yearly=price_view(yearly, "year", "Subscribe Yearly"),
                yearlySavingsPercent=yearly_savings_percent(monthly, yearly) if monthly and yearly else None,
                features=[v for k, v in product.metadata.items() if k != ROLE_METADATA_KEY],
            )
        )
    return views


def summarize_subscription(subscription: Subscription) -> SubscriptionSummary:
    price = subscription.price
    product = subscription.product
    price_label = None
    interval_label = None
    if price is not None and price.unit_amount:
        price_label = format_currency(price.unit_amount, price.currency)
    if price is not None and price.interval:
        interval_label = f"/{price.interval}"
        if (price.interval_count or 1) > 1:
            interval_label += f" ({price.interval_count} {price.interval}s)"

    return SubscriptionSummary(
        id=subscription.id,
        status=subscription.status,
        statusLabel=status_label(subscription.status),
        planName=product.name if product else "",
        planDescription=product.description if product else "",
        priceLabel=price_label,
        intervalLabel=interval_label,
        currentPeriod=f"{format_date(subscription.current_period_start)} - {format_date(subscription.current_period_end)}",
        createdOn=format_date(subscription.created),
        canceledOn=format_date(subscription.canceled_at) if subscription.canceled_at else None,
        cancelsAtPeriodEnd=subscription.cancel_at_period_end,
    )


def checkout_payload(price_id: str, origin: str) -> Dict[str, Any]:
    return {
        "price": price_id,
        "success_url": build_return_url(origin, ACCOUNT_PATH, payment="success"),
        "cancel_url": build_return_url(origin, PRICING_PATH, payment="canceled"),
        "mode": "subscription",
        "allow_promotion_codes": True,
    }


def create_checkout_session(client: CheckoutSessions, price_id: str, origin: str) -> str:
    """Ask the extension for a hosted checkout URL for ``price_id``."""
    url = client.create_checkout_session(checkout_payload(price_id, origin))
    logger.info("Checkout session created price=%s", price_id)
    return url
