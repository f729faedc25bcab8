"""Pydantic models for the Payments API.

Domain records mirror the documents the Stripe Firestore extension writes
under ``customers/{uid}`` and ``products/{id}``. They are read-only views:
nothing in this service constructs them for writing back.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Single Firestore document id, no path separators
DOCUMENT_ID_PATTERN = r"^[A-Za-z0-9_-]{1,128}$"


def to_datetime(value: Any) -> Optional[datetime]:
    """Normalize Firestore timestamps, datetimes, ``{seconds, nanoseconds}`` maps and epoch seconds."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if hasattr(value, "to_datetime"):
        try:
            return to_datetime(value.to_datetime())
        except Exception:
            return None
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
        if seconds is None:
            return None
        try:
            return datetime.fromtimestamp(float(seconds) + float(nanos) / 1_000_000_000, tz=timezone.utc)
        except (TypeError, ValueError):
            return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    return None


# =============================================================================
# DOMAIN RECORDS (mirrored from the extension)
# =============================================================================

class CardDetails(BaseModel):
    brand: str = "unknown"
    last4: str = "****"
    exp_month: int = 0
    exp_year: int = 0


class PaymentMethod(BaseModel):
    """A card or other method synced into ``customers/{uid}/payment_methods``."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    type: str = "card"
    card: CardDetails = Field(default_factory=CardDetails)
    is_default: bool = Field(default=False, alias="isDefault")


class Price(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    active: bool = True
    currency: str = "usd"
    unit_amount: int = 0
    interval: Optional[str] = None
    interval_count: Optional[int] = None
    type: str = "recurring"
    product: Optional[str] = None


class ProductInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    active: bool = True
    images: List[str] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def _stringify_metadata(cls, value: Any) -> Dict[str, str]:
        if not isinstance(value, dict):
            return {}
        return {str(k): str(v) for k, v in value.items()}


class Product(ProductInfo):
    """Active product with its active prices."""
    prices: List[Price] = Field(default_factory=list)


class Subscription(BaseModel):
    """A subscription synced into ``customers/{uid}/subscriptions``."""
    model_config = ConfigDict(frozen=True)

    id: str
    status: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    created: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    cancel_at_period_end: bool = False
    price: Optional[Price] = None
    product: Optional[ProductInfo] = None
    quantity: int = 1
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("current_period_start", "current_period_end", "created", "canceled_at", mode="before")
    @classmethod
    def _normalize_timestamp(cls, value: Any) -> Optional[datetime]:
        return to_datetime(value)

    @property
    def is_live(self) -> bool:
        return self.status in ("active", "trialing")


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    code: str
    details: Optional[Dict[str, Any]] = None


class ToastModel(BaseModel):
    title: str
    description: str
    variant: str = "default"
    duration: Optional[int] = None


class PaymentStateResponse(BaseModel):
    status: str
    userId: Optional[str] = None
    customerId: Optional[str] = None
    hasPaymentMethod: bool = False
    paymentMethods: List[PaymentMethod] = Field(default_factory=list)
    paymentError: Optional[str] = None
    paymentLoading: bool = False
    isRecovering: bool = False
    recoveryAttempted: bool = False


class PaymentActionResponse(BaseModel):
    """Result of a session operation plus the side effects it produced."""
    ok: bool
    redirectUrl: Optional[str] = None
    state: PaymentStateResponse
    toasts: List[ToastModel] = Field(default_factory=list)
    returnState: Optional[str] = None


class ValidPaymentResponse(BaseModel):
    valid: bool


class EnsureCustomerResponse(BaseModel):
    customerId: str


class JobAcceptanceResponse(BaseModel):
    success: bool
    error: Optional[str] = None


class RedirectResponseModel(BaseModel):
    url: str


class PaymentMethodsResponse(BaseModel):
    paymentMethods: List[PaymentMethod]
    hasPaymentMethod: bool


class SubscriptionSummary(BaseModel):
    """Display-ready subscription details."""
    id: str
    status: str
    statusLabel: str
    planName: str = ""
    planDescription: str = ""
    priceLabel: Optional[str] = None
    intervalLabel: Optional[str] = None
    currentPeriod: str
    createdOn: str
    canceledOn: Optional[str] = None
    cancelsAtPeriodEnd: bool = False


class SubscriptionResponse(BaseModel):
    subscription: Optional[SubscriptionSummary] = None


class PlanPriceView(BaseModel):
    priceId: str
    amountLabel: str
    interval: str
    buttonLabel: str
    disabled: bool


class PlanView(BaseModel):
    productId: str
    name: str
    description: str
    isCurrentPlan: bool
    monthly: Optional[PlanPriceView] = None
    yearly: Optional[PlanPriceView] = None
    yearlySavingsPercent: Optional[int] = None
    features: List[str] = Field(default_factory=list)


class PlansResponse(BaseModel):
    plans: List[PlanView]
    subscriptionStatus: Optional[str] = None


class LanguagesResponse(BaseModel):
    languages: List[str]
    default: str


class TranslationTableResponse(BaseModel):
    language: str
    translations: Dict[str, str]


class TranslationResponse(BaseModel):
    language: str
    key: str
    value: str


# =============================================================================
# REQUEST MODELS
# =============================================================================

class PaymentErrorRequest(BaseModel):
    """A payment failure observed elsewhere in the app."""
    message: str = Field(default="An error occurred processing your payment.", max_length=2000)
    code: Optional[Union[str, int]] = None
    jobId: Optional[str] = Field(default=None, pattern=DOCUMENT_ID_PATTERN)
    applicationId: Optional[str] = Field(default=None, pattern=DOCUMENT_ID_PATTERN)


class ReturnRequest(BaseModel):
    """Query string the browser came back from the portal/checkout with."""
    query: str = Field(default="", max_length=2000)


class JobAcceptanceRequest(BaseModel):
    applicationId: str = Field(..., min_length=1, max_length=128)
    jobId: str = Field(..., min_length=1, max_length=128)


class CheckoutRequest(BaseModel):
    priceId: str = Field(..., min_length=1, max_length=128)

    @field_validator("priceId")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("priceId must not be blank")
        return value
