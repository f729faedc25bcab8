"""Read-side mirrors of the collections the Stripe extension maintains.

Firestore paths (written by the extension, never by us):
  customers/{uid}/payment_methods/{paymentMethodId}
  customers/{uid}/subscriptions/{subscriptionId}

Realtime access goes through a ``CollectionSubscriber`` so the listener can be
swapped for an in-memory fake. Each snapshot replaces the mirrored state
wholesale (last write wins); ordering is whatever Firestore delivers per
listener.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, List, Optional, Protocol, Sequence, TypeVar

from google.cloud import firestore  # type: ignore

from ..models import CardDetails, PaymentMethod, Price, ProductInfo, Subscription

logger = logging.getLogger("api.mirrors")

T = TypeVar("T")

Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class DocumentRecord:
    """Plain (id, data) pair handed to snapshot callbacks."""
    id: str
    data: Dict[str, Any]


OnChange = Callable[[List[DocumentRecord]], None]


class CollectionSubscriber(Protocol):
    """Realtime subscription to every document in a collection."""

    def subscribe(self, collection_path: str, on_change: OnChange) -> Unsubscribe:
        ...


def payment_methods_path(uid: str) -> str:
    return f"customers/{uid}/payment_methods"


def subscriptions_path(uid: str) -> str:
    return f"customers/{uid}/subscriptions"


# =============================================================================
# FIRESTORE ADAPTERS
# =============================================================================

class FirestoreCollectionSubscriber:
    """``CollectionSubscriber`` backed by ``on_snapshot`` watches."""

    def __init__(self, db: firestore.Client) -> None:
        self._db = db

    def subscribe(self, collection_path: str, on_change: OnChange) -> Unsubscribe:
        def on_snapshot(col_snapshot, changes, read_time):
            try:
                on_change([DocumentRecord(doc.id, doc.to_dict() or {}) for doc in col_snapshot])
            except Exception:
                logger.exception("Error processing snapshot for %s", collection_path)

        watcher = self._db.collection(collection_path).on_snapshot(on_snapshot)
        logger.debug("Listening on %s", collection_path)
        return watcher.unsubscribe


def read_collection(db: firestore.Client, collection_path: str) -> List[DocumentRecord]:
    """One-shot read of a collection in the same shape snapshot callbacks receive."""
    return [DocumentRecord(doc.id, doc.to_dict() or {}) for doc in db.collection(collection_path).stream()]


# =============================================================================
# PARSING
# =============================================================================

def parse_payment_method(record: DocumentRecord) -> PaymentMethod:
    data = record.data
    card = data.get("card") if isinstance(data.get("card"), dict) else {}
    return PaymentMethod(
        id=record.id,
        type=str(data.get("type") or "card"),
        card=CardDetails(
            brand=str(card.get("brand") or "unknown"),
            last4=str(card.get("last4") or "****"),
            exp_month=int(card.get("exp_month") or 0),
            exp_year=int(card.get("exp_year") or 0),
        ),
        isDefault=bool(data.get("isDefault") or False),
    )


def parse_price(price_id: str, data: Dict[str, Any]) -> Price:
    interval_count = data.get("interval_count")
    product = data.get("product")
    return Price(
        id=price_id,
        active=bool(data.get("active", True)),
        currency=str(data.get("currency") or "usd"),
        unit_amount=int(data.get("unit_amount") or 0),
        interval=data.get("interval") or None,
        interval_count=int(interval_count) if interval_count is not None else None,
        type=str(data.get("type") or "recurring"),
        product=getattr(product, "id", product) if product is not None else None,
    )


def parse_product_info(product_id: str, data: Dict[str, Any]) -> ProductInfo:
    return ProductInfo(
        id=product_id,
        name=str(data.get("name") or ""),
        description=str(data.get("description") or ""),
        active=bool(data.get("active", True)),
        images=[str(i) for i in (data.get("images") or [])],
        metadata=data.get("metadata") or {},
    )


def _coerce_embedded(value: Any, parser: Callable[[str, Dict[str, Any]], T]) -> Optional[T]:
    # The extension stores price/product as DocumentReferences; older rows embed maps.
    if value is None:
        return None
    if isinstance(value, dict):
        embedded_id = str(value.get("id") or "")
        return parser(embedded_id, value) if embedded_id else None
    ref_id = getattr(value, "id", None)
    if ref_id:
        return parser(str(ref_id), {})
    if isinstance(value, str) and value:
        return parser(value.rsplit("/", 1)[-1], {})
    return None


def parse_subscription(record: DocumentRecord) -> Subscription:
    data = record.data
    return Subscription(
        id=record.id,
        status=str(data.get("status") or "incomplete"),
        current_period_start=data.get("current_period_start"),
        current_period_end=data.get("current_period_end"),
        created=data.get("created"),
        canceled_at=data.get("canceled_at"),
        cancel_at_period_end=bool(data.get("cancel_at_period_end") or False),
        price=_coerce_embedded(data.get("price"), parse_price),
        product=_coerce_embedded(data.get("product"), parse_product_info),
        quantity=int(data.get("quantity") or 1),
        metadata={str(k): str(v) for k, v in (data.get("metadata") or {}).items()},
    )


_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def select_active_subscription(subscriptions: Sequence[Subscription]) -> Optional[Subscription]:
    """Most recently created subscription that is active or trialing."""
    live = [s for s in subscriptions if s.is_live]
    if not live:
        return None
    return max(live, key=lambda s: s.created or _EPOCH)


def subscription_status_for(subscriptions: Sequence[Subscription]) -> Optional[str]:
    """Status of the first active or trialing subscription, in snapshot order."""
    for sub in subscriptions:
        if sub.is_live:
            return sub.status
    return None


# =============================================================================
# MIRRORS
# =============================================================================

class CollectionMirror(Generic[T]):
    """Keeps the latest parsed snapshot of one per-user collection.

    ``bind(uid)`` releases any previous listener before subscribing, so at most
    one listener is live per mirror. ``close()`` releases it.
    """

    def __init__(
        self,
        subscriber: CollectionSubscriber,
        *,
        path_for: Callable[[str], str],
        parse: Callable[[DocumentRecord], T],
        on_update: Optional[Callable[[List[T]], None]] = None,
    ) -> None:
        self._subscriber = subscriber
        self._path_for = path_for
        self._parse = parse
        self._on_update = on_update
        self._lock = threading.Lock()
        self._items: List[T] = []
        self._uid: Optional[str] = None
        self._unsubscribe: Optional[Unsubscribe] = None
        self.loading = False

    @property
    def uid(self) -> Optional[str]:
        return self._uid

    @property
    def items(self) -> List[T]:
        with self._lock:
            return list(self._items)

    def bind(self, uid: Optional[str]) -> None:
        if uid == self._uid and self._unsubscribe is not None:
            return
        self.close()
        if not uid:
            return

        self._uid = uid
        self.loading = True
        bound_uid = uid

        def on_change(records: List[DocumentRecord]) -> None:
            parsed: List[T] = []
            for record in records:
                try:
                    parsed.append(self._parse(record))
                except Exception as exc:
                    logger.warning("Skipping unparseable document %s: %s", record.id, exc)
            with self._lock:
                if self._uid != bound_uid:
                    return
                self._items = parsed
                self.loading = False
            if self._on_update is not None:
                self._on_update(parsed)

        self._unsubscribe = self._subscriber.subscribe(self._path_for(uid), on_change)

    def close(self) -> None:
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            try:
                unsubscribe()
            except Exception:
                logger.exception("Failed to unsubscribe listener for uid=%s", self._uid)
        with self._lock:
            self._items = []
            self._uid = None
            self.loading = False


class PaymentMethodMirror(CollectionMirror[PaymentMethod]):
    def __init__(self, subscriber: CollectionSubscriber, on_update=None) -> None:
        super().__init__(subscriber, path_for=payment_methods_path, parse=parse_payment_method, on_update=on_update)

    @property
    def has_payment_method(self) -> bool:
        return bool(self.items)

    @property
    def default_method(self) -> Optional[PaymentMethod]:
        return next((m for m in self.items if m.is_default), None)


class SubscriptionMirror(CollectionMirror[Subscription]):
    def __init__(self, subscriber: CollectionSubscriber, on_update=None) -> None:
        super().__init__(subscriber, path_for=subscriptions_path, parse=parse_subscription, on_update=on_update)

    @property
    def active_subscription(self) -> Optional[Subscription]:
        return select_active_subscription(self.items)

    @property
    def status(self) -> Optional[str]:
        return subscription_status_for(self.items)
