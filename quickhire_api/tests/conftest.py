"""Shared in-memory fakes for Firestore, the extension callables and the session collaborators."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import pytest
from fastapi.testclient import TestClient
from google.api_core.exceptions import NotFound
from google.cloud import firestore

from quickhire_api import dependencies
from quickhire_api.main import app
from quickhire_api.middleware.rate_limit import limiter
from quickhire_api.models import ToastModel
from quickhire_api.payments.customers import AuthenticatedUser
from quickhire_api.payments.mirrors import DocumentRecord
from quickhire_api.payments.session import PaymentStateStore


# =============================================================================
# FIRESTORE
# =============================================================================

def _resolve(current: Any, value: Any) -> Any:
    if isinstance(value, firestore.Increment):
        return (current or 0) + value.value
    if value is firestore.SERVER_TIMESTAMP:
        return datetime.now(timezone.utc)
    return value


class FakeSnapshot:
    def __init__(self, path: str, data: Optional[Dict[str, Any]]) -> None:
        self.id = path.rsplit("/", 1)[-1]
        self._data = data

    @property
    def exists(self) -> bool:
        return self._data is not None

    def to_dict(self) -> Optional[Dict[str, Any]]:
        return dict(self._data) if self._data is not None else None


class FakeDocumentRef:
    def __init__(self, db: "FakeFirestore", path: str) -> None:
        self._db = db
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def get(self) -> FakeSnapshot:
        self._db.reads.append(self.path)
        return FakeSnapshot(self.path, self._db.docs.get(self.path))

    def set(self, data: Dict[str, Any], merge: bool = False) -> None:
        self._db.check_write(self.path)
        current = dict(self._db.docs.get(self.path) or {}) if merge else {}
        for key, value in data.items():
            current[key] = _resolve(current.get(key), value)
        self._db.docs[self.path] = current
        self._db.writes.append(("set", self.path, dict(data)))

    def update(self, data: Dict[str, Any]) -> None:
        self._db.check_write(self.path)
        if self.path not in self._db.docs:
            raise NotFound(f"No document to update: {self.path}")
        current = self._db.docs[self.path]
        for key, value in data.items():
            current[key] = _resolve(current.get(key), value)
        self._db.writes.append(("update", self.path, dict(data)))


class FakeWatch:
    def __init__(self) -> None:
        self.unsubscribed = False

    def unsubscribe(self) -> None:
        self.unsubscribed = True


class FakeCollectionRef:
    def __init__(self, db: "FakeFirestore", path: str) -> None:
        self._db = db
        self.path = path

    def _snapshots(self) -> List[FakeSnapshot]:
        prefix = self.path + "/"
        return [
            FakeSnapshot(path, data)
            for path, data in self._db.docs.items()
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        ]

    def stream(self):
        return iter(self._snapshots())

    def on_snapshot(self, callback: Callable) -> FakeWatch:
        watch = FakeWatch()
        self._db.watches.append((self.path, watch))
        callback(self._snapshots(), [], datetime.now(timezone.utc))
        return watch


class FakeFirestore:
    """Path-keyed document store with just enough of the client API."""

    def __init__(self, docs: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        self.docs: Dict[str, Dict[str, Any]] = {k: dict(v) for k, v in (docs or {}).items()}
        self.writes: List[Tuple[str, str, Dict[str, Any]]] = []
        self.reads: List[str] = []
        self.failing_paths: Set[str] = set()
        self.watches: List[Tuple[str, FakeWatch]] = []

    def check_write(self, path: str) -> None:
        if path in self.failing_paths:
            raise RuntimeError(f"write to {path} failed")

    def document(self, path: str) -> FakeDocumentRef:
        return FakeDocumentRef(self, path)

    def collection(self, path: str) -> FakeCollectionRef:
        return FakeCollectionRef(self, path)

    def writes_to(self, path: str) -> List[Tuple[str, Dict[str, Any]]]:
        return [(op, data) for op, p, data in self.writes if p == path]


# =============================================================================
# EXTENSION / SESSION COLLABORATORS
# =============================================================================

class FakeExtension:
    """Stands in for ExtensionClient; queued errors are raised before results."""

    def __init__(self) -> None:
        self.customer_id = "cus_123"
        self.portal_url = "https://billing.stripe.com/p/session_abc"
        self.checkout_url = "https://checkout.stripe.com/c/pay_abc"
        self.job_result: Dict[str, Any] = {"success": True}
        self.customer_errors: List[Exception] = []
        self.portal_errors: List[Exception] = []
        self.checkout_errors: List[Exception] = []
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    def create_customer(self, *, email: str, name: str = "") -> str:
        self.calls.append(("create_customer", {"email": email, "name": name}))
        if self.customer_errors:
            raise self.customer_errors.pop(0)
        return self.customer_id

    def create_portal_link(self, return_url: str) -> str:
        self.calls.append(("create_portal_link", {"return_url": return_url}))
        if self.portal_errors:
            raise self.portal_errors.pop(0)
        return self.portal_url

    def create_checkout_session(self, payload: Dict[str, Any]) -> str:
        self.calls.append(("create_checkout_session", dict(payload)))
        if self.checkout_errors:
            raise self.checkout_errors.pop(0)
        return self.checkout_url

    def process_job_acceptance(self, *, application_id: str, job_id: str) -> Dict[str, Any]:
        self.calls.append(("process_job_acceptance", {"applicationId": application_id, "jobId": job_id}))
        return dict(self.job_result)

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]


class FakeCustomers:
    def __init__(self, customer_id: str = "cus_123") -> None:
        self.customer_id = customer_id
        self.errors: List[Exception] = []
        self.calls: List[Optional[str]] = []

    def ensure_customer(self, user_id: Optional[str] = None) -> str:
        self.calls.append(user_id)
        if self.errors:
            raise self.errors.pop(0)
        return self.customer_id


class FakeNotifier:
    def __init__(self) -> None:
        self.toasts: List[ToastModel] = []

    def toast(self, toast: ToastModel) -> None:
        self.toasts.append(toast)

    def titles(self) -> List[str]:
        return [t.title for t in self.toasts]


class FakeNavigator:
    def __init__(self) -> None:
        self.assigned: List[str] = []

    def assign(self, url: str) -> None:
        self.assigned.append(url)


class FakeSubscriber:
    """CollectionSubscriber that lets a test push snapshots by hand."""

    def __init__(self) -> None:
        self.listeners: Dict[str, Callable[[List[DocumentRecord]], None]] = {}
        self.unsubscribed: List[str] = []

    def subscribe(self, collection_path: str, on_change):
        self.listeners[collection_path] = on_change

        def unsubscribe() -> None:
            self.unsubscribed.append(collection_path)
            self.listeners.pop(collection_path, None)

        return unsubscribe

    def push(self, collection_path: str, docs: Dict[str, Dict[str, Any]]) -> None:
        self.listeners[collection_path]([DocumentRecord(doc_id, data) for doc_id, data in docs.items()])


# =============================================================================
# FIXTURES
# =============================================================================

USER_UID = "user-1"


@pytest.fixture
def user() -> AuthenticatedUser:
    return AuthenticatedUser(uid=USER_UID, id_token="id-token", email="pat@example.com", stripe_role="premium")


@pytest.fixture
def db() -> FakeFirestore:
    return FakeFirestore({
        f"users/{USER_UID}": {"email": "pat@example.com", "fullName": "Pat Rivera"},
    })


@pytest.fixture
def extension() -> FakeExtension:
    return FakeExtension()


@pytest.fixture
def client(db, extension, user, monkeypatch):
    """TestClient without lifespan (no Firebase init) and with auth/db/callables faked."""
    monkeypatch.setattr(dependencies, "RECOVERY_RETRY_DELAY_SEC", 0.0)
    monkeypatch.setattr(limiter, "enabled", False)
    app.state.payment_sessions = PaymentStateStore()
    app.dependency_overrides[dependencies.get_current_user] = lambda: user
    app.dependency_overrides[dependencies.get_firestore] = lambda: db
    app.dependency_overrides[dependencies.get_extension_client] = lambda: extension
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
