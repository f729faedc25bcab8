"""Payment and subscription layer over the Stripe Firestore extension."""

from .customers import AuthenticatedUser, CustomerService
from .errors import CallableError, PaymentError
from .extension import ExtensionClient
from .mirrors import (
    CollectionSubscriber,
    FirestoreCollectionSubscriber,
    PaymentMethodMirror,
    SubscriptionMirror,
)
from .recovery import should_attempt_recovery
from .session import (
    PaymentController,
    PaymentState,
    PaymentStateStore,
    RedirectCapture,
    SessionStatus,
    ToastCollector,
)

__all__ = [
    'AuthenticatedUser',
    'CallableError',
    'CollectionSubscriber',
    'CustomerService',
    'ExtensionClient',
    'FirestoreCollectionSubscriber',
    'PaymentController',
    'PaymentError',
    'PaymentMethodMirror',
    'PaymentState',
    'PaymentStateStore',
    'RedirectCapture',
    'SessionStatus',
    'SubscriptionMirror',
    'ToastCollector',
    'should_attempt_recovery',
]
