"""Payments router - per-user payment session operations.

Endpoints (all under /api, all require a Firebase ID token):
    GET    /payments/session                 current session state
    POST   /payments/session                 initialize after login
    DELETE /payments/session                 reset on logout
    POST   /payments/errors                  report a payment failure
    POST   /payments/errors/clear
    GET    /payments/valid
    POST   /payments/methods/refresh
    POST   /payments/methods/{id}/remove     portal redirect
    POST   /payments/methods/{id}/default    portal redirect
    POST   /payments/methods/setup           portal redirect with recovery
    POST   /payments/setup/reset
    POST   /payments/portal
    POST   /payments/return                  handle ?setup= / ?payment= flags
    POST   /payments/customer                ensure Stripe customer
    POST   /payments/job-acceptance

Toasts and redirects are not side effects here: they come back in the
response body for the web client to show / follow.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from firebase_admin import firestore

from ..dependencies import (
    get_current_user,
    get_customer_service,
    get_extension_client,
    get_firestore,
    get_payment_controller,
    get_state_store,
)
from ..middleware.rate_limit import rate_limit_payment, rate_limit_read
from ..models import (
    EnsureCustomerResponse,
    ErrorResponse,
    JobAcceptanceRequest,
    JobAcceptanceResponse,
    PaymentActionResponse,
    PaymentErrorRequest,
    PaymentStateResponse,
    ReturnRequest,
    ValidPaymentResponse,
)
from ..payments.attempts import process_job_acceptance_payment
from ..payments.customers import AuthenticatedUser, CustomerService
from ..payments.errors import PaymentError
from ..payments.extension import ExtensionClient
from ..payments.session import PaymentController, PaymentStateStore

router = APIRouter()
logger = logging.getLogger("api.payments")

ERROR_RESPONSES = {
    401: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
    502: {"model": ErrorResponse},
}


def _action_response(
    controller: PaymentController,
    *,
    ok: bool = True,
    redirect_url: Optional[str] = None,
    return_state: Optional[str] = None,
) -> PaymentActionResponse:
    return PaymentActionResponse(
        ok=ok,
        redirectUrl=redirect_url,
        state=controller.state.to_response(),
        toasts=list(controller.notifier.toasts),
        returnState=return_state,
    )


@router.get("/payments/session", response_model=PaymentStateResponse)
@rate_limit_read
async def get_session(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    store: PaymentStateStore = Depends(get_state_store),
) -> PaymentStateResponse:
    return store.peek(user.uid).to_response()


@router.post("/payments/session", response_model=PaymentActionResponse)
@rate_limit_payment
def initialize_session(
    request: Request,
    controller: PaymentController = Depends(get_payment_controller),
) -> PaymentActionResponse:
    controller.initialize()
    return _action_response(controller, ok=controller.state.payment_error is None)


@router.delete("/payments/session", response_model=PaymentActionResponse)
async def reset_session(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    controller: PaymentController = Depends(get_payment_controller),
    store: PaymentStateStore = Depends(get_state_store),
) -> PaymentActionResponse:
    controller.reset()
    store.discard(user.uid)
    logger.info("Payment session reset uid=%s", user.uid)
    return _action_response(controller)


@router.post("/payments/errors", response_model=PaymentActionResponse)
@rate_limit_payment
def report_payment_error(
    request: Request,
    body: PaymentErrorRequest,
    controller: PaymentController = Depends(get_payment_controller),
) -> PaymentActionResponse:
    error = PaymentError(body.message, body.code)
    controller.handle_payment_error(error, job_id=body.jobId, application_id=body.applicationId)
    return _action_response(controller, ok=controller.state.payment_error is None)


@router.post("/payments/errors/clear", response_model=PaymentActionResponse)
async def clear_payment_error(
    request: Request,
    controller: PaymentController = Depends(get_payment_controller),
) -> PaymentActionResponse:
    controller.clear_payment_error()
    return _action_response(controller)


@router.get("/payments/valid", response_model=ValidPaymentResponse)
async def check_valid_payment(
    request: Request,
    controller: PaymentController = Depends(get_payment_controller),
) -> ValidPaymentResponse:
    return ValidPaymentResponse(valid=controller.check_valid_payment())


@router.post("/payments/methods/refresh", response_model=PaymentActionResponse)
async def refresh_payment_methods(
    request: Request,
    controller: PaymentController = Depends(get_payment_controller),
) -> PaymentActionResponse:
    controller.refresh_payment_methods()
    return _action_response(controller)


@router.post("/payments/methods/{payment_method_id}/remove", response_model=PaymentActionResponse)
@rate_limit_payment
def remove_payment_method(
    request: Request,
    payment_method_id: str,
    controller: PaymentController = Depends(get_payment_controller),
) -> PaymentActionResponse:
    ok = controller.remove_payment_method(payment_method_id)
    return _action_response(controller, ok=ok, redirect_url=controller.navigator.url)


@router.post("/payments/methods/{payment_method_id}/default", response_model=PaymentActionResponse)
@rate_limit_payment
def set_default_payment_method(
    request: Request,
    payment_method_id: str,
    controller: PaymentController = Depends(get_payment_controller),
) -> PaymentActionResponse:
    ok = controller.set_default_payment_method(payment_method_id)
    return _action_response(controller, ok=ok, redirect_url=controller.navigator.url)


@router.post("/payments/methods/setup", response_model=PaymentActionResponse)
@rate_limit_payment
def setup_payment_method(
    request: Request,
    controller: PaymentController = Depends(get_payment_controller),
) -> PaymentActionResponse:
    url = controller.setup_payment_method()
    return _action_response(controller, ok=url is not None, redirect_url=url)


@router.post("/payments/setup/reset", response_model=PaymentActionResponse)
async def reset_setup(
    request: Request,
    controller: PaymentController = Depends(get_payment_controller),
) -> PaymentActionResponse:
    controller.reset_setup()
    return _action_response(controller)


@router.post("/payments/portal", response_model=PaymentActionResponse)
@rate_limit_payment
def open_portal(
    request: Request,
    controller: PaymentController = Depends(get_payment_controller),
) -> PaymentActionResponse:
    url = controller.redirect_to_portal()
    return _action_response(controller, ok=url is not None, redirect_url=url)


@router.post("/payments/return", response_model=PaymentActionResponse)
async def complete_return(
    request: Request,
    body: ReturnRequest,
    controller: PaymentController = Depends(get_payment_controller),
) -> PaymentActionResponse:
    result = controller.complete_return(body.query)
    return _action_response(controller, return_state=result.value)


@router.post("/payments/customer", response_model=EnsureCustomerResponse, responses=ERROR_RESPONSES)
@rate_limit_payment
def ensure_customer(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    customers: CustomerService = Depends(get_customer_service),
    store: PaymentStateStore = Depends(get_state_store),
) -> EnsureCustomerResponse:
    """Create or re-link the caller's Stripe customer; failures map to ``{"error", "code"}``."""
    customer_id = customers.ensure_customer(user.uid)
    store.get(user.uid).customer_id = customer_id
    return EnsureCustomerResponse(customerId=customer_id)


@router.post("/payments/job-acceptance", response_model=JobAcceptanceResponse)
@rate_limit_payment
def job_acceptance_payment(
    request: Request,
    body: JobAcceptanceRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    customers: CustomerService = Depends(get_customer_service),
    client: ExtensionClient = Depends(get_extension_client),
    db: firestore.Client = Depends(get_firestore),
) -> JobAcceptanceResponse:
    result = process_job_acceptance_payment(
        customers=customers,
        charger=client,
        db=db,
        user_id=user.uid,
        application_id=body.applicationId,
        job_id=body.jobId,
    )
    return JobAcceptanceResponse(**result)
