"""API routes exposing billing functionality."""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from ... import app_context
from ..billing import MalformedEventError, PaymentProviderError, SignatureVerificationError, construct_event
from ..billing.signature import SIGNATURE_HEADER
from ..schemas.billing import (
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    CheckoutVerificationResponse,
    PlanResponse,
    WebhookAck,
)

logger = logging.getLogger(__name__)


def _get_current_user(authorization: Optional[str] = Header(None)):
    return app_context.get_current_user(authorization=authorization)


def _get_billing_service():
    return app_context.get_billing_service()


def _get_billing_config():
    return app_context.get_billing_config()


router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.get("/plans", response_model=List[PlanResponse])
def list_plans(config=Depends(_get_billing_config)) -> List[PlanResponse]:
    return [PlanResponse.from_plan(plan) for plan in config.catalog().plans()]


@router.post("/checkout-session", response_model=CheckoutSessionResponse)
def create_checkout_session(
    payload: CheckoutSessionRequest,
    *,
    current_user=Depends(_get_current_user),
    service=Depends(_get_billing_service),
) -> CheckoutSessionResponse:
    if payload.user_id != current_user.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot create checkout session for another user")

    try:
        session = service.create_checkout_session(
            user=current_user,
            price_id=payload.price_id,
            membership_type=payload.membership_type,
            payment_method=payload.payment_method,
        )
    except PaymentProviderError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return CheckoutSessionResponse.from_checkout(session)


@router.get("/checkout-session/{session_id}", response_model=CheckoutVerificationResponse)
def verify_checkout_session(
    session_id: str,
    *,
    current_user=Depends(_get_current_user),
    service=Depends(_get_billing_service),
) -> CheckoutVerificationResponse:
    try:
        verification = service.verify_checkout_session(session_id)
    except PaymentProviderError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return CheckoutVerificationResponse.from_verification(verification)


@router.post("/webhook", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    config=Depends(_get_billing_config),
    service=Depends(_get_billing_service),
):
    raw_body = await request.body()

    try:
        event = construct_event(
            raw_body,
            request.headers.get(SIGNATURE_HEADER),
            config.webhook_secret,
            tolerance=config.signature_tolerance_seconds,
        )
    except SignatureVerificationError as exc:
        logger.warning("Rejected webhook delivery: %s", exc)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid signature"})
    except MalformedEventError as exc:
        logger.warning("Rejected malformed webhook payload: %s", exc)
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Invalid payload"})

    try:
        result = await run_in_threadpool(service.handle_webhook, event)
    except Exception:
        logger.exception("Webhook event %s type=%s failed", event.event_id, event.event_type)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Webhook processing failed"},
        )

    if result.notifications:
        background_tasks.add_task(service.dispatch_notifications, result)
    return WebhookAck(received=True, outcome=result.outcome)
