from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import PlainTextResponse

from vtc_api.dependencies import get_gateway, get_reconciler
from vtc_api.errors import InvalidRequest, SignatureInvalid, WebhooksDisabled
from vtc_api.reconciliation import PaymentReconciler
from vtc_api.schemas import (
    CreatePaymentIntentIn,
    CreatePaymentIntentOut,
    PaymentStatusOut,
    WebhookAck,
)
from vtc_api.stripe_service import RECEIPT_EXPAND, StripeGateway

logger = structlog.get_logger(component="payments")

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.post("/create-payment-intent", response_model=CreatePaymentIntentOut)
async def create_payment_intent(
    request: CreatePaymentIntentIn,
    gateway: StripeGateway = Depends(get_gateway),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    intent = await gateway.create_intent(
        request.amount,
        request.currency,
        metadata={"rideId": request.ride_id, "userId": request.user_id},
    )

    await reconciler.record_intent_created(
        intent.id,
        intent.amount,
        intent.currency,
        user_id=request.user_id,
        ride_id=request.ride_id,
        initial_status=intent.status,
    )

    return CreatePaymentIntentOut(clientSecret=intent.client_secret, paymentIntentId=intent.id)


@router.get(
    "/payment-status/{intent_id}",
    response_model=PaymentStatusOut,
    response_model_exclude_none=True,
)
async def payment_status(intent_id: str, gateway: StripeGateway = Depends(get_gateway)):
    intent = await gateway.retrieve_intent(intent_id, expand=RECEIPT_EXPAND)
    return PaymentStatusOut(status=intent.status, receiptUrl=intent.receipt_url)


@router.post("/webhook", response_model=WebhookAck, response_model_exclude_none=True)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    gateway: StripeGateway = Depends(get_gateway),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    # raw bytes: the signature covers the exact payload
    payload = await request.body()

    try:
        event = gateway.verify_webhook_event(payload, stripe_signature)
    except WebhooksDisabled as e:
        logger.warning("STRIPE_WEBHOOK_SECRET is not set, webhook not processed")
        return WebhookAck(warning=e.message)
    except SignatureInvalid as e:
        logger.error("webhook signature verification failed", error=e.message)
        return PlainTextResponse(f"Webhook Error: {e.message}", status_code=400)
    except InvalidRequest as e:
        logger.error("malformed webhook event", error=e.message)
        return PlainTextResponse(f"Webhook Error: {e.message}", status_code=400)

    logger.info("webhook received", event_type=event.type, event_id=event.event_id)
    await reconciler.apply_webhook_event(event)
    return WebhookAck()
