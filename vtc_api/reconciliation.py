from typing import Optional

import structlog

from vtc_api.errors import InvalidRequest, StorageUnavailable
from vtc_api.models import Payment, PaymentStatus
from vtc_api.store import PaymentStore
from vtc_api.stripe_service import (
    RECEIPT_EXPAND,
    PaymentFailed,
    PaymentSucceeded,
    StripeGateway,
    WebhookEvent,
)

logger = structlog.get_logger(component="reconciliation")


class PaymentReconciler:
    """Keeps local payment records in line with what Stripe reports.

    Two independent inputs drive it: intent creation requested by the client
    and webhook events posted by Stripe. Nothing orders the two, so a webhook
    may find no record yet; that case is a logged no-op. Storage problems are
    logged here and never reach the caller.

    Status changes are not checked for direction: a replayed ``failed`` event
    arriving after ``succeeded`` overwrites it.
    """

    def __init__(self, gateway: StripeGateway, store: PaymentStore, development: bool = False):
        self.gateway = gateway
        self.store = store
        self.development = development

    async def record_intent_created(
        self,
        intent_id: str,
        amount: int,
        currency: str,
        *,
        user_id: Optional[str] = None,
        ride_id: Optional[str] = None,
        initial_status: str,
    ) -> bool:
        """Best-effort insert of the initial record. Returns whether it was written."""
        if not self.store.is_available():
            if self.development:
                logger.info("database not connected, payment record skipped", intent_id=intent_id)
            else:
                logger.warning("cannot record payment: database not connected", intent_id=intent_id)
            return False

        try:
            await self.store.upsert_by_intent_id(
                intent_id,
                amount=amount,
                currency=currency,
                status=initial_status,
                user_id=user_id,
                ride_id=ride_id,
            )
        except (StorageUnavailable, InvalidRequest) as e:
            logger.warning("cannot record payment", intent_id=intent_id, error=e.message)
            return False

        logger.info("payment recorded", intent_id=intent_id, status=initial_status)
        return True

    async def apply_webhook_event(self, event: WebhookEvent) -> Optional[Payment]:
        """Apply a verified webhook event. Returns the updated record, if any.

        Only a failed re-fetch from Stripe on a succeeded event propagates
        (as ``PaymentProviderError``), so that Stripe redelivers the event.
        """
        if isinstance(event, PaymentSucceeded):
            return await self._apply_succeeded(event)
        if isinstance(event, PaymentFailed):
            return await self._apply_failed(event)
        logger.info("unhandled event type", event_type=event.type, event_id=event.event_id)
        return None

    async def _apply_succeeded(self, event: PaymentSucceeded) -> Optional[Payment]:
        logger.info("payment intent succeeded", intent_id=event.intent_id)
        if not await self._record_exists(event.intent_id):
            return None

        # the webhook is a trigger; receipt data comes from a fresh fetch
        intent = await self.gateway.retrieve_intent(event.intent_id, expand=RECEIPT_EXPAND)
        return await self._update(
            event.intent_id,
            status=PaymentStatus.SUCCEEDED,
            receipt_url=intent.receipt_url,
            payment_method=intent.payment_method,
        )

    async def _apply_failed(self, event: PaymentFailed) -> Optional[Payment]:
        logger.info(
            "payment intent failed",
            intent_id=event.intent_id,
            reason=event.failure_message,
        )
        return await self._update(event.intent_id, status=PaymentStatus.FAILED)

    async def _record_exists(self, intent_id: str) -> bool:
        try:
            payment = await self.store.find_by_intent_id(intent_id)
        except StorageUnavailable as e:
            logger.warning("cannot update payment status", intent_id=intent_id, error=e.message)
            return False
        if payment is None:
            logger.warning("no payment record for intent", intent_id=intent_id)
            return False
        return True

    async def _update(self, intent_id: str, **changes) -> Optional[Payment]:
        try:
            payment = await self.store.update_by_intent_id(intent_id, **changes)
        except (StorageUnavailable, InvalidRequest) as e:
            logger.warning("cannot update payment status", intent_id=intent_id, error=e.message)
            return None
        if payment is None:
            logger.warning("no payment record for intent", intent_id=intent_id)
            return None
        logger.info("payment status updated", intent_id=intent_id, status=payment.status)
        return payment
