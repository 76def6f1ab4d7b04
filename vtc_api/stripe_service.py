from collections.abc import Mapping
from dataclasses import dataclass
from typing import ClassVar, Iterable, Optional, Union

import stripe
import structlog

from vtc_api.config import Settings
from vtc_api.errors import (
    InvalidRequest,
    NotFound,
    PaymentProviderError,
    SignatureInvalid,
    WebhooksDisabled,
)

logger = structlog.get_logger(component="stripe")

# Sent for absent metadata values so Stripe always sees the same keys.
METADATA_NULL = "null"
METADATA_KEYS = ("rideId", "userId")

# Charge data needed to read the receipt URL after a successful payment.
RECEIPT_EXPAND = ("latest_charge",)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"


@dataclass(frozen=True)
class CreatedIntent:
    id: str
    client_secret: str
    status: str
    amount: int
    currency: str


@dataclass(frozen=True)
class IntentSnapshot:
    id: str
    status: str
    amount: Optional[int] = None
    currency: Optional[str] = None
    receipt_url: Optional[str] = None
    payment_method: Optional[str] = None

    @classmethod
    def from_stripe(cls, intent) -> "IntentSnapshot":
        intent = to_plain(intent)
        method_types = intent.get("payment_method_types") or []
        return cls(
            id=intent["id"],
            status=intent.get("status"),
            amount=intent.get("amount"),
            currency=intent.get("currency"),
            receipt_url=_receipt_url(intent),
            payment_method=method_types[0] if method_types else None,
        )


@dataclass(frozen=True)
class PaymentSucceeded:
    type: ClassVar[str] = PAYMENT_SUCCEEDED
    event_id: Optional[str]
    intent_id: str


@dataclass(frozen=True)
class PaymentFailed:
    type: ClassVar[str] = PAYMENT_FAILED
    event_id: Optional[str]
    intent_id: str
    failure_message: Optional[str] = None


@dataclass(frozen=True)
class OtherEvent:
    event_id: Optional[str]
    type: str


WebhookEvent = Union[PaymentSucceeded, PaymentFailed, OtherEvent]


def to_plain(value):
    """Turn a Stripe object, and everything nested in it, into plain dicts and lists."""
    if hasattr(value, "to_dict"):
        value = value.to_dict()
    if isinstance(value, Mapping):
        return {key: to_plain(item) for key, item in value.items()}
    if isinstance(value, list):
        return [to_plain(item) for item in value]
    return value


def _receipt_url(intent: Mapping) -> Optional[str]:
    # Older API versions embed a charges list, newer ones expose latest_charge.
    charges = intent.get("charges")
    data = (charges.get("data") or []) if isinstance(charges, Mapping) else []
    if data:
        return data[0].get("receipt_url")
    latest = intent.get("latest_charge")
    if isinstance(latest, Mapping):
        return latest.get("receipt_url")
    return None


def _provider_message(error: stripe.StripeError) -> str:
    return error.user_message or str(error) or error.__class__.__name__


def normalize_metadata(metadata: Optional[Mapping]) -> dict:
    normalized = {}
    for key, value in (metadata or {}).items():
        normalized[key] = METADATA_NULL if value in (None, "") else str(value)
    for key in METADATA_KEYS:
        normalized.setdefault(key, METADATA_NULL)
    return normalized


def validate_amount(amount) -> int:
    if amount is None or isinstance(amount, bool) or not isinstance(amount, (int, float)):
        raise InvalidRequest("Amount is required and must be a number")
    if isinstance(amount, float):
        if not amount.is_integer():
            raise InvalidRequest("Amount must be a whole number of minor currency units")
        amount = int(amount)
    if amount <= 0:
        raise InvalidRequest("Amount must be positive")
    return amount


def parse_event(event) -> WebhookEvent:
    event = to_plain(event)
    event_type = event.get("type")
    event_id = event.get("id")
    if event_type not in (PAYMENT_SUCCEEDED, PAYMENT_FAILED):
        return OtherEvent(event_id=event_id, type=event_type)

    intent = (event.get("data") or {}).get("object") or {}
    intent_id = intent.get("id")
    if not intent_id:
        raise InvalidRequest(f"{event_type} event carries no payment intent id")

    if event_type == PAYMENT_SUCCEEDED:
        return PaymentSucceeded(event_id=event_id, intent_id=intent_id)
    last_error = intent.get("last_payment_error") or {}
    return PaymentFailed(
        event_id=event_id,
        intent_id=intent_id,
        failure_message=last_error.get("message"),
    )


class StripeGateway:
    """Every call the backend makes to Stripe goes through here.

    Built once from ``Settings`` at startup and handed to whoever needs it;
    the API key is passed per request instead of being set on the module.
    """

    def __init__(self, settings: Settings):
        self._api_key = settings.stripe_secret_key
        self._api_version = settings.stripe_api_version
        self._webhook_secret = settings.stripe_webhook_secret

    @property
    def enabled(self) -> bool:
        return self._api_key is not None

    def _request_options(self) -> dict:
        if not self.enabled:
            raise PaymentProviderError("Payments are disabled: STRIPE_SECRET_KEY is not set")
        return {"api_key": self._api_key, "stripe_version": self._api_version}

    async def create_intent(
        self, amount, currency: Optional[str] = "eur", metadata: Optional[Mapping] = None
    ) -> CreatedIntent:
        amount = validate_amount(amount)
        if currency is None:
            currency = "eur"
        if not isinstance(currency, str) or not currency.strip():
            raise InvalidRequest("Currency must be an ISO currency code")
        currency = currency.strip().lower()
        options = self._request_options()

        try:
            intent = await stripe.PaymentIntent.create_async(
                amount=amount,
                currency=currency,
                automatic_payment_methods={"enabled": True},
                metadata=normalize_metadata(metadata),
                **options,
            )
            intent = to_plain(intent)
        except stripe.StripeError as e:
            logger.error("payment intent creation failed", error=_provider_message(e))
            raise PaymentProviderError(_provider_message(e)) from e

        logger.info("payment intent created", intent_id=intent["id"], amount=amount)
        return CreatedIntent(
            id=intent["id"],
            client_secret=intent["client_secret"],
            status=intent.get("status"),
            amount=amount,
            currency=currency,
        )

    async def retrieve_intent(
        self, intent_id: str, expand: Optional[Iterable[str]] = None
    ) -> IntentSnapshot:
        if not intent_id:
            raise InvalidRequest("Payment intent id is required")
        params = self._request_options()
        if expand:
            params["expand"] = list(expand)

        try:
            intent = await stripe.PaymentIntent.retrieve_async(intent_id, **params)
        except stripe.InvalidRequestError as e:
            if e.code == "resource_missing":
                raise NotFound(f"No such payment intent: {intent_id}") from e
            raise PaymentProviderError(_provider_message(e)) from e
        except stripe.StripeError as e:
            raise PaymentProviderError(_provider_message(e)) from e

        return IntentSnapshot.from_stripe(intent)

    def verify_webhook_event(
        self,
        raw_body: Union[bytes, str],
        signature_header: Optional[str],
        webhook_secret: Optional[str] = None,
    ) -> WebhookEvent:
        secret = webhook_secret or self._webhook_secret
        if not secret:
            raise WebhooksDisabled("Webhook secret not configured")
        if not signature_header:
            raise SignatureInvalid("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(raw_body, signature_header, secret)
        except ValueError as e:
            raise SignatureInvalid(f"Invalid payload: {e}") from e
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalid(_provider_message(e)) from e

        return parse_event(event)
