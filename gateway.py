"""Stripe payment-intent creation."""
import logging
from functools import lru_cache
from typing import Optional, Protocol

import stripe

from config import settings
from errors import ConfigurationError, GatewayError

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    def create_intent(self, amount: int, currency: str, idempotency_key: Optional[str] = None) -> str: ...


class StripeGateway:
    """Creates card-only PaymentIntents and hands back their client secret."""

    def __init__(self, api_key: Optional[str]):
        if not api_key:
            raise ConfigurationError("PAYMENT_GATEWAY_KEY is not set")
        self._api_key = api_key

    def create_intent(self, amount: int, currency: str, idempotency_key: Optional[str] = None) -> str:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount,
                currency=currency,
                payment_method_types=["card"],
                api_key=self._api_key,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            logger.exception("Payment intent creation failed (key=%s)", idempotency_key)
            raise GatewayError(exc.user_message or "Payment processor error") from exc
        return intent.client_secret


def intent_idempotency_key(parcel_id: Optional[str], amount: int) -> Optional[str]:
    if not parcel_id:
        return None
    return f"intent-{parcel_id}-{amount}"


@lru_cache
def get_payment_gateway() -> PaymentGateway:
    return StripeGateway(settings.payment_gateway_key)
