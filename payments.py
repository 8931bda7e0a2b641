"""
Payment processor gateway.

The API never charges cards itself: ``POST /checkout`` asks the processor for a
payment intent that the browser confirms, and order creation later checks
that the intent really succeeded. Processor errors and timeouts are reported
as different errors because a timeout leaves the charge state unknown.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import stripe

from config import PAYMENT_CURRENCY, PAYMENT_TIMEOUT_SECONDS, STRIPE_SECRET_KEY
from errors import PaymentIndeterminate, PaymentProcessorError

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"


@dataclass
class PaymentIntent:
    id: str
    client_secret: Optional[str]
    amount: int  # minor units
    currency: str
    status: str

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED


def to_minor_units(amount) -> int:
    """12.345 -> 1235 (half-up, never float truncation)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGateway(ABC):
    @abstractmethod
    def create_intent(self, amount: int, currency: str = PAYMENT_CURRENCY,
                      idempotency_key: Optional[str] = None) -> PaymentIntent:
        ...

    @abstractmethod
    def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        ...


class StripeGateway(PaymentGateway):
    def __init__(self, api_key: str = STRIPE_SECRET_KEY, timeout: float = PAYMENT_TIMEOUT_SECONDS):
        self.api_key = api_key
        self.timeout = timeout
        self._client = None

    @property
    def client(self) -> "stripe.StripeClient":
        if self._client is None:
            if not self.api_key:
                raise PaymentProcessorError("Payment processor is not configured")
            self._client = stripe.StripeClient(
                self.api_key,
                http_client=stripe.RequestsClient(timeout=self.timeout),
                max_network_retries=0,
            )
        return self._client

    def create_intent(self, amount: int, currency: str = PAYMENT_CURRENCY,
                      idempotency_key: Optional[str] = None) -> PaymentIntent:
        params = {"amount": amount, "currency": currency, "automatic_payment_methods": {"enabled": True}}
        options = {"idempotency_key": idempotency_key} if idempotency_key else {}
        return self._call(lambda: self.client.payment_intents.create(params=params, options=options))

    def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        return self._call(lambda: self.client.payment_intents.retrieve(intent_id))

    @staticmethod
    def _call(fn) -> PaymentIntent:
        try:
            intent = fn()
        except stripe.APIConnectionError as exc:
            logger.warning("Payment processor unreachable: %s", exc)
            raise PaymentIndeterminate("Payment processor did not respond, check the payment status before retrying")
        except stripe.StripeError as exc:
            logger.warning("Payment processor error: %s", exc)
            raise PaymentProcessorError(getattr(exc, "user_message", None) or str(exc))
        return PaymentIntent(
            id=intent.id,
            client_secret=intent.client_secret,
            amount=intent.amount,
            currency=intent.currency,
            status=intent.status,
        )


gateway: PaymentGateway = StripeGateway()


def get_payment_gateway() -> PaymentGateway:
    return gateway
