"""
Stripe payment gateway.

Creates PaymentIntents for paid packages and turns retrieved intents into
Payment models the activation procedure can consume.
"""

import os
from typing import Any, Dict, Optional

import stripe
from aws_lambda_powertools import Logger

from shared.constants.entitlements import DEFAULT_CURRENCY
from shared.models.entitlement import EntitlementError, Payment

logger = Logger()


class PaymentGatewayError(EntitlementError):
    """Raised when Stripe rejects or fails a request"""

    pass


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def from_minor_units(amount: Optional[int]) -> float:
    return (amount or 0) / 100


class StripePaymentGateway:
    """Thin wrapper over the Stripe PaymentIntent API"""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or os.environ.get("STRIPE_SECRET_KEY")
        if self.api_key:
            stripe.api_key = self.api_key
        else:
            logger.warning("STRIPE_SECRET_KEY is not set. Stripe functionality will be unavailable.")

    def _require_key(self) -> None:
        if not self.api_key:
            raise PaymentGatewayError("STRIPE_SECRET_KEY is not set")

    def create_payment_intent(
        self,
        amount: float,
        package_id: str,
        user_id: str,
        currency: str = DEFAULT_CURRENCY,
    ) -> Dict[str, Any]:
        """
        Create a PaymentIntent carrying package and user in its metadata.

        Returns:
            Dict with client_secret and payment_intent_id
        """
        self._require_key()
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=currency,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata={"packageId": package_id, "userId": user_id},
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create payment intent for user {user_id}: {e}")
            raise PaymentGatewayError(f"Failed to create payment intent: {e}") from e

        logger.info(f"Created payment intent {intent.id} for user {user_id}")
        return {"client_secret": intent.client_secret, "payment_intent_id": intent.id}

    def retrieve_payment(self, payment_intent_id: str) -> Payment:
        """Fetch a PaymentIntent and map it to a Payment."""
        self._require_key()
        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id)
        except stripe.StripeError as e:
            logger.error(f"Failed to retrieve payment intent {payment_intent_id}: {e}")
            raise PaymentGatewayError(f"Failed to retrieve payment status: {e}") from e

        metadata = dict(intent.metadata or {})
        return Payment(
            payment_id=intent.id,
            status=intent.status,
            amount=from_minor_units(intent.amount),
            currency=intent.currency or DEFAULT_CURRENCY,
            package_id=metadata.get("packageId"),
            user_id=metadata.get("userId"),
        )
