# app/utils/stripe_gateway.py
import json
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import stripe

from app.core.config import settings
from app.core.exceptions import DependencyError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class CheckoutSession:
    id: str
    url: str


def to_minor_units(amount: Any) -> int:
    """Decimal price to the integer cents Stripe expects."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeGateway:
    """Thin wrapper over the Stripe SDK for hosted checkout and webhook verification."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        tolerance: int = 300,
    ):
        self.secret_key = settings.stripe_secret_key if secret_key is None else secret_key
        self.webhook_secret = (
            settings.stripe_webhook_secret if webhook_secret is None else webhook_secret
        )
        self.tolerance = tolerance

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def create_checkout_session(
        self,
        *,
        item_name: str,
        item_description: str,
        amount: Any,
        customer_email: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
        image_url: Optional[str] = None,
    ) -> CheckoutSession:
        product_data = {"name": item_name, "description": item_description or item_name}
        if image_url:
            product_data["images"] = [image_url]

        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                mode="payment",
                payment_method_types=["card"],
                customer_email=customer_email,
                line_items=[
                    {
                        "price_data": {
                            "currency": settings.payment_currency,
                            "product_data": product_data,
                            "unit_amount": to_minor_units(amount),
                        },
                        "quantity": 1,
                    }
                ],
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error(f"❌ Stripe checkout session creation failed: {e}")
            raise DependencyError(f"Payment provider error: {e.user_message or str(e)}")

        logger.info(f"✅ Stripe checkout session created: {session.id}")
        return CheckoutSession(id=session.id, url=session.url)

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify the ``Stripe-Signature`` header and return the event as a plain dict.

        Raises:
            ValidationError: Missing or invalid signature, or a body that is not UTF-8 JSON
        """
        if not signature:
            raise ValidationError("Missing Stripe signature header")
        if not self.webhook_secret:
            raise DependencyError("Stripe webhook secret is not configured")

        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError:
            logger.warning("⚠️ Webhook payload is not valid UTF-8")
            raise ValidationError("Webhook Error: payload is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, self.tolerance
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"⚠️ Webhook signature verification failed: {e}")
            raise ValidationError(f"Webhook Error: {e}")

        try:
            return json.loads(body)
        except ValueError:
            raise ValidationError("Webhook Error: payload is not valid JSON")


payment_gateway = StripeGateway()


def get_payment_gateway() -> StripeGateway:
    return payment_gateway
