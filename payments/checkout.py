"""
payments/checkout.py -- Stripe Checkout integration.

Flow:
  1. GET /api/v1/bookings/checkout-session/{tour_id} calls
     CheckoutGateway.create_session(); the browser is sent to session.url.
  2. Stripe calls POST /webhook-checkout with a signed
     checkout.session.completed event.
  3. parse_event() verifies the signature; completed_checkout() extracts
     (tour id, customer email, amount) and the route creates the booking.

Bookings are only ever created from a verified webhook, never from the
success redirect, which the browser controls.

Layer rule: no imports from api/, web/, auth/ or tours/ beyond type hints.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import stripe

from core.errors import DownstreamUnavailable, ValidationFailure

if TYPE_CHECKING:
    from auth.models import User
    from tours.models import Tour

logger = logging.getLogger("wayfarer.payments")

CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class CompletedCheckout:
    tour_id: int
    customer_email: str
    price: float


class CheckoutGateway:
    """Thin wrapper around the Stripe SDK, holding the keys explicitly."""

    def __init__(self, secret_key: str, webhook_secret: str, currency: str = "usd") -> None:
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    def create_session(
        self,
        tour: Tour,
        user: User,
        success_url: str,
        cancel_url: str,
        image_url: str,
    ) -> Any:
        """Create a one-item payment session for tour. Returns the Stripe session."""
        if not self.secret_key:
            raise DownstreamUnavailable("Payments are not configured.")
        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                mode="payment",
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=user.email,
                client_reference_id=str(tour.id),
                line_items=[
                    {
                        "quantity": 1,
                        "price_data": {
                            "currency": self.currency,
                            "unit_amount": int(round(tour.price * 100)),
                            "product_data": {
                                "name": f"{tour.name} Tour",
                                "description": tour.summary,
                                "images": [image_url],
                            },
                        },
                    }
                ],
            )
        except stripe.StripeError as exc:
            logger.error("Stripe session creation failed for tour_id=%s: %s", tour.id, exc)
            raise DownstreamUnavailable("Could not start the payment. Try again later!") from exc
        logger.info("Checkout session %s created for tour_id=%s user_id=%s", session.id, tour.id, user.id)
        return session

    def parse_event(self, payload: bytes, signature: str | None) -> Any:
        """Verify a webhook payload. Raises ValidationFailure on a bad signature."""
        if not signature:
            raise ValidationFailure("Webhook error: missing Stripe-Signature header.")
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as exc:
            raise ValidationFailure("Webhook error: invalid payload.") from exc
        except stripe.SignatureVerificationError as exc:
            logger.warning("Rejected webhook with invalid signature")
            raise ValidationFailure("Webhook error: invalid signature.") from exc


def completed_checkout(event: Any) -> CompletedCheckout | None:
    """Extract the booking data from a checkout.session.completed event."""
    if event["type"] != CHECKOUT_COMPLETED:
        return None
    session = event["data"]["object"]
    try:
        return CompletedCheckout(
            tour_id=int(session["client_reference_id"]),
            customer_email=session["customer_email"],
            price=session["amount_total"] / 100,
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationFailure("Webhook error: incomplete checkout session.") from exc
