"""Stripe payment integration for the print shop.

Handles:
- Creating payment intents for marked-up print orders
- Updating payment intent metadata (merchant reference, provider order id)
- Verifying and parsing webhook events

Keys are passed per call rather than set on the `stripe` module, so test
and live gateways can coexist in one process.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import stripe

from printshop.config import Settings
from printshop.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)


def to_plain(value: Any) -> Any:
    """Convert Stripe objects (and nested ones) into plain dicts and lists."""
    if isinstance(value, stripe.StripeObject):
        value = value.to_dict()
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_plain(v) for v in value]
    return value


def _upstream(e: stripe.StripeError, action: str) -> UpstreamError:
    return UpstreamError(
        f"Stripe {action} failed: {e.user_message or str(e)}",
        status=e.http_status,
        payload=e.json_body,
    )


class StripeGateway:
    """Payment processor wrapper around the `stripe` library."""

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str = "",
        publishable_key: str = "",
    ):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.publishable_key = publishable_key

    @classmethod
    def from_settings(cls, settings: Settings) -> "StripeGateway":
        return cls(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_signing_secret,
            publishable_key=settings.stripe_publishable_key,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

    def ensure_configured(self) -> None:
        if not self.is_configured:
            raise ConfigurationError("Stripe is not configured", status_code=503)

    def create_payment_intent(
        self,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        description: Optional[str] = None,
        shipping: Optional[dict[str, Any]] = None,
        receipt_email: Optional[str] = None,
    ) -> dict[str, Any]:
        """Create a payment intent with automatic payment methods.

        Args:
            amount: Amount in minor units (cents).
            currency: Lowercase ISO currency code.
            metadata: String-keyed, string-valued metadata bag.
            description: Human-readable description.
            shipping: Stripe shipping hash.
            receipt_email: Where Stripe sends the receipt.

        Returns:
            The created PaymentIntent as a plain dict.
        """
        self.ensure_configured()
        params: dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "automatic_payment_methods": {"enabled": True},
            "metadata": metadata,
        }
        if description:
            params["description"] = description
        if shipping:
            params["shipping"] = shipping
        if receipt_email:
            params["receipt_email"] = receipt_email

        try:
            intent = stripe.PaymentIntent.create(api_key=self.secret_key, **params)
        except stripe.StripeError as e:
            logger.error("Stripe payment intent creation failed: %s", e)
            raise _upstream(e, "payment intent creation") from e
        return to_plain(intent)

    def update_metadata(self, payment_id: str, metadata: dict[str, str]) -> dict[str, Any]:
        self.ensure_configured()
        try:
            intent = stripe.PaymentIntent.modify(
                payment_id, api_key=self.secret_key, metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error("Stripe metadata update failed for %s: %s", payment_id, e)
            raise _upstream(e, "metadata update") from e
        return to_plain(intent)

    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        """Verify a webhook signature and parse the event into a plain dict.

        Raises:
            ConfigurationError: If no signing secret is configured.
            stripe.SignatureVerificationError: On a bad signature.
            ValueError: On an unparseable payload.
        """
        if not self.webhook_secret:
            raise ConfigurationError("Stripe webhook not configured", status_code=503)
        event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        return to_plain(event)


def build_shipping(recipient: dict[str, Any]) -> dict[str, Any]:
    """Map a normalized provider-shaped recipient to Stripe's shipping hash."""
    address = recipient.get("address") or {}
    shipping: dict[str, Any] = {
        "name": recipient.get("name"),
        "address": {
            "line1": address.get("line1"),
            "city": address.get("townOrCity"),
            "postal_code": address.get("postalOrZipCode"),
            "country": address.get("countryCode"),
        },
    }
    if address.get("line2"):
        shipping["address"]["line2"] = address["line2"]
    if address.get("stateOrCounty"):
        shipping["address"]["state"] = address["stateOrCounty"]
    if recipient.get("phoneNumber"):
        shipping["phone"] = recipient["phoneNumber"]
    return shipping
