"""Payment orchestration.

Checkout: quote against the recipient's country, add the platform margin and
open a payment intent whose metadata holds everything needed to place the
order later. The intent's own id then becomes the merchant reference.

Webhooks: a succeeded payment rebuilds the order from that metadata and
hands it to the fulfillment placer; a failed payment is only logged.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Optional

from pydantic import BaseModel

from printshop.config import Settings, get_settings
from printshop.errors import FulfillmentError, InvalidArgument, UpstreamError
from printshop.fulfillment.assets import AssetResolver
from printshop.fulfillment.orders import PlacementResult, place_order
from printshop.fulfillment.pricing import (
    apply_margin,
    format_metadata_number,
    safe_number,
    to_minor_units,
)
from printshop.fulfillment.quotes import compute_quote
from printshop.fulfillment.recipients import normalize_recipient
from printshop.integrations.prodigi import ProdigiClient
from printshop.integrations.stripe_payments import StripeGateway, build_shipping, to_plain
from printshop.models import PricingBreakdown
from printshop.safety import audit

logger = logging.getLogger(__name__)

SUCCEEDED = "payment_intent.succeeded"
FAILED = "payment_intent.payment_failed"


class PaymentIntentResult(BaseModel):
    client_secret: Optional[str] = None
    payment_id: str
    amount: int
    currency: str
    quote_id: Optional[str] = None
    pricing: PricingBreakdown


def create_order_payment(
    conn: sqlite3.Connection,
    client: ProdigiClient,
    assets: AssetResolver,
    gateway: StripeGateway,
    photo_id: str,
    variant_id: str,
    recipient: Any,
    color_code: Optional[str] = None,
    copies: Any = 1,
    shipping_method: Optional[str] = None,
    product_attributes: Optional[dict[str, Any]] = None,
    asset_override_url: Optional[str] = None,
    user_id: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> PaymentIntentResult:
    """Quote an order and open a payment intent for its marked-up total.

    Returns:
        PaymentIntentResult with the client secret for the browser.

    Raises:
        InvalidArgument: On a bad recipient or a non-positive total.
        NotFound, ConfigurationError: From variant resolution.
        UpstreamError: If the provider cannot price the order or the
            processor rejects the intent.
    """
    settings = settings or get_settings()
    gateway.ensure_configured()

    normalized = normalize_recipient(recipient)
    context = compute_quote(
        conn, client, assets, photo_id, variant_id,
        color_code=color_code,
        copies=copies,
        destination_country=normalized.address.country_code,
        shipping_method=shipping_method,
        product_attributes=product_attributes,
        asset_override_url=asset_override_url,
        settings=settings,
    )

    summary = context.summary
    if summary is None or summary.prodigi_total <= 0:
        raise UpstreamError(
            "Could not calculate the provider cost for this order",
            payload=context.response.model_dump(by_alias=True),
        )

    variant = context.resolved.variant
    photo = context.resolved.photo
    pricing = apply_margin(summary, variant.profit_margin)
    if pricing.total_with_margin <= 0:
        raise InvalidArgument("Order total must be greater than zero")

    currency = (variant.currency or summary.currency or "EUR").upper()
    amount = to_minor_units(pricing.total_with_margin)

    metadata = {
        "photoId": photo.id,
        "variantId": variant.id,
        "colorCode": context.resolved.color_code or "",
        "copies": str(context.copies),
        "shippingMethod": context.shipping_method,
        "prodigiQuoteId": summary.quote_id or "",
        "prodigiCurrency": summary.currency,
        "prodigiItemsAmount": format_metadata_number(pricing.prodigi_items_amount),
        "prodigiShippingAmount": format_metadata_number(pricing.prodigi_shipping_amount),
        "prodigiTaxAmount": format_metadata_number(pricing.prodigi_tax_amount),
        "prodigiFeesAmount": format_metadata_number(pricing.prodigi_fees_amount),
        "prodigiTotal": format_metadata_number(pricing.prodigi_total),
        "platformMargin": format_metadata_number(pricing.platform_margin),
        "totalWithMargin": format_metadata_number(pricing.total_with_margin),
        "recipient": json.dumps(normalized.to_provider()),
        "productAttributes": json.dumps(context.attributes) if context.attributes else "",
        "createdByUserId": user_id or "",
        "merchantReference": f"stripe-{photo.id}-{variant.id}",
    }

    intent = gateway.create_payment_intent(
        amount=amount,
        currency=currency.lower(),
        metadata=metadata,
        description=f'Print of "{photo.title}"',
        shipping=build_shipping(normalized.to_provider()),
        receipt_email=normalized.email,
    )
    payment_id = intent["id"]
    gateway.update_metadata(payment_id, {"merchantReference": payment_id})

    audit.log(conn, "payment", "payment_created", {
        "payment_id": payment_id,
        "photo_id": photo.id,
        "variant_id": variant.id,
        "amount": amount,
        "currency": currency,
        "prodigi_total": pricing.prodigi_total,
        "platform_margin": pricing.platform_margin,
    })
    logger.info(
        "Created payment %s for %s %s (provider %.2f + margin %.2f)",
        payment_id, amount, currency, pricing.prodigi_total, pricing.platform_margin,
    )
    return PaymentIntentResult(
        client_secret=intent.get("client_secret"),
        payment_id=payment_id,
        amount=amount,
        currency=currency,
        quote_id=summary.quote_id,
        pricing=pricing,
    )


def pricing_from_metadata(
    metadata: dict[str, Any],
    amount_received: Optional[int] = None,
    currency: Optional[str] = None,
) -> PricingBreakdown:
    """Rebuild the charged breakdown.

    The captured amount, when the processor reports one (zero included),
    replaces the quoted total with margin.
    """
    if amount_received is not None:
        charged = round(safe_number(amount_received) / 100, 2)
    else:
        charged = safe_number(metadata.get("totalWithMargin"))
    return PricingBreakdown(
        currency=(metadata.get("prodigiCurrency") or currency or "EUR").upper(),
        prodigi_items_amount=safe_number(metadata.get("prodigiItemsAmount")),
        prodigi_shipping_amount=safe_number(metadata.get("prodigiShippingAmount")),
        prodigi_tax_amount=safe_number(metadata.get("prodigiTaxAmount")),
        prodigi_fees_amount=safe_number(metadata.get("prodigiFeesAmount")),
        prodigi_total=safe_number(metadata.get("prodigiTotal")),
        platform_margin=safe_number(metadata.get("platformMargin")),
        total_with_margin=charged,
        total_charged=charged,
    )


def _json_field(metadata: dict[str, Any], key: str) -> Any:
    raw = metadata.get(key)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.error("Payment metadata field %s is not valid JSON", key)
        return None


def handle_payment_succeeded(
    conn: sqlite3.Connection,
    client: ProdigiClient,
    assets: AssetResolver,
    gateway: StripeGateway,
    payment_intent: dict[str, Any],
    settings: Optional[Settings] = None,
) -> Optional[PlacementResult]:
    """Place the provider order for a confirmed payment.

    Returns:
        PlacementResult, or None when the payment carries no order metadata.
    """
    payment_intent = to_plain(payment_intent)
    payment_id = payment_intent.get("id")
    metadata = dict(payment_intent.get("metadata") or {})
    recipient = _json_field(metadata, "recipient")

    if not metadata.get("photoId") or not metadata.get("variantId") or not recipient:
        logger.warning("Payment %s has no print order metadata, skipping", payment_id)
        return None

    result = place_order(
        conn, client, assets,
        photo_id=metadata["photoId"],
        variant_id=metadata["variantId"],
        recipient=recipient,
        color_code=metadata.get("colorCode") or None,
        copies=metadata.get("copies"),
        shipping_method=metadata.get("shippingMethod") or None,
        created_by=metadata.get("createdByUserId") or None,
        payment_id=payment_id,
        payment_status=payment_intent.get("status"),
        pricing=pricing_from_metadata(
            metadata, payment_intent.get("amount_received"), payment_intent.get("currency"),
        ),
        merchant_reference=metadata.get("merchantReference") or payment_id,
        product_attributes=_json_field(metadata, "productAttributes"),
        settings=settings,
    )

    if not result.already_placed and result.provider_order_id:
        try:
            gateway.update_metadata(payment_id, {
                "prodigiOrderId": result.provider_order_id,
                "prodigiMerchantReference": result.merchant_reference or "",
            })
        except FulfillmentError as e:
            logger.warning("Could not link payment %s to its provider order: %s", payment_id, e)
    return result


def handle_payment_failed(conn: sqlite3.Connection, payment_intent: dict[str, Any]) -> None:
    payment_intent = to_plain(payment_intent)
    error = payment_intent.get("last_payment_error") or {}
    logger.warning(
        "Payment %s failed: %s", payment_intent.get("id"), error.get("message") or "unknown",
    )
    audit.log(conn, "payment", "payment_failed", {
        "payment_id": payment_intent.get("id"),
        "code": error.get("code"),
    }, success=False)


def dispatch_event(
    conn: sqlite3.Connection,
    client: ProdigiClient,
    assets: AssetResolver,
    gateway: StripeGateway,
    event: dict[str, Any],
    settings: Optional[Settings] = None,
) -> Optional[PlacementResult]:
    """Route a verified webhook event to its handler."""
    event = to_plain(event)
    event_type = event.get("type")
    payment_intent = (event.get("data") or {}).get("object") or {}

    if event_type == SUCCEEDED:
        return handle_payment_succeeded(conn, client, assets, gateway, payment_intent, settings)
    if event_type == FAILED:
        handle_payment_failed(conn, payment_intent)
        return None

    logger.debug("Ignoring webhook event %s", event_type)
    return None


def create_generic_payment(
    gateway: StripeGateway,
    amount: Any,
    currency: str = "EUR",
    metadata: Optional[dict[str, Any]] = None,
) -> PaymentIntentResult:
    """Open a payment intent for an arbitrary amount, outside the print flow.

    Webhooks for these intents carry no order metadata and are skipped.

    Raises:
        InvalidArgument: If the amount is missing or not positive.
    """
    gateway.ensure_configured()
    total = safe_number(amount)
    if total <= 0:
        raise InvalidArgument("A valid amount is required to create a payment intent")

    currency = (currency or "EUR").upper()
    minor = to_minor_units(total)
    bag = {str(k): "" if v is None else str(v) for k, v in (metadata or {}).items()}
    intent = gateway.create_payment_intent(amount=minor, currency=currency.lower(), metadata=bag)
    logger.info("Created generic payment %s for %s %s", intent["id"], minor, currency)
    return PaymentIntentResult(
        client_secret=intent.get("client_secret"),
        payment_id=intent["id"],
        amount=minor,
        currency=currency,
        pricing=PricingBreakdown(currency=currency, total_with_margin=total, total_charged=total),
    )
