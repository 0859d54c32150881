"""Quote engine.

Resolves the variant, uploads the asset, settles the product attributes and
asks the provider for a price. The returned context carries everything the
payment and placement steps need so nothing is re-resolved between them.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from printshop.config import Settings, get_settings
from printshop.errors import UpstreamError
from printshop.fulfillment.assets import AssetReference, AssetResolver
from printshop.fulfillment.pricing import (
    QuoteSummary,
    apply_margin,
    sanitize_copies,
    summarize_quote,
)
from printshop.fulfillment.variants import ResolvedVariant, asset_candidate, resolve_variant
from printshop.integrations.prodigi import ProdigiClient, QuoteResponse
from printshop.models import PricingBreakdown
from printshop.safety import audit

logger = logging.getLogger(__name__)

DEFAULT_DESTINATION = "ES"


class QuoteContext(BaseModel):
    """A provider quote plus the resolution it was computed against."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    resolved: ResolvedVariant
    sku: str
    copies: int
    asset: Optional[AssetReference] = None
    attributes: dict[str, Any]
    shipping_method: str
    destination_country: str
    request_payload: dict[str, Any]
    response: QuoteResponse

    @property
    def summary(self) -> Optional[QuoteSummary]:
        return summarize_quote(self.response)

    def pricing(self) -> Optional[PricingBreakdown]:
        summary = self.summary
        if summary is None:
            return None
        return apply_margin(summary, self.resolved.variant.profit_margin)


def live_product_attributes(client: ProdigiClient, sku: str) -> dict[str, Any]:
    """Attributes of the first variant the provider lists for a SKU."""
    try:
        product = client.get_product(sku)
    except UpstreamError as e:
        logger.warning("Could not load provider attributes for %s: %s", sku, e)
        return {}
    variants = (product.get("product") or {}).get("variants") or []
    if not variants:
        return {}
    return dict(variants[0].get("attributes") or {})


def resolve_attributes(
    client: ProdigiClient,
    resolved: ResolvedVariant,
    sku: str,
    product_attributes: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Caller-supplied attributes, else cached catalog attributes, else live."""
    if product_attributes:
        return dict(product_attributes)
    product = resolved.catalog_product
    if product and product.attributes:
        return dict(product.attributes)
    return live_product_attributes(client, sku)


def resolve_shipping_method(
    requested: Optional[str],
    resolved: ResolvedVariant,
    settings: Settings,
) -> str:
    if requested and requested.strip():
        return requested.strip()
    product = resolved.catalog_product
    if product and product.default_shipping_method:
        return product.default_shipping_method
    return settings.prodigi_default_shipping_method


def compute_quote(
    conn: sqlite3.Connection,
    client: ProdigiClient,
    assets: AssetResolver,
    photo_id: str,
    variant_id: str,
    color_code: Optional[str] = None,
    copies: Any = 1,
    destination_country: Optional[str] = None,
    shipping_method: Optional[str] = None,
    product_attributes: Optional[dict[str, Any]] = None,
    asset_override_url: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> QuoteContext:
    """Price one print of a photo variant with the provider.

    Args:
        conn: Active database connection.
        client: Provider gateway.
        assets: Asset resolver (holds the upload cache).
        photo_id: Photo ID.
        variant_id: Variant ID.
        color_code: Optional color code; defaults to the first option.
        copies: Requested copies, clamped to [1, 10].
        destination_country: ISO country code, default ES.
        shipping_method: Optional shipping method override.
        product_attributes: Optional provider attributes override.
        asset_override_url: Optional ad-hoc asset for previews.
        settings: Settings (defaults to environment).

    Returns:
        QuoteContext with the raw provider response.

    Raises:
        InvalidArgument, NotFound: From variant resolution.
        ConfigurationError: If the variant has no SKU.
        UpstreamError: If the provider rejects the quote.
    """
    settings = settings or get_settings()
    copies = sanitize_copies(copies)

    resolved = resolve_variant(conn, photo_id, variant_id, color_code)
    sku = resolved.require_sku()

    candidate = asset_candidate(resolved, settings.asset_base_url, asset_override_url)
    asset = assets.resolve(candidate)

    attributes = resolve_attributes(client, resolved, sku, product_attributes)
    method = resolve_shipping_method(shipping_method, resolved, settings)
    destination = (destination_country or DEFAULT_DESTINATION).strip().upper()

    item: dict[str, Any] = {
        "sku": sku,
        "copies": copies,
        "attributes": attributes,
        "assets": [asset.to_provider() if asset else {"printArea": "default"}],
    }
    payload = {
        "shippingMethod": method,
        "destinationCountryCode": destination,
        "items": [item],
    }

    try:
        response = client.create_quote(payload)
    except UpstreamError as e:
        logger.error("Quote request for %s failed: %s (payload=%s)", sku, e, e.payload)
        audit.log(conn, "quote", "quote_failed", {
            "photo_id": photo_id, "variant_id": variant_id, "sku": sku,
            "status": e.status,
        }, success=False)
        raise

    logger.info(
        "Quoted %s x%d to %s via %s (quote %s)",
        sku, copies, destination, method, response.quote_id,
    )
    return QuoteContext(
        resolved=resolved,
        sku=sku,
        copies=copies,
        asset=asset,
        attributes=attributes,
        shipping_method=method,
        destination_country=destination,
        request_payload=payload,
        response=response,
    )
