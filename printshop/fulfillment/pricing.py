"""Pricing helpers for print orders.

Normalizes a provider quote into a canonical cost breakdown and adds the
platform margin on top:

    provider_total = totalCost (when the provider sends one)
                   | items + shipping + branding + tax + fees
    total_with_margin = provider_total + max(profit_margin, 0)

The margin is a flat amount per order, never a percentage.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Union

from pydantic import BaseModel

from printshop.integrations.prodigi import Cost, QuoteResponse
from printshop.models import PricingBreakdown

MAX_COPIES = 10
DEFAULT_CURRENCY = "EUR"


def sanitize_copies(value: Any) -> int:
    """Clamp a requested copy count to [1, MAX_COPIES].

    Non-numeric, non-finite and non-positive inputs resolve to 1.
    """
    if isinstance(value, bool):
        return 1
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 1
    if not math.isfinite(parsed) or parsed <= 0:
        return 1
    return max(1, min(int(round(parsed)), MAX_COPIES))


def safe_number(value: Any) -> float:
    """Convert to float, treating missing or non-finite values as 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return 0.0
    return parsed if math.isfinite(parsed) else 0.0


def format_metadata_number(value: Any) -> str:
    """Format an amount as a fixed-point string for payment metadata."""
    return f"{safe_number(value):.2f}"


def to_minor_units(amount: float) -> int:
    """Convert a major-unit amount to integer minor units (min 1)."""
    cents = (Decimal(str(safe_number(amount))) * 100).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP,
    )
    return max(1, int(cents))


def platform_margin(value: Any) -> float:
    """Return the margin to add; unset or negative margins count as zero."""
    margin = safe_number(value)
    return margin if margin > 0 else 0.0


class QuoteSummary(BaseModel):
    """Canonical cost breakdown of the first provider quote."""

    quote_id: Optional[str] = None
    shipment_method: Optional[str] = None
    currency: str = DEFAULT_CURRENCY
    items_amount: float = 0.0
    shipping_amount: float = 0.0
    branding_amount: float = 0.0
    tax_amount: float = 0.0
    fees_amount: float = 0.0
    prodigi_total: float = 0.0


def _amount(cost: Optional[Cost]) -> float:
    return safe_number(cost.amount) if cost else 0.0


def summarize_quote(
    response: Union[QuoteResponse, dict[str, Any], None],
) -> Optional[QuoteSummary]:
    """Summarize the first quote of a provider response.

    Only the first quote is used when the provider returns several
    shipping options.

    Returns:
        QuoteSummary, or None when the response carries no quote.
    """
    if response is None:
        return None
    if not isinstance(response, QuoteResponse):
        response = QuoteResponse.model_validate(response)

    quote = response.first_quote
    if quote is None:
        return None

    costs = quote.cost_summary
    items = _amount(costs.items)
    shipping = _amount(costs.shipping)
    branding = _amount(costs.branding)
    tax = _amount(costs.tax)
    fees = _amount(costs.fees)

    if costs.total_cost is not None and costs.total_cost.amount not in (None, ""):
        total = _amount(costs.total_cost)
    else:
        total = items + shipping + branding + tax + fees

    currency = (
        (costs.total_cost and costs.total_cost.currency)
        or (costs.items and costs.items.currency)
        or (costs.shipping and costs.shipping.currency)
        or quote.currency
        or DEFAULT_CURRENCY
    )

    return QuoteSummary(
        quote_id=response.quote_id,
        shipment_method=quote.shipment_method,
        currency=currency.upper(),
        items_amount=round(items, 2),
        shipping_amount=round(shipping, 2),
        branding_amount=round(branding, 2),
        tax_amount=round(tax, 2),
        fees_amount=round(fees, 2),
        prodigi_total=round(total, 2),
    )


def apply_margin(summary: QuoteSummary, margin: Any) -> PricingBreakdown:
    """Build the customer-facing breakdown for a quote plus margin."""
    added = platform_margin(margin)
    total = round(summary.prodigi_total + added, 2)
    return PricingBreakdown(
        currency=summary.currency,
        prodigi_items_amount=summary.items_amount,
        prodigi_shipping_amount=summary.shipping_amount,
        prodigi_tax_amount=summary.tax_amount,
        prodigi_fees_amount=summary.fees_amount,
        prodigi_total=summary.prodigi_total,
        platform_margin=added,
        total_with_margin=total,
        total_charged=total,
    )
