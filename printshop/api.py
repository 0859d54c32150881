"""Print shop REST API.

FastAPI server for the storefront: live quotes, checkout payment intents and
the payment webhook that triggers fulfillment. Back-office routes live in
api_admin.py.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional

import stripe
from fastapi import Depends, FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from printshop import catalog
from printshop.api_admin import router as admin_router
from printshop.config import Settings, get_settings
from printshop.deps import get_assets, get_db, get_gateway, get_prodigi, settings_dependency
from printshop.errors import FulfillmentError, UpstreamError
from printshop.fulfillment import payments, quotes
from printshop.fulfillment.assets import AssetResolver
from printshop.fulfillment.pricing import apply_margin
from printshop.integrations.prodigi import ProdigiClient
from printshop.integrations.stripe_payments import StripeGateway

logger = logging.getLogger(__name__)

app = FastAPI(title="Print Shop API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(admin_router)


# ── Errors ──────────────────────────────────────────────────────


@app.exception_handler(FulfillmentError)
async def fulfillment_error_handler(request: Request, exc: FulfillmentError) -> JSONResponse:
    body: dict[str, Any] = {"error": exc.message}
    if isinstance(exc, UpstreamError) and request.url.path.startswith("/admin"):
        body["details"] = exc.payload
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=body)


# ── Request Models ──────────────────────────────────────────────


class QuoteRequest(BaseModel):
    """Live price request for one photo variant."""

    model_config = ConfigDict(populate_by_name=True)

    photo_id: str = Field(..., alias="photoId")
    variant_id: str = Field(..., alias="variantId")
    color_code: Optional[str] = Field(None, alias="colorCode")
    copies: Any = Field(1, description="Clamped to 1-10; non-numeric means 1")
    destination_country_code: Optional[str] = Field(None, alias="destinationCountryCode")
    shipping_method: Optional[str] = Field(None, alias="shippingMethod")
    product_attributes: Optional[dict[str, Any]] = Field(None, alias="productAttributes")
    asset_url: Optional[str] = Field(None, alias="assetUrl")


class CheckoutRequest(QuoteRequest):
    """Checkout request; the destination comes from the recipient."""

    recipient: Optional[dict[str, Any]] = None


class GenericPaymentRequest(BaseModel):
    """Payment for an arbitrary amount in major units."""

    amount: Any = None
    currency: str = "EUR"
    metadata: dict[str, Any] = Field(default_factory=dict)


# ── Storefront ──────────────────────────────────────────────────


@app.get("/products")
def list_products(conn: sqlite3.Connection = Depends(get_db)):
    """Printable products offered by the shop."""
    products = catalog.list_catalog_products(conn)
    return {"products": [p.model_dump() for p in products], "count": len(products)}


@app.get("/products/{sku}")
def product_details(sku: str, client: ProdigiClient = Depends(get_prodigi)):
    """Provider product details (variants, attributes, print areas)."""
    return client.get_product(sku)


@app.post("/quote")
def quote(
    req: QuoteRequest,
    conn: sqlite3.Connection = Depends(get_db),
    client: ProdigiClient = Depends(get_prodigi),
    assets: AssetResolver = Depends(get_assets),
    settings: Settings = Depends(settings_dependency),
):
    """Quote a photo variant with the platform margin applied."""
    context = quotes.compute_quote(
        conn, client, assets, req.photo_id, req.variant_id,
        color_code=req.color_code,
        copies=req.copies,
        destination_country=req.destination_country_code,
        shipping_method=req.shipping_method,
        product_attributes=req.product_attributes,
        asset_override_url=req.asset_url,
        settings=settings,
    )
    summary = context.summary
    if summary is None:
        raise UpstreamError(
            "Provider returned no quote for this product",
            payload=context.response.model_dump(by_alias=True),
        )
    color = context.resolved.selected_color
    return {
        "outcome": context.response.outcome,
        "quoteId": summary.quote_id,
        "sku": context.sku,
        "copies": context.copies,
        "shippingMethod": context.shipping_method,
        "destinationCountryCode": context.destination_country,
        "selectedColor": {"code": color.code, "name": color.name} if color else None,
        "pricing": apply_margin(summary, context.resolved.variant.profit_margin).model_dump(
            by_alias=True,
        ),
    }


@app.post("/checkout/payment-intent")
def create_payment_intent(
    req: CheckoutRequest,
    conn: sqlite3.Connection = Depends(get_db),
    client: ProdigiClient = Depends(get_prodigi),
    assets: AssetResolver = Depends(get_assets),
    gateway: StripeGateway = Depends(get_gateway),
    settings: Settings = Depends(settings_dependency),
    x_user_id: Optional[str] = Header(None),
):
    """Open a payment intent for a quoted order."""
    result = payments.create_order_payment(
        conn, client, assets, gateway, req.photo_id, req.variant_id, req.recipient,
        color_code=req.color_code,
        copies=req.copies,
        shipping_method=req.shipping_method,
        product_attributes=req.product_attributes,
        asset_override_url=req.asset_url,
        user_id=x_user_id,
        settings=settings,
    )
    return {
        "clientSecret": result.client_secret,
        "paymentIntentId": result.payment_id,
        "amount": result.amount,
        "currency": result.currency,
        "quoteId": result.quote_id,
        "pricing": result.pricing.model_dump(by_alias=True),
    }


@app.post("/payments/payment-intent")
def create_generic_payment_intent(
    req: GenericPaymentRequest,
    gateway: StripeGateway = Depends(get_gateway),
    x_user_id: Optional[str] = Header(None),
):
    """Payment intent for an amount not tied to a print order."""
    metadata = dict(req.metadata)
    if x_user_id:
        metadata.setdefault("createdByUserId", x_user_id)
    result = payments.create_generic_payment(gateway, req.amount, req.currency, metadata)
    return {"clientSecret": result.client_secret, "paymentIntentId": result.payment_id}


@app.get("/payments/config")
def payments_config(gateway: StripeGateway = Depends(get_gateway)):
    """Publishable key for the browser checkout."""
    if not gateway.publishable_key:
        return JSONResponse(status_code=503, content={"error": "Stripe is not configured"})
    return {"publishableKey": gateway.publishable_key}


@app.post("/payments/webhook")
async def payments_webhook(
    request: Request,
    conn: sqlite3.Connection = Depends(get_db),
    client: ProdigiClient = Depends(get_prodigi),
    assets: AssetResolver = Depends(get_assets),
    gateway: StripeGateway = Depends(get_gateway),
    settings: Settings = Depends(settings_dependency),
    stripe_signature: Optional[str] = Header(None),
):
    """Verify a payment event and fulfill confirmed orders."""
    if not gateway.is_configured or not gateway.webhook_secret:
        return JSONResponse(status_code=503, content={"error": "Stripe webhook not configured"})
    if not stripe_signature:
        return JSONResponse(status_code=400, content={"error": "Missing Stripe signature"})

    payload = await request.body()
    try:
        event = gateway.construct_event(payload, stripe_signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("Rejected webhook: %s", e)
        return JSONResponse(status_code=400, content={"error": "Invalid webhook signature"})

    try:
        await run_in_threadpool(
            payments.dispatch_event, conn, client, assets, gateway, event, settings,
        )
    except Exception as e:
        logger.exception("Webhook handler failed for event %s: %s", event.get("id"), e)
        return JSONResponse(status_code=500, content={"error": "Webhook handler error"})

    return {"received": True}


# ── CLI Entry Point ─────────────────────────────────────────────


def main():
    """Start the API server."""
    import uvicorn

    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    uvicorn.run(app, host="127.0.0.1", port=8036, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
