"""Tests for the quote engine."""

import pytest

from printshop.catalog import save_catalog_product
from printshop.errors import NotFound, UpstreamError
from printshop.fulfillment.quotes import compute_quote
from printshop.safety.audit import query


def test_quote_request_shape(conn, seeded, prodigi, fake_prodigi, assets, settings):
    """One item with SKU, copies, attributes and a default-print-area asset."""
    context = compute_quote(conn, prodigi, assets, "photo-1", "var-1", settings=settings)

    body = fake_prodigi.sent("POST", "/quotes")
    assert body == {
        "shippingMethod": "Budget",
        "destinationCountryCode": "ES",
        "items": [{
            "sku": "GLOBAL-FAP-16X24",
            "copies": 1,
            "attributes": {"paperType": "EMA"},
            "assets": [{"printArea": "default", "assetId": "asset-123"}],
        }],
    }
    assert context.sku == "GLOBAL-FAP-16X24"
    assert context.response.quote_id == "quote-1"


def test_photo_path_uploaded_as_absolute_url(conn, seeded, prodigi, fake_prodigi, assets, settings):
    """The photo's stored path is turned into a public URL before upload."""
    compute_quote(conn, prodigi, assets, "photo-1", "var-1", settings=settings)
    upload = fake_prodigi.sent("POST", "/assets")
    assert upload["items"][0]["assets"][0]["source"]["url"] == "https://cdn.example.com/photos/dunes.jpg"


def test_copies_and_destination_normalized(conn, seeded, prodigi, fake_prodigi, assets, settings):
    compute_quote(
        conn, prodigi, assets, "photo-1", "var-1",
        copies=15, destination_country="gb", settings=settings,
    )
    body = fake_prodigi.sent("POST", "/quotes")
    assert body["items"][0]["copies"] == 10
    assert body["destinationCountryCode"] == "GB"


def test_shipping_method_precedence(conn, seeded, prodigi, fake_prodigi, assets, settings):
    """Request value, then catalog default, then the system default."""
    compute_quote(conn, prodigi, assets, "photo-1", "var-1", settings=settings)
    assert fake_prodigi.sent("POST", "/quotes")["shippingMethod"] == "Budget"

    seeded.product.default_shipping_method = "Standard"
    save_catalog_product(conn, seeded.product)
    compute_quote(conn, prodigi, assets, "photo-1", "var-1", settings=settings)
    assert fake_prodigi.sent("POST", "/quotes")["shippingMethod"] == "Standard"

    compute_quote(
        conn, prodigi, assets, "photo-1", "var-1", shipping_method="Express", settings=settings,
    )
    assert fake_prodigi.sent("POST", "/quotes")["shippingMethod"] == "Express"


def test_caller_attributes_win(conn, seeded, prodigi, fake_prodigi, assets, settings):
    compute_quote(
        conn, prodigi, assets, "photo-1", "var-1",
        product_attributes={"paperType": "HGE"}, settings=settings,
    )
    assert fake_prodigi.sent("POST", "/quotes")["items"][0]["attributes"] == {"paperType": "HGE"}


def test_live_attributes_when_catalog_empty(conn, seeded, prodigi, fake_prodigi, assets, settings):
    """With no cached attributes, the provider's first product variant is used."""
    seeded.product.attributes = None
    save_catalog_product(conn, seeded.product)
    fake_prodigi.set("GET", "/products/GLOBAL-FAP-16X24", 200, {
        "product": {"variants": [{"attributes": {"finish": "lustre"}}, {"attributes": {"finish": "gloss"}}]},
    })
    compute_quote(conn, prodigi, assets, "photo-1", "var-1", settings=settings)
    assert fake_prodigi.sent("POST", "/quotes")["items"][0]["attributes"] == {"finish": "lustre"}


def test_live_attribute_failure_is_soft(conn, seeded, prodigi, fake_prodigi, assets, settings):
    """A failed product lookup falls back to no attributes."""
    seeded.product.attributes = None
    save_catalog_product(conn, seeded.product)
    compute_quote(conn, prodigi, assets, "photo-1", "var-1", settings=settings)
    assert fake_prodigi.sent("POST", "/quotes")["items"][0]["attributes"] == {}


def test_asset_override(conn, seeded, prodigi, fake_prodigi, assets, settings):
    """An explicit asset override takes precedence."""
    fake_prodigi.set("POST", "/assets", 500, {})
    context = compute_quote(
        conn, prodigi, assets, "photo-1", "var-1",
        asset_override_url="https://preview.example.com/p.jpg", settings=settings,
    )
    assert context.asset.url == "https://preview.example.com/p.jpg"


def test_pricing_from_context(conn, seeded, prodigi, assets, settings):
    """The context prices the quote with the variant margin."""
    context = compute_quote(conn, prodigi, assets, "photo-1", "var-1", settings=settings)
    pricing = context.pricing()
    assert pricing.prodigi_total == 36
    assert pricing.total_with_margin == 41


def test_not_found_before_provider_call(conn, seeded, prodigi, fake_prodigi, assets, settings):
    with pytest.raises(NotFound):
        compute_quote(conn, prodigi, assets, "photo-1", "var-404", settings=settings)
    assert fake_prodigi.requests == []


def test_provider_rejection(conn, seeded, prodigi, fake_prodigi, assets, settings):
    """Rejected quotes surface as UpstreamError and are audited."""
    fake_prodigi.set("POST", "/quotes", 400, {"outcome": "ValidationFailed"})
    with pytest.raises(UpstreamError) as exc:
        compute_quote(conn, prodigi, assets, "photo-1", "var-1", settings=settings)
    assert exc.value.status_code == 400
    assert query(conn, component="quote")[0]["success"] == 0
