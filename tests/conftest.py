"""Shared fixtures: a seeded catalog, a mocked provider and a mocked processor."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest

from printshop.catalog import save_catalog_product, save_photo, save_variant
from printshop.config import Settings
from printshop.db import get_initialized_connection
from printshop.fulfillment.assets import AssetResolver
from printshop.integrations.prodigi import ProdigiClient
from printshop.integrations.stripe_payments import StripeGateway
from printshop.models import CatalogProduct, ColorOption, Photo, PhotoVariant

QUOTE_RESPONSE = {
    "outcome": "Created",
    "quotes": [
        {
            "id": "quote-1",
            "shipmentMethod": "Budget",
            "costSummary": {
                "items": {"amount": "30.00", "currency": "EUR"},
                "shipping": {"amount": "6.00", "currency": "EUR"},
            },
        }
    ],
}

ORDER_RESPONSE = {
    "outcome": "Created",
    "order": {"id": "ord_1001", "status": {"stage": "InProgress"}},
}

RECIPIENT = {
    "name": "Ana García",
    "email": "ana@example.com",
    "addressLine1": "Calle Mayor 1",
    "city": "Madrid",
    "postalCode": "28013",
    "countryCode": "es",
}



def sign_payload(payload: bytes, secret: str = "whsec_test") -> str:
    """Build a Stripe-Signature header the way Stripe signs webhooks."""
    timestamp = int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def succeeded_event(metadata: dict, payment_id: str = "pi_123", amount_received: int = 4100) -> dict:
    return {
        "id": "evt_1",
        "object": "event",
        "type": "payment_intent.succeeded",
        "data": {"object": {
            "id": payment_id,
            "object": "payment_intent",
            "status": "succeeded",
            "currency": "eur",
            "amount_received": amount_received,
            "metadata": metadata,
        }},
    }

class FakeProdigi:
    """In-memory stand-in for the provider API behind httpx.MockTransport.

    Responses are registered per (method, path). Several responses for one
    route are served in order, the last one repeating.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.routes: dict[tuple[str, str], list[tuple[int, object]]] = {}
        self.set("POST", "/assets", 200, {"items": [{"assets": [{"id": "asset-123"}]}]})
        self.set("POST", "/quotes", 200, QUOTE_RESPONSE)
        self.set("POST", "/orders", 200, ORDER_RESPONSE)

    def set(self, method: str, path: str, status: int, body: object) -> None:
        self.routes[(method, path)] = [(status, body)]

    def queue(self, method: str, path: str, *responses: tuple[int, object]) -> None:
        self.routes[(method, path)] = list(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/v4.0")
        entries = self.routes.get((request.method, path))
        if not entries:
            return httpx.Response(404, json={"outcome": "NotFound"})
        status, body = entries.pop(0) if len(entries) > 1 else entries[0]
        return httpx.Response(status, json=body)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and r.url.path.removeprefix("/v4.0") == path
        ]

    def sent(self, method: str, path: str, index: int = -1) -> dict:
        return json.loads(self.calls(method, path)[index].content)


@pytest.fixture
def conn(tmp_path):
    db = get_initialized_connection(str(tmp_path / "test.db"))
    yield db
    db.close()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        prodigi_api_key="test-key",
        prodigi_backoff_seconds=0,
        asset_base_url="https://cdn.example.com",
        sk_test_stripe="sk_test_123",
        pk_test_stripe="pk_test_123",
        stripe_test_webhook_secret="whsec_test",
        admin_api_token="admin-token",
        db_path=str(tmp_path / "test.db"),
    )


@pytest.fixture
def seeded(conn):
    """One photo, one catalog product and one two-color variant (margin 5)."""
    photo = save_photo(conn, Photo(
        id="photo-1", title="Dunes at Dawn", image_path="photos/dunes.jpg",
    ))
    product = save_catalog_product(conn, CatalogProduct(
        id="cat-1", sku="global-fap-16x24", name="Fine art print 16x24",
        attributes={"paperType": "EMA"},
    ))
    variant = save_variant(conn, PhotoVariant(
        id="var-1",
        photo_id=photo.id,
        catalog_product_id=product.id,
        profit_margin=5,
        currency="EUR",
        color_options=[
            ColorOption(code="BLK", name="Black"),
            ColorOption(code="BLU", name="Blue", asset_url="https://cdn.example.com/blue.jpg"),
        ],
        attributes={"color": "red", "paperType": "SAP"},
    ))
    return SimpleNamespace(photo=photo, product=product, variant=variant)


@pytest.fixture
def fake_prodigi():
    return FakeProdigi()


@pytest.fixture
def prodigi(fake_prodigi):
    client = ProdigiClient(
        "test-key",
        backoff_seconds=0,
        transport=httpx.MockTransport(fake_prodigi.handler),
    )
    yield client
    client.close()


@pytest.fixture
def assets(prodigi):
    return AssetResolver(prodigi)


@pytest.fixture
def gateway():
    gw = MagicMock(spec=StripeGateway)
    gw.secret_key = "sk_test_123"
    gw.webhook_secret = "whsec_test"
    gw.publishable_key = "pk_test_123"
    gw.create_payment_intent.return_value = {"id": "pi_123", "client_secret": "pi_123_secret_abc"}
    return gw
