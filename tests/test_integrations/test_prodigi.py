"""Tests for the Prodigi gateway: auth, retries, error mapping, filters."""

import httpx
import pytest

from printshop.errors import ConfigurationError, UpstreamError
from printshop.integrations.prodigi import ProdigiClient, build_order_filters


def test_api_key_header_sent(prodigi, fake_prodigi):
    """Every request carries the X-API-Key header."""
    prodigi.create_quote({"items": []})
    request = fake_prodigi.calls("POST", "/quotes")[0]
    assert request.headers["X-API-Key"] == "test-key"


def test_missing_key_is_configuration_error():
    """Without an API key no request is attempted."""
    client = ProdigiClient("")
    with pytest.raises(ConfigurationError) as exc:
        client.get_order("ord_1")
    assert exc.value.status_code == 503
    client.close()


def test_quote_parsed(prodigi):
    """Quote responses are parsed with camelCase aliases."""
    response = prodigi.create_quote({"items": []})
    assert response.outcome == "Created"
    assert response.quote_id == "quote-1"
    assert response.first_quote.cost_summary.items.amount == "30.00"


def test_retries_5xx_then_succeeds(prodigi, fake_prodigi):
    """Idempotent calls are retried on 5xx."""
    fake_prodigi.queue(
        "POST", "/quotes",
        (503, {"outcome": "Unavailable"}),
        (200, {"outcome": "Created", "quotes": []}),
    )
    response = prodigi.create_quote({"items": []})
    assert response.outcome == "Created"
    assert len(fake_prodigi.calls("POST", "/quotes")) == 2


def test_gives_up_after_max_retries(fake_prodigi):
    """Persistent 5xx surfaces as a 502 UpstreamError after max_retries."""
    fake_prodigi.set("GET", "/orders/ord_1", 500, {"outcome": "Error"})
    client = ProdigiClient(
        "k", max_retries=3, backoff_seconds=0,
        transport=httpx.MockTransport(fake_prodigi.handler),
    )
    with pytest.raises(UpstreamError) as exc:
        client.get_order("ord_1")
    assert exc.value.status == 500
    assert exc.value.status_code == 502
    assert len(fake_prodigi.calls("GET", "/orders/ord_1")) == 3


def test_no_retry_on_4xx(prodigi, fake_prodigi):
    """Client errors are not retried and keep their status and payload."""
    fake_prodigi.set("POST", "/quotes", 400, {"outcome": "ValidationFailed", "failures": {"sku": []}})
    with pytest.raises(UpstreamError) as exc:
        prodigi.create_quote({"items": []})
    assert exc.value.status == 400
    assert exc.value.status_code == 400
    assert exc.value.payload["outcome"] == "ValidationFailed"
    assert len(fake_prodigi.calls("POST", "/quotes")) == 1


def test_order_creation_not_retried_on_5xx(prodigi, fake_prodigi):
    """POST /orders is never replayed once the provider answered."""
    fake_prodigi.set("POST", "/orders", 502, {"outcome": "Error"})
    with pytest.raises(UpstreamError):
        prodigi.create_order({"merchantReference": "ref"})
    assert len(fake_prodigi.calls("POST", "/orders")) == 1


def test_connect_error_retried_for_orders():
    """A connection that never opened is safe to retry, even for orders."""
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(200, json={"outcome": "Created", "order": {"id": "ord_9"}})

    client = ProdigiClient("k", backoff_seconds=0, transport=httpx.MockTransport(handler))
    response = client.create_order({"merchantReference": "ref"})
    assert response.order_id == "ord_9"
    assert len(attempts) == 2
    client.close()


def test_order_status_stage(prodigi):
    """Order status is read from the stage of a status object."""
    response = prodigi.create_order({})
    assert response.order_id == "ord_1001"
    assert response.status == "InProgress"


def test_upload_asset_returns_id(prodigi, fake_prodigi):
    """Asset upload posts the URL and returns the provider id."""
    assert prodigi.upload_asset("https://cdn.example.com/a.jpg") == "asset-123"
    body = fake_prodigi.sent("POST", "/assets")
    assert body["items"][0]["assets"][0]["source"]["url"] == "https://cdn.example.com/a.jpg"


def test_product_sku_escaped(prodigi, fake_prodigi):
    """SKUs are path-escaped."""
    fake_prodigi.set("GET", "/products/GLOBAL-FAP-16X24", 200, {"product": {"sku": "GLOBAL-FAP-16X24"}})
    assert prodigi.get_product("GLOBAL-FAP-16X24")["product"]["sku"] == "GLOBAL-FAP-16X24"


def test_order_actions_map_to_provider_names(prodigi, fake_prodigi):
    """Action names are translated to the provider's endpoints."""
    fake_prodigi.set("POST", "/orders/ord_1/actions/updateShippingMethod", 200, {"outcome": "Ok"})
    prodigi.update_shipping_method("ord_1", "Express")
    assert fake_prodigi.sent("POST", "/orders/ord_1/actions/updateShippingMethod") == {
        "shippingMethod": "Express",
    }


def test_build_order_filters():
    """List filters become repeated [] parameters; blanks are dropped."""
    params = build_order_filters({
        "top": 10,
        "skip": 0,
        "status": "",
        "orderIds": ["ord_1", "ord_2"],
        "merchantReferences": "pi_1, pi_2",
    })
    assert ("top", "10") in params
    assert ("skip", "0") in params
    assert all(key != "status" for key, _ in params)
    assert params.count(("orderIds[]", "ord_1")) == 1
    assert ("orderIds[]", "ord_2") in params
    assert ("merchantReferences[]", "pi_2") in params


def test_list_orders_query_string(prodigi, fake_prodigi):
    """Filters reach the provider as query parameters."""
    fake_prodigi.set("GET", "/orders", 200, {"orders": []})
    prodigi.list_orders({"top": 5, "orderIds": ["ord_1", "ord_2"]})
    request = fake_prodigi.calls("GET", "/orders")[0]
    assert request.url.params.get_list("orderIds[]") == ["ord_1", "ord_2"]
    assert request.url.params["top"] == "5"
