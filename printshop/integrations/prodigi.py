"""Prodigi print API gateway.

Thin authenticated client for the fulfillment provider:
- Product details by SKU
- Price quotes and order creation
- Order listing, inspection and order actions
- Asset upload from a public URL

No business logic lives here. Non-2xx responses become UpstreamError with
the HTTP status and raw body attached; transient failures (transport errors,
429 and 5xx) are retried with exponential backoff.

Prodigi API v4 docs: https://www.prodigi.com/print-api/docs/reference/
"""

from __future__ import annotations

import json
import logging
import random
import time
from typing import Any, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from printshop.config import Settings
from printshop.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.sandbox.prodigi.com/v4.0"
RETRYABLE_STATUS = {429, 500, 502, 503, 504}

ORDER_ACTIONS = {
    "cancel": "cancel",
    "update-shipping": "updateShippingMethod",
    "update-recipient": "updateRecipient",
    "update-metadata": "updateMetadata",
}


# ── Parsed responses ─────────────────────────────────────────────


class _ProviderModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class Cost(_ProviderModel):
    amount: Any = None
    currency: Optional[str] = None


class CostSummary(_ProviderModel):
    items: Optional[Cost] = None
    shipping: Optional[Cost] = None
    branding: Optional[Cost] = None
    tax: Optional[Cost] = None
    fees: Optional[Cost] = None
    total_cost: Optional[Cost] = None


class Quote(_ProviderModel):
    id: Optional[str] = None
    shipment_method: Optional[str] = None
    currency: Optional[str] = None
    cost_summary: CostSummary = Field(default_factory=CostSummary)


class QuoteResponse(_ProviderModel):
    """Response of POST /quotes; extra provider fields are preserved."""

    id: Optional[str] = None
    outcome: Optional[str] = None
    quotes: list[Quote] = Field(default_factory=list)

    @property
    def first_quote(self) -> Optional[Quote]:
        return self.quotes[0] if self.quotes else None

    @property
    def quote_id(self) -> Optional[str]:
        quote = self.first_quote
        return (quote.id if quote else None) or self.id


class OrderResponse(_ProviderModel):
    """Response of POST /orders; `order` is kept verbatim as a snapshot."""

    outcome: Optional[str] = None
    order: Optional[dict[str, Any]] = None

    @property
    def order_id(self) -> Optional[str]:
        return (self.order or {}).get("id")

    @property
    def status(self) -> Optional[str]:
        status = (self.order or {}).get("status")
        if isinstance(status, dict):
            return status.get("stage")
        return status


# ── Client ───────────────────────────────────────────────────────


def _parse_body(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


class ProdigiClient:
    """Authenticated Prodigi REST client with bounded timeouts and retries."""

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.max_retries = max(1, max_retries)
        self.backoff_seconds = backoff_seconds
        self._http = httpx.Client(
            base_url=self.base_url + "/",
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "ProdigiClient":
        return cls(
            api_key=settings.prodigi_api_key,
            base_url=settings.prodigi_base_url,
            timeout=settings.prodigi_timeout_seconds,
            max_retries=settings.prodigi_max_retries,
            backoff_seconds=settings.prodigi_backoff_seconds,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "ProdigiClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def ensure_configured(self) -> None:
        if not self.is_configured:
            raise ConfigurationError("Prodigi API key is not configured", status_code=503)

    def _backoff(self, attempt: int) -> float:
        return self.backoff_seconds * (2 ** attempt) + random.uniform(0, self.backoff_seconds)

    def request(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        params: Any = None,
        idempotent: bool = True,
    ) -> Any:
        """Send one request, retrying transient failures.

        Non-idempotent requests (order creation) are only retried when the
        connection could not be established, so the provider never saw them.

        Args:
            method: HTTP method.
            path: Path relative to the base URL.
            json_body: JSON request body.
            params: Query parameters (dict or list of pairs).
            idempotent: Whether 5xx/read failures may be retried.

        Returns:
            Parsed JSON body (or raw text, or None for an empty body).

        Raises:
            ConfigurationError: If no API key is configured.
            UpstreamError: On a non-2xx response or exhausted retries.
        """
        self.ensure_configured()
        headers = {"X-API-Key": self.api_key}

        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            try:
                response = self._http.request(
                    method, path, json=json_body, params=params, headers=headers,
                )
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                if last_attempt:
                    raise UpstreamError(f"Prodigi request failed: {e}") from e
                wait = self._backoff(attempt)
                logger.warning(
                    "Prodigi %s %s connect failed (attempt %d): %s. Retrying in %.1fs",
                    method, path, attempt + 1, e, wait,
                )
                time.sleep(wait)
                continue
            except httpx.TransportError as e:
                if last_attempt or not idempotent:
                    raise UpstreamError(f"Prodigi request failed: {e}") from e
                wait = self._backoff(attempt)
                logger.warning(
                    "Prodigi %s %s transport error (attempt %d): %s. Retrying in %.1fs",
                    method, path, attempt + 1, e, wait,
                )
                time.sleep(wait)
                continue

            data = _parse_body(response)
            if response.is_success:
                return data

            if response.status_code in RETRYABLE_STATUS and idempotent and not last_attempt:
                wait = self._backoff(attempt)
                logger.warning(
                    "Prodigi %s %s returned %d (attempt %d). Retrying in %.1fs",
                    method, path, response.status_code, attempt + 1, wait,
                )
                time.sleep(wait)
                continue

            status = response.status_code
            raise UpstreamError(
                f"Prodigi request failed with status {status}",
                status=status,
                payload=data,
                status_code=status if 400 <= status < 500 else 502,
            )

        raise UpstreamError("Prodigi request failed after retries")

    # ── Catalog & pricing ──

    def get_product(self, sku: str) -> dict[str, Any]:
        """Fetch product details (variants, attributes, print areas) for a SKU."""
        return self.request("GET", f"/products/{quote(sku, safe='')}") or {}

    def create_quote(self, payload: dict[str, Any]) -> QuoteResponse:
        """Request a price quote for shipping method + destination + items."""
        data = self.request("POST", "/quotes", json_body=payload)
        return QuoteResponse.model_validate(data or {})

    def upload_asset(self, url: str) -> Optional[str]:
        """Ask the provider to host an asset fetched from a public URL.

        Returns:
            The provider asset id, or None if the response carried none.
        """
        payload = {
            "items": [
                {"assets": [{"type": "PrintFile", "source": {"url": url}}]},
            ],
        }
        data = self.request("POST", "/assets", json_body=payload) or {}
        items = data.get("items") or [{}]
        assets = (items[0] or {}).get("assets") or data.get("assets") or [{}]
        return (assets[0] or {}).get("id")

    # ── Orders ──

    def create_order(self, payload: dict[str, Any]) -> OrderResponse:
        data = self.request("POST", "/orders", json_body=payload, idempotent=False)
        return OrderResponse.model_validate(data or {})

    def list_orders(self, filters: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """List orders with paging, date range, status and id filters."""
        return self.request("GET", "/orders", params=build_order_filters(filters or {})) or {}

    def get_order(self, order_id: str) -> dict[str, Any]:
        return self.request("GET", f"/orders/{order_id}") or {}

    def get_order_actions(self, order_id: str) -> dict[str, Any]:
        return self.request("GET", f"/orders/{order_id}/actions") or {}

    def order_action(
        self, order_id: str, action: str, body: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Post one order action (cancel, update shipping/recipient/metadata)."""
        provider_action = ORDER_ACTIONS.get(action, action)
        return self.request(
            "POST", f"/orders/{order_id}/actions/{provider_action}",
            json_body=body or {}, idempotent=False,
        ) or {}

    def cancel_order(self, order_id: str) -> dict[str, Any]:
        return self.order_action(order_id, "cancel")

    def update_shipping_method(self, order_id: str, shipping_method: str) -> dict[str, Any]:
        return self.order_action(
            order_id, "update-shipping", {"shippingMethod": shipping_method},
        )

    def update_recipient(self, order_id: str, recipient: dict[str, Any]) -> dict[str, Any]:
        return self.order_action(order_id, "update-recipient", recipient)

    def update_metadata(self, order_id: str, metadata: dict[str, Any]) -> dict[str, Any]:
        return self.order_action(order_id, "update-metadata", {"metadata": metadata})


def build_order_filters(filters: dict[str, Any]) -> list[tuple[str, str]]:
    """Translate order-list filters into provider query parameters.

    Scalar filters pass through; id lists become repeated `orderIds[]` and
    `merchantReferences[]` parameters. Empty values are dropped.
    """
    params: list[tuple[str, str]] = []
    for key in ("top", "skip", "createdFrom", "createdTo", "status"):
        value = filters.get(key)
        if value not in (None, ""):
            params.append((key, str(value)))

    for key in ("orderIds", "merchantReferences"):
        values = filters.get(key) or []
        if isinstance(values, str):
            values = values.split(",")
        for value in values:
            value = str(value).strip()
            if value:
                params.append((f"{key}[]", value))
    return params
