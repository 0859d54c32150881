"""Print shop Pydantic models.

Data models matching the SQLite schema, plus the canonical recipient and
pricing types shared by quoting, payment and fulfillment. Models that travel
to the provider or the front end serialize with camelCase aliases.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def _utc_now() -> str:
    """Return current UTC timestamp as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def _uuid() -> str:
    """Generate a new UUID4 string."""
    return str(uuid4())


def _load_json(value: Any, default: Any) -> Any:
    """Decode a JSON column, passing through already-decoded values."""
    if value is None or value == "":
        return default
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class CamelModel(BaseModel):
    """Base for models exchanged with the provider and the front end."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Catalog ──────────────────────────────────────────────────────


class AssetDetails(BaseModel):
    """Cached pixel dimensions, byte size and format of a print asset."""

    width: Optional[int] = None
    height: Optional[int] = None
    size: Optional[int] = None
    format: Optional[str] = None


class MockupImage(BaseModel):
    """Merchandising preview image attached to a variant."""

    id: str = Field(default_factory=_uuid)
    url: str
    label: Optional[str] = None


class ColorOption(BaseModel):
    """One purchasable color/finish of a variant."""

    code: str
    name: Optional[str] = None
    asset_url: Optional[str] = None
    asset_details: Optional[AssetDetails] = None
    mockup_image_refs: list[str] = Field(default_factory=list)

    @field_validator("code")
    @classmethod
    def strip_code(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("color code must not be empty")
        return v


class CatalogColor(BaseModel):
    """Color choice offered by a catalog product."""

    code: str
    name: Optional[str] = None


class Photo(BaseModel):
    """A photo record from the photos table."""

    id: str = Field(default_factory=_uuid)
    title: str
    description: Optional[str] = None
    price: float = 0.0
    tags: list[str] = Field(default_factory=list)
    image_path: str
    created_by: Optional[str] = None
    camera: Optional[str] = None
    location: Optional[str] = None
    shot_at: Optional[str] = None
    created_at: str = Field(default_factory=_utc_now)

    @classmethod
    def from_row(cls, row: Any) -> "Photo":
        data = dict(row)
        data["tags"] = _load_json(data.get("tags"), [])
        return cls(**data)


class CatalogProduct(BaseModel):
    """A provider SKU template shared across photos."""

    id: str = Field(default_factory=_uuid)
    sku: str
    name: str
    description: Optional[str] = None
    provider_description: Optional[str] = None
    base_price: Optional[float] = Field(default=None, ge=0)
    currency: str = "EUR"
    default_sizing: Optional[str] = None
    default_shipping_method: Optional[str] = None
    available_colors: list[CatalogColor] = Field(default_factory=list)
    product_dimensions: Optional[dict[str, Any]] = None
    print_area_pixels: Optional[dict[str, Any]] = None
    attributes: Optional[dict[str, Any]] = None
    ships_to: list[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=_utc_now)
    updated_at: str = Field(default_factory=_utc_now)

    @field_validator("sku", "currency")
    @classmethod
    def upper_strip(cls, v: str) -> str:
        return v.strip().upper()

    @classmethod
    def from_row(cls, row: Any) -> "CatalogProduct":
        data = dict(row)
        data["available_colors"] = _load_json(data.get("available_colors"), [])
        data["product_dimensions"] = _load_json(data.get("product_dimensions"), None)
        data["print_area_pixels"] = _load_json(data.get("print_area_pixels"), None)
        data["attributes"] = _load_json(data.get("attributes"), None)
        data["ships_to"] = _load_json(data.get("ships_to"), [])
        return cls(**data)


class PhotoVariant(BaseModel):
    """The sellable combination of one photo with one catalog product."""

    id: str = Field(default_factory=_uuid)
    photo_id: str
    catalog_product_id: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    retail_price: Optional[float] = None
    currency: Optional[str] = "EUR"
    profit_margin: Optional[float] = 0.0
    sizing: Optional[str] = None
    asset_url: Optional[str] = None
    asset_details: Optional[AssetDetails] = None
    mockup_images: list[MockupImage] = Field(default_factory=list)
    color_options: list[ColorOption] = Field(default_factory=list)
    attributes: Optional[dict[str, Any]] = None
    is_active: bool = True
    created_at: str = Field(default_factory=_utc_now)
    updated_at: str = Field(default_factory=_utc_now)

    @model_validator(mode="after")
    def check_mockup_refs(self) -> "PhotoVariant":
        """Color options may only reference this variant's own mockups."""
        known = {image.id for image in self.mockup_images}
        for option in self.color_options:
            dangling = [ref for ref in option.mockup_image_refs if ref not in known]
            if dangling:
                raise ValueError(
                    f"color option {option.code} references unknown mockups: {dangling}"
                )
        return self

    @classmethod
    def from_row(cls, row: Any) -> "PhotoVariant":
        data = dict(row)
        data["asset_details"] = _load_json(data.get("asset_details"), None)
        data["mockup_images"] = _load_json(data.get("mockup_images"), [])
        data["color_options"] = _load_json(data.get("color_options"), [])
        data["attributes"] = _load_json(data.get("attributes"), None)
        data["is_active"] = bool(data.get("is_active", 1))
        return cls(**data)


# ── Recipient & pricing ──────────────────────────────────────────


class Address(CamelModel):
    """Structured postal address in the provider's field vocabulary."""

    line1: str
    line2: Optional[str] = None
    town_or_city: str
    state_or_county: Optional[str] = None
    postal_or_zip_code: str
    country_code: str


class Recipient(CamelModel):
    """Canonical recipient used for payment shipping and provider orders."""

    name: str
    email: str
    phone_number: Optional[str] = None
    address: Address

    def to_provider(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting absent optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class PricingBreakdown(CamelModel):
    """Reconciles provider cost, platform margin and the amount charged."""

    currency: str = "EUR"
    prodigi_items_amount: float = 0.0
    prodigi_shipping_amount: float = 0.0
    prodigi_tax_amount: float = 0.0
    prodigi_fees_amount: float = 0.0
    prodigi_total: float = 0.0
    platform_margin: float = 0.0
    total_with_margin: float = 0.0
    total_charged: float = 0.0


# ── Orders ───────────────────────────────────────────────────────


class OrderRecord(BaseModel):
    """Durable local record of one placed fulfillment order."""

    id: str = Field(default_factory=_uuid)
    merchant_reference: str
    provider_order_id: str
    outcome: Optional[str] = None
    provider_status: Optional[str] = None
    photo_id: str
    variant_id: str
    sku: str
    color_code: Optional[str] = None
    copies: int = Field(default=1, ge=1)
    shipping_method: Optional[str] = None
    recipient: Recipient
    metadata: dict[str, Any] = Field(default_factory=dict)
    provider_snapshot: Optional[dict[str, Any]] = None
    created_by: Optional[str] = None
    pricing: Optional[PricingBreakdown] = None
    payment_id: Optional[str] = None
    payment_status: Optional[str] = None
    created_at: str = Field(default_factory=_utc_now)

    @field_validator("sku")
    @classmethod
    def upper_sku(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("color_code")
    @classmethod
    def upper_color(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v

    @classmethod
    def from_row(cls, row: Any) -> "OrderRecord":
        data = dict(row)
        data["recipient"] = _load_json(data.get("recipient"), None)
        data["metadata"] = _load_json(data.get("metadata"), {})
        data["provider_snapshot"] = _load_json(data.get("provider_snapshot"), None)
        data["pricing"] = _load_json(data.get("pricing"), None)
        return cls(**data)
