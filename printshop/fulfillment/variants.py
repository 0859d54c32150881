"""Variant resolution.

Loads the photo, the purchasable variant and its catalog product, selects
the color option, and decides which image gets printed. Quoting and order
placement both go through here so they always price the same asset.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from typing import Optional

from pydantic import BaseModel

from printshop import catalog
from printshop.errors import ConfigurationError, InvalidArgument, NotFound
from printshop.fulfillment.assets import build_asset_url
from printshop.models import CatalogProduct, ColorOption, Photo, PhotoVariant

logger = logging.getLogger(__name__)

ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class ResolvedVariant(BaseModel):
    photo: Photo
    variant: PhotoVariant
    catalog_product: Optional[CatalogProduct] = None
    selected_color: Optional[ColorOption] = None

    @property
    def color_code(self) -> Optional[str]:
        return self.selected_color.code if self.selected_color else None

    def require_sku(self) -> str:
        """Return the provider SKU, failing when the catalog data lacks one."""
        if not self.catalog_product or not self.catalog_product.sku:
            raise ConfigurationError(
                f"Variant {self.variant.id} has no catalog product SKU configured"
            )
        return self.catalog_product.sku


def validate_id(value: Optional[str], field: str) -> str:
    if not value or not isinstance(value, str) or not ID_PATTERN.match(value):
        raise InvalidArgument(f"Invalid {field}")
    return value


def select_color(
    variant: PhotoVariant, color_code: Optional[str] = None,
) -> Optional[ColorOption]:
    """Pick a color option by code (case-insensitive), defaulting to the first.

    Raises:
        NotFound: If a code is given and the variant does not offer it.
    """
    options = variant.color_options
    if not color_code or not color_code.strip():
        return options[0] if options else None

    wanted = color_code.strip().upper()
    for option in options:
        if option.code.upper() == wanted:
            return option
    raise NotFound(f"Color {color_code} is not available for this variant")


def resolve_variant(
    conn: sqlite3.Connection,
    photo_id: str,
    variant_id: str,
    color_code: Optional[str] = None,
) -> ResolvedVariant:
    """Load photo, variant, catalog product and selected color.

    Args:
        conn: Active database connection.
        photo_id: Photo ID.
        variant_id: Variant ID; must be active and belong to the photo.
        color_code: Optional color code.

    Returns:
        ResolvedVariant.

    Raises:
        InvalidArgument: On malformed ids.
        NotFound: On a missing photo, missing/inactive variant, a variant of
            another photo, or an unknown color.
    """
    validate_id(photo_id, "photoId")
    validate_id(variant_id, "variantId")

    photo = catalog.get_photo(conn, photo_id)
    variant = catalog.get_variant(conn, variant_id, active_only=True)

    if photo is None:
        raise NotFound("Photo not found")
    if variant is None or variant.photo_id != photo.id:
        raise NotFound("Variant not available for this photo")

    product = catalog.get_catalog_product(conn, variant.catalog_product_id)
    if product is None:
        logger.warning(
            "Variant %s points at missing catalog product %s",
            variant.id, variant.catalog_product_id,
        )

    return ResolvedVariant(
        photo=photo,
        variant=variant,
        catalog_product=product,
        selected_color=select_color(variant, color_code),
    )


def asset_candidate(
    resolved: ResolvedVariant,
    base_url: str = "",
    override: Optional[str] = None,
) -> Optional[str]:
    """Pick the image to print.

    Precedence: explicit override, selected color's asset, variant default
    asset, then the photo's stored image path. Uploaded assets are stored
    as relative paths, so whichever wins is made absolute against the
    public base URL.
    """
    if override:
        candidate = override
    elif resolved.selected_color and resolved.selected_color.asset_url:
        candidate = resolved.selected_color.asset_url
    elif resolved.variant.asset_url:
        candidate = resolved.variant.asset_url
    else:
        candidate = resolved.photo.image_path
    return build_asset_url(candidate, base_url)
