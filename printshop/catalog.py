"""Catalog storage for photos, catalog products and photo variants.

Read helpers feed the variant resolver. Write helpers enforce the catalog
invariants (unique uppercased SKU, non-negative margin, color mockup refs)
and are used by the back office and by seeding scripts.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Optional

from printshop.errors import InvalidArgument
from printshop.models import CatalogProduct, Photo, PhotoVariant, _utc_now

logger = logging.getLogger(__name__)


def _dumps(value) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value)


# ── Reads ────────────────────────────────────────────────────────


def get_photo(conn: sqlite3.Connection, photo_id: str) -> Optional[Photo]:
    row = conn.execute("SELECT * FROM photos WHERE id = ?", (photo_id,)).fetchone()
    return Photo.from_row(row) if row else None


def get_catalog_product(
    conn: sqlite3.Connection, catalog_product_id: str,
) -> Optional[CatalogProduct]:
    row = conn.execute(
        "SELECT * FROM catalog_products WHERE id = ?", (catalog_product_id,),
    ).fetchone()
    return CatalogProduct.from_row(row) if row else None


def list_catalog_products(conn: sqlite3.Connection) -> list[CatalogProduct]:
    rows = conn.execute("SELECT * FROM catalog_products ORDER BY name").fetchall()
    return [CatalogProduct.from_row(r) for r in rows]


def get_variant(
    conn: sqlite3.Connection,
    variant_id: str,
    active_only: bool = True,
) -> Optional[PhotoVariant]:
    """Load a variant by id.

    Args:
        conn: Active database connection.
        variant_id: Variant ID.
        active_only: Skip variants that are not purchasable.

    Returns:
        The variant, or None when missing (or inactive with active_only).
    """
    sql = "SELECT * FROM photo_variants WHERE id = ?"
    if active_only:
        sql += " AND is_active = 1"
    row = conn.execute(sql, (variant_id,)).fetchone()
    return PhotoVariant.from_row(row) if row else None


def list_variants_for_photo(
    conn: sqlite3.Connection,
    photo_id: str,
    active_only: bool = False,
) -> list[PhotoVariant]:
    sql = "SELECT * FROM photo_variants WHERE photo_id = ?"
    if active_only:
        sql += " AND is_active = 1"
    rows = conn.execute(sql + " ORDER BY created_at", (photo_id,)).fetchall()
    return [PhotoVariant.from_row(r) for r in rows]


# ── Writes ───────────────────────────────────────────────────────


def save_photo(conn: sqlite3.Connection, photo: Photo) -> Photo:
    conn.execute(
        """INSERT INTO photos
           (id, title, description, price, tags, image_path, created_by,
            camera, location, shot_at, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            photo.id, photo.title, photo.description, photo.price,
            json.dumps(photo.tags), photo.image_path, photo.created_by,
            photo.camera, photo.location, photo.shot_at, photo.created_at,
        ),
    )
    conn.commit()
    return photo


def save_catalog_product(conn: sqlite3.Connection, product: CatalogProduct) -> CatalogProduct:
    """Insert or update a catalog product.

    Raises:
        InvalidArgument: If another product already uses the SKU.
    """
    clash = conn.execute(
        "SELECT id FROM catalog_products WHERE sku = ? AND id != ?",
        (product.sku, product.id),
    ).fetchone()
    if clash:
        raise InvalidArgument(f"SKU {product.sku} already exists in the catalog")

    product.updated_at = _utc_now()
    conn.execute(
        """INSERT INTO catalog_products
           (id, sku, name, description, provider_description, base_price,
            currency, default_sizing, default_shipping_method, available_colors,
            product_dimensions, print_area_pixels, attributes, ships_to,
            created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(id) DO UPDATE SET
             sku = excluded.sku,
             name = excluded.name,
             description = excluded.description,
             provider_description = excluded.provider_description,
             base_price = excluded.base_price,
             currency = excluded.currency,
             default_sizing = excluded.default_sizing,
             default_shipping_method = excluded.default_shipping_method,
             available_colors = excluded.available_colors,
             product_dimensions = excluded.product_dimensions,
             print_area_pixels = excluded.print_area_pixels,
             attributes = excluded.attributes,
             ships_to = excluded.ships_to,
             updated_at = excluded.updated_at""",
        (
            product.id, product.sku, product.name, product.description,
            product.provider_description, product.base_price, product.currency,
            product.default_sizing, product.default_shipping_method,
            json.dumps([c.model_dump() for c in product.available_colors]),
            _dumps(product.product_dimensions), _dumps(product.print_area_pixels),
            _dumps(product.attributes), json.dumps(product.ships_to),
            product.created_at, product.updated_at,
        ),
    )
    conn.commit()
    return product


def delete_catalog_product(conn: sqlite3.Connection, catalog_product_id: str) -> None:
    """Delete a catalog product that no variant references.

    Raises:
        InvalidArgument: If variants still point at the product.
    """
    in_use = conn.execute(
        "SELECT COUNT(*) AS cnt FROM photo_variants WHERE catalog_product_id = ?",
        (catalog_product_id,),
    ).fetchone()["cnt"]
    if in_use:
        raise InvalidArgument(
            f"Catalog product is used by {in_use} variant(s) and cannot be deleted"
        )
    conn.execute("DELETE FROM catalog_products WHERE id = ?", (catalog_product_id,))
    conn.commit()


def save_variant(conn: sqlite3.Connection, variant: PhotoVariant) -> PhotoVariant:
    """Insert or update a photo variant.

    Raises:
        InvalidArgument: On a negative margin.
    """
    if variant.profit_margin is not None and variant.profit_margin < 0:
        raise InvalidArgument("profit_margin must be zero or positive")

    variant.updated_at = _utc_now()
    conn.execute(
        """INSERT INTO photo_variants
           (id, photo_id, catalog_product_id, display_name, description,
            retail_price, currency, profit_margin, sizing, asset_url,
            asset_details, mockup_images, color_options, attributes,
            is_active, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(id) DO UPDATE SET
             display_name = excluded.display_name,
             description = excluded.description,
             retail_price = excluded.retail_price,
             currency = excluded.currency,
             profit_margin = excluded.profit_margin,
             sizing = excluded.sizing,
             asset_url = excluded.asset_url,
             asset_details = excluded.asset_details,
             mockup_images = excluded.mockup_images,
             color_options = excluded.color_options,
             attributes = excluded.attributes,
             is_active = excluded.is_active,
             updated_at = excluded.updated_at""",
        (
            variant.id, variant.photo_id, variant.catalog_product_id,
            variant.display_name, variant.description, variant.retail_price,
            variant.currency, variant.profit_margin or 0.0, variant.sizing,
            variant.asset_url,
            _dumps(variant.asset_details.model_dump() if variant.asset_details else None),
            json.dumps([m.model_dump() for m in variant.mockup_images]),
            json.dumps([c.model_dump() for c in variant.color_options]),
            _dumps(variant.attributes),
            1 if variant.is_active else 0,
            variant.created_at, variant.updated_at,
        ),
    )
    conn.commit()
    logger.debug("Saved variant %s for photo %s", variant.id, variant.photo_id)
    return variant
