"""Print shop database module.

SQLite connection management with WAL mode for concurrent reads.
Provides connection factory and schema initialization.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path


# All CREATE TABLE statements for the print shop schema.
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS photos (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    price REAL DEFAULT 0,
    tags TEXT,
    image_path TEXT NOT NULL,
    created_by TEXT,
    camera TEXT,
    location TEXT,
    shot_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS catalog_products (
    id TEXT PRIMARY KEY,
    sku TEXT UNIQUE NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    provider_description TEXT,
    base_price REAL,
    currency TEXT DEFAULT 'EUR',
    default_sizing TEXT,
    default_shipping_method TEXT,
    available_colors TEXT,
    product_dimensions TEXT,
    print_area_pixels TEXT,
    attributes TEXT,
    ships_to TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS photo_variants (
    id TEXT PRIMARY KEY,
    photo_id TEXT NOT NULL REFERENCES photos(id),
    catalog_product_id TEXT NOT NULL REFERENCES catalog_products(id) ON DELETE RESTRICT,
    display_name TEXT,
    description TEXT,
    retail_price REAL,
    currency TEXT DEFAULT 'EUR',
    profit_margin REAL DEFAULT 0,
    sizing TEXT,
    asset_url TEXT,
    asset_details TEXT,
    mockup_images TEXT,
    color_options TEXT,
    attributes TEXT,
    is_active INTEGER DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_photo_variants_photo
    ON photo_variants(photo_id, catalog_product_id);

CREATE TABLE IF NOT EXISTS prodigi_orders (
    id TEXT PRIMARY KEY,
    merchant_reference TEXT UNIQUE NOT NULL,
    provider_order_id TEXT NOT NULL,
    outcome TEXT,
    provider_status TEXT,
    photo_id TEXT NOT NULL,
    variant_id TEXT NOT NULL,
    sku TEXT NOT NULL,
    color_code TEXT,
    copies INTEGER DEFAULT 1,
    shipping_method TEXT,
    recipient TEXT,
    metadata TEXT,
    provider_snapshot TEXT,
    created_by TEXT,
    pricing TEXT,
    payment_id TEXT UNIQUE,
    payment_status TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_prodigi_orders_photo ON prodigi_orders(photo_id, created_at);
CREATE INDEX IF NOT EXISTS idx_prodigi_orders_variant ON prodigi_orders(variant_id, created_at);
CREATE INDEX IF NOT EXISTS idx_prodigi_orders_provider ON prodigi_orders(provider_order_id);

CREATE TABLE IF NOT EXISTS order_outbox (
    id TEXT PRIMARY KEY,
    payment_id TEXT,
    merchant_reference TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'provider_placed',
    payload TEXT NOT NULL,
    error TEXT,
    attempts INTEGER DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_order_outbox_status ON order_outbox(status);

CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    component TEXT NOT NULL,
    action TEXT NOT NULL,
    details TEXT,
    success INTEGER DEFAULT 1
);
"""


def get_connection(db_path: str | Path = "data/printshop.db") -> sqlite3.Connection:
    """Create a SQLite connection with WAL mode and recommended pragmas.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        Configured sqlite3.Connection with WAL mode enabled.
    """
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    # FastAPI runs sync endpoints in a threadpool; each request owns its connection.
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.execute("PRAGMA busy_timeout=5000")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Create all tables if they don't exist.

    Args:
        conn: Active SQLite connection.
    """
    conn.executescript(SCHEMA_SQL)
    conn.commit()


def get_initialized_connection(
    db_path: str | Path = "data/printshop.db",
) -> sqlite3.Connection:
    """Get a connection with schema already initialized.

    Convenience function that combines get_connection + init_schema.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        Configured and initialized sqlite3.Connection.
    """
    conn = get_connection(db_path)
    init_schema(conn)
    return conn
