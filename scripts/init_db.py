"""Initialize the print shop SQLite database.

Creates all tables defined in the schema. Safe to run multiple times
(uses CREATE TABLE IF NOT EXISTS).

Usage:
    python scripts/init_db.py
    python scripts/init_db.py --db-path /custom/path.db
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from printshop.config import get_settings
from printshop.db import get_initialized_connection


def main() -> None:
    """Initialize the database with all tables."""
    parser = argparse.ArgumentParser(description="Initialize the print shop database")
    parser.add_argument(
        "--db-path",
        default=None,
        help="Path to SQLite database (default: DB_PATH or data/printshop.db)",
    )
    args = parser.parse_args()
    db_path = args.db_path or get_settings().db_path

    conn = get_initialized_connection(db_path)

    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
    )
    tables = [row[0] for row in cursor.fetchall()]

    print(f"Database initialized at: {db_path}")
    print(f"Tables created: {', '.join(tables)}")

    conn.close()


if __name__ == "__main__":
    main()
