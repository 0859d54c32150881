"""Replay provider orders that were placed but never recorded locally.

Reads the order_outbox table and writes the missing prodigi_orders rows.
Safe to run repeatedly; rows already recorded are skipped.

Usage:
    python scripts/reconcile_orders.py
    python scripts/reconcile_orders.py --db-path /custom/path.db --limit 20
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from printshop.config import get_settings
from printshop.db import get_initialized_connection
from printshop.fulfillment.orders import list_outbox, reconcile_pending


def main() -> None:
    parser = argparse.ArgumentParser(description="Reconcile unrecorded provider orders")
    parser.add_argument("--db-path", default=None, help="Path to SQLite database")
    parser.add_argument("--limit", type=int, default=100, help="Max outbox rows to replay")
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    conn = get_initialized_connection(args.db_path or settings.db_path)

    try:
        pending = len(list_outbox(conn, limit=args.limit))
        reconciled = reconcile_pending(conn, limit=args.limit)
        remaining = len(list_outbox(conn, limit=args.limit))
    finally:
        conn.close()

    print(f"Pending: {pending}  Reconciled: {reconciled}  Still failing: {remaining}")
    if remaining:
        sys.exit(1)


if __name__ == "__main__":
    main()
