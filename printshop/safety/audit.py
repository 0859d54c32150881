"""Fulfillment audit trail.

Every external side effect of selling a print leaves a row in audit_log:
failed quotes, opened and failed payments, provider orders placed or
rejected, local records that could not be written, and back-office
actions on live orders. Rows carry the payment id in their details when
one exists, so the whole history of a sale can be pulled back with
`history_for_payment`.

Writing to the trail never interrupts fulfillment.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger(__name__)

# component -> actions written by the fulfillment flow
COMPONENTS = {
    "quote": ("quote_failed",),
    "payment": ("payment_created", "payment_failed"),
    "fulfillment": ("order_placed", "order_rejected", "record_failed"),
    "admin": ("cancel", "update-shipping", "update-recipient", "update-metadata"),
}


def log(
    conn: sqlite3.Connection,
    component: str,
    action: str,
    details: Optional[dict[str, Any]] = None,
    success: bool = True,
) -> Optional[int]:
    """Record one fulfillment step.

    A sale that already reached the provider must not fail because its
    trail could not be written, so storage errors are logged and dropped.

    Args:
        conn: Active database connection.
        component: One of COMPONENTS ("quote", "payment", "fulfillment", "admin").
        action: What happened, e.g. "order_placed" or an admin action name.
        details: Ids and amounts for the step; include "payment_id" when known.
        success: False for rejections and failures.

    Returns:
        The new row id, or None if the write failed.
    """
    if component not in COMPONENTS:
        logger.debug("Audit entry for unlisted component %s", component)
    payload = json.dumps(details, default=str) if details else None

    try:
        cursor = conn.execute(
            "INSERT INTO audit_log (timestamp, component, action, details, success) "
            "VALUES (?, ?, ?, ?, ?)",
            (datetime.now(timezone.utc).isoformat(), component, action, payload, int(success)),
        )
        conn.commit()
    except sqlite3.Error as e:
        logger.error("Could not record %s/%s in the audit trail: %s", component, action, e)
        return None
    return cursor.lastrowid


def _entry(row: sqlite3.Row) -> dict[str, Any]:
    entry = dict(row)
    raw = entry.get("details")
    try:
        entry["details"] = json.loads(raw) if raw else {}
    except ValueError:
        entry["details"] = {"raw": raw}
    return entry


def query(
    conn: sqlite3.Connection,
    component: Optional[str] = None,
    action: Optional[str] = None,
    payment_id: Optional[str] = None,
    success: Optional[bool] = None,
    limit: int = 100,
) -> list[dict[str, Any]]:
    """Read back trail entries, newest first, with details decoded.

    `success=False` selects the failures an operator has to look at.
    """
    conditions = []
    params: list[Any] = []
    if component:
        conditions.append("component = ?")
        params.append(component)
    if action:
        conditions.append("action = ?")
        params.append(action)
    if payment_id:
        conditions.append("json_extract(details, '$.payment_id') = ?")
        params.append(payment_id)
    if success is not None:
        conditions.append("success = ?")
        params.append(int(success))

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    params.append(limit)
    rows = conn.execute(
        f"SELECT * FROM audit_log {where} ORDER BY id DESC LIMIT ?", params,
    ).fetchall()
    return [_entry(row) for row in rows]


def history_for_payment(conn: sqlite3.Connection, payment_id: str) -> list[dict[str, Any]]:
    """Every recorded step of one sale, oldest first."""
    return list(reversed(query(conn, payment_id=payment_id, limit=1000)))
