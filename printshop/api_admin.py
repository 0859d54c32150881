"""API routes for order management.

Back-office passthrough to the provider's live orders, plus read-only views
of the local order records and the reconciliation outbox. Every route
requires the admin bearer token.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request

from printshop.deps import get_db, get_prodigi, require_admin
from printshop.fulfillment import admin, orders
from printshop.integrations.prodigi import ProdigiClient
from printshop.safety import audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _list_param(request: Request, name: str) -> list[str]:
    """Accept both `name=a,b` / `name=a&name=b` and `name[]=a&name[]=b`."""
    values: list[str] = []
    for raw in request.query_params.getlist(name) + request.query_params.getlist(f"{name}[]"):
        values.extend(v.strip() for v in raw.split(",") if v.strip())
    return values


# ── Provider orders ─────────────────────────────────────────────


@router.get("/orders")
def list_orders(
    request: Request,
    top: Optional[int] = Query(None, ge=1, le=100),
    skip: Optional[int] = Query(None, ge=0),
    created_from: Optional[str] = Query(None, alias="createdFrom"),
    created_to: Optional[str] = Query(None, alias="createdTo"),
    status: Optional[str] = None,
    client: ProdigiClient = Depends(get_prodigi),
):
    """List provider orders with paging, date, status and id filters."""
    filters = {
        "top": top,
        "skip": skip,
        "createdFrom": created_from,
        "createdTo": created_to,
        "status": status,
        "orderIds": _list_param(request, "orderIds"),
        "merchantReferences": _list_param(request, "merchantReferences"),
    }
    return admin.list_orders(client, filters)


@router.get("/orders/{order_id}")
def get_order(order_id: str, client: ProdigiClient = Depends(get_prodigi)):
    return admin.get_order(client, order_id)


@router.get("/orders/{order_id}/actions")
def get_order_actions(order_id: str, client: ProdigiClient = Depends(get_prodigi)):
    return admin.get_order_actions(client, order_id)


@router.post("/orders/{order_id}/actions/{action}")
def run_order_action(
    order_id: str,
    action: str,
    body: Optional[dict[str, Any]] = Body(None),
    conn: sqlite3.Connection = Depends(get_db),
    client: ProdigiClient = Depends(get_prodigi),
    actor: str = Depends(require_admin),
):
    """Cancel an order or update its shipping method, recipient or metadata."""
    return admin.run_action(client, order_id, action, body, conn=conn, actor=actor)


# ── Local records ───────────────────────────────────────────────


@router.get("/local-orders")
def list_local_orders(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    conn: sqlite3.Connection = Depends(get_db),
):
    """Local order records as placed (not resynchronized with the provider)."""
    records = orders.list_local_orders(conn, limit=limit, offset=offset)
    return {"orders": [r.model_dump() for r in records], "count": len(records)}


@router.get("/outbox")
def list_outbox(
    limit: int = Query(100, ge=1, le=500),
    conn: sqlite3.Connection = Depends(get_db),
):
    """Provider orders whose local record is still missing."""
    entries = orders.list_outbox(conn, limit=limit)
    return {"entries": entries, "count": len(entries)}


@router.get("/audit")
def audit_trail(
    component: Optional[str] = None,
    action: Optional[str] = None,
    payment_id: Optional[str] = Query(None, alias="paymentId"),
    success: Optional[bool] = None,
    limit: int = Query(100, ge=1, le=1000),
    conn: sqlite3.Connection = Depends(get_db),
):
    """Fulfillment audit trail; `paymentId` returns one sale's history."""
    if payment_id:
        entries = audit.history_for_payment(conn, payment_id)
    else:
        entries = audit.query(conn, component=component, action=action, success=success, limit=limit)
    return {"entries": entries, "count": len(entries)}
