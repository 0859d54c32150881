"""Fulfillment placer.

Places a paid print order with the provider and records it locally.

Idempotency is keyed on the payment id: an existing record (or an
unreconciled outbox entry) for the payment short-circuits placement, and the
UNIQUE payment_id column settles concurrent deliveries of the same webhook.

Persistence is two-phase. Once the provider accepts the order, the full
record is written to order_outbox (status provider_placed) before the
prodigi_orders insert; a successful insert flips it to recorded. A failed
insert leaves the outbox row failed for reconcile_pending() to replay, and
the caller still gets the provider response.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import warnings
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel

from printshop.config import Settings, get_settings
from printshop.errors import InvalidArgument, PersistenceWarning, UpstreamError
from printshop.fulfillment.assets import AssetResolver
from printshop.fulfillment.pricing import sanitize_copies
from printshop.fulfillment.quotes import resolve_shipping_method
from printshop.fulfillment.recipients import normalize_recipient
from printshop.fulfillment.variants import asset_candidate, resolve_variant
from printshop.integrations.prodigi import OrderResponse, ProdigiClient
from printshop.models import OrderRecord, PricingBreakdown, _utc_now
from printshop.safety import audit

logger = logging.getLogger(__name__)

APPLICATION = "printshop"
DEFAULT_SIZING = "fillPrintArea"


class PlacementResult(BaseModel):
    merchant_reference: Optional[str] = None
    provider_response: Optional[OrderResponse] = None
    record: Optional[OrderRecord] = None
    already_placed: bool = False
    persisted: bool = False

    @property
    def provider_order_id(self) -> Optional[str]:
        if self.record:
            return self.record.provider_order_id
        if self.provider_response:
            return self.provider_response.order_id
        return None


# ── Local records ────────────────────────────────────────────────


def find_order_by_payment(conn: sqlite3.Connection, payment_id: str) -> Optional[OrderRecord]:
    row = conn.execute(
        "SELECT * FROM prodigi_orders WHERE payment_id = ?", (payment_id,),
    ).fetchone()
    return OrderRecord.from_row(row) if row else None


def find_order_by_reference(
    conn: sqlite3.Connection, merchant_reference: str,
) -> Optional[OrderRecord]:
    row = conn.execute(
        "SELECT * FROM prodigi_orders WHERE merchant_reference = ?", (merchant_reference,),
    ).fetchone()
    return OrderRecord.from_row(row) if row else None


def list_local_orders(
    conn: sqlite3.Connection, limit: int = 50, offset: int = 0,
) -> list[OrderRecord]:
    rows = conn.execute(
        "SELECT * FROM prodigi_orders ORDER BY created_at DESC LIMIT ? OFFSET ?",
        (limit, offset),
    ).fetchall()
    return [OrderRecord.from_row(r) for r in rows]


def _insert_record(conn: sqlite3.Connection, record: OrderRecord) -> None:
    conn.execute(
        """INSERT INTO prodigi_orders
           (id, merchant_reference, provider_order_id, outcome, provider_status,
            photo_id, variant_id, sku, color_code, copies, shipping_method,
            recipient, metadata, provider_snapshot, created_by, pricing,
            payment_id, payment_status, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            record.id, record.merchant_reference, record.provider_order_id,
            record.outcome, record.provider_status, record.photo_id,
            record.variant_id, record.sku, record.color_code, record.copies,
            record.shipping_method,
            json.dumps(record.recipient.to_provider()),
            json.dumps(record.metadata, default=str),
            json.dumps(record.provider_snapshot, default=str) if record.provider_snapshot else None,
            record.created_by,
            json.dumps(record.pricing.model_dump()) if record.pricing else None,
            record.payment_id, record.payment_status, record.created_at,
        ),
    )
    conn.commit()


# ── Outbox ───────────────────────────────────────────────────────


def _outbox_add(conn: sqlite3.Connection, record: OrderRecord) -> str:
    outbox_id = str(uuid4())
    now = _utc_now()
    conn.execute(
        """INSERT INTO order_outbox
           (id, payment_id, merchant_reference, status, payload, created_at, updated_at)
           VALUES (?, ?, ?, 'provider_placed', ?, ?, ?)""",
        (outbox_id, record.payment_id, record.merchant_reference,
         record.model_dump_json(), now, now),
    )
    conn.commit()
    return outbox_id


def _outbox_mark(
    conn: sqlite3.Connection,
    outbox_id: str,
    status: str,
    error: Optional[str] = None,
) -> None:
    conn.execute(
        """UPDATE order_outbox
           SET status = ?, error = ?, attempts = attempts + 1, updated_at = ?
           WHERE id = ?""",
        (status, error, _utc_now(), outbox_id),
    )
    conn.commit()


def list_outbox(
    conn: sqlite3.Connection,
    statuses: tuple[str, ...] = ("provider_placed", "failed"),
    limit: int = 100,
) -> list[dict]:
    """Outbox rows in the given states, oldest first."""
    marks = ", ".join("?" for _ in statuses)
    rows = conn.execute(
        f"SELECT * FROM order_outbox WHERE status IN ({marks}) ORDER BY created_at LIMIT ?",
        (*statuses, limit),
    ).fetchall()
    return [dict(r) for r in rows]


def _pending_outbox_for_payment(conn: sqlite3.Connection, payment_id: str) -> Optional[dict]:
    row = conn.execute(
        """SELECT * FROM order_outbox
           WHERE payment_id = ? AND status IN ('provider_placed', 'failed')
           ORDER BY created_at LIMIT 1""",
        (payment_id,),
    ).fetchone()
    return dict(row) if row else None


def _persist(
    conn: sqlite3.Connection, record: OrderRecord, outbox_id: Optional[str],
) -> tuple[OrderRecord, bool]:
    """Insert the record, resolving a UNIQUE conflict to the existing row.

    Returns:
        (record actually stored, whether this call stored a new row).
    """
    try:
        _insert_record(conn, record)
    except sqlite3.IntegrityError:
        conn.rollback()
        existing = None
        if record.payment_id:
            existing = find_order_by_payment(conn, record.payment_id)
        existing = existing or find_order_by_reference(conn, record.merchant_reference)
        if existing is None:
            raise
        if outbox_id:
            _outbox_mark(conn, outbox_id, "recorded", "duplicate of existing record")
        if existing.provider_order_id != record.provider_order_id:
            logger.error(
                "Payment %s already recorded as provider order %s; provider order %s is a duplicate",
                record.payment_id, existing.provider_order_id, record.provider_order_id,
            )
        return existing, False

    if outbox_id:
        _outbox_mark(conn, outbox_id, "recorded")
    return record, True


def reconcile_pending(conn: sqlite3.Connection, limit: int = 100) -> int:
    """Replay outbox rows whose local record was never written.

    Returns:
        Number of rows reconciled.
    """
    reconciled = 0
    for row in list_outbox(conn, limit=limit):
        record = OrderRecord.model_validate_json(row["payload"])
        try:
            _persist(conn, record, row["id"])
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("Outbox %s still failing: %s", row["id"], e)
            _outbox_mark(conn, row["id"], "failed", str(e))
            continue
        reconciled += 1
        logger.info(
            "Reconciled provider order %s (%s)",
            record.provider_order_id, record.merchant_reference,
        )
    return reconciled


# ── Placement ────────────────────────────────────────────────────


def build_order_payload(
    merchant_reference: str,
    shipping_method: str,
    recipient: dict[str, Any],
    item: dict[str, Any],
    metadata: dict[str, Any],
) -> dict[str, Any]:
    return {
        "merchantReference": merchant_reference,
        "shippingMethod": shipping_method,
        "recipient": recipient,
        "items": [item],
        "metadata": metadata,
    }


def place_order(
    conn: sqlite3.Connection,
    client: ProdigiClient,
    assets: AssetResolver,
    photo_id: str,
    variant_id: str,
    recipient: Any,
    color_code: Optional[str] = None,
    copies: Any = 1,
    shipping_method: Optional[str] = None,
    created_by: Optional[str] = None,
    payment_id: Optional[str] = None,
    payment_status: Optional[str] = None,
    pricing: Optional[PricingBreakdown] = None,
    merchant_reference: Optional[str] = None,
    product_attributes: Optional[dict[str, Any]] = None,
    settings: Optional[Settings] = None,
) -> PlacementResult:
    """Place a print order with the provider and record it.

    Args:
        conn: Active database connection.
        client: Provider gateway.
        assets: Asset resolver.
        photo_id: Photo ID.
        variant_id: Variant ID.
        recipient: Recipient in flat or structured form.
        color_code: Optional color code.
        copies: Copies, clamped to [1, 10].
        shipping_method: Optional shipping method.
        created_by: Initiating user id, if any.
        payment_id: Confirmed payment id (idempotency key).
        payment_status: Payment status to record.
        pricing: Pricing breakdown charged to the customer.
        merchant_reference: Provider idempotency key; generated when absent.
        product_attributes: Attributes merged under the variant's own.
        settings: Settings (defaults to environment).

    Returns:
        PlacementResult. already_placed is set when the payment was
        fulfilled before; persisted is False when the local write failed.

    Raises:
        InvalidArgument, NotFound, ConfigurationError: Before any provider call.
        UpstreamError: If the provider rejects the order.
    """
    settings = settings or get_settings()

    if payment_id:
        existing = find_order_by_payment(conn, payment_id)
        if existing:
            logger.info("Payment %s already fulfilled as %s", payment_id, existing.provider_order_id)
            return PlacementResult(
                merchant_reference=existing.merchant_reference,
                record=existing, already_placed=True, persisted=True,
            )
        pending = _pending_outbox_for_payment(conn, payment_id)
        if pending:
            logger.warning("Payment %s has an unreconciled provider order, replaying", payment_id)
            reconcile_pending(conn)
            replayed = find_order_by_payment(conn, payment_id)
            return PlacementResult(
                merchant_reference=pending["merchant_reference"],
                record=replayed,
                already_placed=True,
                persisted=replayed is not None,
            )

    resolved = resolve_variant(conn, photo_id, variant_id, color_code)
    sku = resolved.require_sku()
    photo, variant = resolved.photo, resolved.variant

    asset = assets.resolve(asset_candidate(resolved, settings.asset_base_url))
    if asset is None:
        raise InvalidArgument("No printable asset is available for this variant")

    normalized = normalize_recipient(recipient)
    copies = sanitize_copies(copies)
    merchant_reference = merchant_reference or f"photo-{photo.id}-{uuid4()}"
    method = resolve_shipping_method(shipping_method, resolved, settings)

    attributes = {**(product_attributes or {}), **(variant.attributes or {})}
    if resolved.selected_color:
        attributes["color"] = resolved.selected_color.code.lower()

    sizing = variant.sizing or (
        resolved.catalog_product.default_sizing if resolved.catalog_product else None
    ) or DEFAULT_SIZING

    item: dict[str, Any] = {
        "merchantReference": f"item-{merchant_reference}",
        "sku": sku,
        "copies": copies,
        "sizing": sizing,
        "assets": [asset.to_provider()],
        "metadata": {
            "photoId": photo.id,
            "variantId": variant.id,
            "colorCode": resolved.color_code,
        },
    }
    if attributes:
        item["attributes"] = attributes

    metadata = {
        "application": APPLICATION,
        "photo": {"id": photo.id, "title": photo.title},
        "variantId": variant.id,
        "colorCode": resolved.color_code,
    }
    payload = build_order_payload(
        merchant_reference, method, normalized.to_provider(), item, metadata,
    )

    try:
        response = client.create_order(payload)
    except UpstreamError as e:
        logger.error(
            "Provider rejected order %s: %s (payload=%s)", merchant_reference, e, e.payload,
        )
        audit.log(conn, "fulfillment", "order_rejected", {
            "merchant_reference": merchant_reference, "payment_id": payment_id,
            "status": e.status,
        }, success=False)
        raise

    provider_order_id = response.order_id
    if not provider_order_id:
        logger.warning(
            "Provider returned no order id for %s, recording merchant reference instead",
            merchant_reference,
        )
        provider_order_id = merchant_reference

    if pricing is not None and not pricing.currency:
        pricing = pricing.model_copy(update={"currency": variant.currency or "EUR"})

    record = OrderRecord(
        merchant_reference=merchant_reference,
        provider_order_id=provider_order_id,
        outcome=response.outcome,
        provider_status=response.status,
        photo_id=photo.id,
        variant_id=variant.id,
        sku=sku,
        color_code=resolved.color_code,
        copies=copies,
        shipping_method=method,
        recipient=normalized,
        metadata=metadata,
        provider_snapshot=response.order,
        created_by=created_by,
        pricing=pricing,
        payment_id=payment_id,
        payment_status=payment_status,
    )

    result = PlacementResult(merchant_reference=merchant_reference, provider_response=response)
    outbox_id = None
    try:
        outbox_id = _outbox_add(conn, record)
        stored, created = _persist(conn, record, outbox_id)
    except sqlite3.Error as e:
        conn.rollback()
        logger.error(
            "Provider order %s placed but local record failed: %s",
            provider_order_id, e,
        )
        warnings.warn(
            f"Provider order {provider_order_id} was placed but not recorded locally",
            PersistenceWarning,
        )
        if outbox_id:
            try:
                _outbox_mark(conn, outbox_id, "failed", str(e))
            except sqlite3.Error as mark_error:
                logger.error("Could not flag outbox %s: %s", outbox_id, mark_error)
        audit.log(conn, "fulfillment", "record_failed", {
            "merchant_reference": merchant_reference,
            "provider_order_id": provider_order_id,
            "error": str(e),
        }, success=False)
        return result

    result.record = stored
    result.persisted = True
    result.already_placed = not created
    audit.log(conn, "fulfillment", "order_placed", {
        "merchant_reference": merchant_reference,
        "provider_order_id": provider_order_id,
        "payment_id": payment_id,
        "sku": sku,
        "copies": copies,
    })
    logger.info(
        "Placed provider order %s for photo %s (%s x%d)",
        provider_order_id, photo.id, sku, copies,
    )
    return result
