"""Order management passthrough.

Back-office operations against the provider's live orders. Local order
records are never touched here: after an action the provider holds the
current state and the local snapshot keeps the state at placement time.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Optional

from printshop.errors import FulfillmentError, InvalidArgument
from printshop.fulfillment.recipients import normalize_recipient
from printshop.fulfillment.variants import validate_id
from printshop.integrations.prodigi import ORDER_ACTIONS, ProdigiClient
from printshop.safety import audit

logger = logging.getLogger(__name__)


def list_orders(client: ProdigiClient, filters: Optional[dict[str, Any]] = None) -> dict[str, Any]:
    return client.list_orders(filters or {})


def get_order(client: ProdigiClient, order_id: str) -> dict[str, Any]:
    return client.get_order(validate_id(order_id, "orderId"))


def get_order_actions(client: ProdigiClient, order_id: str) -> dict[str, Any]:
    return client.get_order_actions(validate_id(order_id, "orderId"))


def run_action(
    client: ProdigiClient,
    order_id: str,
    action: str,
    body: Optional[dict[str, Any]] = None,
    conn: Optional[sqlite3.Connection] = None,
    actor: Optional[str] = None,
) -> dict[str, Any]:
    """Validate and forward one order action, auditing the outcome.

    Args:
        client: Provider gateway.
        order_id: Provider order id.
        action: One of cancel, update-shipping, update-recipient,
            update-metadata.
        body: Action body as sent by the back office.
        conn: Optional connection for the audit trail.
        actor: Who triggered the action.

    Raises:
        InvalidArgument: On an unknown action or an invalid body.
        UpstreamError: If the provider refuses the action.
    """
    validate_id(order_id, "orderId")
    if action not in ORDER_ACTIONS:
        raise InvalidArgument(f"Unknown order action: {action}")
    body = body or {}

    try:
        if action == "cancel":
            response = client.cancel_order(order_id)
        elif action == "update-shipping":
            method = str(body.get("shippingMethod") or "").strip()
            if not method:
                raise InvalidArgument("shippingMethod is required")
            response = client.update_shipping_method(order_id, method)
        elif action == "update-recipient":
            recipient = normalize_recipient(body.get("recipient") or body)
            response = client.update_recipient(order_id, recipient.to_provider())
        else:
            metadata = body.get("metadata")
            if not isinstance(metadata, dict):
                raise InvalidArgument("metadata must be an object")
            response = client.update_metadata(order_id, metadata)
    except FulfillmentError as e:
        if conn is not None:
            audit.log(conn, "admin", action, {
                "order_id": order_id, "actor": actor, "error": e.message,
            }, success=False)
        raise

    logger.info("Order %s: %s by %s", order_id, action, actor or "admin")
    if conn is not None:
        audit.log(conn, "admin", action, {"order_id": order_id, "actor": actor})
    return response


def cancel_order(client: ProdigiClient, order_id: str, **kwargs) -> dict[str, Any]:
    return run_action(client, order_id, "cancel", **kwargs)


def update_shipping_method(
    client: ProdigiClient, order_id: str, shipping_method: str, **kwargs,
) -> dict[str, Any]:
    return run_action(
        client, order_id, "update-shipping", {"shippingMethod": shipping_method}, **kwargs,
    )


def update_recipient(
    client: ProdigiClient, order_id: str, recipient: dict[str, Any], **kwargs,
) -> dict[str, Any]:
    return run_action(client, order_id, "update-recipient", {"recipient": recipient}, **kwargs)


def update_metadata(
    client: ProdigiClient, order_id: str, metadata: dict[str, Any], **kwargs,
) -> dict[str, Any]:
    return run_action(client, order_id, "update-metadata", {"metadata": metadata}, **kwargs)
