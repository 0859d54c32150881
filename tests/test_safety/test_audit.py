"""Tests for the fulfillment audit trail."""

import pytest

from printshop.db import get_initialized_connection
from printshop.safety.audit import history_for_payment, log, query


@pytest.fixture
def conn(tmp_path):
    db_path = str(tmp_path / "test.db")
    return get_initialized_connection(db_path)


def test_log_returns_id(conn):
    """log() should return an integer ID."""
    entry_id = log(conn, "quote", "quote_failed")
    assert isinstance(entry_id, int)
    assert entry_id > 0


def test_details_decoded(conn):
    """Details are stored as JSON and read back as a dict."""
    log(conn, "fulfillment", "order_placed", {"merchant_reference": "pi_1", "copies": 2})
    entry = query(conn)[0]
    assert entry["details"] == {"merchant_reference": "pi_1", "copies": 2}
    log(conn, "admin", "cancel")
    assert query(conn)[0]["details"] == {}


def test_query_by_component(conn):
    """Query should filter by component."""
    log(conn, "payment", "payment_created")
    log(conn, "fulfillment", "order_placed")
    log(conn, "payment", "payment_failed", success=False)

    results = query(conn, component="payment")
    assert len(results) == 2
    assert all(r["component"] == "payment" for r in results)


def test_query_failures(conn):
    """success=False selects only failed steps."""
    log(conn, "admin", "cancel", success=True)
    log(conn, "admin", "cancel", success=False)

    failures = query(conn, success=False)
    assert len(failures) == 1
    assert failures[0]["success"] == 0
    assert len(query(conn, success=True)) == 1


def test_history_for_payment(conn):
    """The trail of one sale comes back in order, other sales excluded."""
    log(conn, "payment", "payment_created", {"payment_id": "pi_1", "amount": 4100})
    log(conn, "payment", "payment_created", {"payment_id": "pi_2"})
    log(conn, "fulfillment", "order_placed", {"payment_id": "pi_1", "merchant_reference": "pi_1"})

    history = history_for_payment(conn, "pi_1")
    assert [e["action"] for e in history] == ["payment_created", "order_placed"]


def test_log_survives_closed_connection(conn):
    """A failed audit write returns None instead of raising."""
    conn.close()
    assert log(conn, "admin", "cancel") is None
