"""Tests for recipient normalization."""

import pytest

from printshop.errors import InvalidArgument
from printshop.fulfillment.recipients import normalize_recipient


def test_flat_recipient_normalized():
    """Flat input is trimmed, reshaped and its country uppercased."""
    recipient = normalize_recipient({
        "name": "  Ana García ",
        "email": "ana@example.com ",
        "addressLine1": " Calle Mayor 1",
        "city": "Madrid ",
        "postalCode": " 28013",
        "countryCode": "es",
    })
    assert recipient.to_provider() == {
        "name": "Ana García",
        "email": "ana@example.com",
        "address": {
            "line1": "Calle Mayor 1",
            "townOrCity": "Madrid",
            "postalOrZipCode": "28013",
            "countryCode": "ES",
        },
    }


def test_flat_optional_fields_kept_when_present():
    recipient = normalize_recipient({
        "name": "Ana", "email": "a@b.c", "addressLine1": "x", "addressLine2": " 2B ",
        "city": "Madrid", "state": "Madrid", "postalCode": 28013, "countryCode": "ES",
        "phoneNumber": "+34 600 000 000",
    })
    provider = recipient.to_provider()
    assert provider["phoneNumber"] == "+34 600 000 000"
    assert provider["address"]["line2"] == "2B"
    assert provider["address"]["stateOrCounty"] == "Madrid"
    assert provider["address"]["postalOrZipCode"] == "28013"


def test_flat_blank_optional_fields_dropped():
    recipient = normalize_recipient({
        "name": "Ana", "email": "a@b.c", "addressLine1": "x", "addressLine2": "  ",
        "city": "Madrid", "postalCode": "1", "countryCode": "ES", "phoneNumber": "",
    })
    provider = recipient.to_provider()
    assert "phoneNumber" not in provider
    assert "line2" not in provider["address"]


def test_flat_missing_fields_named():
    """Every missing required field is listed."""
    with pytest.raises(InvalidArgument) as exc:
        normalize_recipient({"name": "Ana", "city": " "})
    for field in ("email", "addressLine1", "city", "postalCode", "countryCode"):
        assert field in exc.value.message
    assert "name" not in exc.value.message.split(":")[1]


def test_structured_recipient_kept_as_is():
    """Structured input passes through unchanged."""
    raw = {
        "name": "Ana",
        "email": "a@b.c",
        "address": {
            "line1": "Calle Mayor 1",
            "townOrCity": "Madrid",
            "postalOrZipCode": "28013",
            "countryCode": "ES",
        },
    }
    assert normalize_recipient(raw).to_provider() == raw


def test_structured_missing_fields_named():
    with pytest.raises(InvalidArgument) as exc:
        normalize_recipient({"name": "Ana", "email": "a@b.c", "address": {"line1": "x"}})
    message = exc.value.message
    assert "address.townOrCity" in message
    assert "address.postalOrZipCode" in message
    assert "address.countryCode" in message
    assert "address.line1" not in message


@pytest.mark.parametrize("raw", [None, {}, "Ana", []])
def test_missing_recipient(raw):
    with pytest.raises(InvalidArgument, match="recipient"):
        normalize_recipient(raw)


def test_wrongly_typed_field_is_invalid_argument():
    """A field of the wrong type is a client error naming the field."""
    with pytest.raises(InvalidArgument, match="name"):
        normalize_recipient({
            "name": {"first": "Ana"}, "email": "a@b.c", "addressLine1": "x",
            "city": "Madrid", "postalCode": "28013", "countryCode": "ES",
        })
    with pytest.raises(InvalidArgument, match="address.townOrCity"):
        normalize_recipient({
            "name": "Ana", "email": "a@b.c",
            "address": {"line1": "x", "townOrCity": ["Madrid"], "postalOrZipCode": "1", "countryCode": "ES"},
        })
