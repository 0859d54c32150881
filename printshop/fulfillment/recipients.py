"""Recipient normalization.

Checkout forms send a flat recipient (addressLine1, city, postalCode, ...);
admin tools and stored metadata send the provider's structured shape
(address.line1, address.townOrCity, ...). Both are normalized at the
boundary into one canonical Recipient.
"""

from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from printshop.errors import InvalidArgument
from printshop.models import Address, Recipient


class _Input(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class FlatRecipientInput(_Input):
    name: Optional[str] = None
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    addressLine1: Optional[str] = None
    addressLine2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    stateOrCounty: Optional[str] = None
    postalCode: Optional[str] = None
    countryCode: Optional[str] = None


class StructuredAddressInput(_Input):
    line1: Optional[str] = None
    line2: Optional[str] = None
    townOrCity: Optional[str] = None
    stateOrCounty: Optional[str] = None
    postalOrZipCode: Optional[str] = None
    countryCode: Optional[str] = None


class StructuredRecipientInput(_Input):
    name: Optional[str] = None
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    address: StructuredAddressInput


RecipientInput = Union[FlatRecipientInput, StructuredRecipientInput]

FLAT_REQUIRED = ("name", "email", "addressLine1", "city", "postalCode", "countryCode")
STRUCTURED_REQUIRED = ("name", "email")
ADDRESS_REQUIRED = ("line1", "townOrCity", "postalOrZipCode", "countryCode")


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_recipient_input(raw: Any) -> RecipientInput:
    """Pick the input shape: structured when `address` is a mapping."""
    if not isinstance(raw, dict) or not raw:
        raise InvalidArgument("recipient is required")
    model = StructuredRecipientInput if isinstance(raw.get("address"), dict) else FlatRecipientInput
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise InvalidArgument(f"Invalid recipient fields: {', '.join(fields)}") from e


def _missing_fields(data: RecipientInput) -> list[str]:
    if isinstance(data, StructuredRecipientInput):
        missing = [f for f in STRUCTURED_REQUIRED if _blank(getattr(data, f))]
        missing += [f"address.{f}" for f in ADDRESS_REQUIRED if _blank(getattr(data.address, f))]
        return missing
    return [f for f in FLAT_REQUIRED if _blank(getattr(data, f))]


def normalize_recipient(raw: Any) -> Recipient:
    """Validate a recipient in either accepted shape.

    Structured input is returned as given; flat input is reshaped into the
    structured form with trimmed strings and an uppercased country code.
    Optional fields are carried only when present.

    Raises:
        InvalidArgument: Naming every missing required field.
    """
    if isinstance(raw, Recipient):
        return raw

    data = parse_recipient_input(raw)
    missing = _missing_fields(data)
    if missing:
        raise InvalidArgument(
            f"Missing required recipient fields: {', '.join(missing)}"
        )

    if isinstance(data, StructuredRecipientInput):
        address = data.address
        return Recipient(
            name=data.name,
            email=data.email,
            phone_number=data.phoneNumber or None,
            address=Address(
                line1=address.line1,
                line2=address.line2 or None,
                town_or_city=address.townOrCity,
                state_or_county=address.stateOrCounty or None,
                postal_or_zip_code=address.postalOrZipCode,
                country_code=address.countryCode,
            ),
        )

    return Recipient(
        name=data.name.strip(),
        email=data.email.strip(),
        phone_number=_clean(data.phoneNumber),
        address=Address(
            line1=data.addressLine1.strip(),
            line2=_clean(data.addressLine2),
            town_or_city=data.city.strip(),
            state_or_county=_clean(data.stateOrCounty) or _clean(data.state),
            postal_or_zip_code=data.postalCode.strip(),
            country_code=data.countryCode.strip().upper(),
        ),
    )
