"""Error taxonomy for the pricing and fulfillment engine.

Every error carries the HTTP status the API surface maps it to. Upstream
errors keep the provider's raw payload so operators can read it.
"""

from __future__ import annotations

from typing import Any, Optional


class FulfillmentError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class InvalidArgument(FulfillmentError):
    """Malformed ids, missing recipient fields, non-positive totals, no asset."""

    status_code = 400


class NotFound(FulfillmentError):
    """Photo, variant or color missing, or variant inactive."""

    status_code = 404


class ConfigurationError(FulfillmentError):
    """A variant lacks a SKU, or an integration has no credentials."""

    status_code = 500


class UpstreamError(FulfillmentError):
    """The provider or the payment processor rejected a request.

    Attributes:
        status: HTTP status returned upstream (None for transport failures).
        payload: Raw upstream response body, parsed as JSON when possible.
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        payload: Any = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.status = status
        self.payload = payload


class PersistenceWarning(UserWarning):
    """Local record-keeping failed after the provider order was placed."""
