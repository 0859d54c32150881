"""Print asset resolution.

Turns a candidate image URL into the reference the provider receives in
quote and order payloads: a provider-hosted asset id when the upload
succeeds, otherwise the URL itself. Upload failures never block checkout.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel

from printshop.errors import UpstreamError
from printshop.integrations.prodigi import ProdigiClient

logger = logging.getLogger(__name__)

DEFAULT_PRINT_AREA = "default"


class AssetReference(BaseModel):
    """Either a provider asset id or a directly fetchable URL."""

    asset_id: Optional[str] = None
    url: Optional[str] = None

    def to_provider(self, print_area: str = DEFAULT_PRINT_AREA) -> dict[str, Any]:
        entry: dict[str, Any] = {"printArea": print_area}
        if self.asset_id:
            entry["assetId"] = self.asset_id
        else:
            entry["url"] = self.url
        return entry


def is_http_url(value: Optional[str]) -> bool:
    if not value:
        return False
    return value.lower().startswith(("http://", "https://"))


def build_asset_url(image_path: Optional[str], base_url: str = "") -> Optional[str]:
    """Build an absolute asset URL from a stored image path.

    Absolute URLs pass through. Without a public base URL the stored path
    is returned unchanged and stays a local-only reference.
    """
    if not image_path:
        return None
    if is_http_url(image_path) or not base_url:
        return image_path
    return f"{base_url.rstrip('/')}/{image_path.lstrip('/')}"


class AssetResolver:
    """Resolves candidate URLs, memoising successful uploads.

    Only successful uploads are cached, so a transient provider failure is
    retried on the next resolve of the same URL.
    """

    def __init__(self, client: ProdigiClient):
        self.client = client
        self._uploaded: dict[str, str] = {}

    def resolve(self, candidate: Optional[str]) -> Optional[AssetReference]:
        if not candidate:
            return None
        if not is_http_url(candidate):
            return AssetReference(url=candidate)

        cached = self._uploaded.get(candidate)
        if cached:
            return AssetReference(asset_id=cached)

        try:
            asset_id = self.client.upload_asset(candidate)
        except UpstreamError as e:
            logger.warning(
                "Asset upload failed for %s (status %s), falling back to URL",
                candidate, e.status,
            )
            return AssetReference(url=candidate)

        if not asset_id:
            logger.warning("Asset upload for %s returned no id, using URL", candidate)
            return AssetReference(url=candidate)

        self._uploaded[candidate] = asset_id
        logger.debug("Uploaded asset %s -> %s", candidate, asset_id)
        return AssetReference(asset_id=asset_id)
