"""FastAPI dependencies shared by the storefront and admin routers.

Tests swap any of these through app.dependency_overrides.
"""

from __future__ import annotations

import hmac
import sqlite3
from typing import Iterator, Optional

from fastapi import Depends, Header, HTTPException, Request

from printshop.config import Settings, get_settings
from printshop.db import get_initialized_connection
from printshop.fulfillment.assets import AssetResolver
from printshop.integrations.prodigi import ProdigiClient
from printshop.integrations.stripe_payments import StripeGateway


def settings_dependency() -> Settings:
    return get_settings()


def get_db(settings: Settings = Depends(settings_dependency)) -> Iterator[sqlite3.Connection]:
    """One initialized connection per request."""
    conn = get_initialized_connection(settings.db_path)
    try:
        yield conn
    finally:
        conn.close()


def get_prodigi(
    request: Request, settings: Settings = Depends(settings_dependency),
) -> ProdigiClient:
    client = getattr(request.app.state, "prodigi", None)
    if client is None:
        client = ProdigiClient.from_settings(settings)
        request.app.state.prodigi = client
    return client


def get_assets(
    request: Request, client: ProdigiClient = Depends(get_prodigi),
) -> AssetResolver:
    """Process-wide resolver so successful uploads are reused across requests."""
    resolver = getattr(request.app.state, "assets", None)
    if resolver is None or resolver.client is not client:
        resolver = AssetResolver(client)
        request.app.state.assets = resolver
    return resolver


def get_gateway(settings: Settings = Depends(settings_dependency)) -> StripeGateway:
    return StripeGateway.from_settings(settings)


def require_admin(
    settings: Settings = Depends(settings_dependency),
    authorization: Optional[str] = Header(None),
) -> str:
    """Check the admin bearer token.

    Returns:
        The token's actor label for the audit trail.
    """
    token = settings.admin_api_token
    if not token:
        raise HTTPException(status_code=503, detail="Admin access is not configured")
    scheme, _, supplied = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(supplied.strip(), token):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return "admin"
