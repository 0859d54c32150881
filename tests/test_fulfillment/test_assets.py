"""Tests for asset resolution and the upload cache."""

from printshop.fulfillment.assets import AssetReference, AssetResolver, build_asset_url


def test_no_candidate(assets, fake_prodigi):
    """No candidate resolves to no reference."""
    assert assets.resolve(None) is None
    assert assets.resolve("") is None
    assert fake_prodigi.requests == []


def test_upload_returns_asset_id(assets):
    """A successful upload yields the provider asset id."""
    ref = assets.resolve("https://cdn.example.com/a.jpg")
    assert ref == AssetReference(asset_id="asset-123")
    assert ref.to_provider() == {"printArea": "default", "assetId": "asset-123"}


def test_upload_failure_falls_back_to_url(assets, fake_prodigi):
    """A failed upload degrades to a URL reference."""
    fake_prodigi.set("POST", "/assets", 400, {"outcome": "ValidationFailed"})
    ref = assets.resolve("https://cdn.example.com/a.jpg")
    assert ref == AssetReference(url="https://cdn.example.com/a.jpg")
    assert ref.to_provider() == {"printArea": "default", "url": "https://cdn.example.com/a.jpg"}


def test_upload_without_id_falls_back_to_url(assets, fake_prodigi):
    """An upload response without an id is treated as a failure."""
    fake_prodigi.set("POST", "/assets", 200, {"items": []})
    assert assets.resolve("https://cdn.example.com/a.jpg").url == "https://cdn.example.com/a.jpg"


def test_local_path_not_uploaded(assets, fake_prodigi):
    """Non-HTTP candidates pass through without an upload attempt."""
    ref = assets.resolve("photos/dunes.jpg")
    assert ref == AssetReference(url="photos/dunes.jpg")
    assert fake_prodigi.calls("POST", "/assets") == []


def test_successful_uploads_cached(assets, fake_prodigi):
    """The same URL is uploaded once per resolver."""
    assets.resolve("https://cdn.example.com/a.jpg")
    assets.resolve("https://cdn.example.com/a.jpg")
    assert len(fake_prodigi.calls("POST", "/assets")) == 1


def test_failed_uploads_not_cached(assets, fake_prodigi):
    """A failed upload is retried on the next resolve."""
    fake_prodigi.queue(
        "POST", "/assets",
        (400, {"outcome": "ValidationFailed"}),
        (200, {"items": [{"assets": [{"id": "asset-456"}]}]}),
    )
    assert assets.resolve("https://cdn.example.com/a.jpg").asset_id is None
    assert assets.resolve("https://cdn.example.com/a.jpg").asset_id == "asset-456"


def test_cache_is_per_resolver(prodigi, fake_prodigi):
    """Separate resolvers do not share uploads."""
    AssetResolver(prodigi).resolve("https://cdn.example.com/a.jpg")
    AssetResolver(prodigi).resolve("https://cdn.example.com/a.jpg")
    assert len(fake_prodigi.calls("POST", "/assets")) == 2


def test_build_asset_url():
    """Relative paths are joined to the public base URL."""
    assert build_asset_url("photos/a.jpg", "https://cdn.example.com") == "https://cdn.example.com/photos/a.jpg"
    assert build_asset_url("/photos/a.jpg", "https://cdn.example.com/") == "https://cdn.example.com/photos/a.jpg"
    assert build_asset_url("https://other.example.com/a.jpg", "https://cdn.example.com") == (
        "https://other.example.com/a.jpg"
    )
    assert build_asset_url("photos/a.jpg", "") == "photos/a.jpg"
    assert build_asset_url(None, "https://cdn.example.com") is None
