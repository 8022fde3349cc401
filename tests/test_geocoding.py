import asyncio
import sys
from pathlib import Path

import httpx
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from dentalhub.geocoding import (
    Coordinates,
    GeocodingError,
    MapboxGeocoder,
    MapboxTokenProvider,
    TokenUnavailableError,
)
from dentalhub.settings import Settings


def _settings(**overrides) -> Settings:
    base = {
        "mapbox_token": None,
        "mapbox_token_url": None,
        "geocoding_url": "https://geo.test/places",
    }
    base.update(overrides)
    return Settings(**base)


def _geocode(handler, address="1 A St", token="pk.test"):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await MapboxGeocoder(_settings(), client=client).geocode(address, token)

    return asyncio.run(run())


def _fetch_token(settings, handler=None):
    async def run():
        if handler is None:
            return await MapboxTokenProvider(settings).fetch_token()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await MapboxTokenProvider(settings, client=client).fetch_token()

    return asyncio.run(run())


def test_geocode_uses_first_feature_center():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = request.url
        return httpx.Response(
            200,
            json={"features": [{"center": [-0.1276, 51.5072]}, {"center": [2.35, 48.85]}]},
        )

    result = _geocode(handler, address="10 Downing St, London")

    assert result == Coordinates(lng=-0.1276, lat=51.5072)
    assert seen["url"].path == "/places/10 Downing St, London.json"
    assert seen["url"].params["access_token"] == "pk.test"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={"features": []}),
        httpx.Response(200, json={"features": [{"center": [1.0]}]}),
        httpx.Response(200, json={"features": [{"center": ["east", "north"]}]}),
        httpx.Response(200, content=b"not json"),
        httpx.Response(401, json={"message": "Not Authorized - Invalid Token"}),
    ],
    ids=["no-results", "short-center", "non-numeric", "invalid-json", "unauthorized"],
)
def test_geocode_failures_raise_geocoding_error(response):
    with pytest.raises(GeocodingError):
        _geocode(lambda request: response)


def test_geocode_network_error_raises_geocoding_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GeocodingError):
        _geocode(handler)


def test_token_comes_from_settings_without_endpoint():
    assert _fetch_token(_settings(mapbox_token="pk.local")) == "pk.local"


def test_missing_token_configuration_is_unavailable():
    with pytest.raises(TokenUnavailableError):
        _fetch_token(_settings())


def test_token_endpoint_is_called_when_configured():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        return httpx.Response(200, json={"token": "pk.remote"})

    settings = _settings(mapbox_token="pk.local", mapbox_token_url="https://issuer.test/mapbox-token")
    assert _fetch_token(settings, handler) == "pk.remote"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, json={}),
        httpx.Response(200, json={"token": ""}),
        httpx.Response(500, json={"error": "boom"}),
    ],
    ids=["no-token", "empty-token", "server-error"],
)
def test_token_endpoint_failures_are_unavailable(response):
    settings = _settings(mapbox_token_url="https://issuer.test/mapbox-token")
    with pytest.raises(TokenUnavailableError):
        _fetch_token(settings, lambda request: response)
