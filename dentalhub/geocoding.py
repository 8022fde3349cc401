"""Mapbox token retrieval and forward geocoding over httpx."""
from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field

from .settings import Settings


class Coordinates(BaseModel):
    lng: float = Field(..., description="Longitude in decimal degrees")
    lat: float = Field(..., description="Latitude in decimal degrees")


class GeocodingError(Exception):
    """Raised when a single address cannot be resolved."""


class TokenUnavailableError(Exception):
    """Raised when no geocoding token can be obtained."""


class MapboxTokenProvider:
    """Fetch the public geocoding token from the token-issuing endpoint or settings."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self._client = client

    async def _request_token(self, client: httpx.AsyncClient) -> Any:
        response = await client.post(
            self.settings.mapbox_token_url,
            json={},
            timeout=self.settings.geocoding_timeout,
        )
        response.raise_for_status()
        return response.json()

    async def fetch_token(self) -> str:
        if not self.settings.mapbox_token_url:
            if not self.settings.mapbox_token:
                raise TokenUnavailableError("MAPBOX_TOKEN is not configured")
            return self.settings.mapbox_token
        try:
            if self._client is not None:
                data = await self._request_token(self._client)
            else:
                async with httpx.AsyncClient() as client:
                    data = await self._request_token(client)
        except (httpx.HTTPError, ValueError) as exc:
            raise TokenUnavailableError(f"Token endpoint failed: {exc}") from exc
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise TokenUnavailableError("No token returned")
        return token


def _parse_center(payload: Any, address: str) -> Coordinates:
    features = payload.get("features") if isinstance(payload, dict) else None
    if not features:
        raise GeocodingError(f"No results for address: {address}")
    center = features[0].get("center") if isinstance(features[0], dict) else None
    if not isinstance(center, (list, tuple)) or len(center) != 2:
        raise GeocodingError(f"Malformed result for address: {address}")
    try:
        return Coordinates(lng=float(center[0]), lat=float(center[1]))
    except (TypeError, ValueError) as exc:
        raise GeocodingError(f"Malformed result for address: {address}") from exc


class MapboxGeocoder:
    """Resolve a free-text address to the first matching coordinate pair."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self._client = client

    def build_url(self, address: str) -> str:
        base = self.settings.geocoding_url.rstrip("/")
        return f"{base}/{quote(address, safe='')}.json"

    async def _get(self, client: httpx.AsyncClient, address: str, token: str) -> httpx.Response:
        return await client.get(
            self.build_url(address),
            params={"access_token": token},
            timeout=self.settings.geocoding_timeout,
        )

    async def geocode(self, address: str, token: str) -> Coordinates:
        try:
            if self._client is not None:
                response = await self._get(self._client, address, token)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._get(client, address, token)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise GeocodingError(f"Geocoding failed with status {exc.response.status_code}") from exc
        except (httpx.RequestError, ValueError) as exc:
            raise GeocodingError(f"Geocoding failed: {exc}") from exc
        return _parse_center(payload, address)
