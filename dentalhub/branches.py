"""Branch directory enriched with cached geocoding, refreshed from the tenant change feed."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .geocache import TTLCache, cache_key
from .geocoding import Coordinates
from .models import Branch
from .realtime import ChangeEvent, ChangeFeed, Subscription

logger = logging.getLogger(__name__)

DIRECTORY_TABLE = "tenants"


class BranchDirectory:
    """
    Keeps the list of branches with best-effort coordinates.

    ``load()`` fetches the directory, then resolves every address concurrently,
    consulting the TTL cache before calling the geocoder. Only a failed directory
    fetch sets ``error``; a missing token or a failed address simply leaves
    ``coordinates`` empty.
    """

    def __init__(
        self,
        store: Any,
        geocoder: Any,
        token_provider: Any,
        cache: TTLCache,
        feed: Optional[ChangeFeed] = None,
    ) -> None:
        self.store = store
        self.geocoder = geocoder
        self.token_provider = token_provider
        self.cache = cache
        self.feed = feed
        self.branches: List[Branch] = []
        self.loading = False
        self.loaded = False
        self.error: Optional[str] = None
        self.token: Optional[str] = None
        self._subscription: Optional[Subscription] = None
        self._pending: set[asyncio.Task] = set()
        self._closed = False

    async def _ensure_token(self) -> Optional[str]:
        if self.token:
            return self.token
        try:
            self.token = await self.token_provider.fetch_token()
        except Exception as exc:
            logger.warning("Geocoding token unavailable, branches load without coordinates: %s", exc)
            return None
        return self.token

    async def _resolve(self, address: str, token: str) -> Optional[Coordinates]:
        key = cache_key(address)
        cached = await asyncio.to_thread(self.cache.get, key)
        if cached:
            try:
                return Coordinates.model_validate(cached)
            except ValidationError:
                logger.debug("Discarding malformed cached coordinates for %r", address)
        try:
            coordinates = await self.geocoder.geocode(address, token)
        except Exception as exc:
            logger.warning("Geocoding failed for %r: %s", address, exc)
            return None
        await asyncio.to_thread(self.cache.set, key, coordinates.model_dump())
        return coordinates

    async def _with_coordinates(self, branch: Branch, token: str) -> Branch:
        if not branch.address:
            return branch
        coordinates = await self._resolve(branch.address, token)
        if coordinates is None:
            return branch
        return branch.model_copy(update={"coordinates": coordinates})

    async def load(self) -> List[Branch]:
        self.loading = True
        self.error = None
        try:
            token = await self._ensure_token()
            rows = await asyncio.to_thread(self.store.list_tenants)
            branches = [Branch.model_validate({**row, "coordinates": None}) for row in rows or []]
            if token:
                branches = list(
                    await asyncio.gather(*(self._with_coordinates(branch, token) for branch in branches))
                )
            if not self._closed:
                self.branches = branches
                self.loaded = True
        except Exception as exc:
            logger.error("Failed to load branches: %s", exc)
            if not self._closed:
                self.error = str(exc) or "Failed to load branches"
        finally:
            self.loading = False
        return self.branches

    async def refresh(self) -> List[Branch]:
        return await self.load()

    def _on_change(self, change: ChangeEvent) -> None:
        if self._closed:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; skipping branch refresh after %s", change.event)
            return
        task = loop.create_task(self.refresh())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def start(self) -> None:
        """Subscribe to directory changes; every insert/update/delete triggers a full refresh."""
        if self.feed is None or self._subscription is not None:
            return
        self._closed = False
        self._subscription = self.feed.subscribe(DIRECTORY_TABLE, self._on_change)

    def close(self) -> None:
        self._closed = True
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def wait_for_refresh(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def snapshot(self) -> Dict[str, Any]:
        return {
            "branches": [branch.model_dump() for branch in self.branches],
            "loading": self.loading,
            "error": self.error,
        }
