"""FastAPI application exposing DentalHub module access and the branch directory."""
from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import database
from .auth import hash_password, require_current_user
from .branches import BranchDirectory
from .geocache import SQLiteKeyValueStore, TTLCache
from .geocoding import MapboxGeocoder, MapboxTokenProvider
from .permissions import ModuleAccessResolver
from .realtime import ChangeFeed, realtime_router
from .routes import (
    auth_router,
    branches_router,
    config_router,
    navigation_router,
    permissions_router,
    tenants_router,
)
from .settings import Settings, get_settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 60 * 60 * 24


def _resolve_allowed_origins(settings: Settings) -> list[str]:
    origins = {value.rstrip("/") for value in (settings.frontend_url, settings.backend_url) if value}
    return list(origins)


def _build_cors_config(settings: Settings) -> dict[str, object]:
    origins = _resolve_allowed_origins(settings)
    if origins:
        return {"allow_origins": origins, "allow_origin_regex": None}
    return {"allow_origins": [], "allow_origin_regex": r"https?://.*"}


def create_app(
    settings: Optional[Settings] = None,
    *,
    geocoder: Any = None,
    token_provider: Any = None,
    cache: Optional[TTLCache] = None,
) -> FastAPI:
    """Return a configured FastAPI app; collaborators can be swapped for tests."""
    settings = settings or get_settings()
    api = FastAPI(title="DentalHub API", version="0.1.0")

    feed = ChangeFeed()
    api.state.store = database
    api.state.change_feed = feed
    api.state.access_resolver = ModuleAccessResolver(database)
    api.state.branch_directory = BranchDirectory(
        store=database,
        geocoder=geocoder or MapboxGeocoder(settings),
        token_provider=token_provider or MapboxTokenProvider(settings),
        cache=cache or TTLCache(SQLiteKeyValueStore(), ttl_seconds=settings.geocode_cache_ttl_days * SECONDS_PER_DAY),
        feed=feed,
    )

    @api.on_event("startup")
    def startup_event() -> None:
        logger.info("Initializing database at: %s", database.DB_PATH)
        database.init_db()
        database.seed_defaults(
            hash_password(settings.default_admin_password),
            clinic_name=settings.default_clinic_name,
            clinic_code=settings.default_clinic_code,
        )
        api.state.branch_directory.start()

    @api.on_event("shutdown")
    def shutdown_event() -> None:
        api.state.branch_directory.close()

    auth_dependency = [Depends(require_current_user)]
    api.include_router(config_router)
    api.include_router(auth_router)
    api.include_router(tenants_router, dependencies=auth_dependency)
    api.include_router(permissions_router, dependencies=auth_dependency)
    api.include_router(navigation_router, dependencies=auth_dependency)
    api.include_router(branches_router, dependencies=auth_dependency)
    api.include_router(realtime_router, include_in_schema=False)

    cors_config = _build_cors_config(settings)
    api.add_middleware(
        CORSMiddleware,
        allow_origins=cors_config["allow_origins"],
        allow_origin_regex=cors_config["allow_origin_regex"],
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=True,
    )
    return api


app = create_app()
