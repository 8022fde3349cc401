"""Environment-aware settings loader for the DentalHub service."""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"

if ENV_PATH.exists():
    load_dotenv(ENV_PATH)

MAPBOX_PLACES_URL = "https://api.mapbox.com/geocoding/v5/mapbox.places"


class Settings(BaseModel):
    backend_url: Optional[str] = os.getenv("BACKEND_URL")
    frontend_url: Optional[str] = os.getenv("FRONTEND_URL")
    secret_key: str = os.getenv("APP_SECRET_KEY", "change-me")
    default_admin_password: str = os.getenv("DEFAULT_ADMIN_PASSWORD", "changeme")
    default_clinic_name: str = os.getenv("DEFAULT_CLINIC_NAME", "Main Clinic")
    default_clinic_code: str = os.getenv("DEFAULT_CLINIC_CODE", "MAIN")

    # Geocoding
    mapbox_token: Optional[str] = os.getenv("MAPBOX_TOKEN")
    mapbox_token_url: Optional[str] = os.getenv("MAPBOX_TOKEN_URL")
    geocoding_url: str = os.getenv("GEOCODING_URL", MAPBOX_PLACES_URL)
    geocoding_timeout: float = float(os.getenv("GEOCODING_TIMEOUT", "10"))
    geocode_cache_ttl_days: float = float(os.getenv("GEOCODE_CACHE_TTL_DAYS", "7"))


@lru_cache
def get_settings() -> Settings:
    return Settings()
