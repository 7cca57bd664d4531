"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

from refill_search.core.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_LATITUDE = 37.5006249
DEFAULT_LONGITUDE = 127.0277083


@dataclass(frozen=True)
class Settings:
    store_api_base_url: str = "http://localhost:3000"
    store_list_path: str = "/api/stores"
    store_search_path: str = "/api/stores"
    request_timeout_seconds: float = 10.0
    page_size: int = 20
    default_latitude: float = DEFAULT_LATITUDE
    default_longitude: float = DEFAULT_LONGITUDE
    location_store_path: Path = Path("~/.refill_search/location.json").expanduser()
    location_ttl_minutes: float = 30.0
    geolocation_url: str = "https://ipapi.co/json/"
    geolocation_timeout_seconds: float = 10.0
    server_port: int = 8080
    session_idle_minutes: float = 30.0
    max_sessions: int = 500

    @property
    def list_url(self) -> str:
        return f"{self.store_api_base_url.rstrip('/')}{self.store_list_path}"

    @property
    def search_url(self) -> str:
        return f"{self.store_api_base_url.rstrip('/')}{self.store_search_path}"


def _get_number(name: str, default: str, cast=float):
    raw = os.getenv(name) or default
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be numeric, got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    store_api_base_url = os.getenv("STORE_API_BASE_URL", "")
    if not store_api_base_url:
        logger.warning("STORE_API_BASE_URL is not set; using http://localhost:3000.")
        store_api_base_url = "http://localhost:3000"

    page_size = _get_number("PAGE_SIZE", "20", int)
    if page_size <= 0:
        raise ConfigError("PAGE_SIZE must be positive")

    max_sessions = _get_number("MAX_SESSIONS", "500", int)
    if max_sessions <= 0:
        raise ConfigError("MAX_SESSIONS must be positive")

    location_store_path = Path(
        os.getenv("LOCATION_STORE_PATH") or "~/.refill_search/location.json"
    ).expanduser()

    return Settings(
        store_api_base_url=store_api_base_url,
        store_list_path=os.getenv("STORE_LIST_PATH") or "/api/stores",
        store_search_path=os.getenv("STORE_SEARCH_PATH") or "/api/stores",
        request_timeout_seconds=_get_number("REQUEST_TIMEOUT_SECONDS", "10"),
        page_size=page_size,
        default_latitude=_get_number("DEFAULT_LATITUDE", str(DEFAULT_LATITUDE)),
        default_longitude=_get_number("DEFAULT_LONGITUDE", str(DEFAULT_LONGITUDE)),
        location_store_path=location_store_path,
        location_ttl_minutes=_get_number("LOCATION_TTL_MINUTES", "30"),
        geolocation_url=os.getenv("GEOLOCATION_URL") or "https://ipapi.co/json/",
        geolocation_timeout_seconds=_get_number("GEOLOCATION_TIMEOUT_SECONDS", "10"),
        server_port=_get_number("PORT", "8080", int),
        session_idle_minutes=_get_number("SESSION_IDLE_MINUTES", "30"),
        max_sessions=max_sessions,
    )
