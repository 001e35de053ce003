"""Client-side configuration using pydantic-settings.

Read from ``FIELDSALES_CLIENT_*`` environment variables so a device build
can point at a different server or tune retry behaviour without code changes.
"""

from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SHELL_ROUTES = [
    "/",
    "/app/checkin",
    "/app/companies",
    "/app/dashboard",
    "/manifest.webmanifest",
    "/icons/icon-192x192.svg",
    "/icons/icon-512x512.svg",
]


class ClientSettings(BaseSettings):
    """Settings for the offline queue, sync engine and controller."""

    model_config = SettingsConfigDict(
        env_prefix="FIELDSALES_CLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server
    api_base_url: str = "http://localhost:8000"
    api_prefix: str = "/api/v1"
    request_timeout_seconds: float = 15.0

    # Durable queue
    queue_db_path: str = "./data/offline-queue.db"

    # Sync
    max_retries: int = 3
    drop_permanent_failures: bool = True

    # Geolocation
    geolocation_timeout_seconds: float = 15.0
    geolocation_high_accuracy: bool = True

    # Connectivity and reconciliation
    connectivity_probe_interval_seconds: float = 10.0
    active_visit_refresh_seconds: float = 30.0

    # Cache layer
    cache_version: str = "v1"
    shell_routes: List[str] = DEFAULT_SHELL_ROUTES

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_retries must be at least 1")
        return v

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

