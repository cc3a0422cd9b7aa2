"""Runtime settings read from the environment."""

import os
from typing import Optional

from pydantic import BaseModel, Field


PRODUCTION_BASE_URL = "https://api.mxmerchant.com"
SANDBOX_BASE_URL = "https://sandbox.api.mxmerchant.com"


class SyncSettings(BaseModel):
    """Tunables for the API client and reconciliation engine."""
    api_base_url: Optional[str] = Field(None, description="Override for the MX Merchant base URL")
    http_timeout: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    page_size: int = Field(default=100, ge=1, le=100)
    batch_size: int = Field(default=100, ge=1, le=1000)
    batch_delay_ms: int = Field(default=100, ge=0)
    credential_cache_ttl: float = Field(default=300.0, ge=0)
    category_cache_ttl: float = Field(default=300.0, ge=0)
    default_category: str = "Uncategorized"

    @property
    def batch_delay(self) -> float:
        return self.batch_delay_ms / 1000.0


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def get_settings() -> SyncSettings:
    """Build settings from environment variables, falling back to defaults."""
    return SyncSettings(
        api_base_url=os.getenv("MX_API_BASE_URL") or None,
        http_timeout=_env_float("MX_HTTP_TIMEOUT", 30.0),
        max_retries=_env_int("MX_MAX_RETRIES", 3),
        page_size=_env_int("MX_SYNC_PAGE_SIZE", 100),
        batch_size=_env_int("MX_SYNC_BATCH_SIZE", 100),
        batch_delay_ms=_env_int("MX_SYNC_BATCH_DELAY_MS", 100),
        credential_cache_ttl=_env_float("CREDENTIAL_CACHE_TTL", 300.0),
        category_cache_ttl=_env_float("CATEGORY_CACHE_TTL", 300.0),
    )


def base_url_for(environment: str, override: Optional[str] = None) -> str:
    """Resolve the API base URL for a merchant environment."""
    if override:
        return override.rstrip("/")
    return PRODUCTION_BASE_URL if environment == "production" else SANDBOX_BASE_URL
