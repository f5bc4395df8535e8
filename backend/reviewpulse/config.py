"""
Application configuration with environment variable support.
"""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Collection engine knobs. Every field can be overridden with REVIEWPULSE_<NAME>."""

    model_config = SettingsConfigDict(
        env_prefix="REVIEWPULSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Rate limiting (seconds)
    min_request_delay: float = 1.0
    max_request_delay: float = 3.0
    batch_delay: float = 5.0
    error_backoff: float = 10.0

    # Batching and paging
    countries_per_batch: int = 2
    max_pages_per_country: int = 20
    incremental_max_pages: int = 5
    max_retries_per_page: int = 3
    request_timeout: float = 15.0

    # Job registry
    job_retention_hours: float = 24.0
    sweep_interval_seconds: float = 3600.0

    # Corpus cache
    cache_max_age_hours: float = 2.0

    # Google Play
    googleplay_lang: str = "en"
    googleplay_country: str = "us"
    googleplay_page_size: int = 100

    # Storage; empty means in-memory
    database_path: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Settings | None = None) -> None:
    """Apply the configured level and format to the root logger."""
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper(), format=settings.log_format)


# App Store customer reviews feed, one per country and page
APPSTORE_FEED_URL = (
    "https://itunes.apple.com/{country}/rss/customerreviews/"
    "page={page}/id={app_id}/sortby=mostrecent/xml"
)

# Browser identities rotated per request
USER_AGENTS: List[str] = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Edge/120.0.0.0 Safari/537.36",
]

HTTP_HEADERS: Dict[str, str] = {
    "Accept": "application/rss+xml, application/xml, text/xml",
    "Accept-Language": "en-US,en;q=0.9",
    "DNT": "1",
}

# Countries covered by a complete collection
MAJOR_COUNTRIES: List[str] = [
    "us", "gb", "de", "fr", "jp", "au", "ca", "ru",
    "br", "in", "kr", "it", "es", "mx", "cn",
]

# Small subset refreshed by incremental collections
INCREMENTAL_COUNTRIES: List[str] = ["us", "gb", "de", "fr"]

# Named geo scopes for corpus lookups
REGION_PROFILES: Dict[str, List[str]] = {
    "single": ["ru"],
    "major": ["ru", "us", "gb", "de", "fr", "jp"],
    "all": MAJOR_COUNTRIES,
    "americas": ["us", "ca", "mx", "br"],
    "europe": ["gb", "de", "fr", "it", "es", "ru"],
    "asia": ["jp", "kr", "cn", "in"],
    "english": ["us", "gb", "au", "ca"],
}

# Consecutive empty pages after which a country is considered exhausted
EMPTY_PAGE_LIMIT: int = 3
