"""
Deduplicated review corpus for downstream analysis.

A scope reads the stored reviews of the countries it covers, whichever
collection stored them; "all" reads every stored review of the app. Those
rows are served while the newest of them is younger than cache_max_age_hours;
otherwise the scope is collected again first.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Mapping, Optional

from reviewpulse.config import REGION_PROFILES, Settings, get_settings
from reviewpulse.core.dedup import dedupe_reviews
from reviewpulse.errors import InvalidRequestError
from reviewpulse.models import Platform, Review
from reviewpulse.services.storage import ReviewStore, StoredReview, persist_reviews
from reviewpulse.sources.base import CountryFetcher
from reviewpulse.sources.collector import BatchScheduler
from reviewpulse.utils import average_rating, now_utc

logger = logging.getLogger(__name__)

DATE_FILTER_DAYS = {"7days": 7, "30days": 30, "90days": 90}

_COUNTRY_CODE_RE = re.compile(r"^[a-z]{2}$")


@dataclass
class CorpusResult:
    reviews: List[Review]
    total_count: int
    average_rating: float
    from_cache: bool


def resolve_geo_scope(geo_scope: str) -> List[str]:
    """
    Countries covered by a named scope or a single country code.

    Raises:
        InvalidRequestError: unknown scope
    """
    scope = (geo_scope or "").strip().lower()
    if scope in REGION_PROFILES:
        return list(REGION_PROFILES[scope])
    if _COUNTRY_CODE_RE.match(scope):
        return [scope]
    raise InvalidRequestError(f"Unknown geo scope: {geo_scope}")


class CorpusService:
    """Reads the stored corpus, refreshing it through the collector when stale."""

    def __init__(
        self,
        store: ReviewStore,
        fetchers: Mapping[Platform, CountryFetcher],
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.fetchers = fetchers
        self.settings = settings or get_settings()

    def is_fresh(self, stored: List[StoredReview]) -> bool:
        if not stored:
            return False
        newest = max(item.created_at for item in stored)
        return newest >= now_utc() - timedelta(hours=self.settings.cache_max_age_hours)

    async def get_reviews(
        self,
        app_id: str,
        platform: Platform,
        geo_scope: str = "major",
        force_refresh: bool = False,
    ) -> CorpusResult:
        """
        Return the deduplicated corpus for an app, collecting it if needed.

        Args:
            app_id: Store identifier of the app
            platform: Store the reviews come from
            geo_scope: Region profile or country code (App Store only)
            force_refresh: Collect even when the stored corpus is fresh

        Returns:
            CorpusResult with unique reviews, newest first
        """
        if platform == Platform.APPSTORE:
            countries = resolve_geo_scope(geo_scope)
            scope: Optional[str] = geo_scope.strip().lower()
            covered: Optional[List[str]] = None if scope == "all" else countries
        else:
            countries = [self.settings.googleplay_country]
            scope = None
            covered = None

        stored = await self._list(app_id, platform, covered)
        if not force_refresh and self.is_fresh(stored):
            logger.info("Loading %d reviews from cache for %s (%s, geo scope: %s)",
                        len(stored), app_id, platform.value, scope)
            return self._result(stored, from_cache=True)

        logger.info("Collecting reviews for %s (%s, geo scope: %s)", app_id, platform.value, scope)
        scheduler = BatchScheduler(self.fetchers[platform], self.settings)
        outcome = await scheduler.collect(app_id, countries, geo_scope=scope)
        unique = dedupe_reviews(outcome.reviews)

        loop = asyncio.get_running_loop()
        created = await loop.run_in_executor(None, persist_reviews, self.store, app_id, platform, unique)
        logger.info("Saved %d new reviews for %s", created, app_id)

        stored = await self._list(app_id, platform, covered)
        return self._result(stored, from_cache=False)

    async def get_filtered_reviews(
        self, app_id: str, platform: Platform, date_filter: str = "all"
    ) -> List[Review]:
        """Stored reviews published within the window, deduplicated."""
        if date_filter != "all" and date_filter not in DATE_FILTER_DAYS:
            raise InvalidRequestError(f"Unknown date filter: {date_filter}")

        since = None
        if date_filter in DATE_FILTER_DAYS:
            since = now_utc() - timedelta(days=DATE_FILTER_DAYS[date_filter])

        loop = asyncio.get_running_loop()
        stored = await loop.run_in_executor(None, self.store.list_reviews, app_id, platform, None, since)
        return dedupe_reviews(item.review for item in stored)

    async def _list(
        self, app_id: str, platform: Platform, countries: Optional[List[str]]
    ) -> List[StoredReview]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, functools.partial(self.store.list_reviews, app_id, platform, countries=countries)
        )

    @staticmethod
    def _result(stored: List[StoredReview], from_cache: bool) -> CorpusResult:
        unique = dedupe_reviews(item.review for item in stored)
        return CorpusResult(
            reviews=unique,
            total_count=len(unique),
            average_rating=average_rating(unique),
            from_cache=from_cache,
        )
