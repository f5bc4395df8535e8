"""
Shared page loop for per-country review fetchers.

A fetcher walks pages 1..max_pages of one country's feed, retrying failed
requests with exponential backoff, validating and locally deduplicating the
entries it parses, and stopping early once the feed looks exhausted.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Tuple, Type

from reviewpulse.config import EMPTY_PAGE_LIMIT, Settings, get_settings
from reviewpulse.core.dedup import LocalDeduplicator
from reviewpulse.core.fingerprint import content_fingerprint
from reviewpulse.models import CountryResult, EntryVerdict, FeedEntry, FeedPage, Platform, Review
from reviewpulse.sources.common import make_source_id, parse_utc_datetime, random_delay

logger = logging.getLogger(__name__)


class PageFetchError(Exception):
    """A page could not be fetched after all retry attempts."""


def validate_entry(entry: FeedEntry) -> EntryVerdict:
    """
    Decide whether a parsed entry is a usable review.

    Args:
        entry: Parsed feed entry

    Returns:
        EntryVerdict with the rejection reason when not accepted
    """
    if not entry.title.strip():
        return EntryVerdict(False, "missing title")
    if not entry.body.strip():
        return EntryVerdict(False, "missing body")
    if not 1 <= entry.rating <= 5:
        return EntryVerdict(False, f"rating out of range: {entry.rating}")
    return EntryVerdict(True)


def build_review(
    entry: FeedEntry,
    app_id: str,
    platform: Platform,
    country: str,
    geo_scope: Optional[str] = None,
) -> Review:
    """Turn an accepted entry into an immutable Review."""
    title = entry.title.strip()
    body = entry.body.strip()
    author = entry.author.strip() or "Anonymous"
    published_at = parse_utc_datetime(entry.updated)
    source_id = entry.source_id or make_source_id(
        app_id, body, author, entry.updated or "", entry.rating, country
    )

    return Review(
        source_id=source_id,
        content_fingerprint=content_fingerprint(body, author, entry.rating),
        title=title,
        body=body,
        rating=entry.rating,
        author=author,
        published_at=published_at,
        source_app=app_id,
        source_platform=platform,
        app_version=entry.version or None,
        geo_scope=geo_scope,
        country=country,
    )


class CountryFetcher:
    """Base class; subclasses implement fetch_page for one upstream source."""

    platform: Platform
    retryable_errors: Tuple[Type[BaseException], ...] = (Exception,)

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    async def fetch_page(self, app_id: str, country: str, page: int, cursor: Any) -> FeedPage:
        raise NotImplementedError

    async def close(self) -> None:
        """Release resources held by the fetcher."""

    async def fetch_country(
        self,
        app_id: str,
        country: str,
        max_pages: int | None = None,
        max_retries: int | None = None,
        geo_scope: str | None = None,
    ) -> CountryResult:
        """
        Collect all accepted, locally deduplicated reviews of one country.

        Args:
            app_id: Store identifier of the app
            country: Two-letter country code
            max_pages: Page cap (defaults to settings.max_pages_per_country)
            max_retries: Attempts per page (defaults to settings.max_retries_per_page)
            geo_scope: Profile name stamped on produced reviews

        Returns:
            CountryResult with reviews, per-page errors and pages processed
        """
        if max_pages is None:
            max_pages = self.settings.max_pages_per_country
        if max_retries is None:
            max_retries = self.settings.max_retries_per_page

        result = CountryResult(country_code=country)
        seen = LocalDeduplicator()
        consecutive_empty = 0
        cursor: Any = None

        logger.info("Starting collection from %s (%s, up to %d pages)",
                    country.upper(), self.platform.value, max_pages)

        for page in range(1, max_pages + 1):
            result.pages_processed = page

            try:
                feed_page = await self._fetch_with_retry(app_id, country, page, cursor, max_retries)
            except PageFetchError as e:
                logger.error("Failed to fetch %s page %d after %d attempts",
                             country.upper(), page, max_retries)
                result.errors.append(str(e))
                continue

            cursor = feed_page.cursor
            accepted = []
            for entry in feed_page.entries:
                verdict = validate_entry(entry)
                if not verdict.accepted:
                    logger.debug("Discarding %s entry: %s", country.upper(), verdict.reason)
                    continue
                review = build_review(entry, app_id, self.platform, country, geo_scope)
                if seen.add(review):
                    accepted.append(review)

            result.reviews.extend(accepted)
            logger.info("%s page %d: %d reviews", country.upper(), page, len(accepted))

            if accepted:
                consecutive_empty = 0
            else:
                consecutive_empty += 1
                if consecutive_empty >= EMPTY_PAGE_LIMIT:
                    logger.info("Stopping %s collection: %d consecutive empty pages",
                                country.upper(), consecutive_empty)
                    break

            if not feed_page.has_more:
                logger.info("Stopping %s collection: no further pages", country.upper())
                break

        logger.info("Completed %s: %d reviews from %d pages",
                    country.upper(), len(result.reviews), result.pages_processed)
        return result

    async def _fetch_with_retry(
        self, app_id: str, country: str, page: int, cursor: Any, max_retries: int
    ) -> FeedPage:
        for attempt in range(1, max_retries + 1):
            await asyncio.sleep(
                random_delay(self.settings.min_request_delay, self.settings.max_request_delay)
            )
            logger.debug("Fetching %s page %d (attempt %d)", country.upper(), page, attempt)

            try:
                return await self.fetch_page(app_id, country, page, cursor)
            except self.retryable_errors as e:
                message = (f"Error fetching {country.upper()} page {page} "
                           f"(attempt {attempt}): {e}")
                logger.warning(message)
                if attempt >= max_retries:
                    raise PageFetchError(message) from e

                backoff = self.settings.error_backoff * 2 ** (attempt - 1)
                logger.info("Waiting %.1fs before retry", backoff)
                await asyncio.sleep(backoff)

        raise PageFetchError(f"Error fetching {country.upper()} page {page}: no attempts made")
