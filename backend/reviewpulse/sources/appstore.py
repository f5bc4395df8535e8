"""
App Store customer reviews fetcher (per-country XML feed).
"""
from __future__ import annotations

import logging
from typing import Any, List, Optional

import feedparser
import httpx

from reviewpulse.config import APPSTORE_FEED_URL, HTTP_HEADERS, Settings
from reviewpulse.models import FeedEntry, FeedPage, Platform
from reviewpulse.sources.base import CountryFetcher
from reviewpulse.sources.common import clean_text, parse_rating, random_user_agent, strip_html

logger = logging.getLogger(__name__)


def extract_body(entry) -> str:
    """
    Pull the review text out of a feed entry.

    The feed carries a plain-text and an HTML rendition of the body; the plain
    one is preferred.

    Args:
        entry: feedparser entry

    Returns:
        Review text, empty string if none found
    """
    contents = entry.get("content") or []
    for content in contents:
        if content.get("type") == "text/plain" and content.get("value"):
            return clean_text(content["value"])
    for content in contents:
        if content.get("value"):
            return strip_html(content["value"])
    return strip_html(entry.get("summary"))


def parse_feed(payload: bytes | str) -> List[FeedEntry]:
    """
    Parse one feed page into typed entries.

    The first entry of every page describes the app itself and is skipped.

    Args:
        payload: Raw XML body of the page

    Returns:
        List of FeedEntry records, unvalidated
    """
    feed = feedparser.parse(payload)
    if feed.bozo and not feed.entries:
        logger.debug("Unparseable feed page: %s", feed.get("bozo_exception"))

    entries: List[FeedEntry] = []
    for entry in feed.entries[1:]:
        entries.append(
            FeedEntry(
                source_id=clean_text(entry.get("id")) or None,
                title=clean_text(entry.get("title")),
                body=extract_body(entry),
                author=clean_text(entry.get("author")),
                rating=parse_rating(entry.get("im_rating")),
                updated=clean_text(entry.get("updated")) or None,
                version=clean_text(entry.get("im_version")) or None,
            )
        )

    return entries


class AppStoreFetcher(CountryFetcher):
    """Fetches App Store reviews page by page from the customer reviews feed."""

    platform = Platform.APPSTORE
    retryable_errors = (httpx.HTTPError,)

    def __init__(self, settings: Settings | None = None, client: Optional[httpx.AsyncClient] = None) -> None:
        super().__init__(settings)
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=HTTP_HEADERS,
                timeout=self.settings.request_timeout,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch_page(self, app_id: str, country: str, page: int, cursor: Any = None) -> FeedPage:
        url = APPSTORE_FEED_URL.format(country=country, page=page, app_id=app_id)

        r = await self._get_client().get(url, headers={"User-Agent": random_user_agent()})
        r.raise_for_status()

        return FeedPage(entries=parse_feed(r.content))
