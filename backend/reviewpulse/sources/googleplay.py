"""
File: reviewpulse/sources/googleplay.py
Google Play review list fetcher built on google-play-scraper.

The scraper is synchronous and pages with continuation tokens, so each page
runs in the default executor and the token travels as the page cursor.
"""

from __future__ import annotations

import asyncio
import functools
from typing import Any, List

from google_play_scraper import Sort, reviews

from reviewpulse.models import FeedEntry, FeedPage, Platform
from reviewpulse.sources.base import CountryFetcher
from reviewpulse.sources.common import clean_text, parse_rating

TITLE_LENGTH = 50


def title_from_body(body: str) -> str:
    # Google Play reviews have no title of their own
    if len(body) <= TITLE_LENGTH:
        return body
    return body[:TITLE_LENGTH] + "..."


def to_feed_entry(raw: dict) -> FeedEntry:
    body = clean_text(raw.get("content"))
    at = raw.get("at")
    return FeedEntry(
        source_id=raw.get("reviewId") or None,
        title=title_from_body(body),
        body=body,
        author=clean_text(raw.get("userName")),
        rating=parse_rating(raw.get("score")),
        updated=at.isoformat() if at else None,
        version=raw.get("reviewCreatedVersion") or raw.get("appVersion") or None,
    )


class GooglePlayFetcher(CountryFetcher):
    """Fetches Google Play reviews for one country, newest first."""

    platform = Platform.GOOGLEPLAY
    # the scraper surfaces urllib and its own errors; every failure is retried
    retryable_errors = (Exception,)

    async def fetch_page(self, app_id: str, country: str, page: int, cursor: Any = None) -> FeedPage:
        call = functools.partial(
            reviews,
            app_id,
            lang=self.settings.googleplay_lang,
            country=country,
            sort=Sort.NEWEST,
            count=self.settings.googleplay_page_size,
            continuation_token=cursor,
        )
        loop = asyncio.get_running_loop()
        result, token = await loop.run_in_executor(None, call)

        entries: List[FeedEntry] = [to_feed_entry(raw) for raw in result]
        has_more = bool(result) and getattr(token, "token", None) is not None
        return FeedPage(entries=entries, cursor=token, has_more=has_more)
