"""
Builders and fakes shared by the test suite.
"""

import asyncio
import re
from dataclasses import replace
from datetime import datetime, timezone
from html import escape
from typing import Callable, Dict, List, Optional, Union

import httpx

from reviewpulse.core.fingerprint import content_fingerprint
from reviewpulse.models import CountryResult, Platform, Review
from reviewpulse.sources.base import CountryFetcher

APP_ID = "686449807"

FEED_HEADER = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns:im="http://itunes.apple.com/rss" xmlns="http://www.w3.org/2005/Atom" xml:lang="en">
  <id>https://itunes.apple.com/us/rss/customerreviews/page=1/id=686449807/sortby=mostrecent/xml</id>
  <title>iTunes Store: Customer Reviews</title>
  <updated>2024-05-01T10:00:00-07:00</updated>
  <entry>
    <updated>2024-05-01T10:00:00-07:00</updated>
    <id im:id="686449807">https://apps.apple.com/us/app/telegram-messenger/id686449807</id>
    <title>Telegram Messenger - Telegram FZ-LLC</title>
    <im:name>Telegram Messenger</im:name>
  </entry>
"""

FEED_FOOTER = "</feed>\n"


def feed_entry(
    source_id: Optional[str],
    title: str,
    body: str,
    author: str = "Bob",
    rating: Union[int, str] = 5,
    version: str = "10.1",
    updated: str = "2024-05-01T09:00:00-07:00",
) -> str:
    id_line = f"    <id>{escape(source_id)}</id>\n" if source_id else ""
    return (
        "  <entry>\n"
        f"    <author><uri>https://itunes.apple.com/us/reviews/id1</uri><name>{escape(author)}</name></author>\n"
        f"    <updated>{updated}</updated>\n"
        f"    <im:rating>{rating}</im:rating>\n"
        f"    <im:version>{version}</im:version>\n"
        f"{id_line}"
        f"    <title>{escape(title)}</title>\n"
        f"    <content type=\"text\">{escape(body)}</content>\n"
        "    <im:voteSum>0</im:voteSum>\n"
        f"    <content type=\"html\">{escape('<table><tr><td>' + body + '</td></tr></table>')}</content>\n"
        "  </entry>\n"
    )


def build_feed(entries: List[str]) -> str:
    """A feed page: the app metadata entry followed by the given review entries."""
    return FEED_HEADER + "".join(entries) + FEED_FOOTER


def page_of_reviews(country: str, page: int, count: int = 5) -> str:
    return build_feed([
        feed_entry(
            f"{country}-{page}-{i}",
            f"Review {i} on page {page}",
            f"{country} review number {i} from page {page}",
            author=f"{country}-author-{page}-{i}",
        )
        for i in range(count)
    ])


_URL_RE = re.compile(r"/(?P<country>[a-z]{2})/rss/customerreviews/page=(?P<page>\d+)/")


class FeedServer:
    """Serves scripted feed pages through httpx.MockTransport."""

    def __init__(self, pages: Dict[tuple, Union[str, int, List[Union[str, int]]]]) -> None:
        # (country, page) -> body, status code, or a sequence consumed per request
        self.pages = {key: list(value) if isinstance(value, list) else value
                      for key, value in pages.items()}
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        match = _URL_RE.search(request.url.path)
        key = (match.group("country"), int(match.group("page")))
        value = self.pages.get(key, build_feed([]))
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, int):
            return httpx.Response(value, text="error")
        return httpx.Response(200, text=value, headers={"Content-Type": "application/xml"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def pages_requested(self, country: str) -> List[int]:
        pages = []
        for request in self.requests:
            match = _URL_RE.search(request.url.path)
            if match.group("country") == country:
                pages.append(int(match.group("page")))
        return pages


def make_review(
    body: str,
    author: str = "Bob",
    rating: int = 5,
    source_id: Optional[str] = None,
    country: str = "us",
    app_id: str = APP_ID,
    platform: Platform = Platform.APPSTORE,
    published_at: Optional[datetime] = None,
    geo_scope: Optional[str] = None,
) -> Review:
    return Review(
        source_id=source_id or f"{country}-{body}",
        content_fingerprint=content_fingerprint(body, author, rating),
        title="Title",
        body=body,
        rating=rating,
        author=author,
        published_at=published_at or datetime(2024, 5, 1, tzinfo=timezone.utc),
        source_app=app_id,
        source_platform=platform,
        geo_scope=geo_scope,
        country=country,
    )


class ScriptedFetcher(CountryFetcher):
    """Returns canned per-country results; can hold countries behind a gate."""

    platform = Platform.APPSTORE

    def __init__(
        self,
        settings,
        results: Dict[str, Union[List[Review], Exception]],
        gate: Optional[asyncio.Event] = None,
        delay: float = 0.0,
        on_call: Optional[Callable[[str], None]] = None,
    ) -> None:
        super().__init__(settings)
        self.results = results
        self.gate = gate
        self.delay = delay
        self.on_call = on_call
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0
        self.page_limits: List[Optional[int]] = []

    async def fetch_country(self, app_id, country, max_pages=None, max_retries=None, geo_scope=None):
        self.calls.append(country)
        self.page_limits.append(max_pages)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.on_call:
                self.on_call(country)
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1

        outcome = self.results.get(country, [])
        if isinstance(outcome, Exception):
            raise outcome
        reviews = [
            review if review.geo_scope == geo_scope else replace(review, geo_scope=geo_scope)
            for review in outcome
        ]
        return CountryResult(country_code=country, reviews=reviews, pages_processed=1)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
