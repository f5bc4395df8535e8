"""
Review storage adapters.

Both adapters honour the same upsert contract: a review is keyed by
(source_id, platform, app_id), created when absent and never overwritten.
"""
from __future__ import annotations

import logging
import os
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from dateutil import parser as dateparser

from reviewpulse.models import Platform, Review

logger = logging.getLogger(__name__)


class UpsertResult(str, Enum):
    CREATED = "created"
    EXISTING = "existing"


@dataclass(frozen=True)
class StoredReview:
    review: Review
    created_at: datetime


class ReviewStore(Protocol):
    def upsert_app(self, app_id: str, platform: Platform) -> None: ...

    def upsert_review(self, review: Review) -> UpsertResult: ...

    def list_reviews(
        self,
        app_id: str,
        platform: Platform,
        geo_scope: Optional[str] = None,
        since: Optional[datetime] = None,
        countries: Optional[Sequence[str]] = None,
    ) -> List[StoredReview]: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryReviewStore:
    """Process-local store, used by default and in tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.apps: Dict[Tuple[str, Platform], datetime] = {}
        self.reviews: Dict[Tuple[str, Platform, str], StoredReview] = {}

    def upsert_app(self, app_id: str, platform: Platform) -> None:
        with self._lock:
            self.apps[(app_id, platform)] = _now()

    def upsert_review(self, review: Review) -> UpsertResult:
        key = (review.source_id, review.source_platform, review.source_app)
        with self._lock:
            if key in self.reviews:
                return UpsertResult.EXISTING
            self.reviews[key] = StoredReview(review=review, created_at=_now())
            return UpsertResult.CREATED

    def list_reviews(
        self,
        app_id: str,
        platform: Platform,
        geo_scope: Optional[str] = None,
        since: Optional[datetime] = None,
        countries: Optional[Sequence[str]] = None,
    ) -> List[StoredReview]:
        with self._lock:
            rows = [
                stored for stored in self.reviews.values()
                if stored.review.source_app == app_id
                and stored.review.source_platform == platform
                and (geo_scope is None or stored.review.geo_scope == geo_scope)
                and (since is None or stored.review.published_at >= since)
                and (countries is None or stored.review.country in countries)
            ]
        rows.sort(key=lambda stored: stored.review.published_at, reverse=True)
        return rows


class SQLiteReviewStore:
    """
    File-backed store.

    A connection is opened per call, so the store can be used from executor
    threads.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self._initialize()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize(self) -> None:
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS apps (
                    app_id      TEXT NOT NULL,
                    platform    TEXT NOT NULL,
                    updated_at  TEXT NOT NULL,
                    PRIMARY KEY (app_id, platform)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reviews (
                    source_id           TEXT NOT NULL,
                    platform            TEXT NOT NULL,
                    app_id              TEXT NOT NULL,
                    content_fingerprint TEXT NOT NULL,
                    title               TEXT NOT NULL,
                    body                TEXT NOT NULL,
                    rating              INTEGER NOT NULL,
                    author              TEXT NOT NULL,
                    published_at        TEXT NOT NULL,
                    app_version         TEXT,
                    geo_scope           TEXT,
                    country             TEXT,
                    created_at          TEXT NOT NULL,
                    PRIMARY KEY (source_id, platform, app_id)
                )
            """)
            conn.commit()
        finally:
            conn.close()

    def upsert_app(self, app_id: str, platform: Platform) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO apps (app_id, platform, updated_at) VALUES (?, ?, ?)
                ON CONFLICT (app_id, platform) DO UPDATE SET updated_at = excluded.updated_at
                """,
                (app_id, platform.value, _now().isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def upsert_review(self, review: Review) -> UpsertResult:
        conn = self._connect()
        try:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO reviews
                (source_id, platform, app_id, content_fingerprint, title, body, rating,
                 author, published_at, app_version, geo_scope, country, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    review.source_id,
                    review.source_platform.value,
                    review.source_app,
                    review.content_fingerprint,
                    review.title,
                    review.body,
                    review.rating,
                    review.author,
                    review.published_at.isoformat(),
                    review.app_version,
                    review.geo_scope,
                    review.country,
                    _now().isoformat(),
                ),
            )
            conn.commit()
            return UpsertResult.CREATED if cursor.rowcount > 0 else UpsertResult.EXISTING
        finally:
            conn.close()

    def list_reviews(
        self,
        app_id: str,
        platform: Platform,
        geo_scope: Optional[str] = None,
        since: Optional[datetime] = None,
        countries: Optional[Sequence[str]] = None,
    ) -> List[StoredReview]:
        query = "SELECT * FROM reviews WHERE app_id = ? AND platform = ?"
        params: list = [app_id, platform.value]
        if geo_scope is not None:
            query += " AND geo_scope = ?"
            params.append(geo_scope)
        if since is not None:
            query += " AND published_at >= ?"
            params.append(since.astimezone(timezone.utc).isoformat())
        if countries is not None:
            query += f" AND country IN ({', '.join('?' for _ in countries)})"
            params.extend(countries)
        query += " ORDER BY published_at DESC"

        conn = self._connect()
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()

        return [self._row_to_stored(row) for row in rows]

    @staticmethod
    def _row_to_stored(row: sqlite3.Row) -> StoredReview:
        review = Review(
            source_id=row["source_id"],
            content_fingerprint=row["content_fingerprint"],
            title=row["title"],
            body=row["body"],
            rating=row["rating"],
            author=row["author"],
            published_at=dateparser.isoparse(row["published_at"]),
            source_app=row["app_id"],
            source_platform=Platform(row["platform"]),
            app_version=row["app_version"],
            geo_scope=row["geo_scope"],
            country=row["country"],
        )
        return StoredReview(review=review, created_at=dateparser.isoparse(row["created_at"]))


def create_store(database_path: str = "") -> ReviewStore:
    if database_path:
        logger.info("Using SQLite review store at %s", database_path)
        return SQLiteReviewStore(database_path)
    return InMemoryReviewStore()


def persist_reviews(store: ReviewStore, app_id: str, platform: Platform, reviews: List[Review]) -> int:
    """
    Upsert an app and its reviews; returns how many reviews were new.

    A review that fails to save is logged and skipped.
    """
    store.upsert_app(app_id, platform)

    created = 0
    for review in reviews:
        try:
            if store.upsert_review(review) == UpsertResult.CREATED:
                created += 1
        except Exception as e:
            logger.warning("Failed to save review %s: %s", review.source_id, e)
    return created
