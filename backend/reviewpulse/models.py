"""
File: reviewpulse/models.py
Internal data structures used during collection and job tracking.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


JsonDict = Dict[str, Any]


class Platform(str, Enum):
    APPSTORE = "appstore"
    GOOGLEPLAY = "googleplay"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class StrategyType(str, Enum):
    COMPLETE = "complete"
    INCREMENTAL = "incremental"
    TARGETED = "targeted"


@dataclass(frozen=True)
class Review:
    """A single user review, identical in shape for every store.

    Storage identity is (source_id, source_platform, source_app); logical
    identity is content_fingerprint.
    """

    source_id: str
    content_fingerprint: str
    title: str
    body: str
    rating: int
    author: str
    published_at: datetime
    source_app: str
    source_platform: Platform
    app_version: Optional[str] = None
    geo_scope: Optional[str] = None
    country: Optional[str] = None


@dataclass(frozen=True)
class FeedEntry:
    """One parsed feed entry before validation."""

    source_id: Optional[str]
    title: str
    body: str
    author: str
    rating: int
    updated: Optional[str] = None
    version: Optional[str] = None


@dataclass(frozen=True)
class EntryVerdict:
    accepted: bool
    reason: Optional[str] = None


@dataclass
class FeedPage:
    """Entries of one fetched page plus the cursor for the next one."""

    entries: List[FeedEntry]
    cursor: Any = None
    has_more: bool = True


@dataclass
class CountryResult:
    country_code: str
    reviews: List[Review] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    pages_processed: int = 0


@dataclass
class CountryStats:
    reviews: int = 0
    pages: int = 0
    errors: int = 0


@dataclass
class CollectionStats:
    total_countries: int
    successful_countries: int
    total_reviews_collected: int
    unique_reviews: int
    deduplication_rate: float
    total_errors: int
    country_breakdown: Dict[str, CountryStats] = field(default_factory=dict)
    average_rating: float = 0.0
    duration_seconds: float = 0.0

    def to_dict(self) -> JsonDict:
        return asdict(self)


@dataclass
class CollectionStrategy:
    type: StrategyType = StrategyType.COMPLETE
    countries: Optional[List[str]] = None
    max_pages_per_country: Optional[int] = None


@dataclass
class CollectionJob:
    """Mutable job record. Owned by CollectionJobManager; nobody else writes to it."""

    id: str
    app_id: str
    platform: Platform
    strategy: CollectionStrategy
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    total_countries: int = 0
    completed_countries: int = 0
    reviews_collected: int = 0
    errors: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    stats: Optional[CollectionStats] = None


__all__ = [
    "CollectionJob",
    "CollectionStats",
    "CollectionStrategy",
    "CountryResult",
    "CountryStats",
    "EntryVerdict",
    "FeedEntry",
    "FeedPage",
    "JobStatus",
    "JsonDict",
    "Platform",
    "Review",
    "StrategyType",
]
