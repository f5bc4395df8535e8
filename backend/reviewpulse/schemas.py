# reviewpulse/schemas.py
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from reviewpulse.models import CollectionJob, CollectionStats, Review


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class StrategyIn(CamelModel):
    type: str = "complete"
    countries: Optional[List[str]] = None
    max_pages_per_country: Optional[int] = Field(default=None, alias="maxPagesPerCountry")


class StartCollectionRequest(CamelModel):
    app_id: Optional[str] = Field(default=None, alias="appId")
    platform: Optional[str] = None
    strategy: Optional[StrategyIn] = None


class StartCollectionResponse(CamelModel):
    job_id: str = Field(alias="jobId")
    status: str
    message: str
    strategy: StrategyIn


class CountryStatsOut(CamelModel):
    reviews: int
    pages: int
    errors: int


class CollectionStatsOut(CamelModel):
    total_countries: int = Field(alias="totalCountries")
    successful_countries: int = Field(alias="successfulCountries")
    total_reviews_collected: int = Field(alias="totalReviewsCollected")
    unique_reviews: int = Field(alias="uniqueReviewsAfterDeduplication")
    deduplication_rate: float = Field(alias="deduplicationRate")
    total_errors: int = Field(alias="totalErrors")
    country_breakdown: Dict[str, CountryStatsOut] = Field(alias="countryBreakdown")
    average_rating: float = Field(alias="averageRating")
    duration_seconds: float = Field(alias="durationSeconds")

    @classmethod
    def from_stats(cls, stats: CollectionStats) -> "CollectionStatsOut":
        return cls(
            total_countries=stats.total_countries,
            successful_countries=stats.successful_countries,
            total_reviews_collected=stats.total_reviews_collected,
            unique_reviews=stats.unique_reviews,
            deduplication_rate=stats.deduplication_rate,
            total_errors=stats.total_errors,
            country_breakdown={
                country: CountryStatsOut(reviews=s.reviews, pages=s.pages, errors=s.errors)
                for country, s in stats.country_breakdown.items()
            },
            average_rating=stats.average_rating,
            duration_seconds=stats.duration_seconds,
        )


class CollectionJobOut(CamelModel):
    id: str
    app_id: str = Field(alias="appId")
    platform: str
    status: str
    progress: int
    total_countries: int = Field(alias="totalCountries")
    completed_countries: int = Field(alias="completedCountries")
    reviews_collected: int = Field(alias="reviewsCollected")
    errors: List[str] = Field(default_factory=list)
    started_at: Optional[datetime] = Field(default=None, alias="startedAt")
    completed_at: Optional[datetime] = Field(default=None, alias="completedAt")
    stats: Optional[CollectionStatsOut] = None

    @classmethod
    def from_job(cls, job: CollectionJob) -> "CollectionJobOut":
        return cls(
            id=job.id,
            app_id=job.app_id,
            platform=job.platform.value,
            status=job.status.value,
            progress=job.progress,
            total_countries=job.total_countries,
            completed_countries=job.completed_countries,
            reviews_collected=job.reviews_collected,
            errors=list(job.errors),
            started_at=job.started_at,
            completed_at=job.completed_at,
            stats=CollectionStatsOut.from_stats(job.stats) if job.stats else None,
        )


class ActiveJobsResponse(CamelModel):
    active_jobs: List[CollectionJobOut] = Field(alias="activeJobs")


class ReviewOut(CamelModel):
    id: str
    title: str
    content: str
    rating: int
    author: str
    date: datetime
    platform: str
    app_id: str = Field(alias="appId")
    version: Optional[str] = None
    country: Optional[str] = None

    @classmethod
    def from_review(cls, review: Review) -> "ReviewOut":
        return cls(
            id=review.source_id,
            title=review.title,
            content=review.body,
            rating=review.rating,
            author=review.author,
            date=review.published_at,
            platform=review.source_platform.value,
            app_id=review.source_app,
            version=review.app_version,
            country=review.country,
        )


class ReviewListResponse(CamelModel):
    reviews: List[ReviewOut]
    total_count: int = Field(alias="totalCount")
    average_rating: float = Field(alias="averageRating")
    from_cache: bool = Field(alias="fromCache")


class MessageResponse(CamelModel):
    message: str
