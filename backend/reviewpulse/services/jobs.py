"""
Collection job manager.

Runs multi-country collections as background asyncio tasks and keeps an
in-memory registry of their state for polling. The registry belongs to one
CollectionJobManager instance; all writes happen on the event loop.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional, Tuple

from reviewpulse.config import INCREMENTAL_COUNTRIES, MAJOR_COUNTRIES, Settings, get_settings
from reviewpulse.core.dedup import dedupe_reviews, deduplication_rate
from reviewpulse.errors import InvalidRequestError
from reviewpulse.models import (
    CollectionJob,
    CollectionStats,
    CollectionStrategy,
    JobStatus,
    Platform,
    Review,
    StrategyType,
)
from reviewpulse.services.storage import ReviewStore, persist_reviews
from reviewpulse.sources.appstore import AppStoreFetcher
from reviewpulse.sources.base import CountryFetcher
from reviewpulse.sources.collector import BatchScheduler, CollectionOutcome, normalize_countries
from reviewpulse.sources.googleplay import GooglePlayFetcher
from reviewpulse.utils import average_rating, now_utc

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled by user"


def default_fetchers(settings: Settings) -> Dict[Platform, CountryFetcher]:
    return {
        Platform.APPSTORE: AppStoreFetcher(settings),
        Platform.GOOGLEPLAY: GooglePlayFetcher(settings),
    }


def geo_scope_for(strategy: CollectionStrategy, countries: List[str]) -> str:
    """Profile name stamped on reviews produced by a job."""
    if strategy.type == StrategyType.COMPLETE:
        return "all"
    if strategy.type == StrategyType.INCREMENTAL:
        return "incremental"
    if len(countries) == 1:
        return countries[0]
    return "targeted"


def build_stats(
    outcome: CollectionOutcome,
    unique: List[Review],
    total_countries: int,
    duration_seconds: float,
) -> CollectionStats:
    raw_count = len(outcome.reviews)
    return CollectionStats(
        total_countries=total_countries,
        successful_countries=len(outcome.successful_countries),
        total_reviews_collected=raw_count,
        unique_reviews=len(unique),
        deduplication_rate=deduplication_rate(raw_count, len(unique)),
        total_errors=len(outcome.errors),
        country_breakdown=dict(outcome.country_stats),
        average_rating=average_rating(unique),
        duration_seconds=round(duration_seconds, 2),
    )


class CollectionJobManager:
    """Creates, tracks, cancels and sweeps collection jobs."""

    def __init__(
        self,
        store: ReviewStore,
        settings: Settings | None = None,
        fetchers: Optional[Mapping[Platform, CountryFetcher]] = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.fetchers: Dict[Platform, CountryFetcher] = dict(
            fetchers if fetchers is not None else default_fetchers(self.settings)
        )
        self._jobs: Dict[str, CollectionJob] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    # ---- planning ----

    def plan(self, strategy: CollectionStrategy) -> Tuple[List[str], int]:
        """
        Resolve a strategy into the countries to visit and the page cap.

        Raises:
            InvalidRequestError: targeted strategy without countries
        """
        if strategy.type == StrategyType.COMPLETE:
            countries = normalize_countries(strategy.countries or MAJOR_COUNTRIES)
            max_pages = self.settings.max_pages_per_country
        elif strategy.type == StrategyType.INCREMENTAL:
            countries = normalize_countries(strategy.countries or INCREMENTAL_COUNTRIES)
            max_pages = self.settings.incremental_max_pages
        else:
            countries = normalize_countries(strategy.countries or [])
            max_pages = self.settings.max_pages_per_country
            if not countries:
                raise InvalidRequestError("Targeted collection requires at least one country")

        if strategy.max_pages_per_country:
            max_pages = strategy.max_pages_per_country
        return countries, max_pages

    # ---- operations ----

    def find_active_job(self, app_id: str, platform: Platform) -> Optional[CollectionJob]:
        for job in self._jobs.values():
            if (job.app_id == app_id and job.platform == platform
                    and job.status in (JobStatus.PENDING, JobStatus.RUNNING)):
                return job
        return None

    async def create_job(
        self,
        app_id: str,
        platform: Platform,
        strategy: CollectionStrategy | None = None,
    ) -> str:
        """
        Register a collection job and start it in the background.

        If a job for the same app and platform is still pending or running,
        its id is returned and nothing new is started.

        Args:
            app_id: Store identifier of the app
            platform: Store to collect from
            strategy: Which countries and how many pages

        Returns:
            Job id; poll get_status for progress
        """
        strategy = strategy or CollectionStrategy()

        existing = self.find_active_job(app_id, platform)
        if existing is not None:
            logger.info("Collection already in progress for %s (%s): %s",
                        app_id, platform.value, existing.id)
            return existing.id

        countries, max_pages = self.plan(strategy)

        job_id = f"{platform.value}_{app_id}_{int(time.time() * 1000)}"
        while job_id in self._jobs:
            job_id += "_1"

        job = CollectionJob(
            id=job_id,
            app_id=app_id,
            platform=platform,
            strategy=strategy,
            total_countries=len(countries),
            started_at=now_utc(),
        )
        self._jobs[job_id] = job

        logger.info("Starting %s collection job %s for %s (%s)",
                    strategy.type.value, job_id, app_id, platform.value)

        task = asyncio.create_task(self._execute(job, countries, max_pages))
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))
        return job_id

    def get_status(self, job_id: str) -> Optional[CollectionJob]:
        job = self._jobs.get(job_id)
        return self._snapshot(job) if job else None

    def list_active(self) -> List[CollectionJob]:
        return [self._snapshot(job) for job in self._jobs.values()]

    def cancel(self, job_id: str) -> bool:
        """Mark a non-terminal job as cancelled. In-flight requests finish on their own."""
        job = self._jobs.get(job_id)
        if job is None or job.status.is_terminal:
            return False

        job.status = JobStatus.FAILED
        job.errors.append(CANCELLED_MESSAGE)
        job.completed_at = now_utc()
        logger.info("Collection job %s cancelled", job_id)
        return True

    def pause(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.RUNNING:
            return False

        job.status = JobStatus.PAUSED
        logger.info("Collection job %s paused", job_id)
        return True

    async def wait(self, job_id: str) -> Optional[CollectionJob]:
        """Block until the job's background task has finished."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task})
        return self.get_status(job_id)

    def sweep(self, now: datetime | None = None) -> int:
        """
        Drop finished jobs older than the retention window; returns how many.

        Terminal jobs age from completed_at; paused jobs whose task has ended
        age from started_at.
        """
        now = now or now_utc()
        cutoff = now - timedelta(hours=self.settings.job_retention_hours)
        expired = []
        for job_id, job in self._jobs.items():
            finished_at = self._finished_at(job)
            if finished_at is not None and finished_at < cutoff:
                expired.append(job_id)
        for job_id in expired:
            del self._jobs[job_id]

        logger.info("Cleaned up %d completed jobs", len(expired))
        return len(expired)

    async def run_sweeper(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sweep_interval_seconds)
            self.sweep()

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for fetcher in self.fetchers.values():
            await fetcher.close()

    # ---- execution ----

    async def _execute(self, job: CollectionJob, countries: List[str], max_pages: int) -> None:
        if job.status != JobStatus.PENDING:
            return
        job.status = JobStatus.RUNNING
        started = time.monotonic()

        try:
            fetcher = self.fetchers[job.platform]
            scheduler = BatchScheduler(fetcher, self.settings)
            outcome = await scheduler.collect(
                job.app_id,
                countries,
                per_country_page_limit=max_pages,
                progress_callback=lambda country, count, percent: self._on_progress(
                    job, country, count, percent
                ),
                should_continue=lambda: job.status == JobStatus.RUNNING,
                geo_scope=geo_scope_for(job.strategy, countries),
            )
        except Exception as e:
            logger.error("Collection job %s failed: %s", job.id, e)
            self._fail(job, str(e) or type(e).__name__)
            return

        if job.status == JobStatus.FAILED:
            logger.info("Discarding results of cancelled job %s", job.id)
            return

        job.errors.extend(outcome.errors)
        if countries and not outcome.successful_countries:
            self._fail(job, "No country could be processed")
            return

        unique = dedupe_reviews(outcome.reviews)
        stats = build_stats(outcome, unique, len(countries), time.monotonic() - started)

        try:
            loop = asyncio.get_running_loop()
            created = await loop.run_in_executor(
                None, persist_reviews, self.store, job.app_id, job.platform, unique
            )
        except Exception as e:
            logger.error("Collection job %s could not persist results: %s", job.id, e)
            self._fail(job, str(e) or type(e).__name__)
            return

        logger.info("Saved %d new reviews out of %d for job %s", created, len(unique), job.id)
        logger.info("Deduplication for job %s: %d -> %d (%.1f%% duplicates removed)",
                    job.id, stats.total_reviews_collected, stats.unique_reviews,
                    stats.deduplication_rate)

        if job.status.is_terminal:
            return

        job.stats = stats
        job.reviews_collected = len(unique)
        if job.status == JobStatus.PAUSED and outcome.stopped_early:
            logger.info("Collection job %s paused with %d reviews", job.id, len(unique))
            return

        job.status = JobStatus.COMPLETED
        job.progress = 100
        job.completed_at = now_utc()
        logger.info("Collection job %s completed: %d reviews collected", job.id, len(unique))

    def _on_progress(self, job: CollectionJob, country: str, count: int, percent: int) -> None:
        if job.status.is_terminal:
            return
        job.progress = max(job.progress, percent)
        job.completed_countries += 1
        job.reviews_collected += count
        logger.info("Job %s progress: %d%% (%s: %d reviews)",
                    job.id, job.progress, country.upper(), count)

    def _fail(self, job: CollectionJob, message: str) -> None:
        if job.status.is_terminal:
            return
        job.status = JobStatus.FAILED
        job.errors.append(message)
        job.completed_at = now_utc()

    def _finished_at(self, job: CollectionJob) -> Optional[datetime]:
        if job.status.is_terminal:
            return job.completed_at
        if job.status == JobStatus.PAUSED and job.id not in self._tasks:
            return job.started_at
        return None

    @staticmethod
    def _snapshot(job: CollectionJob) -> CollectionJob:
        return dataclasses.replace(job, errors=list(job.errors))
