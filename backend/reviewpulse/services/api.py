"""
Collection API used by the HTTP layer.

Validates submissions and translates manager results into typed errors.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from reviewpulse.errors import InvalidRequestError, JobNotCancellableError, JobNotFoundError
from reviewpulse.models import CollectionJob, CollectionStrategy, JobStatus, Platform, StrategyType
from reviewpulse.services.jobs import CollectionJobManager

logger = logging.getLogger(__name__)


@dataclass
class StartResult:
    job_id: str
    status: JobStatus
    message: str
    strategy: CollectionStrategy


def parse_platform(platform: Optional[str]) -> Platform:
    try:
        return Platform((platform or "").strip().lower())
    except ValueError:
        raise InvalidRequestError('Invalid platform. Must be "appstore" or "googleplay"') from None


def parse_strategy(
    strategy_type: Optional[str] = None,
    countries: Optional[Iterable[str]] = None,
    max_pages_per_country: Optional[int] = None,
) -> CollectionStrategy:
    try:
        kind = StrategyType((strategy_type or StrategyType.COMPLETE.value).strip().lower())
    except ValueError:
        raise InvalidRequestError(f"Invalid strategy type: {strategy_type}") from None

    if max_pages_per_country is not None and max_pages_per_country < 1:
        raise InvalidRequestError("maxPagesPerCountry must be positive")

    country_list = [c for c in (countries or []) if c and c.strip()]
    if kind == StrategyType.TARGETED and not country_list:
        raise InvalidRequestError("Targeted collection requires at least one country")

    return CollectionStrategy(
        type=kind,
        countries=country_list or None,
        max_pages_per_country=max_pages_per_country,
    )


class CollectionService:
    """StartCollection / GetJobStatus / ListActiveJobs / CancelJob / PauseJob."""

    def __init__(self, manager: CollectionJobManager) -> None:
        self.manager = manager

    async def start_collection(
        self,
        app_id: Optional[str],
        platform: Optional[str],
        strategy: CollectionStrategy | None = None,
    ) -> StartResult:
        if not app_id or not app_id.strip() or not platform:
            raise InvalidRequestError("Missing required parameters: appId and platform")

        app_id = app_id.strip()
        store = parse_platform(platform)
        strategy = strategy or CollectionStrategy()

        existing = self.manager.find_active_job(app_id, store)
        job_id = await self.manager.create_job(app_id, store, strategy)
        job = self.manager.get_status(job_id)

        if existing is not None:
            return StartResult(job_id, job.status, "Collection already in progress", existing.strategy)
        logger.info("Started %s collection for %s (%s)", strategy.type.value, app_id, store.value)
        return StartResult(job_id, job.status, "Collection job started", strategy)

    def get_job_status(self, job_id: str) -> CollectionJob:
        job = self.manager.get_status(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    def list_active_jobs(self) -> List[CollectionJob]:
        return self.manager.list_active()

    def cancel_job(self, job_id: str) -> bool:
        job = self.get_job_status(job_id)
        if not self.manager.cancel(job_id):
            raise JobNotCancellableError(f"Job {job_id} is already {job.status.value}")
        return True

    def pause_job(self, job_id: str) -> bool:
        job = self.get_job_status(job_id)
        if not self.manager.pause(job_id):
            raise JobNotCancellableError(f"Job {job_id} is {job.status.value} and cannot be paused")
        return True
