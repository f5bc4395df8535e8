"""
Main FastAPI application and routing layer.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from reviewpulse.config import Settings, configure_logging, get_settings
from reviewpulse.errors import (
    CollectionError,
    InvalidRequestError,
    JobNotCancellableError,
    JobNotFoundError,
)
from reviewpulse.schemas import (
    ActiveJobsResponse,
    CollectionJobOut,
    MessageResponse,
    ReviewListResponse,
    ReviewOut,
    StartCollectionRequest,
    StartCollectionResponse,
    StrategyIn,
)
from reviewpulse.services.api import CollectionService, parse_platform, parse_strategy
from reviewpulse.services.corpus import CorpusService
from reviewpulse.services.jobs import CollectionJobManager
from reviewpulse.services.storage import create_store
from reviewpulse.utils import average_rating, now_utc

logger = logging.getLogger(__name__)


def to_http_error(error: CollectionError) -> HTTPException:
    """
    Map a collection API error to an HTTP error.

    Args:
        error: Error raised by the service layer

    Returns:
        HTTPException with 400, 404 or 409 status
    """
    if isinstance(error, InvalidRequestError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, JobNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, JobNotCancellableError):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


def create_app(
    settings: Settings | None = None,
    service: Optional[CollectionService] = None,
    corpus: Optional[CorpusService] = None,
) -> FastAPI:
    """Build the API around a collection service; defaults are wired from settings."""
    settings = settings or get_settings()

    if service is None:
        manager = CollectionJobManager(create_store(settings.database_path), settings)
        service = CollectionService(manager)
    if corpus is None:
        # share the job manager's store and fetchers
        corpus = CorpusService(service.manager.store, service.manager.fetchers, settings)

    app = FastAPI(
        title="App Review Collection API",
        version="0.1.0",
        description="Multi-region app review collection with deduplication",
    )
    app.state.service = service
    app.state.corpus = corpus

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def start_sweeper():
        """Start the periodic cleanup of finished jobs."""
        app.state.sweeper = asyncio.create_task(service.manager.run_sweeper())
        logger.info("Job sweeper started (every %.0fs)", settings.sweep_interval_seconds)

    @app.on_event("shutdown")
    async def stop_background_work():
        sweeper = getattr(app.state, "sweeper", None)
        if sweeper is not None:
            sweeper.cancel()
        await service.manager.shutdown()

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "ok",
            "as_of": now_utc().isoformat(),
            "service": "review-collection-api",
        }

    @app.post("/reviews/collect", response_model=StartCollectionResponse)
    async def start_collection(request: StartCollectionRequest):
        """
        Start a background collection job, or return the one already running.
        """
        strategy_in = request.strategy or StrategyIn()
        try:
            strategy = parse_strategy(
                strategy_in.type, strategy_in.countries, strategy_in.max_pages_per_country
            )
            result = await service.start_collection(request.app_id, request.platform, strategy)
        except CollectionError as e:
            raise to_http_error(e)

        return StartCollectionResponse(
            job_id=result.job_id,
            status=result.status.value,
            message=result.message,
            strategy=StrategyIn(
                type=result.strategy.type.value,
                countries=result.strategy.countries,
                max_pages_per_country=result.strategy.max_pages_per_country,
            ),
        )

    @app.get("/reviews/collect")
    async def get_collection_status(job_id: Optional[str] = Query(None, alias="jobId")):
        """Status of one job, or of every tracked job when no id is given."""
        if job_id:
            try:
                job = service.get_job_status(job_id)
            except CollectionError as e:
                raise to_http_error(e)
            return CollectionJobOut.from_job(job).model_dump(by_alias=True, mode="json")

        jobs = [CollectionJobOut.from_job(job) for job in service.list_active_jobs()]
        return ActiveJobsResponse(active_jobs=jobs).model_dump(by_alias=True, mode="json")

    @app.delete("/reviews/collect", response_model=MessageResponse)
    async def cancel_collection(job_id: Optional[str] = Query(None, alias="jobId")):
        if not job_id:
            raise HTTPException(status_code=400, detail="Missing jobId parameter")
        try:
            service.cancel_job(job_id)
        except CollectionError as e:
            raise to_http_error(e)
        return MessageResponse(message="Job cancelled successfully")

    @app.post("/reviews/collect/pause", response_model=MessageResponse)
    async def pause_collection(job_id: Optional[str] = Query(None, alias="jobId")):
        if not job_id:
            raise HTTPException(status_code=400, detail="Missing jobId parameter")
        try:
            service.pause_job(job_id)
        except CollectionError as e:
            raise to_http_error(e)
        return MessageResponse(message="Job paused")

    @app.get("/reviews", response_model=ReviewListResponse)
    async def get_reviews(
        app_id: str = Query(..., alias="appId", min_length=1),
        platform: str = Query(...),
        geo_scope: str = Query("major", alias="geoScope"),
        date_filter: str = Query("all", alias="dateFilter"),
        force_refresh: bool = Query(False, alias="forceRefresh"),
    ):
        """
        Deduplicated review corpus for an app, collected on demand when stale.
        """
        try:
            store = parse_platform(platform)
            result = await corpus.get_reviews(app_id, store, geo_scope, force_refresh)
            reviews = result.reviews
            if date_filter != "all":
                window = {review.source_id for review in
                          await corpus.get_filtered_reviews(app_id, store, date_filter)}
                reviews = [review for review in reviews if review.source_id in window]
        except CollectionError as e:
            raise to_http_error(e)

        return ReviewListResponse(
            reviews=[ReviewOut.from_review(review) for review in reviews],
            total_count=len(reviews),
            average_rating=average_rating(reviews),
            from_cache=result.from_cache,
        )

    return app


configure_logging()
app = create_app()


if __name__ == "__main__":
    # For development
    import uvicorn
    uvicorn.run("reviewpulse.main:app", host="0.0.0.0", port=8000, reload=True)
