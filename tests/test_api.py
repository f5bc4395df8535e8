"""
Tests for the collection service and the HTTP routes.
"""

import time

import pytest
from fastapi.testclient import TestClient

from reviewpulse.errors import InvalidRequestError, JobNotCancellableError, JobNotFoundError
from reviewpulse.main import create_app
from reviewpulse.models import CollectionStrategy, JobStatus, Platform, StrategyType
from reviewpulse.services.api import CollectionService, parse_platform, parse_strategy
from reviewpulse.services.corpus import CorpusService
from reviewpulse.services.jobs import CollectionJobManager

from helpers import APP_ID, ScriptedFetcher, make_review

RESULTS = {
    "us": [make_review("Fast and reliable", country="us"), make_review("Too many ads", author="Zed", rating=2)],
    "gb": [make_review("Fast and reliable", country="gb", source_id="gb-dup")],
}


def build_service(settings, store, delay=0.0):
    fetcher = ScriptedFetcher(settings, RESULTS, delay=delay)
    fetchers = {Platform.APPSTORE: fetcher}
    service = CollectionService(CollectionJobManager(store, settings, fetchers))
    corpus = CorpusService(store, fetchers, settings)
    return service, corpus, fetcher


def collect_body(strategy_type="targeted", countries=("us", "gb"), platform="appstore"):
    return {
        "appId": APP_ID,
        "platform": platform,
        "strategy": {"type": strategy_type, "countries": list(countries)},
    }


def poll_status(client, job_id, status, attempts=300):
    for _ in range(attempts):
        body = client.get("/reviews/collect", params={"jobId": job_id}).json()
        if body["status"] == status:
            return body
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} never reached {status}")


class TestParsing:
    """Tests for request parsing helpers."""

    def test_parse_platform(self):
        assert parse_platform("AppStore") == Platform.APPSTORE
        assert parse_platform("googleplay") == Platform.GOOGLEPLAY
        with pytest.raises(InvalidRequestError):
            parse_platform("windows")
        with pytest.raises(InvalidRequestError):
            parse_platform(None)

    def test_parse_strategy_defaults_to_complete(self):
        strategy = parse_strategy()
        assert strategy.type == StrategyType.COMPLETE
        assert strategy.countries is None

    def test_parse_strategy_rejects_bad_input(self):
        with pytest.raises(InvalidRequestError):
            parse_strategy("everything")
        with pytest.raises(InvalidRequestError):
            parse_strategy("targeted", [])
        with pytest.raises(InvalidRequestError):
            parse_strategy("complete", max_pages_per_country=0)


class TestCollectionService:
    """Tests for CollectionService error translation."""

    @pytest.mark.asyncio
    async def test_missing_parameters(self, fast_settings, store):
        service, _, _ = build_service(fast_settings, store)
        with pytest.raises(InvalidRequestError):
            await service.start_collection("", "appstore")
        with pytest.raises(InvalidRequestError):
            await service.start_collection(APP_ID, None)
        with pytest.raises(InvalidRequestError):
            await service.start_collection(APP_ID, "blackberry")

    @pytest.mark.asyncio
    async def test_start_then_duplicate(self, fast_settings, store):
        service, _, _ = build_service(fast_settings, store, delay=0.05)
        strategy = CollectionStrategy(type=StrategyType.TARGETED, countries=["us"])

        started = await service.start_collection(APP_ID, "appstore", strategy)
        again = await service.start_collection(APP_ID, "appstore")

        assert started.message == "Collection job started"
        assert again.message == "Collection already in progress"
        assert again.job_id == started.job_id
        assert again.strategy == strategy

        job = await service.manager.wait(started.job_id)
        assert job.status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_job(self, fast_settings, store):
        service, _, _ = build_service(fast_settings, store)
        with pytest.raises(JobNotFoundError):
            service.get_job_status("missing")
        with pytest.raises(JobNotFoundError):
            service.cancel_job("missing")
        with pytest.raises(JobNotFoundError):
            service.pause_job("missing")

    @pytest.mark.asyncio
    async def test_cancel_finished_job(self, fast_settings, store):
        service, _, _ = build_service(fast_settings, store)
        result = await service.start_collection(
            APP_ID, "appstore", CollectionStrategy(type=StrategyType.TARGETED, countries=["us"])
        )
        await service.manager.wait(result.job_id)

        with pytest.raises(JobNotCancellableError):
            service.cancel_job(result.job_id)
        with pytest.raises(JobNotCancellableError):
            service.pause_job(result.job_id)


class TestRoutes:
    """Tests for the HTTP layer."""

    def test_health(self, fast_settings, store):
        service, corpus, _ = build_service(fast_settings, store)
        with TestClient(create_app(fast_settings, service, corpus)) as client:
            response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_collect_and_poll(self, fast_settings, store):
        service, corpus, _ = build_service(fast_settings, store)
        with TestClient(create_app(fast_settings, service, corpus)) as client:
            response = client.post("/reviews/collect", json=collect_body())
            assert response.status_code == 200
            started = response.json()
            assert started["message"] == "Collection job started"
            assert started["strategy"]["countries"] == ["us", "gb"]

            job = poll_status(client, started["jobId"], "completed")
            listing = client.get("/reviews/collect").json()

        assert job["progress"] == 100
        assert job["completedCountries"] == 2
        assert job["reviewsCollected"] == 2
        assert job["stats"]["totalReviewsCollected"] == 3
        assert job["stats"]["uniqueReviewsAfterDeduplication"] == 2
        assert job["stats"]["deduplicationRate"] == 33.3
        assert job["stats"]["countryBreakdown"]["gb"]["reviews"] == 1
        assert [j["id"] for j in listing["activeJobs"]] == [started["jobId"]]

    @pytest.mark.parametrize("body", [
        {"platform": "appstore"},
        {"appId": APP_ID},
        {"appId": APP_ID, "platform": "symbian"},
        collect_body(strategy_type="galactic"),
        collect_body(countries=()),
    ])
    def test_collect_rejects_bad_requests(self, fast_settings, store, body):
        service, corpus, _ = build_service(fast_settings, store)
        with TestClient(create_app(fast_settings, service, corpus)) as client:
            response = client.post("/reviews/collect", json=body)
        assert response.status_code == 400

    def test_duplicate_submission_returns_running_job(self, fast_settings, store):
        service, corpus, _ = build_service(fast_settings, store, delay=10)
        with TestClient(create_app(fast_settings, service, corpus)) as client:
            first = client.post("/reviews/collect", json=collect_body()).json()
            second = client.post("/reviews/collect", json=collect_body(countries=("de",))).json()

        assert second["jobId"] == first["jobId"]
        assert second["message"] == "Collection already in progress"

    def test_cancel_running_job(self, fast_settings, store):
        service, corpus, _ = build_service(fast_settings, store, delay=10)
        with TestClient(create_app(fast_settings, service, corpus)) as client:
            job_id = client.post("/reviews/collect", json=collect_body()).json()["jobId"]

            response = client.delete("/reviews/collect", params={"jobId": job_id})
            assert response.status_code == 200
            assert response.json()["message"] == "Job cancelled successfully"

            job = client.get("/reviews/collect", params={"jobId": job_id}).json()
            again = client.delete("/reviews/collect", params={"jobId": job_id})

        assert job["status"] == "failed"
        assert job["errors"] == ["Cancelled by user"]
        assert again.status_code == 409

    def test_job_routes_errors(self, fast_settings, store):
        service, corpus, _ = build_service(fast_settings, store)
        with TestClient(create_app(fast_settings, service, corpus)) as client:
            assert client.get("/reviews/collect", params={"jobId": "nope"}).status_code == 404
            assert client.delete("/reviews/collect", params={"jobId": "nope"}).status_code == 404
            assert client.delete("/reviews/collect").status_code == 400
            assert client.post("/reviews/collect/pause").status_code == 400
            assert client.post("/reviews/collect/pause", params={"jobId": "nope"}).status_code == 404

            job_id = client.post("/reviews/collect", json=collect_body()).json()["jobId"]
            poll_status(client, job_id, "completed")
            assert client.post("/reviews/collect/pause", params={"jobId": job_id}).status_code == 409

    def test_get_reviews(self, fast_settings, store):
        service, corpus, fetcher = build_service(fast_settings, store)
        params = {"appId": APP_ID, "platform": "appstore", "geoScope": "us"}
        with TestClient(create_app(fast_settings, service, corpus)) as client:
            first = client.get("/reviews", params=params)
            second = client.get("/reviews", params=params)

        assert first.status_code == 200
        body = first.json()
        assert body["totalCount"] == 2
        assert body["fromCache"] is False
        assert body["averageRating"] == 3.5
        assert {r["appId"] for r in body["reviews"]} == {APP_ID}
        assert second.json()["fromCache"] is True
        assert fetcher.calls == ["us"]

    def test_get_reviews_rejects_bad_params(self, fast_settings, store):
        service, corpus, _ = build_service(fast_settings, store)
        with TestClient(create_app(fast_settings, service, corpus)) as client:
            bad_platform = client.get("/reviews", params={"appId": APP_ID, "platform": "palm"})
            bad_scope = client.get("/reviews", params={"appId": APP_ID, "platform": "appstore",
                                                       "geoScope": "moon"})
            bad_window = client.get("/reviews", params={"appId": APP_ID, "platform": "appstore",
                                                        "geoScope": "us", "dateFilter": "forever"})

        assert bad_platform.status_code == 400
        assert bad_scope.status_code == 400
        assert bad_window.status_code == 400


class TestAppWiring:
    """Tests for create_app defaults."""

    def test_default_corpus_shares_manager_store(self, fast_settings, store):
        service, _, _ = build_service(fast_settings, store)

        app = create_app(fast_settings, service)

        assert app.state.corpus.store is service.manager.store
        assert app.state.corpus.fetchers is service.manager.fetchers
