"""
Pytest configuration and fixtures for the review collection test suite.
"""

import pytest

from reviewpulse.config import Settings
from reviewpulse.services.storage import InMemoryReviewStore


@pytest.fixture
def fast_settings():
    """Settings with every delay disabled."""
    return Settings(
        min_request_delay=0,
        max_request_delay=0,
        batch_delay=0,
        error_backoff=0,
        countries_per_batch=2,
        max_pages_per_country=20,
        incremental_max_pages=5,
        max_retries_per_page=3,
        database_path="",
    )


@pytest.fixture
def store():
    return InMemoryReviewStore()
