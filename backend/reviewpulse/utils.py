"""
Shared utility functions for the review collection service.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from reviewpulse.models import Review


def now_utc() -> datetime:
    """
    Get current UTC datetime with timezone information.

    Returns:
        Current UTC datetime
    """
    return datetime.now(timezone.utc)


def average_rating(reviews: Iterable[Review]) -> float:
    """
    Mean star rating rounded to one decimal.

    Args:
        reviews: Reviews to average

    Returns:
        Average rating, 0.0 for an empty input
    """
    ratings = [review.rating for review in reviews]
    if not ratings:
        return 0.0
    return round(sum(ratings) / len(ratings), 1)
