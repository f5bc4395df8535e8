"""
Review deduplication, per country and across the combined collection.
"""
from __future__ import annotations

from typing import Iterable, List

from reviewpulse.models import Review


class LocalDeduplicator:
    """Tracks source ids and fingerprints already accepted within one country."""

    def __init__(self) -> None:
        self.seen_ids: set[str] = set()
        self.seen_fingerprints: set[str] = set()

    def is_duplicate(self, review: Review) -> bool:
        return (
            review.source_id in self.seen_ids
            or review.content_fingerprint in self.seen_fingerprints
        )

    def add(self, review: Review) -> bool:
        """Record the review; return False if it was already seen."""
        if self.is_duplicate(review):
            return False
        self.seen_ids.add(review.source_id)
        self.seen_fingerprints.add(review.content_fingerprint)
        return True

    def filter(self, reviews: Iterable[Review]) -> List[Review]:
        return [review for review in reviews if self.add(review)]


def dedupe_reviews(reviews: Iterable[Review]) -> List[Review]:
    """
    Remove reviews whose content fingerprint was already seen.

    Args:
        reviews: Reviews in collection order

    Returns:
        First occurrence of each fingerprint, input order preserved
    """
    seen: set[str] = set()
    unique: List[Review] = []

    for review in reviews:
        if review.content_fingerprint in seen:
            continue
        seen.add(review.content_fingerprint)
        unique.append(review)

    return unique


def deduplication_rate(raw_count: int, unique_count: int) -> float:
    """Share of raw reviews removed as duplicates, in percent."""
    if raw_count <= 0:
        return 0.0
    return round((raw_count - unique_count) / raw_count * 100, 1)
