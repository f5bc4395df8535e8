"""
Multi-country collection coordinator.

Countries are processed in small batches: countries within a batch are fetched
concurrently, batches run one after another with a pause in between.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from reviewpulse.config import Settings, get_settings
from reviewpulse.models import CountryResult, CountryStats, Review
from reviewpulse.sources.base import CountryFetcher

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int, int], None]


@dataclass
class CollectionOutcome:
    """Raw output of a collection pass, cross-country duplicates included."""

    reviews: List[Review] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    country_stats: Dict[str, CountryStats] = field(default_factory=dict)
    successful_countries: List[str] = field(default_factory=list)
    stopped_early: bool = False


def normalize_countries(countries: Iterable[str]) -> List[str]:
    """Lowercase country codes and drop repeats, keeping first occurrence."""
    seen: set[str] = set()
    normalized: List[str] = []
    for country in countries:
        code = (country or "").strip().lower()
        if not code or code in seen:
            continue
        seen.add(code)
        normalized.append(code)
    return normalized


def make_batches(countries: List[str], batch_size: int) -> List[List[str]]:
    size = max(1, batch_size)
    return [countries[i:i + size] for i in range(0, len(countries), size)]


class BatchScheduler:
    """Runs a CountryFetcher over many countries with bounded upstream load."""

    def __init__(self, fetcher: CountryFetcher, settings: Settings | None = None) -> None:
        self.fetcher = fetcher
        self.settings = settings or get_settings()

    async def collect(
        self,
        app_id: str,
        countries: Iterable[str],
        per_country_page_limit: int | None = None,
        progress_callback: Optional[ProgressCallback] = None,
        should_continue: Optional[Callable[[], bool]] = None,
        geo_scope: str | None = None,
    ) -> CollectionOutcome:
        """
        Collect reviews for an app from several countries.

        Args:
            app_id: Store identifier of the app
            countries: Country codes to visit
            per_country_page_limit: Page cap per country
            progress_callback: Called as (country, review_count, percent) once per country
            should_continue: Consulted before every batch after the first
            geo_scope: Profile name stamped on produced reviews

        Returns:
            CollectionOutcome with raw reviews, errors and per-country stats
        """
        targets = normalize_countries(countries)
        batches = make_batches(targets, self.settings.countries_per_batch)
        outcome = CollectionOutcome()
        processed = 0

        logger.info("Starting collection for %s: %d countries in %d batches (%s)",
                    app_id, len(targets), len(batches), ", ".join(targets).upper())

        for index, batch in enumerate(batches, start=1):
            if index > 1 and should_continue is not None and not should_continue():
                logger.info("Collection for %s stopped before batch %d/%d",
                            app_id, index, len(batches))
                outcome.stopped_early = True
                break

            logger.info("Processing batch %d/%d: %s", index, len(batches), ", ".join(batch).upper())

            results = await asyncio.gather(
                *(
                    self.fetcher.fetch_country(
                        app_id,
                        country,
                        max_pages=per_country_page_limit,
                        max_retries=self.settings.max_retries_per_page,
                        geo_scope=geo_scope,
                    )
                    for country in batch
                ),
                return_exceptions=True,
            )

            for country, result in zip(batch, results):
                processed += 1
                review_count = self._record(outcome, country, result)

                if progress_callback is not None:
                    percent = int(processed / len(targets) * 100)
                    progress_callback(country, review_count, percent)

            if index < len(batches):
                logger.info("Waiting %.1fs before next batch", self.settings.batch_delay)
                await asyncio.sleep(self.settings.batch_delay)

        logger.info("Collection for %s finished: %d raw reviews, %d errors",
                    app_id, len(outcome.reviews), len(outcome.errors))
        return outcome

    @staticmethod
    def _record(outcome: CollectionOutcome, country: str, result: CountryResult | BaseException) -> int:
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            message = f"Failed to process {country}: {result}"
            logger.error(message)
            outcome.errors.append(message)
            outcome.country_stats[country] = CountryStats(reviews=0, pages=0, errors=1)
            return 0

        outcome.reviews.extend(result.reviews)
        outcome.errors.extend(result.errors)
        outcome.country_stats[country] = CountryStats(
            reviews=len(result.reviews),
            pages=result.pages_processed,
            errors=len(result.errors),
        )
        outcome.successful_countries.append(country)
        return len(result.reviews)
