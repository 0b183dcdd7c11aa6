# src/services/price_collector.py

"""Runs one fetch cycle: scrape every catalog item, then record it."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from src.config.settings import Settings
from src.models.catalog import get_all_unique_items
from src.models.price_snapshot import ItemPrice, PriceSnapshotEntry
from src.scrapers.base_scraper import BaseScraper, CircuitBreaker
from src.scrapers.market_scraper import MarketScraper
from src.storage.price_history import PriceHistoryStore

logger = logging.getLogger("gersang_market.collector")

ScraperFactory = Callable[[CircuitBreaker], BaseScraper]


@dataclass
class CollectResult:
    """Outcome of a single fetch cycle."""

    fetched_at: datetime
    prices: dict[str, ItemPrice] = field(
        default_factory=lambda: dict[str, ItemPrice]()
    )
    saved_entry: PriceSnapshotEntry | None = None
    errors: list[str] = field(
        default_factory=lambda: list[str]()
    )

    @property
    def priced_count(self) -> int:
        """Items with at least one listing."""
        return sum(1 for p in self.prices.values() if p.min_price > 0)


class PriceCollector:
    """Coordinates concurrent item fetches and the history write.

    Each item is fetched on a worker thread with its own scraper, so
    blocking HTTP never stalls the event loop.  All scrapers of one
    cycle share a circuit breaker.
    """

    def __init__(
        self,
        history: PriceHistoryStore,
        scraper_factory: ScraperFactory = MarketScraper,
        max_workers: int | None = None,
    ) -> None:
        self._history = history
        self._scraper_factory = scraper_factory
        self._max_workers = max_workers or Settings.MAX_FETCH_WORKERS

    async def _fetch_all(
        self, items: list[str],
    ) -> tuple[dict[str, ItemPrice], list[str]]:
        semaphore = asyncio.Semaphore(self._max_workers)
        breaker = CircuitBreaker()

        async def run_one(item_name: str) -> ItemPrice | None:
            async with semaphore:
                scraper = self._scraper_factory(breaker)
                return await asyncio.to_thread(
                    scraper.fetch_item_price, item_name
                )

        results = await asyncio.gather(
            *(run_one(item) for item in items),
            return_exceptions=True,
        )

        prices: dict[str, ItemPrice] = {}
        errors: list[str] = []
        for item, outcome in zip(items, results):
            if isinstance(outcome, ItemPrice):
                prices[item] = outcome
            elif isinstance(outcome, Exception):
                errors.append(f"{item}: {outcome}")
                logger.error(
                    "Fetch error for '%s': %s",
                    item,
                    outcome,
                    exc_info=outcome,
                )
            else:
                errors.append(f"{item}: no data")
        return prices, errors

    async def collect(
        self,
        items: list[str] | None = None,
        save: bool = True,
    ) -> CollectResult:
        """Fetch *items* (default: the whole catalog) and save a snapshot."""
        targets = items if items is not None else get_all_unique_items()
        result = CollectResult(fetched_at=datetime.now(timezone.utc))
        result.prices, result.errors = await self._fetch_all(targets)
        logger.info(
            "Fetched %d/%d items (%d priced, %d errors)",
            len(result.prices),
            len(targets),
            result.priced_count,
            len(result.errors),
        )

        if save and result.prices:
            result.saved_entry = await self._history.save(
                result.prices, saved_at=result.fetched_at,
            )
        return result
