# src/storage/daily_history.py

"""Folds aged fine-grained entries into per-item daily aggregates."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from src.config.settings import Settings
from src.models.price_snapshot import (
    DailyAggregate,
    DailyHistoryDocument,
    PriceSnapshotEntry,
    round_half_up,
)
from src.storage.kv_store import KVReadError, KVStore
from src.storage.price_history import PriceHistoryStore

logger = logging.getLogger("gersang_market.daily")


@dataclass
class ItemSamples:
    """Per-item samples gathered from one day's entries."""

    min_prices: list[int] = field(
        default_factory=lambda: list[int]()
    )
    quantities: list[int] = field(
        default_factory=lambda: list[int]()
    )


@dataclass
class FoldResult:
    """Outcome of a single aggregation pass."""

    folded_dates: list[str] = field(
        default_factory=lambda: list[str]()
    )
    created: int = 0
    skipped: int = 0
    persisted: bool = False


def collect_item_samples(
    entries: list[PriceSnapshotEntry],
) -> dict[str, ItemSamples]:
    """Group min-price and quantity samples by item name."""
    samples: dict[str, ItemSamples] = defaultdict(ItemSamples)
    for entry in entries:
        for name, info in entry.prices.items():
            samples[name].min_prices.append(info.min_price)
            samples[name].quantities.append(info.quantity)
    return dict(samples)


def aggregate_day(day: str, samples: ItemSamples) -> DailyAggregate:
    """Summarise one item's samples for *day*.

    ``total_quantity`` is the day's largest listed quantity; summing
    would count a listing once for every sample it survived.
    """
    prices = samples.min_prices
    return DailyAggregate(
        date=day,
        min_price=min(prices),
        max_price=max(prices),
        avg_price=round_half_up(sum(prices) / len(prices)),
        total_quantity=max(samples.quantities),
    )


class DailyHistoryStore:
    """Long-horizon daily aggregates, one list per item."""

    def __init__(
        self,
        store: KVStore,
        history: PriceHistoryStore,
        key: str | None = None,
        retention_days: int | None = None,
        max_daily_entries: int | None = None,
    ) -> None:
        self._store = store
        self._history = history
        self._key = key or Settings.DAILY_HISTORY_KEY
        self._retention_days = (
            retention_days
            if retention_days is not None
            else Settings.RETENTION_DAYS
        )
        self._max_daily_entries = (
            max_daily_entries or Settings.MAX_DAILY_ENTRIES
        )

    async def read(self) -> DailyHistoryDocument:
        """Return the stored daily document, or an empty one."""
        try:
            return await self._load()
        except KVReadError:
            logger.warning("Daily history unreadable, treating as empty")
            return DailyHistoryDocument.empty()

    async def _load(self) -> DailyHistoryDocument:
        raw = await self._store.get(self._key)
        if raw is None:
            return DailyHistoryDocument.empty()
        try:
            return DailyHistoryDocument.from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning(
                "Malformed daily document under '%s': %s",
                self._key,
                exc,
            )
            return DailyHistoryDocument.empty()

    async def get_item_daily_history(
        self, item_name: str,
    ) -> list[DailyAggregate]:
        """Return one item's daily aggregates, oldest first."""
        daily = await self.read()
        return list(daily.items.get(item_name, []))

    async def fold_aged_entries(
        self, today: date | None = None,
    ) -> FoldResult:
        """Aggregate fine-grained entries older than the retention cutoff.

        Dates already aggregated for an item are skipped, so repeated
        calls never duplicate or rewrite an aggregate.  Folded entries
        stay in the fine-grained document until its size cap evicts them.
        """
        result = FoldResult()
        if not self._store.available:
            logger.debug("Store unavailable, fold skipped")
            return result

        current = today or datetime.now(timezone.utc).date()
        cutoff = (
            current - timedelta(days=self._retention_days)
        ).isoformat()

        history = await self._history.read()
        by_date: dict[str, list[PriceSnapshotEntry]] = defaultdict(list)
        for entry in history.entries:
            if entry.date < cutoff:
                by_date[entry.date].append(entry)
        if not by_date:
            logger.debug("No entries older than %s to fold", cutoff)
            return result

        try:
            daily = await self._load()
        except KVReadError:
            logger.warning("Daily history unreadable, fold skipped")
            return result
        for day in sorted(by_date):
            result.folded_dates.append(day)
            for name, samples in collect_item_samples(by_date[day]).items():
                series = daily.items.setdefault(name, [])
                if any(agg.date == day for agg in series):
                    result.skipped += 1
                    continue
                series.append(aggregate_day(day, samples))
                series.sort(key=lambda agg: agg.date)
                if len(series) > self._max_daily_entries:
                    del series[: len(series) - self._max_daily_entries]
                result.created += 1

        if result.created == 0:
            logger.debug(
                "Dates %s already aggregated", ", ".join(result.folded_dates),
            )
            return result

        daily.last_updated = datetime.now(timezone.utc)
        result.persisted = await self._store.set(self._key, daily.to_dict())
        if result.persisted:
            logger.info(
                "Folded %d daily aggregates from %d dates (cutoff %s)",
                result.created,
                len(result.folded_dates),
                cutoff,
            )
        else:
            logger.warning("Daily history write failed, fold not persisted")
        return result
