# src/services/history_query.py

"""Combines fine-grained and daily series for display and charting."""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from src.config.settings import Settings
from src.models.price_snapshot import (
    DailyAggregate,
    ItemPriceSample,
    round_half_up,
)
from src.storage.daily_history import DailyHistoryStore
from src.storage.price_history import PriceHistoryStore

logger = logging.getLogger("gersang_market.query")


@dataclass
class ItemHistoryBundle:
    """Both resolutions of one item's history."""

    detailed: list[ItemPriceSample] = field(
        default_factory=lambda: list[ItemPriceSample]()
    )
    daily: list[DailyAggregate] = field(
        default_factory=lambda: list[DailyAggregate]()
    )


@dataclass
class PriceStats:
    """Rolling statistics over a price series."""

    historical_high: float = 0
    historical_low: float = 0
    high_sample: ItemPriceSample | None = None
    low_sample: ItemPriceSample | None = None
    weighted_average: int = 0
    sample_count: int = 0


async def get_item_history_with_daily(
    history: PriceHistoryStore,
    daily: DailyHistoryStore,
    item_name: str,
) -> ItemHistoryBundle:
    """Read an item's fine-grained and daily series concurrently."""
    detailed, aggregates = await asyncio.gather(
        history.get_item_history(item_name),
        daily.get_item_daily_history(item_name),
    )
    logger.debug(
        "History for '%s': %d detailed, %d daily",
        item_name,
        len(detailed),
        len(aggregates),
    )
    return ItemHistoryBundle(detailed=detailed, daily=aggregates)


def daily_to_sample(aggregate: DailyAggregate) -> ItemPriceSample:
    """Pin a daily aggregate to noon of its date as a pseudo-sample."""
    day = date.fromisoformat(aggregate.date)
    return ItemPriceSample(
        timestamp=datetime(
            day.year, day.month, day.day, 12, tzinfo=timezone.utc,
        ),
        date=aggregate.date,
        hour=12,
        minute_slot=0,
        min_price=aggregate.min_price,
        max_price=aggregate.max_price,
        avg_price=aggregate.avg_price,
        quantity=aggregate.total_quantity,
        is_daily=True,
    )


def merge_for_display(
    detailed: list[ItemPriceSample],
    daily: list[DailyAggregate],
) -> list[ItemPriceSample]:
    """Merge both resolutions into one chronological series.

    A date with fine-grained samples never also shows its daily
    aggregate.
    """
    detailed_dates = {s.date for s in detailed}
    pseudo = [
        daily_to_sample(agg)
        for agg in daily
        if agg.date not in detailed_dates
    ]
    return sorted([*pseudo, *detailed], key=lambda s: s.timestamp)


def compute_price_stats(series: list[ItemPriceSample]) -> PriceStats:
    """Historical high/low by min price and quantity-weighted average."""
    priced = [s for s in series if s.min_price > 0]
    if not priced:
        return PriceStats()

    high = low = priced[0]
    for sample in priced[1:]:
        if sample.min_price > high.min_price:
            high = sample
        if sample.min_price < low.min_price:
            low = sample

    total_quantity = sum(s.quantity for s in priced)
    weighted = (
        round_half_up(
            sum(s.avg_price * s.quantity for s in priced) / total_quantity
        )
        if total_quantity > 0
        else 0
    )
    return PriceStats(
        historical_high=high.min_price,
        historical_low=low.min_price,
        high_sample=high,
        low_sample=low,
        weighted_average=weighted,
        sample_count=len(priced),
    )


def _period_config(period: str) -> tuple[timedelta | None, int]:
    try:
        return Settings.CHART_PERIODS[period]
    except KeyError:
        valid = ", ".join(Settings.CHART_PERIODS)
        msg = f"Unknown period '{period}' (valid: {valid})"
        raise ValueError(msg) from None


def filter_by_period(
    series: list[ItemPriceSample],
    period: str,
    now: datetime | None = None,
) -> list[ItemPriceSample]:
    """Keep the samples inside the period's lookback window."""
    lookback, _ = _period_config(period)
    if lookback is None:
        return list(series)
    since = (now or datetime.now(timezone.utc)) - lookback
    return [s for s in series if s.timestamp >= since]


def downsample(
    series: list[ItemPriceSample], budget: int,
) -> list[ItemPriceSample]:
    """Reduce *series* to at most *budget* points by chunk averaging.

    Each chunk keeps its first member's time coordinates; prices are
    chunk means, so within-chunk extremes are smoothed away.
    """
    if budget < 1:
        msg = f"Point budget must be positive, got {budget}"
        raise ValueError(msg)
    if len(series) <= budget:
        return list(series)

    size = math.ceil(len(series) / budget)
    reduced: list[ItemPriceSample] = []
    for start in range(0, len(series), size):
        chunk = series[start:start + size]
        first = chunk[0]
        count = len(chunk)
        reduced.append(ItemPriceSample(
            timestamp=first.timestamp,
            date=first.date,
            hour=first.hour,
            minute_slot=first.minute_slot,
            min_price=sum(s.min_price for s in chunk) / count,
            max_price=sum(s.max_price for s in chunk) / count,
            avg_price=sum(s.avg_price for s in chunk) / count,
            quantity=round_half_up(sum(s.quantity for s in chunk) / count),
            is_daily=all(s.is_daily for s in chunk),
        ))
    return reduced


def downsample_for_period(
    series: list[ItemPriceSample],
    period: str,
    now: datetime | None = None,
) -> list[ItemPriceSample]:
    """Window *series* to *period* and fit it into the period's budget."""
    _, budget = _period_config(period)
    return downsample(filter_by_period(series, period, now), budget)
