# tests/test_history_query.py

"""Tests for merging, statistics and downsampling of price series."""

import unittest
from datetime import datetime, timedelta, timezone

from src.models.price_snapshot import DailyAggregate, ItemPrice, ItemPriceSample
from src.services.history_query import (
    compute_price_stats,
    daily_to_sample,
    downsample,
    downsample_for_period,
    filter_by_period,
    get_item_history_with_daily,
    merge_for_display,
)
from src.storage.daily_history import DailyHistoryStore
from src.storage.kv_store import MemoryKVStore
from src.storage.price_history import PriceHistoryStore

NOW = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)


def _sample(
    moment: datetime,
    min_price: float,
    quantity: int = 1,
    avg_price: float | None = None,
    is_daily: bool = False,
) -> ItemPriceSample:
    return ItemPriceSample(
        timestamp=moment,
        date=moment.date().isoformat(),
        hour=moment.hour,
        minute_slot=moment.minute - moment.minute % 5,
        min_price=min_price,
        max_price=min_price,
        avg_price=min_price if avg_price is None else avg_price,
        quantity=quantity,
        is_daily=is_daily,
    )


def _agg(day: str, min_price: int) -> DailyAggregate:
    return DailyAggregate(
        date=day,
        min_price=min_price,
        max_price=min_price + 10,
        avg_price=min_price + 5,
        total_quantity=4,
    )


class TestMerge(unittest.TestCase):
    """Fine-grained samples take precedence over daily aggregates."""

    def test_daily_to_sample_pinned_at_noon(self) -> None:
        sample = daily_to_sample(_agg("2025-01-02", 100))
        self.assertEqual(
            sample.timestamp,
            datetime(2025, 1, 2, 12, tzinfo=timezone.utc),
        )
        self.assertTrue(sample.is_daily)
        self.assertEqual(sample.quantity, 4)

    def test_detailed_date_hides_aggregate(self) -> None:
        detailed = [_sample(datetime(2025, 1, 3, 1, tzinfo=timezone.utc), 90)]
        merged = merge_for_display(
            detailed, [_agg("2025-01-02", 100), _agg("2025-01-03", 80)],
        )
        self.assertEqual(
            [(s.date, s.is_daily) for s in merged],
            [("2025-01-02", True), ("2025-01-03", False)],
        )

    def test_merged_series_chronological(self) -> None:
        detailed = [
            _sample(datetime(2025, 1, 5, 1, tzinfo=timezone.utc), 1),
            _sample(datetime(2025, 1, 5, 2, tzinfo=timezone.utc), 2),
        ]
        merged = merge_for_display(
            detailed, [_agg("2025-01-04", 5), _agg("2025-01-01", 6)],
        )
        stamps = [s.timestamp for s in merged]
        self.assertEqual(stamps, sorted(stamps))
        self.assertEqual(len(merged), 4)

    def test_empty_inputs(self) -> None:
        self.assertEqual(merge_for_display([], []), [])


class TestPriceStats(unittest.TestCase):

    def test_high_low_and_weighted_average(self) -> None:
        series = [
            _sample(NOW, 100, quantity=1, avg_price=100),
            _sample(NOW + timedelta(minutes=5), 200, quantity=3, avg_price=200),
        ]
        stats = compute_price_stats(series)
        self.assertEqual(stats.historical_high, 200)
        self.assertEqual(stats.historical_low, 100)
        self.assertEqual(stats.weighted_average, 175)
        self.assertEqual(stats.sample_count, 2)

    def test_ties_keep_first_sample(self) -> None:
        first = _sample(NOW, 100)
        second = _sample(NOW + timedelta(minutes=5), 100)
        stats = compute_price_stats([first, second])
        self.assertIs(stats.high_sample, first)
        self.assertIs(stats.low_sample, first)

    def test_zero_quantity_average(self) -> None:
        stats = compute_price_stats([_sample(NOW, 100, quantity=0)])
        self.assertEqual(stats.weighted_average, 0)
        self.assertEqual(stats.historical_low, 100)

    def test_empty_series(self) -> None:
        stats = compute_price_stats([])
        self.assertEqual(stats.historical_high, 0)
        self.assertIsNone(stats.low_sample)


class TestDownsample(unittest.TestCase):

    def _series(self, count: int) -> list[ItemPriceSample]:
        return [
            _sample(NOW + timedelta(minutes=5 * i), 10 * (i + 1), quantity=i)
            for i in range(count)
        ]

    def test_within_budget_unchanged(self) -> None:
        series = self._series(3)
        self.assertEqual(downsample(series, 3), series)

    def test_chunks_fit_budget(self) -> None:
        """Ten points into three: chunks of 4, 4 and 2."""
        series = self._series(10)
        reduced = downsample(series, 3)
        self.assertEqual(len(reduced), 3)
        self.assertEqual(reduced[0].timestamp, series[0].timestamp)
        self.assertEqual(reduced[1].timestamp, series[4].timestamp)
        self.assertEqual(reduced[0].min_price, 25.0)
        self.assertEqual(reduced[2].min_price, 95.0)
        self.assertEqual(reduced[0].quantity, 2)

    def test_daily_flag_only_when_whole_chunk_daily(self) -> None:
        series = [
            _sample(NOW, 1, is_daily=True),
            _sample(NOW + timedelta(days=1), 2, is_daily=False),
            _sample(NOW + timedelta(days=2), 3, is_daily=True),
            _sample(NOW + timedelta(days=3), 4, is_daily=True),
        ]
        reduced = downsample(series, 2)
        self.assertEqual([s.is_daily for s in reduced], [False, True])

    def test_budget_must_be_positive(self) -> None:
        with self.assertRaises(ValueError):
            downsample(self._series(2), 0)


class TestPeriods(unittest.TestCase):

    def test_filter_by_period_window(self) -> None:
        series = [
            _sample(NOW - timedelta(days=2), 1),
            _sample(NOW - timedelta(hours=2), 2),
        ]
        kept = filter_by_period(series, "1d", now=NOW)
        self.assertEqual([s.min_price for s in kept], [2])

    def test_all_keeps_everything(self) -> None:
        series = [_sample(NOW - timedelta(days=400), 1)]
        self.assertEqual(filter_by_period(series, "all", now=NOW), series)

    def test_unknown_period(self) -> None:
        with self.assertRaises(ValueError):
            filter_by_period([], "2w")
        with self.assertRaises(ValueError):
            downsample_for_period([], "2w")

    def test_downsample_for_period_budget(self) -> None:
        """A full day of 5-minute samples fits the 1d budget."""
        series = [
            _sample(NOW - timedelta(minutes=5 * i), 100)
            for i in range(288)
        ][::-1]
        reduced = downsample_for_period(series, "1d", now=NOW)
        self.assertLessEqual(len(reduced), 96)
        self.assertGreater(len(reduced), 0)


class TestHistoryWithDaily(unittest.IsolatedAsyncioTestCase):

    async def test_reads_both_resolutions(self) -> None:
        kv = MemoryKVStore()
        history = PriceHistoryStore(kv)
        daily = DailyHistoryStore(kv, history)
        await history.save(
            {"각성석": ItemPrice(100, 100, 100, 5)},
            saved_at=datetime(2025, 1, 2, 3, tzinfo=timezone.utc),
        )
        await history.save(
            {"각성석": ItemPrice(90, 90, 90, 2)},
            saved_at=datetime(2025, 1, 9, 3, tzinfo=timezone.utc),
        )
        await daily.fold_aged_entries(today=NOW.date())

        bundle = await get_item_history_with_daily(history, daily, "각성석")

        self.assertEqual(len(bundle.detailed), 2)
        self.assertEqual([a.date for a in bundle.daily], ["2025-01-02"])
        merged = merge_for_display(bundle.detailed, bundle.daily)
        self.assertEqual(len(merged), 2)
        self.assertFalse(any(s.is_daily for s in merged))


if __name__ == "__main__":
    unittest.main()
