# tests/test_runner.py

"""Tests for the headless command runners and argument parsing."""

import io
import json
import unittest
from contextlib import redirect_stdout
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock, patch

from main import _build_parser
from src.cli import runner
from src.models.price_snapshot import (
    ItemPrice,
    PriceHistoryDocument,
    PriceSnapshotEntry,
)
from src.scrapers.base_scraper import BaseScraper, CircuitBreaker
from src.services.price_collector import PriceCollector
from src.storage.kv_store import MemoryKVStore, UpstashKVStore
from src.storage.price_history import PriceHistoryStore


class _FakeScraper(BaseScraper):
    """Serves one canned price per item."""

    def __init__(self, breaker: CircuitBreaker | None = None) -> None:
        self.source_name = "fake"
        self.breaker = breaker or CircuitBreaker()

    def _get_homepage(self) -> str:
        return "https://example.com"

    def fetch_item_price(self, item_name: str) -> ItemPrice | None:
        return ItemPrice(1000, 1200, 1100, 4)


def _collector(history: PriceHistoryStore) -> PriceCollector:
    return PriceCollector(history, scraper_factory=_FakeScraper)


class _RunnerCase(unittest.IsolatedAsyncioTestCase):
    """Runs commands against an injected in-memory store."""

    def setUp(self) -> None:
        self.kv = MemoryKVStore()

    async def _run_json(self, coro: Any) -> tuple[int, Any]:
        out = io.StringIO()
        with redirect_stdout(out):
            code = await coro
        text = out.getvalue()
        return code, json.loads(text) if text.strip() else None

    async def _seed(self, *items: str) -> None:
        await PriceHistoryStore(self.kv).save(
            {name: ItemPrice(1000, 1200, 1100, 4) for name in items},
            saved_at=datetime(2025, 1, 3, 4, 7, tzinfo=timezone.utc),
        )


@patch("src.cli.runner.PriceCollector", _collector)
class TestRunFetch(_RunnerCase):

    async def test_fetch_json_reports_saved_bucket(self) -> None:
        code, data = await self._run_json(runner.run_fetch(
            items_csv="각성석, 영웅의 영혼석",
            output_format="json",
            store=self.kv,
        ))
        self.assertEqual(code, 0)
        self.assertEqual(set(data["data"]), {"각성석", "영웅의 영혼석"})
        self.assertEqual(data["historySaved"]["items"], 2)
        self.assertEqual(data["serverName"], "봉황")
        self.assertEqual(self.kv.set_calls, 1)

    async def test_fetch_skip_save(self) -> None:
        code, data = await self._run_json(runner.run_fetch(
            items_csv="각성석",
            skip_save=True,
            output_format="json",
            store=self.kv,
        ))
        self.assertEqual(code, 0)
        self.assertIsNone(data["historySaved"])
        self.assertEqual(self.kv.set_calls, 0)

    async def test_fetch_table_output(self) -> None:
        out = io.StringIO()
        with redirect_stdout(out):
            code = await runner.run_fetch(items_csv="각성석", store=self.kv)
        self.assertEqual(code, 0)
        self.assertIn("각성석", out.getvalue())

    async def test_injected_store_not_closed(self) -> None:
        await self._run_json(runner.run_fetch(
            items_csv="각성석", output_format="json", store=self.kv,
        ))
        self.assertIsNotNone(await self.kv.get("gersang:price-history"))


class TestQueries(_RunnerCase):

    async def test_latest_without_data(self) -> None:
        code, data = await self._run_json(
            runner.run_latest("json", store=self.kv)
        )
        self.assertEqual(code, 1)
        self.assertIsNone(data)

    async def test_latest_json(self) -> None:
        await self._seed("각성석")
        code, data = await self._run_json(
            runner.run_latest("json", store=self.kv)
        )
        self.assertEqual(code, 0)
        self.assertTrue(data["cached"])
        self.assertEqual(data["data"]["각성석"]["minPrice"], 1000)
        self.assertEqual(data["timestamp"], "2025-01-03T04:07:00.000Z")

    async def test_history_with_daily(self) -> None:
        await self._seed("각성석")
        code, data = await self._run_json(runner.run_history(
            "각성석", include_daily=True, output_format="json", store=self.kv,
        ))
        self.assertEqual(code, 0)
        self.assertEqual(data["count"], 1)
        self.assertEqual(data["detailedCount"], 1)
        self.assertEqual(data["dailyCount"], 0)
        self.assertEqual(data["data"][0]["minuteSlot"], 5)
        self.assertEqual(data["stats"]["weightedAverage"], 1100)

    async def test_history_stats_use_raw_extremes(self) -> None:
        """A one-sample spike survives as the high after downsampling."""
        now = datetime.now(timezone.utc)
        entries: list[PriceSnapshotEntry] = []
        for i in range(400):
            moment = now - timedelta(minutes=5 * (400 - i))
            price = 1000 if i == 200 else 100
            entries.append(PriceSnapshotEntry(
                timestamp=moment,
                date=moment.date().isoformat(),
                hour=moment.hour,
                minute_slot=moment.minute - moment.minute % 5,
                prices={"각성석": ItemPrice(price, price, price, 1)},
            ))
        await self.kv.set("gersang:price-history", PriceHistoryDocument(
            last_updated=now, entries=entries,
        ).to_dict())

        code, data = await self._run_json(runner.run_history(
            "각성석", period="7d", output_format="json", store=self.kv,
        ))

        self.assertEqual(code, 0)
        self.assertLessEqual(data["count"], 168)
        self.assertLess(max(p["minPrice"] for p in data["data"]), 1000)
        self.assertEqual(data["stats"]["historicalHigh"], 1000)
        self.assertEqual(data["stats"]["historicalLow"], 100)

    async def test_history_unknown_item(self) -> None:
        code, data = await self._run_json(runner.run_history(
            "없는물건", output_format="json", store=self.kv,
        ))
        self.assertEqual(code, 1)
        self.assertEqual(data["count"], 0)

    async def test_date(self) -> None:
        await self._seed("각성석")
        code, data = await self._run_json(
            runner.run_date("2025-01-03", "json", store=self.kv)
        )
        self.assertEqual(code, 0)
        self.assertEqual(data["count"], 1)

    async def test_stats(self) -> None:
        await self._seed("각성석", "영웅의 영혼석")
        code, data = await self._run_json(
            runner.run_stats("json", store=self.kv)
        )
        self.assertEqual(code, 0)
        self.assertEqual(data["totalEntries"], 1)
        self.assertEqual(data["itemCount"], 2)

    async def test_cost(self) -> None:
        await self._seed("영웅의 영혼석")
        code, data = await self._run_json(
            runner.run_cost("json", store=self.kv)
        )
        self.assertEqual(code, 0)
        self.assertEqual(len(data), 15)
        self.assertTrue(all(row["totalCost"] > 0 for row in data))

    async def test_fold_without_history(self) -> None:
        code = await runner.run_fold(store=self.kv)
        self.assertEqual(code, 0)
        self.assertEqual(self.kv.set_calls, 0)

    @patch("src.storage.chart_exporter.export_item_chart")
    async def test_chart_without_data(self, mock_export: MagicMock) -> None:
        mock_export.return_value = None
        code = await runner.run_chart(
            "각성석", open_browser=False, store=self.kv,
        )
        self.assertEqual(code, 1)
        self.assertEqual(mock_export.call_args.args[1], [])


@patch("src.storage.kv_store.AsyncSession")
class TestUnconfiguredStore(unittest.IsolatedAsyncioTestCase):

    async def test_missing_credentials_reports_no_data(
        self, mock_session_cls: MagicMock,
    ) -> None:
        """Without credentials queries report no data."""
        with patch(
            "src.cli.runner.UpstashKVStore",
            lambda: UpstashKVStore(url="", token=""),
        ):
            code = await runner.run_latest("json")
        self.assertEqual(code, 1)
        mock_session_cls.assert_not_called()


class TestParser(unittest.TestCase):

    def test_history_arguments(self) -> None:
        args = _build_parser().parse_args(
            ["history", "각성석", "-d", "-p", "30d", "-f", "json"]
        )
        self.assertEqual(args.item, "각성석")
        self.assertTrue(args.daily)
        self.assertEqual(args.period, "30d")
        self.assertEqual(args.output_format, "json")

    def test_chart_defaults(self) -> None:
        args = _build_parser().parse_args(["chart", "각성석"])
        self.assertEqual(args.period, "7d")
        self.assertTrue(args.open_browser)

    def test_unknown_period_rejected(self) -> None:
        with self.assertRaises(SystemExit):
            _build_parser().parse_args(["chart", "각성석", "-p", "2w"])

    def test_command_required(self) -> None:
        with self.assertRaises(SystemExit):
            _build_parser().parse_args([])


if __name__ == "__main__":
    unittest.main()
