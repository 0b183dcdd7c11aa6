# tests/test_price_collector.py

"""Tests for the concurrent fetch cycle."""

import unittest

from src.models.price_snapshot import ItemPrice
from src.scrapers.base_scraper import BaseScraper, CircuitBreaker
from src.services.price_collector import PriceCollector
from src.storage.kv_store import MemoryKVStore
from src.storage.price_history import PriceHistoryStore

PAGES: dict[str, ItemPrice | None] = {
    "각성석": ItemPrice(2500000, 2600000, 2550000, 5),
    "영웅의 영혼석": ItemPrice(7000, 7000, 7000, 40),
    "진은조각": ItemPrice(0, 0, 0, 0),
    "없는물건": None,
}


class _FakeScraper(BaseScraper):
    """Serves canned prices; raises for unknown items."""

    def __init__(self, breaker: CircuitBreaker | None = None) -> None:
        self.source_name = "fake"
        self.breaker = breaker or CircuitBreaker()

    def _get_homepage(self) -> str:
        return "https://example.com"

    def fetch_item_price(self, item_name: str) -> ItemPrice | None:
        if item_name not in PAGES:
            raise RuntimeError(f"no page for {item_name}")
        return PAGES[item_name]


class TestCollect(unittest.IsolatedAsyncioTestCase):

    def setUp(self) -> None:
        self.kv = MemoryKVStore()
        self.history = PriceHistoryStore(self.kv)
        self.collector = PriceCollector(
            self.history, scraper_factory=_FakeScraper, max_workers=2,
        )

    async def test_collect_saves_priced_items(self) -> None:
        result = await self.collector.collect(
            items=["각성석", "영웅의 영혼석", "진은조각"],
        )
        self.assertEqual(len(result.prices), 3)
        self.assertEqual(result.priced_count, 2)
        assert result.saved_entry is not None
        self.assertEqual(
            sorted(result.saved_entry.prices), ["각성석", "영웅의 영혼석"],
        )
        latest = await self.history.get_latest()
        assert latest is not None
        self.assertEqual(latest.timestamp, result.fetched_at)

    async def test_failures_reported_not_raised(self) -> None:
        result = await self.collector.collect(
            items=["각성석", "없는물건", "모르는것"],
        )
        self.assertEqual(list(result.prices), ["각성석"])
        self.assertEqual(len(result.errors), 2)
        self.assertTrue(any("no data" in e for e in result.errors))
        self.assertTrue(any("모르는것" in e for e in result.errors))

    async def test_skip_save(self) -> None:
        result = await self.collector.collect(items=["각성석"], save=False)
        self.assertIsNone(result.saved_entry)
        self.assertEqual(self.kv.set_calls, 0)

    async def test_cycle_shares_one_breaker(self) -> None:
        """Every scraper of a cycle trips the same breaker."""
        made: list[_FakeScraper] = []

        def factory(breaker: CircuitBreaker) -> _FakeScraper:
            scraper = _FakeScraper(breaker)
            made.append(scraper)
            return scraper

        collector = PriceCollector(self.history, scraper_factory=factory)
        await collector.collect(items=["각성석", "영웅의 영혼석"], save=False)
        await collector.collect(items=["각성석"], save=False)

        self.assertEqual(len(made), 3)
        self.assertIs(made[0].breaker, made[1].breaker)
        self.assertIsNot(made[0].breaker, made[2].breaker)

    async def test_nothing_fetched_nothing_saved(self) -> None:
        result = await self.collector.collect(items=["없는물건"])
        self.assertEqual(result.prices, {})
        self.assertIsNone(result.saved_entry)
        self.assertEqual(self.kv.set_calls, 0)


if __name__ == "__main__":
    unittest.main()
