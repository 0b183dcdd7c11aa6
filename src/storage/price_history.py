# src/storage/price_history.py

"""Rolling fine-grained price history kept as one key-value document."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from src.config.settings import Settings
from src.models.price_snapshot import (
    ItemPrice,
    ItemPriceSample,
    PriceHistoryDocument,
    PriceSnapshotEntry,
    format_timestamp,
)
from src.storage.kv_store import KVReadError, KVStore

logger = logging.getLogger("gersang_market.history")


@dataclass
class HistoryStats:
    """Summary of the fine-grained history document."""

    total_entries: int
    date_range: tuple[str, str] | None
    item_count: int
    last_updated: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalEntries": self.total_entries,
            "dateRange": (
                {"from": self.date_range[0], "to": self.date_range[1]}
                if self.date_range
                else None
            ),
            "itemCount": self.item_count,
            "lastUpdated": format_timestamp(self.last_updated),
        }


@dataclass
class PriceChange:
    """Difference between a current price and the previous sample."""

    change: int
    change_percent: float
    previous_price: int


class PriceHistoryStore:
    """Fine-grained (5-minute bucket) price history.

    The whole history lives in a single document, so every save is a
    read-modify-write of all entries.  Two overlapping saves from
    different processes race: the last ``set`` wins and the other
    snapshot is lost.
    """

    def __init__(
        self,
        store: KVStore,
        key: str | None = None,
        max_entries: int | None = None,
        bucket_minutes: int | None = None,
    ) -> None:
        self._store = store
        self._key = key or Settings.HISTORY_KEY
        self._max_entries = max_entries or Settings.MAX_ENTRIES
        self._bucket_minutes = bucket_minutes or Settings.BUCKET_MINUTES

    @property
    def key(self) -> str:
        return self._key

    # ── Reading ──────────────────────────────────────────

    async def read(self) -> PriceHistoryDocument:
        """Return the stored history, or an empty one on any failure."""
        try:
            return await self._load()
        except KVReadError:
            logger.warning("History unreadable, treating as empty")
            return PriceHistoryDocument.empty()

    async def _load(self) -> PriceHistoryDocument:
        """Like :meth:`read` but lets :class:`KVReadError` through."""
        raw = await self._store.get(self._key)
        if raw is None:
            return PriceHistoryDocument.empty()
        try:
            return PriceHistoryDocument.from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            logger.warning(
                "Malformed history document under '%s': %s",
                self._key,
                exc,
            )
            return PriceHistoryDocument.empty()

    # ── Recording ────────────────────────────────────────

    def _bucket_for(self, moment: datetime) -> tuple[str, int, int]:
        slot = (moment.minute // self._bucket_minutes) * self._bucket_minutes
        return (moment.date().isoformat(), moment.hour, slot)

    async def save(
        self,
        prices: dict[str, ItemPrice],
        saved_at: datetime | None = None,
    ) -> PriceSnapshotEntry | None:
        """Record a price snapshot in its 5-minute bucket.

        Items without a positive ``min_price`` are dropped.  A snapshot
        landing in an already-filled bucket replaces it.  Returns the
        saved entry, or ``None`` when the store is unavailable, the
        existing history could not be read, or the write failed.
        """
        if not self._store.available:
            logger.debug("Store unavailable, snapshot not saved")
            return None

        now = (saved_at or datetime.now(timezone.utc)).astimezone(
            timezone.utc
        )
        date, hour, slot = self._bucket_for(now)
        entry = PriceSnapshotEntry(
            timestamp=now,
            date=date,
            hour=hour,
            minute_slot=slot,
            prices={
                name: ItemPrice(
                    min_price=info.min_price,
                    max_price=info.max_price,
                    avg_price=info.avg_price,
                    quantity=info.quantity,
                    listings=list(info.listings),
                )
                for name, info in prices.items()
                if info.min_price > 0
            },
        )

        try:
            history = await self._load()
        except KVReadError:
            logger.warning(
                "History unreadable, snapshot %s %02d:%02d not saved",
                date,
                hour,
                slot,
            )
            return None
        existing = next(
            (
                i for i, e in enumerate(history.entries)
                if e.bucket == entry.bucket
            ),
            None,
        )
        if existing is not None:
            history.entries[existing] = entry
        else:
            history.entries.append(entry)

        history.entries.sort(key=lambda e: e.timestamp)
        if len(history.entries) > self._max_entries:
            dropped = len(history.entries) - self._max_entries
            history.entries = history.entries[dropped:]
            logger.debug("Evicted %d oldest history entries", dropped)
        history.last_updated = now

        if not await self._store.set(self._key, history.to_dict()):
            logger.warning(
                "History write failed for bucket %s %02d:%02d",
                date,
                hour,
                slot,
            )
            return None

        logger.info(
            "Saved price snapshot %s %02d:%02d (%d items, %s)",
            date,
            hour,
            slot,
            len(entry.prices),
            "replaced" if existing is not None else "appended",
        )
        return entry

    # ── Querying ─────────────────────────────────────────

    async def get_latest(self) -> PriceSnapshotEntry | None:
        """Return the most recent entry, if any."""
        history = await self.read()
        return history.entries[-1] if history.entries else None

    async def get_item_history(
        self, item_name: str,
    ) -> list[ItemPriceSample]:
        """Return one item's fine-grained samples, oldest first."""
        history = await self.read()
        samples: list[ItemPriceSample] = []
        for entry in history.entries:
            info = entry.prices.get(item_name)
            if info is None:
                continue
            samples.append(ItemPriceSample(
                timestamp=entry.timestamp,
                date=entry.date,
                hour=entry.hour,
                minute_slot=entry.minute_slot,
                min_price=info.min_price,
                max_price=info.max_price,
                avg_price=info.avg_price,
                quantity=info.quantity,
            ))
        return samples

    async def get_by_date(self, date: str) -> list[PriceSnapshotEntry]:
        """Return every entry recorded on *date* (``YYYY-MM-DD``)."""
        history = await self.read()
        return [e for e in history.entries if e.date == date]

    async def get_stats(self) -> HistoryStats:
        """Count entries and distinct items, and report the date span."""
        history = await self.read()
        if not history.entries:
            return HistoryStats(
                total_entries=0,
                date_range=None,
                item_count=0,
                last_updated=history.last_updated,
            )
        items: set[str] = set()
        for entry in history.entries:
            items.update(entry.prices)
        return HistoryStats(
            total_entries=len(history.entries),
            date_range=(
                history.entries[0].date,
                history.entries[-1].date,
            ),
            item_count=len(items),
            last_updated=history.last_updated,
        )

    async def calculate_price_change(
        self, item_name: str, current_price: int,
    ) -> PriceChange | None:
        """Compare *current_price* with the item's previous sample."""
        samples = await self.get_item_history(item_name)
        if len(samples) < 2:
            return None
        previous = int(samples[-2].min_price)
        change = current_price - previous
        percent = (
            round(change / previous * 100, 2) if previous > 0 else 0.0
        )
        return PriceChange(
            change=change,
            change_percent=percent,
            previous_price=previous,
        )
