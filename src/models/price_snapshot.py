# src/models/price_snapshot.py

"""Price snapshot models for the fine-grained and daily history documents.

Documents are persisted with camelCase keys so the stored JSON stays
readable by the dashboard that shares the key-value store.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def format_timestamp(moment: datetime) -> str:
    """Render an instant as ISO-8601 UTC with millisecond precision."""
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def parse_timestamp(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return math.floor(value + 0.5)


@dataclass
class Listing:
    """A single seller offer on the market board."""

    price: int
    quantity: int
    seller_name: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "price": self.price,
            "quantity": self.quantity,
            "sellerName": self.seller_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Listing":
        return cls(
            price=int(data["price"]),
            quantity=int(data["quantity"]),
            seller_name=str(data.get("sellerName", "")),
        )


@dataclass
class ItemPrice:
    """Price statistics for one item at one point in time."""

    min_price: int
    max_price: int
    avg_price: int
    quantity: int
    listings: list[Listing] = field(
        default_factory=lambda: list[Listing]()
    )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "minPrice": self.min_price,
            "maxPrice": self.max_price,
            "avgPrice": self.avg_price,
            "quantity": self.quantity,
        }
        if self.listings:
            data["listings"] = [lst.to_dict() for lst in self.listings]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ItemPrice":
        return cls(
            min_price=int(data["minPrice"]),
            max_price=int(data["maxPrice"]),
            avg_price=int(data["avgPrice"]),
            quantity=int(data["quantity"]),
            listings=[
                Listing.from_dict(lst)
                for lst in data.get("listings") or []
            ],
        )


@dataclass
class PriceSnapshotEntry:
    """All recorded item prices for one 5-minute bucket."""

    timestamp: datetime
    date: str
    hour: int
    minute_slot: int
    prices: dict[str, ItemPrice] = field(
        default_factory=lambda: dict[str, ItemPrice]()
    )

    @property
    def bucket(self) -> tuple[str, int, int]:
        """The (date, hour, minuteSlot) triple identifying the bucket."""
        return (self.date, self.hour, self.minute_slot)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": format_timestamp(self.timestamp),
            "date": self.date,
            "hour": self.hour,
            "minuteSlot": self.minute_slot,
            "prices": {
                name: info.to_dict()
                for name, info in self.prices.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PriceSnapshotEntry":
        timestamp = parse_timestamp(str(data["timestamp"]))
        # Hourly-era entries carry no minuteSlot
        return cls(
            timestamp=timestamp,
            date=str(data.get("date") or timestamp.date().isoformat()),
            hour=int(data.get("hour", timestamp.hour)),
            minute_slot=int(data.get("minuteSlot", 0)),
            prices={
                str(name): ItemPrice.from_dict(info)
                for name, info in (data.get("prices") or {}).items()
            },
        )


@dataclass
class PriceHistoryDocument:
    """The rolling fine-grained history stored under one key."""

    last_updated: datetime
    entries: list[PriceSnapshotEntry] = field(
        default_factory=lambda: list[PriceSnapshotEntry]()
    )

    @classmethod
    def empty(cls, now: datetime | None = None) -> "PriceHistoryDocument":
        return cls(last_updated=now or datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastUpdated": format_timestamp(self.last_updated),
            "entries": [e.to_dict() for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PriceHistoryDocument":
        return cls(
            last_updated=parse_timestamp(str(data["lastUpdated"])),
            entries=[
                PriceSnapshotEntry.from_dict(e)
                for e in data.get("entries") or []
            ],
        )


@dataclass
class ItemPriceSample:
    """One point of a single item's price series.

    ``is_daily`` marks a daily aggregate reshaped to look like a
    fine-grained sample for display merging.
    """

    timestamp: datetime
    date: str
    hour: int
    minute_slot: int
    min_price: float
    max_price: float
    avg_price: float
    quantity: int
    is_daily: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "timestamp": format_timestamp(self.timestamp),
            "date": self.date,
            "hour": self.hour,
            "minuteSlot": self.minute_slot,
            "minPrice": self.min_price,
            "maxPrice": self.max_price,
            "avgPrice": self.avg_price,
            "quantity": self.quantity,
        }
        if self.is_daily:
            data["isDaily"] = True
        return data


@dataclass
class DailyAggregate:
    """Summary of one item's fine-grained samples over one calendar day."""

    date: str
    min_price: int
    max_price: int
    avg_price: int
    total_quantity: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "minPrice": self.min_price,
            "maxPrice": self.max_price,
            "avgPrice": self.avg_price,
            "totalQuantity": self.total_quantity,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DailyAggregate":
        return cls(
            date=str(data["date"]),
            min_price=int(data["minPrice"]),
            max_price=int(data["maxPrice"]),
            avg_price=int(data["avgPrice"]),
            total_quantity=int(data["totalQuantity"]),
        )


@dataclass
class DailyHistoryDocument:
    """Long-horizon per-item daily aggregates stored under one key."""

    last_updated: datetime
    items: dict[str, list[DailyAggregate]] = field(
        default_factory=lambda: dict[str, list[DailyAggregate]]()
    )

    @classmethod
    def empty(cls, now: datetime | None = None) -> "DailyHistoryDocument":
        return cls(last_updated=now or datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastUpdated": format_timestamp(self.last_updated),
            "items": {
                name: [agg.to_dict() for agg in aggs]
                for name, aggs in self.items.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DailyHistoryDocument":
        return cls(
            last_updated=parse_timestamp(str(data["lastUpdated"])),
            items={
                str(name): [DailyAggregate.from_dict(a) for a in aggs]
                for name, aggs in (data.get("items") or {}).items()
            },
        )
