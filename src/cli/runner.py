# src/cli/runner.py

"""Headless command runners: fetch cycle, fold job and history queries.

This module is the composition root: it builds the key-value store
and hands it to the history components.  Every runner returns an
exit code (0=ok, 1=fail or no data).
"""

import json
import logging
import sys
from datetime import datetime, timezone
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from rich.console import Console
from rich.table import Table

from src.config.settings import Settings
from src.models.catalog import calculate_total_cost, load_catalog
from src.models.price_snapshot import (
    ItemPrice,
    ItemPriceSample,
    PriceSnapshotEntry,
    format_timestamp,
)
from src.services.history_query import (
    compute_price_stats,
    downsample_for_period,
    filter_by_period,
    get_item_history_with_daily,
    merge_for_display,
)
from src.services.price_collector import PriceCollector
from src.storage.daily_history import DailyHistoryStore
from src.storage.kv_store import KVStore, UpstashKVStore
from src.storage.price_history import PriceHistoryStore

logger = logging.getLogger("gersang_market.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)


@asynccontextmanager
async def open_history(
    store: KVStore | None = None,
) -> AsyncIterator[tuple[PriceHistoryStore, DailyHistoryStore]]:
    """Yield wired history stores; closes the store only if built here."""
    owned = store is None
    kv: Any = store if store is not None else UpstashKVStore()
    if not kv.available:
        _err.print(
            "[yellow]KV credentials not set; history disabled.[/yellow]"
        )
    history = PriceHistoryStore(kv)
    daily = DailyHistoryStore(kv, history)
    try:
        yield history, daily
    finally:
        if owned:
            await kv.close()


def _dump_json(data: object) -> None:
    json.dump(data, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")


def _fmt_price(value: float) -> str:
    return f"{value:,.0f}" if value > 0 else "—"


def _print_prices(
    title: str, prices: dict[str, ItemPrice],
) -> None:
    """Render a Rich table of item prices, cheapest first."""
    table = Table(title=title, show_lines=False, title_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Item", max_width=40)
    table.add_column("Min", justify="right", style="green")
    table.add_column("Avg", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Qty", justify="right", style="magenta")

    ordered = sorted(
        prices.items(),
        key=lambda kv: kv[1].min_price if kv[1].min_price > 0 else float("inf"),
    )
    for idx, (name, info) in enumerate(ordered, 1):
        table.add_row(
            str(idx),
            name,
            _fmt_price(info.min_price),
            _fmt_price(info.avg_price),
            _fmt_price(info.max_price),
            f"{info.quantity:,}",
        )
    Console().print(table)


def _print_series(title: str, samples: list[ItemPriceSample]) -> None:
    table = Table(title=title, title_style="bold cyan")
    table.add_column("Time (UTC)")
    table.add_column("Min", justify="right", style="green")
    table.add_column("Avg", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Qty", justify="right", style="magenta")
    table.add_column("Kind", style="dim")
    for s in samples:
        table.add_row(
            f"{s.date} {s.hour:02d}:{s.minute_slot:02d}",
            _fmt_price(s.min_price),
            _fmt_price(s.avg_price),
            _fmt_price(s.max_price),
            f"{s.quantity:,}",
            "daily" if s.is_daily else "5m",
        )
    Console().print(table)


def _entry_summary(entry: PriceSnapshotEntry) -> dict[str, object]:
    return {
        "date": entry.date,
        "hour": entry.hour,
        "minuteSlot": entry.minute_slot,
        "items": len(entry.prices),
    }


# ── Scheduler entry points ───────────────────────────────


async def run_fetch(
    items_csv: str | None = None,
    skip_save: bool = False,
    fold: bool = False,
    output_format: str = "table",
    store: KVStore | None = None,
) -> int:
    """Fetch current prices, record them and optionally fold."""
    items = (
        [i.strip() for i in items_csv.split(",") if i.strip()]
        if items_csv
        else None
    )
    async with open_history(store) as (history, daily):
        collector = PriceCollector(history)
        result = await collector.collect(items=items, save=not skip_save)

        for error_msg in result.errors:
            _err.print(f"[red]Error: {error_msg}[/red]")
        if not result.prices:
            _err.print("[yellow]No prices fetched.[/yellow]")
            return 1

        if result.saved_entry is not None:
            _err.print(
                "[green]✓ Saved snapshot "
                f"{result.saved_entry.date} "
                f"{result.saved_entry.hour:02d}:"
                f"{result.saved_entry.minute_slot:02d}[/green]"
            )
        elif not skip_save:
            _err.print("[yellow]Snapshot not saved.[/yellow]")

        if fold:
            folded = await daily.fold_aged_entries()
            _err.print(
                f"[dim]Folded {folded.created} daily aggregates[/dim]"
            )

    if output_format == "json":
        _dump_json({
            "data": {n: p.to_dict() for n, p in result.prices.items()},
            "timestamp": format_timestamp(result.fetched_at),
            "serverId": Settings.SERVER_ID,
            "serverName": Settings.SERVER_NAME,
            "historySaved": (
                _entry_summary(result.saved_entry)
                if result.saved_entry
                else None
            ),
        })
    else:
        _print_prices(
            f"Market prices ({Settings.SERVER_NAME})", result.prices,
        )
    return 0


async def run_fold(store: KVStore | None = None) -> int:
    """Fold aged fine-grained entries into daily aggregates."""
    async with open_history(store) as (_history, daily):
        result = await daily.fold_aged_entries()
    if result.created and not result.persisted:
        _err.print("[red]Daily history write failed.[/red]")
        return 1
    _err.print(
        f"[green]✓ {result.created} aggregates created, "
        f"{result.skipped} already present "
        f"({len(result.folded_dates)} dates)[/green]"
    )
    return 0


# ── Queries ──────────────────────────────────────────────


async def run_latest(
    output_format: str = "table", store: KVStore | None = None,
) -> int:
    """Show the most recently saved snapshot."""
    async with open_history(store) as (history, _daily):
        entry = await history.get_latest()
    if entry is None:
        _err.print("[yellow]No saved price data.[/yellow]")
        return 1
    if output_format == "json":
        _dump_json({
            "data": {n: p.to_dict() for n, p in entry.prices.items()},
            "timestamp": format_timestamp(entry.timestamp),
            "serverName": Settings.SERVER_NAME,
            "cached": True,
        })
    else:
        _print_prices(
            f"Latest snapshot {entry.date} "
            f"{entry.hour:02d}:{entry.minute_slot:02d} UTC",
            entry.prices,
        )
    return 0


async def run_history(
    item_name: str,
    include_daily: bool = False,
    period: str | None = None,
    output_format: str = "table",
    store: KVStore | None = None,
) -> int:
    """Show one item's series, optionally merged with daily aggregates."""
    async with open_history(store) as (history, daily):
        if include_daily:
            bundle = await get_item_history_with_daily(
                history, daily, item_name,
            )
            series = merge_for_display(bundle.detailed, bundle.daily)
            detailed_count = len(bundle.detailed)
            daily_count = len(bundle.daily)
        else:
            series = await history.get_item_history(item_name)
            detailed_count, daily_count = len(series), 0

    # Stats cover every sample in the window, not the chunk means
    now = datetime.now(timezone.utc)
    if period is not None:
        series = filter_by_period(series, period, now)
    stats = compute_price_stats(series)
    if period is not None:
        series = downsample_for_period(series, period, now)

    if output_format == "json":
        _dump_json({
            "itemName": item_name,
            "data": [s.to_dict() for s in series],
            "count": len(series),
            "detailedCount": detailed_count,
            "dailyCount": daily_count,
            "stats": {
                "historicalHigh": stats.historical_high,
                "historicalLow": stats.historical_low,
                "weightedAverage": stats.weighted_average,
            },
        })
        return 0 if series else 1

    if not series:
        _err.print(f"[yellow]No history for '{item_name}'.[/yellow]")
        return 1
    _print_series(f"{item_name} ({len(series)} points)", series)
    _err.print(
        f"[bold]High[/bold] {_fmt_price(stats.historical_high)}  "
        f"[bold]Low[/bold] {_fmt_price(stats.historical_low)}  "
        f"[bold]Weighted avg[/bold] {_fmt_price(stats.weighted_average)}"
    )
    return 0


async def run_date(
    date: str, output_format: str = "table", store: KVStore | None = None,
) -> int:
    """Show every snapshot recorded on one date."""
    async with open_history(store) as (history, _daily):
        entries = await history.get_by_date(date)
    if output_format == "json":
        _dump_json({
            "date": date,
            "data": [e.to_dict() for e in entries],
            "count": len(entries),
        })
        return 0 if entries else 1
    if not entries:
        _err.print(f"[yellow]No entries on {date}.[/yellow]")
        return 1
    table = Table(title=f"Snapshots on {date}", title_style="bold cyan")
    table.add_column("Time (UTC)")
    table.add_column("Items", justify="right")
    for e in entries:
        table.add_row(
            f"{e.hour:02d}:{e.minute_slot:02d}", str(len(e.prices)),
        )
    Console().print(table)
    return 0


async def run_stats(
    output_format: str = "table", store: KVStore | None = None,
) -> int:
    """Show fine-grained history statistics."""
    async with open_history(store) as (history, _daily):
        stats = await history.get_stats()
    if output_format == "json":
        _dump_json(stats.to_dict())
        return 0
    span = (
        f"{stats.date_range[0]} → {stats.date_range[1]}"
        if stats.date_range
        else "—"
    )
    table = Table(title="Price history", title_style="bold cyan")
    table.add_column("Entries", justify="right")
    table.add_column("Items", justify="right")
    table.add_column("Dates")
    table.add_column("Last updated")
    table.add_row(
        str(stats.total_entries),
        str(stats.item_count),
        span,
        format_timestamp(stats.last_updated),
    )
    Console().print(table)
    return 0


async def run_chart(
    item_name: str,
    period: str = Settings.DEFAULT_CHART_PERIOD,
    open_browser: bool = True,
    store: KVStore | None = None,
) -> int:
    """Export an HTML price chart for one item."""
    from src.storage.chart_exporter import export_item_chart

    async with open_history(store) as (history, daily):
        bundle = await get_item_history_with_daily(
            history, daily, item_name,
        )
    series = merge_for_display(bundle.detailed, bundle.daily)
    path = export_item_chart(
        item_name, series, period=period, open_browser=open_browser,
    )
    if path is None:
        _err.print(f"[yellow]Not enough data to chart '{item_name}'.[/yellow]")
        return 1
    _err.print(f"[green]✓ Chart saved → {path}[/green]")
    return 0


async def run_cost(
    output_format: str = "table", store: KVStore | None = None,
) -> int:
    """Price every legendary recipe from the latest snapshot."""
    async with open_history(store) as (history, _daily):
        entry = await history.get_latest()
    if entry is None:
        _err.print("[yellow]No saved price data.[/yellow]")
        return 1

    rows = [
        (merc, calculate_total_cost(merc, entry.prices))
        for merc in load_catalog()
    ]
    rows.sort(key=lambda r: r[1].total_cost or float("inf"))

    if output_format == "json":
        _dump_json([
            {
                "id": merc.id,
                "name": merc.name,
                "mainCost": cost.main_cost,
                "childCost": cost.child_cost,
                "totalCost": cost.total_cost,
            }
            for merc, cost in rows
        ])
        return 0

    table = Table(
        title="Legendary crafting cost", title_style="bold cyan",
    )
    table.add_column("Mercenary")
    table.add_column("Own materials", justify="right")
    table.add_column("Children", justify="right")
    table.add_column("Total", justify="right", style="green")
    for merc, cost in rows:
        table.add_row(
            merc.name,
            _fmt_price(cost.main_cost),
            _fmt_price(cost.child_cost),
            _fmt_price(cost.total_cost),
        )
    Console().print(table)
    return 0
