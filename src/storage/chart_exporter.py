# src/storage/chart_exporter.py

"""Generate interactive Plotly HTML charts from an item's price series."""

import importlib
import logging
import webbrowser
from datetime import datetime, timezone
from pathlib import Path
from types import ModuleType
from typing import Any

from src.config.settings import Settings
from src.models.price_snapshot import ItemPriceSample
from src.services.history_query import (
    PriceStats,
    compute_price_stats,
    downsample_for_period,
    filter_by_period,
)

logger = logging.getLogger("gersang_market.chart")


def _get_plotly_go() -> ModuleType:
    """Import plotly.graph_objects lazily."""
    return importlib.import_module("plotly.graph_objects")


def _ensure_charts_dir(charts_dir: Path | None = None) -> Path:
    """Create charts directory if it doesn't exist."""
    directory = charts_dir or Settings.CHARTS_DIR
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def _build_item_chart(
    samples: list[ItemPriceSample],
    item_name: str,
    period: str,
    stats: PriceStats,
) -> Any:
    """Build a Plotly line chart of min and average price.

    *stats* come from the undownsampled window so the High/Low
    annotations mark real samples.
    """
    go = _get_plotly_go()
    detailed = [s for s in samples if not s.is_daily]
    daily = [s for s in samples if s.is_daily]

    fig: Any = go.Figure()
    fig.add_trace(go.Scatter(
        x=[s.timestamp for s in samples],
        y=[s.min_price for s in samples],
        mode="lines",
        name="Min price",
        hovertemplate=(
            "%{x|%Y-%m-%d %H:%M}<br>"
            "Min: %{y:,.0f}"
            "<extra></extra>"
        ),
    ))
    fig.add_trace(go.Scatter(
        x=[s.timestamp for s in samples],
        y=[s.avg_price for s in samples],
        mode="lines",
        name="Avg price",
        line={"dash": "dot"},
    ))
    if daily:
        fig.add_trace(go.Scatter(
            x=[s.timestamp for s in daily],
            y=[s.min_price for s in daily],
            mode="markers",
            name="Daily aggregate",
            marker={"symbol": "diamond", "size": 8},
        ))

    if stats.high_sample and stats.low_sample:
        fig.add_annotation(
            x=stats.low_sample.timestamp, y=stats.historical_low,
            text=f"Low: {stats.historical_low:,.0f}",
            showarrow=True, arrowhead=2,
        )
        fig.add_annotation(
            x=stats.high_sample.timestamp, y=stats.historical_high,
            text=f"High: {stats.historical_high:,.0f}",
            showarrow=True, arrowhead=2,
        )

    fig.update_layout(
        title=(
            f"{item_name} ({period}, {len(detailed)} detailed / "
            f"{len(daily)} daily points)"
        ),
        xaxis_title="Time (UTC)",
        yaxis_title="Price",
        hovermode="x unified",
        template="plotly_white",
    )
    return fig


def export_item_chart(
    item_name: str,
    series: list[ItemPriceSample],
    period: str = Settings.DEFAULT_CHART_PERIOD,
    open_browser: bool = True,
    charts_dir: Path | None = None,
) -> Path | None:
    """Export an item's windowed, downsampled price chart as HTML."""
    now = datetime.now(timezone.utc)
    windowed = filter_by_period(series, period, now)
    samples = downsample_for_period(windowed, period, now)
    if len(samples) < 2:
        logger.warning(
            "Not enough data points for chart: %s (%s)",
            item_name,
            period,
        )
        return None

    fig = _build_item_chart(
        samples, item_name, period, compute_price_stats(windowed),
    )

    directory = _ensure_charts_dir(charts_dir)
    slug = item_name[:30].replace(" ", "_").replace("/", "_")
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filepath = directory / f"{slug}_{period}_{stamp}.html"
    fig.write_html(str(filepath))
    logger.info("Chart saved to %s", filepath)

    if open_browser:
        webbrowser.open(filepath.as_uri())

    return filepath
