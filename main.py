# main.py

"""Entry point for the gersang_market price tracker CLI."""

import argparse
import asyncio
import logging
import sys

from src.config.logging_config import setup_logging
from src.config.settings import Settings

logger = logging.getLogger("gersang_market.main")


def _add_format(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-f",
        "--format",
        choices=["json", "table"],
        default="table",
        dest="output_format",
        help="Output format (default: table).",
    )


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    periods = list(Settings.CHART_PERIODS)

    parser = argparse.ArgumentParser(
        prog="gersang_market",
        description=(
            "Crafting material price tracker for the "
            f"{Settings.SERVER_NAME} server market."
        ),
    )
    sub = parser.add_subparsers(dest="command", required=True)

    fetch = sub.add_parser(
        "fetch", help="Fetch current prices and record a snapshot.",
    )
    fetch.add_argument(
        "-i",
        "--items",
        default=None,
        help="Comma-separated item names (default: whole catalog).",
    )
    fetch.add_argument(
        "--skip-save",
        action="store_true",
        default=False,
        dest="skip_save",
        help="Fetch only; do not write history.",
    )
    fetch.add_argument(
        "--fold",
        action="store_true",
        default=False,
        help="Fold aged entries into daily aggregates afterwards.",
    )
    _add_format(fetch)

    sub.add_parser(
        "fold", help="Fold aged entries into daily aggregates.",
    )

    latest = sub.add_parser(
        "latest", help="Show the latest saved snapshot.",
    )
    _add_format(latest)

    history = sub.add_parser("history", help="Show one item's history.")
    history.add_argument("item", help="Item name.")
    history.add_argument(
        "-d",
        "--daily",
        action="store_true",
        default=False,
        help="Merge in daily aggregates for older dates.",
    )
    history.add_argument(
        "-p",
        "--period",
        choices=periods,
        default=None,
        help="Window and downsample to a chart period.",
    )
    _add_format(history)

    by_date = sub.add_parser("date", help="Show snapshots of one date.")
    by_date.add_argument("date", help="Date as YYYY-MM-DD.")
    _add_format(by_date)

    stats = sub.add_parser("stats", help="Show history statistics.")
    _add_format(stats)

    chart = sub.add_parser("chart", help="Export an HTML price chart.")
    chart.add_argument("item", help="Item name.")
    chart.add_argument(
        "-p",
        "--period",
        choices=periods,
        default=Settings.DEFAULT_CHART_PERIOD,
    )
    chart.add_argument(
        "--no-browser",
        action="store_false",
        dest="open_browser",
        help="Do not open the chart after export.",
    )

    cost = sub.add_parser(
        "cost", help="Legendary crafting cost from the latest snapshot.",
    )
    _add_format(cost)
    return parser


def _dispatch(args: argparse.Namespace) -> int:
    """Run the coroutine for the selected command."""
    from src.cli import runner

    if args.command == "fetch":
        coro = runner.run_fetch(
            items_csv=args.items,
            skip_save=args.skip_save,
            fold=args.fold,
            output_format=args.output_format,
        )
    elif args.command == "fold":
        coro = runner.run_fold()
    elif args.command == "latest":
        coro = runner.run_latest(args.output_format)
    elif args.command == "history":
        coro = runner.run_history(
            args.item,
            include_daily=args.daily,
            period=args.period,
            output_format=args.output_format,
        )
    elif args.command == "date":
        coro = runner.run_date(args.date, args.output_format)
    elif args.command == "stats":
        coro = runner.run_stats(args.output_format)
    elif args.command == "chart":
        coro = runner.run_chart(
            args.item,
            period=args.period,
            open_browser=args.open_browser,
        )
    else:
        coro = runner.run_cost(args.output_format)
    return asyncio.run(coro)


def main() -> None:
    """Parse arguments and run one command."""
    log_file = setup_logging()
    logger.info("gersang_market starting, log file: %s", log_file)

    parser = _build_parser()
    args = parser.parse_args()

    try:
        exit_code = _dispatch(args)
    except Exception:
        logger.critical(
            "Fatal error during '%s'", args.command, exc_info=True,
        )
        raise
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
