# src/config/settings.py

"""Central configuration for the gersang_market price tracker."""

import os
from datetime import timedelta
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Central configuration for the gersang_market price tracker."""

    # --- Key-value store (Upstash / Vercel KV REST API) ---
    KV_REST_API_URL: str | None = os.getenv("KV_REST_API_URL") or None
    KV_REST_API_TOKEN: str | None = os.getenv("KV_REST_API_TOKEN") or None
    KV_REQUEST_TIMEOUT: int = 10        # Seconds per store round-trip
    HISTORY_KEY: str = "gersang:price-history"
    DAILY_HISTORY_KEY: str = "gersang:daily-price-history"

    # --- Price history ---
    BUCKET_MINUTES: int = 5             # Fine-grained bucket size
    RETENTION_DAYS: int = 7             # Fine-grained horizon before folding
    # A date becomes foldable RETENTION_DAYS + 1 days after it starts; one
    # more day lets a daily fold run before its entries are evicted.
    HISTORY_DAYS: int = RETENTION_DAYS + 2
    MAX_ENTRIES: int = HISTORY_DAYS * 24 * (60 // BUCKET_MINUTES)
    MAX_DAILY_ENTRIES: int = 365        # Daily aggregates kept per item
    MAX_LISTINGS: int = 10              # Seller offers kept per item

    # Chart period -> (lookback window or None for everything, point budget)
    CHART_PERIODS: dict[str, tuple[timedelta | None, int]] = {
        "1d": (timedelta(days=1), 96),
        "7d": (timedelta(days=7), 168),
        "30d": (timedelta(days=30), 120),
        "90d": (timedelta(days=90), 90),
        "all": (None, 180),
    }
    DEFAULT_CHART_PERIOD: str = "7d"

    # --- Market source ---
    MARKET_BASE_URL: str = "https://geota.co.kr/gersang/yukeuijeon"
    SERVER_ID: int = 5
    SERVER_NAME: str = "봉황"
    UNKNOWN_SELLER: str = "알 수 없음"

    # --- Scraping ---
    REQUEST_DELAY: float = 0.5          # Seconds between requests
    REQUEST_TIMEOUT: int = 15           # Seconds before a request times out
    MAX_RETRIES: int = 3                # Retry count on transient failures
    MAX_FETCH_WORKERS: int = 8          # Concurrent item fetches

    # --- Resilience ---
    CIRCUIT_BREAKER_THRESHOLD: int = 3  # Consecutive failures to trip
    CIRCUIT_BREAKER_COOLDOWN: float = 60.0
    MAX_DELAY_MULTIPLIER: int = 8       # Cap for adaptive backoff
    CAPTCHA_KEYWORDS: list[str] = [
        "captcha",
        "verify you are human",
        "unusual traffic",
        "automated requests",
    ]

    # --- Browser Impersonation ---
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": (
            "text/html,application/xhtml+xml,"
            "application/xml;q=0.9,*/*;q=0.8"
        ),
        "Accept-Language": "ko-KR,ko;q=0.9,en-US;q=0.8,en;q=0.7",
        "sec-ch-ua": (
            '"Google Chrome";v="131", '
            '"Chromium";v="131", '
            '"Not_A Brand";v="24"'
        ),
        "sec-ch-ua-mobile": "?0",
        "sec-ch-ua-platform": '"Windows"',
        "sec-fetch-dest": "document",
        "sec-fetch-mode": "navigate",
        "sec-fetch-site": "none",
        "Upgrade-Insecure-Requests": "1",
    }

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    CATALOG_PATH: Path = BASE_DIR / "src" / "config" / "catalog.json"
    DATA_DIR: Path = BASE_DIR / "data"
    CHARTS_DIR: Path = DATA_DIR / "charts"
    LOGS_DIR: Path = BASE_DIR / "logs"
