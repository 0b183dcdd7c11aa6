# src/scrapers/base_scraper.py

"""Resilient page fetching shared by market scrapers.

The market board sits behind Cloudflare.  A real board page is a
Next.js document whose data arrives as a React Server Component
stream (``self.__next_f.push``); anything else that mentions a
challenge or a CAPTCHA is treated as a block.

Failures are counted per page by a :class:`CircuitBreaker`.  One
collection cycle hands the same breaker to every scraper it creates,
so a blocked site stops the whole cycle rather than each worker
finding out on its own.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import cloudscraper  # type: ignore[import-untyped]
from curl_cffi import requests as curl_requests

from src.config.settings import Settings
from src.models.price_snapshot import ItemPrice

# Inline script marker present on every rendered board page
RSC_MARKER = "self.__next_f"

# Cloudflare interstitial markers, checked before any other rule
CF_CHALLENGE_MARKERS: tuple[str, ...] = (
    "challenges.cloudflare.com",
    "cdn-cgi/challenge-platform",
    "just a moment",
    "cf-turnstile",
    "cf_chl_opt",
)

# Statuses that mean "slow down" rather than "page missing"
_THROTTLE_STATUSES = (403, 429, 503)


@dataclass
class CircuitBreaker:
    """Consecutive-failure breaker, safe to share across worker threads.

    Once open, callers are refused until ``cooldown`` seconds pass.
    The first caller after that is let through as a trial and the
    cooldown restarts for everyone else until the trial reports back.
    """

    threshold: int = Settings.CIRCUIT_BREAKER_THRESHOLD
    cooldown: float = Settings.CIRCUIT_BREAKER_COOLDOWN
    failures: int = 0
    opened_at: float | None = None
    _lock: threading.Lock = field(
        default_factory=threading.Lock,
        init=False,
        repr=False,
        compare=False,
    )

    @property
    def is_open(self) -> bool:
        return self.opened_at is not None

    def allows(self, now: float | None = None) -> bool:
        """Whether a request may go out at *now* (monotonic seconds)."""
        current = time.monotonic() if now is None else now
        with self._lock:
            if self.opened_at is None:
                return True
            if current - self.opened_at >= self.cooldown:
                self.opened_at = current
                return True
            return False

    def record_success(self) -> None:
        with self._lock:
            self.failures = 0
            self.opened_at = None

    def record_failure(self, now: float | None = None) -> bool:
        """Count one failed page. ``True`` when this failure trips it."""
        current = time.monotonic() if now is None else now
        with self._lock:
            self.failures += 1
            if self.failures < self.threshold:
                return False
            tripped = self.opened_at is None
            self.opened_at = current
            return tripped


@dataclass
class Backoff:
    """Delay between requests, doubled whenever the site pushes back."""

    base: float = Settings.REQUEST_DELAY
    ceiling: float = Settings.REQUEST_DELAY * Settings.MAX_DELAY_MULTIPLIER
    current: float = field(init=False)

    def __post_init__(self) -> None:
        self.current = self.base

    def escalate(self, retry_after: float | None = None) -> float:
        """Raise the delay and return it.

        A server-supplied ``Retry-After`` replaces the doubling; either
        way the result stays within ``[base, ceiling]``.
        """
        target = retry_after if retry_after is not None else self.current * 2
        self.current = min(max(target, self.base), self.ceiling)
        return self.current

    def reset(self) -> None:
        self.current = self.base


class BaseScraper(ABC):
    """Abstract base class for market price scrapers."""

    def __init__(
        self,
        source_name: str,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.source_name = source_name
        self.logger = logging.getLogger(
            f"gersang_market.{source_name}"
        )
        self.settings = Settings()
        self.session = curl_requests.Session(
            impersonate=self.settings.IMPERSONATE_BROWSER
        )
        self.breaker = breaker if breaker is not None else CircuitBreaker()
        self.backoff = Backoff()
        self._fallback: Any = None
        self._request_timeout: int = self.settings.REQUEST_TIMEOUT

    def _request_headers(self) -> dict[str, str]:
        """Browser headers for a navigation that starts at the homepage."""
        return {
            **self.settings.DEFAULT_HEADERS,
            "Referer": self._get_homepage(),
            "sec-fetch-site": "same-origin",
        }

    def _block_reason(self, text: str) -> str | None:
        """Why *text* is not a usable page, or ``None`` if it is."""
        if text.lstrip().startswith(("{", "[")):
            return None
        lower = text.lower()
        for marker in CF_CHALLENGE_MARKERS:
            if marker in lower:
                return f"challenge marker '{marker}'"
        # Listing payloads may contain any word; a page with the
        # RSC stream was rendered by the board itself.
        if RSC_MARKER in text:
            return None
        for keyword in self.settings.CAPTCHA_KEYWORDS:
            if keyword in lower:
                return f"captcha keyword '{keyword}'"
        return None

    @staticmethod
    def _retry_after(resp: Any) -> float | None:
        """Seconds from a numeric ``Retry-After`` header, if any."""
        value = resp.headers.get("Retry-After")
        if not isinstance(value, str):
            return None
        try:
            return float(value)
        except ValueError:
            return None

    def _fetch_get(
        self,
        url: str,
        headers: dict[str, str],
    ) -> curl_requests.Response | None:
        """GET with retries and adaptive delay; ``None`` once exhausted."""
        for attempt in range(self.settings.MAX_RETRIES):
            try:
                resp = self.session.get(
                    url,
                    headers=headers,
                    timeout=self._request_timeout,
                )
            except Exception as exc:
                self.logger.warning(
                    "[%s] Request error on attempt %d: %s",
                    self.source_name,
                    attempt + 1,
                    exc,
                    exc_info=True,
                )
                time.sleep(self.backoff.current * (attempt + 1))
                continue

            if resp.status_code == 200:
                reason = self._block_reason(resp.text)
                if reason is None:
                    self.backoff.reset()
                    return resp
                self.logger.warning(
                    "[%s] Blocked on attempt %d (%s)",
                    self.source_name,
                    attempt + 1,
                    reason,
                )
                time.sleep(self.backoff.escalate())
                continue

            self.logger.warning(
                "[%s] HTTP %d on attempt %d",
                self.source_name,
                resp.status_code,
                attempt + 1,
            )
            if resp.status_code in _THROTTLE_STATUSES:
                delay = self.backoff.escalate(self._retry_after(resp))
                self.logger.warning(
                    "[%s] Throttled, delay now %.1fs",
                    self.source_name,
                    delay,
                )
                time.sleep(delay)
        return None

    def _fetch_fallback(
        self, url: str, headers: dict[str, str],
    ) -> str | None:
        """One cloudscraper attempt, held to the same block rules."""
        try:
            if self._fallback is None:
                _cs: Any = cloudscraper
                self._fallback = _cs.create_scraper()
            resp: Any = self._fallback.get(
                url,
                headers=headers,
                timeout=self._request_timeout,
            )
        except Exception as exc:
            self.logger.error(
                "[%s] cloudscraper fallback failed: %s",
                self.source_name,
                exc,
                exc_info=True,
            )
            return None
        if resp.status_code != 200:
            self.logger.warning(
                "[%s] cloudscraper fallback got HTTP %d",
                self.source_name,
                resp.status_code,
            )
            return None
        text = str(resp.text)
        reason = self._block_reason(text)
        if reason is not None:
            self.logger.warning(
                "[%s] cloudscraper fallback blocked (%s)",
                self.source_name,
                reason,
            )
            return None
        return text

    def _get_html(self, url: str) -> str | None:
        """Fetch a page body, falling back to cloudscraper on failure."""
        if not self.breaker.allows():
            self.logger.debug(
                "[%s] Circuit open, skipping %s", self.source_name, url,
            )
            return None
        headers = self._request_headers()
        time.sleep(self.backoff.current)

        # Primary: curl_cffi (browser-impersonating TLS)
        resp = self._fetch_get(url, headers)
        text = str(resp.text) if resp is not None else None
        if text is None:
            self.logger.info(
                "[%s] curl_cffi exhausted, falling back to cloudscraper",
                self.source_name,
            )
            text = self._fetch_fallback(url, headers)

        if text is None:
            if self.breaker.record_failure():
                self.logger.error(
                    "[%s] Circuit breaker opened after %d failed pages",
                    self.source_name,
                    self.breaker.failures,
                )
            return None
        self.breaker.record_success()
        return text

    @abstractmethod
    def _get_homepage(self) -> str:
        """Return the homepage URL for the Referer header."""
        ...

    @abstractmethod
    def fetch_item_price(self, item_name: str) -> ItemPrice | None:
        """Return current price statistics for one item."""
        ...
