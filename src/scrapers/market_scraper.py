# src/scrapers/market_scraper.py

"""Scraper for the Yukeuijeon market board (one game server).

The board is a Next.js page; listings only exist inside the React
Server Component payload pushed from ``<script>`` tags, with quotes
sometimes backslash-escaped.  Two field orders occur in the wild.
"""

import re
import urllib.parse
from dataclasses import dataclass

from bs4 import BeautifulSoup

from src.models.price_snapshot import ItemPrice, Listing, round_half_up
from src.scrapers.base_scraper import BaseScraper, CircuitBreaker

# "itemName":"...", ... "totalQuantity":15, "sellerName":"...", "price":2500000
_LISTING_RE = re.compile(
    r'\\?"itemName\\?":\\?"([^"\\]+)\\?"[^}]*?'
    r'\\?"totalQuantity\\?":\s*(\d+)[^}]*?'
    r'\\?"sellerName\\?":\\?"([^"\\]*)\\?"[^}]*?'
    r'\\?"price\\?":\s*(\d+)'
)

# Older layout: price before quantity, no seller
_ALT_LISTING_RE = re.compile(
    r'\\?"itemName\\?":\\?"([^"\\]+)\\?"[^}]*?'
    r'\\?"price\\?":\s*(\d+)[^}]*?'
    r'\\?"totalQuantity\\?":\s*(\d+)'
)


@dataclass
class RawListing:
    """One listing as found in the page payload."""

    item_name: str
    price: int
    total_quantity: int
    seller_name: str


class MarketScraper(BaseScraper):
    """Fetches current listings for one item and summarises them."""

    def __init__(self, breaker: CircuitBreaker | None = None) -> None:
        super().__init__("market", breaker)

    def _get_homepage(self) -> str:
        """The server's board landing page, where searches start."""
        return (
            f"{self.settings.MARKET_BASE_URL}"
            f"?serverId={self.settings.SERVER_ID}"
        )

    def build_url(self, item_name: str) -> str:
        """Market search URL for *item_name* on the configured server."""
        query = urllib.parse.urlencode({
            "serverId": self.settings.SERVER_ID,
            "itemName": item_name,
        })
        return f"{self.settings.MARKET_BASE_URL}?{query}"

    @staticmethod
    def _script_text(html: str) -> str:
        """Concatenate inline script bodies, where RSC payloads live."""
        soup = BeautifulSoup(html, "lxml")
        return "\n".join(
            script.get_text()
            for script in soup.find_all("script")
            if script.get_text()
        )

    def _match_listings(self, text: str) -> list[RawListing]:
        listings = [
            RawListing(
                item_name=m.group(1),
                price=int(m.group(4)),
                total_quantity=int(m.group(2)),
                seller_name=m.group(3) or self.settings.UNKNOWN_SELLER,
            )
            for m in _LISTING_RE.finditer(text)
        ]
        if listings:
            return listings
        return [
            RawListing(
                item_name=m.group(1),
                price=int(m.group(2)),
                total_quantity=int(m.group(3)),
                seller_name=self.settings.UNKNOWN_SELLER,
            )
            for m in _ALT_LISTING_RE.finditer(text)
        ]

    def extract_listings(self, html: str) -> list[RawListing]:
        """Pull every listing out of a market page.

        Script payloads are searched first; the raw page is the
        fallback for markup that carries the data elsewhere.
        """
        try:
            for text in (self._script_text(html), html):
                listings = self._match_listings(text)
                if listings:
                    return listings
        except Exception as exc:
            self.logger.error(
                "[market] Listing extraction failed: %s",
                exc,
                exc_info=True,
            )
        return []

    def summarise(
        self, item_name: str, listings: list[RawListing],
    ) -> ItemPrice:
        """Collapse matching listings into price statistics.

        Listings match when their name equals or contains *item_name*.
        No match yields an all-zero price, which the history store
        never records.
        """
        matched = [
            lst for lst in listings
            if lst.item_name == item_name or item_name in lst.item_name
        ]
        if not matched:
            return ItemPrice(
                min_price=0, max_price=0, avg_price=0, quantity=0,
            )

        prices = sorted(lst.price for lst in matched)
        return ItemPrice(
            min_price=prices[0],
            max_price=prices[-1],
            avg_price=round_half_up(sum(prices) / len(prices)),
            quantity=sum(lst.total_quantity for lst in matched),
            listings=[
                Listing(
                    price=lst.price,
                    quantity=lst.total_quantity,
                    seller_name=lst.seller_name,
                )
                for lst in matched[: self.settings.MAX_LISTINGS]
            ],
        )

    def fetch_item_price(self, item_name: str) -> ItemPrice | None:
        """Fetch and summarise one item. ``None`` if the page failed."""
        try:
            html = self._get_html(self.build_url(item_name))
            if html is None:
                self.logger.warning(
                    "[market] No page for '%s'", item_name,
                )
                return None
            info = self.summarise(
                item_name, self.extract_listings(html),
            )
            self.logger.debug(
                "[market] %s: min=%d qty=%d (%d listings)",
                item_name,
                info.min_price,
                info.quantity,
                len(info.listings),
            )
            return info
        except Exception as e:
            self.logger.error(
                "[market] Fetch failed for '%s': %s",
                item_name,
                e,
                exc_info=True,
            )
            return None
