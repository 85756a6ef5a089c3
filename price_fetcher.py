"""
Callout Tracker Price Fetcher — Multi-Source Quotes
====================================================

ALL price lookups go through this module.

Providers are tried in priority order; the first plausible price wins and
is cached per ticker for a short window (25s by default, less than the
30s auto-refresh interval). A provider failure of any kind (network error,
non-200, parse miss, implausible value) just moves on to the next one.

Sources:
  1. Yahoo Finance chart API (JSON)
  2. yfinance history (last close)
  3. MarketWatch, CNN Money, Bloomberg, Reuters (HTML, best-effort regex)

Version: 1.0.0 (2026-10-18)
"""

import logging
import math
import re
import time
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, List, Optional

import requests
import yfinance as yf

# yfinance and urllib3 log at ERROR for routine misses (delisted symbols,
# 404s on scraped pages). Keep them out of the server logs.
logging.getLogger('yfinance').setLevel(logging.CRITICAL)
logging.getLogger('urllib3').setLevel(logging.WARNING)


# =============================================================================
# CONSTANTS
# =============================================================================

CACHE_DURATION = 25          # seconds
MAX_PLAUSIBLE_PRICE = 100000
REQUEST_TIMEOUT = 10

REQUEST_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

YAHOO_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{ticker}"

_NUM = r"\$?([\d,]+\.?\d*)"

HTML_SOURCES = {
    "MarketWatch": (
        "https://www.marketwatch.com/investing/stock/{ticker}",
        [
            r'"price":\s*"?' + _NUM + '"?',
            r'class="value"[^>]*>\s*' + _NUM,
            r'data-field="regularMarketPrice"[^>]*>\s*' + _NUM,
            r'h3[^>]*class="intraday__price"[^>]*>\s*' + _NUM,
        ],
    ),
    "CNN Money": (
        "https://money.cnn.com/quote/quote.html?symb={ticker}",
        [
            r'"streamDataField":\s*"([\d,]+\.?\d*)"',
            r'class="wsod_fRight"[^>]*>\s*' + _NUM,
            r'data-field="last_price"[^>]*>\s*' + _NUM,
        ],
    ),
    "Bloomberg": (
        "https://www.bloomberg.com/quote/{ticker}:US",
        [
            r'"price":\s*"?' + _NUM + '"?',
            r'class="priceText"[^>]*>\s*' + _NUM,
            r'data-field="price"[^>]*>\s*' + _NUM,
        ],
    ),
    "Reuters": (
        "https://www.reuters.com/companies/{ticker}.O",
        [
            r'"value":\s*"?' + _NUM + '"?',
            r'class="field-value"[^>]*>\s*' + _NUM,
            r'data-field="lastPrice"[^>]*>\s*' + _NUM,
        ],
    ),
}


class NoPriceAvailableError(RuntimeError):
    """Every provider was tried and none produced a usable price."""


def is_plausible(price: Any) -> bool:
    try:
        value = float(price)
    except (TypeError, ValueError):
        return False
    return math.isfinite(value) and 0 < value < MAX_PLAUSIBLE_PRICE


# =============================================================================
# CACHE
# =============================================================================

@dataclass
class CachedPrice:
    price: float
    source: str
    timestamp: float


class PriceCache:
    """
    Per-ticker price cache.

    Entries expire `ttl` seconds after they were stored. Keys are
    upper-cased tickers. Construct once per process and hand it to the
    aggregator (and anything else that wants to peek at it).
    """

    def __init__(self, ttl: int = CACHE_DURATION, clock: Callable[[], float] = time.time):
        self._store: Dict[str, CachedPrice] = {}
        self.ttl = ttl
        self._clock = clock

    @staticmethod
    def _key(ticker: str) -> str:
        return str(ticker).upper().strip()

    def get_entry(self, ticker: str) -> Optional[CachedPrice]:
        key = self._key(ticker)
        entry = self._store.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp < self.ttl:
            return entry
        # Expired
        self._store.pop(key, None)
        return None

    def get(self, ticker: str) -> Optional[float]:
        entry = self.get_entry(ticker)
        return entry.price if entry else None

    def set(self, ticker: str, price: float, source: str = "") -> None:
        self._store[self._key(ticker)] = CachedPrice(float(price), source, self._clock())

    def clear(self) -> None:
        self._store.clear()

    def clear_one(self, ticker: str) -> None:
        self._store.pop(self._key(ticker), None)

    def stats(self) -> Dict[str, int]:
        now = self._clock()
        return {
            'entries': len(self._store),
            'expired': sum(1 for e in self._store.values() if now - e.timestamp >= self.ttl),
        }


# =============================================================================
# PROVIDERS
# =============================================================================

@dataclass
class PriceProvider:
    name: str
    fetch: Callable[[str], Optional[float]]


def fetch_yahoo_chart(ticker: str, session: requests.Session,
                      timeout: int = REQUEST_TIMEOUT) -> Optional[float]:
    """Yahoo chart endpoint: meta.regularMarketPrice, else first quote close."""
    try:
        resp = session.get(
            YAHOO_CHART_URL.format(ticker=ticker),
            headers={"Referer": "https://finance.yahoo.com/"},
            timeout=timeout,
        )
        if resp.status_code != 200:
            print(f"[price_fetcher] Yahoo Finance failed for {ticker}: HTTP {resp.status_code}")
            return None
        data = resp.json()
    except (requests.RequestException, ValueError) as e:
        print(f"[price_fetcher] Yahoo Finance error for {ticker}: {e}")
        return None

    results = ((data or {}).get("chart") or {}).get("result") or []
    if not results:
        return None
    chart = results[0] or {}

    price = (chart.get("meta") or {}).get("regularMarketPrice")
    if is_plausible(price):
        return float(price)

    quotes = (chart.get("indicators") or {}).get("quote") or []
    closes = (quotes[0] or {}).get("close") if quotes else None
    if closes and is_plausible(closes[0]):
        return float(closes[0])
    return None


def fetch_yfinance_close(ticker: str) -> Optional[float]:
    """Last close from a 2-day yfinance history."""
    try:
        hist = yf.Ticker(ticker).history(period='2d')
    except Exception as e:
        print(f"[price_fetcher] yfinance error for {ticker}: {e}")
        return None
    if hist is None or hist.empty or 'Close' not in hist.columns:
        return None
    px = hist['Close'].dropna()
    if px.empty:
        return None
    value = float(px.iloc[-1])
    return value if is_plausible(value) else None


def extract_price(html: str, patterns: List[str]) -> Optional[float]:
    """First plausible number captured by any pattern, in pattern order."""
    for pattern in patterns:
        for match in re.finditer(pattern, html):
            raw = match.group(1)
            if not raw:
                continue
            try:
                value = float(raw.replace(",", ""))
            except ValueError:
                continue
            if is_plausible(value):
                return value
    return None


def fetch_html_quote(ticker: str, source: str, session: requests.Session,
                     timeout: int = REQUEST_TIMEOUT) -> Optional[float]:
    url_template, patterns = HTML_SOURCES[source]
    try:
        resp = session.get(url_template.format(ticker=ticker), timeout=timeout)
        if resp.status_code != 200:
            print(f"[price_fetcher] {source} failed for {ticker}: HTTP {resp.status_code}")
            return None
        return extract_price(resp.text, patterns)
    except requests.RequestException as e:
        print(f"[price_fetcher] {source} error for {ticker}: {e}")
        return None


def default_providers(session: Optional[requests.Session] = None,
                      timeout: int = REQUEST_TIMEOUT) -> List[PriceProvider]:
    """The production provider chain, most reliable first."""
    if session is None:
        session = requests.Session()
        session.headers.update(REQUEST_HEADERS)
    providers = [
        PriceProvider("Yahoo Finance", partial(fetch_yahoo_chart, session=session, timeout=timeout)),
        PriceProvider("yfinance", fetch_yfinance_close),
    ]
    for source in HTML_SOURCES:
        providers.append(PriceProvider(
            source, partial(fetch_html_quote, source=source, session=session, timeout=timeout)
        ))
    return providers


# =============================================================================
# AGGREGATOR
# =============================================================================

class PriceAggregator:
    """
    Walks the provider chain for a ticker and caches the winner.

    Usage:
        cache = PriceCache(ttl=25)
        prices = PriceAggregator(cache)
        px = prices.get_price("AAPL")     # raises NoPriceAvailableError
    """

    def __init__(self, cache: Optional[PriceCache] = None,
                 providers: Optional[List[PriceProvider]] = None):
        self.cache = cache if cache is not None else PriceCache()
        self.providers = providers if providers is not None else default_providers()
        self._health: Dict[str, Any] = {
            'successes': 0,
            'failures': 0,
            'last_error': '',
            'last_success_ts': 0.0,
            'last_source': '',
        }

    def get_price(self, ticker: str) -> float:
        """
        Current price for ticker.

        Returns the cached price when still fresh; otherwise the first
        plausible provider result. Raises NoPriceAvailableError when the
        whole chain misses.
        """
        ticker = str(ticker).upper().strip()
        if not ticker:
            raise ValueError("Ticker is required")

        cached = self.cache.get_entry(ticker)
        if cached is not None:
            return cached.price

        for provider in self.providers:
            try:
                price = provider.fetch(ticker)
            except Exception as e:
                print(f"[price_fetcher] {provider.name} raised for {ticker}: {e}")
                continue
            if price is None or not is_plausible(price):
                continue
            price = float(price)
            self.cache.set(ticker, price, provider.name)
            self._health['successes'] += 1
            self._health['last_success_ts'] = time.time()
            self._health['last_source'] = provider.name
            print(f"[price_fetcher] {ticker} = {price} ({provider.name})")
            return price

        message = f"Could not fetch price for {ticker} from any source"
        self._health['failures'] += 1
        self._health['last_error'] = message
        raise NoPriceAvailableError(message)

    def get_cached_price(self, ticker: str) -> Optional[float]:
        return self.cache.get(ticker)

    def get_price_source(self, ticker: str) -> Optional[str]:
        entry = self.cache.get_entry(ticker)
        return entry.source if entry else None

    def clear_cache(self, ticker: Optional[str] = None) -> None:
        if ticker:
            self.cache.clear_one(ticker)
        else:
            self.cache.clear()

    def get_fetch_health(self) -> Dict[str, Any]:
        """Snapshot of fetch counters for diagnostics."""
        return {
            **self._health,
            'cache_entries': int(self.cache.stats().get('entries', 0)),
            'providers': [p.name for p in self.providers],
        }
