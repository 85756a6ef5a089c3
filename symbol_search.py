"""Ticker symbol lookup for the add-callout form (Finnhub, with a static fallback)."""

from typing import Dict, List, Optional

import requests

from tracker_settings import get_setting

FINNHUB_SEARCH_URL = "https://finnhub.io/api/v1/search"
MAX_RESULTS = 10
MAX_FALLBACK_RESULTS = 5
SEARCH_TIMEOUT = 8

FALLBACK_SYMBOLS = [
    {"symbol": "AAPL", "name": "Apple Inc.", "displaySymbol": "AAPL"},
    {"symbol": "GOOGL", "name": "Alphabet Inc.", "displaySymbol": "GOOGL"},
    {"symbol": "MSFT", "name": "Microsoft Corporation", "displaySymbol": "MSFT"},
    {"symbol": "TSLA", "name": "Tesla, Inc.", "displaySymbol": "TSLA"},
    {"symbol": "AMZN", "name": "Amazon.com, Inc.", "displaySymbol": "AMZN"},
]


def fallback_matches(query: str) -> List[Dict[str, str]]:
    q = query.lower()
    return [
        s for s in FALLBACK_SYMBOLS
        if q in s["symbol"].lower() or q in s["name"].lower()
    ][:MAX_FALLBACK_RESULTS]


def search_symbols(query: str, api_key: Optional[str] = None,
                   session: Optional[requests.Session] = None) -> List[Dict[str, str]]:
    """
    Search symbols matching query.

    Keeps common stocks (or untyped rows), at most 10. Any failure (no key,
    network error, non-200, bad payload) falls back to the static list.
    """
    query = str(query or "").strip()
    if not query:
        raise ValueError("Query parameter is required")

    key = api_key if api_key is not None else str(get_setting("FINNHUB_API_KEY", ""))
    http = session or requests
    try:
        if not key:
            raise RuntimeError("FINNHUB_API_KEY not configured")
        resp = http.get(FINNHUB_SEARCH_URL, params={"q": query, "token": key}, timeout=SEARCH_TIMEOUT)
        if resp.status_code != 200:
            raise RuntimeError(f"HTTP {resp.status_code}")
        rows = (resp.json() or {}).get("result") or []
        results = []
        for item in rows:
            if not isinstance(item, dict):
                continue
            if item.get("type") and item.get("type") != "Common Stock":
                continue
            results.append({
                "symbol": str(item.get("symbol", "")),
                "name": str(item.get("description", "")),
                "displaySymbol": str(item.get("displaySymbol", "")),
            })
            if len(results) >= MAX_RESULTS:
                break
        return results
    except Exception as e:
        print(f"[symbol_search] Lookup failed for {query!r}, using fallback list: {e}")
        return fallback_matches(query)
