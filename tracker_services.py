"""Wiring of store, price aggregator and refresh engine shared by the API, dashboard and CLI."""

from dataclasses import dataclass
from typing import Optional

from callout_store import CalloutStore
from price_fetcher import PriceAggregator, PriceCache, default_providers
from refresh_engine import RefreshOrchestrator
from tracker_settings import TrackerSettings, load_settings


@dataclass
class TrackerServices:
    store: CalloutStore
    prices: PriceAggregator
    orchestrator: RefreshOrchestrator
    finnhub_api_key: str = ""


def build_services(settings: Optional[TrackerSettings] = None) -> TrackerServices:
    settings = settings or load_settings()
    store = CalloutStore(settings.data_path)
    prices = PriceAggregator(
        PriceCache(ttl=settings.price_cache_ttl),
        default_providers(timeout=settings.request_timeout),
    )
    return TrackerServices(
        store=store,
        prices=prices,
        orchestrator=RefreshOrchestrator(store, prices),
        finnhub_api_key=settings.finnhub_api_key,
    )
