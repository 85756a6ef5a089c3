"""Table helpers for the dashboard: filters, date sort, percent formatting, row status."""

import math
from typing import Iterable, List, Optional

import pandas as pd

from callout_models import HIT_UNSET, HIT_YES, STOP_DEACTIVATED, Position
from target_engine import has_target_hit

FILTER_MODES = {
    "all": "All Stocks",
    "targetHits": "Target Hits",
    "active": "Active",
    "stopLossHit": "Stop Loss Hit",
}
SORT_ORDERS = ("newest", "oldest")

STATUS_CLOSED = "closed"
STATUS_HIT = "hit"
STATUS_OPEN = "open"


def filter_callouts(positions: Iterable[Position], mode: str = "all") -> List[Position]:
    """
    all          every position
    targetHits   at least one target YES
    active       some target in play and the stop not hit
    stopLossHit  stop YES
    """
    positions = list(positions)
    if mode == "targetHits":
        return [p for p in positions if has_target_hit(p)]
    if mode == "active":
        return [
            p for p in positions
            if any(p.target_hit(i) != HIT_UNSET for i in (1, 2, 3)) and p.stop_hit != HIT_YES
        ]
    if mode == "stopLossHit":
        return [p for p in positions if p.stop_hit == HIT_YES]
    return positions


def _date_value(value: str) -> Optional[float]:
    if not value:
        return None
    parsed = pd.to_datetime(value, errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.timestamp()


def sort_by_date(positions: Iterable[Position], order: str = "newest") -> List[Position]:
    """Dated positions first (newest or oldest first); undated keep their order."""
    sign = -1 if order == "newest" else 1

    def key(p: Position):
        ts = _date_value(p.date)
        if ts is None:
            return (1, 0.0)
        return (0, sign * ts)

    return sorted(positions, key=key)


def format_percent(value: Optional[float]) -> str:
    if value is None:
        return "0.00%"
    try:
        value = float(value)
    except (TypeError, ValueError):
        return "0.00%"
    if math.isnan(value):
        return "0.00%"
    return f"{'+' if value >= 0 else ''}{value:.2f}%"


def row_status(position: Position) -> str:
    if position.stop_hit in (HIT_YES, STOP_DEACTIVATED):
        return STATUS_CLOSED
    if has_target_hit(position):
        return STATUS_HIT
    return STATUS_OPEN


def format_buy_zone(position: Position) -> str:
    low, high = position.buy_zone_low, position.buy_zone_high
    if low and high:
        return f"{low:.2f}-{high:.2f}"
    if low:
        return f"${low:.2f}+"
    if high:
        return f"${high:.2f}"
    return "-"
