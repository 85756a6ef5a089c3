"""
Callout Tracker Refresh Engine — Re-pricing & Edit Orchestration
=================================================================

Glue between the price fetcher, the target engine and the store:
- refresh_all(): re-price every position in batches, evaluate, write back
- add_callout(): new position with an initial price fetch
- mass_import(): one position per ticker at its current price
- apply_edit(): single-field user edit followed by re-evaluation
- reevaluate_all(): re-run the engine at stored prices (no network)

Failure policy: one ticker failing never fails the batch. The position
is left untouched, the error is counted and logged, processing continues.

Version: 1.0.0 (2026-10-18)
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from callout_models import (
    HIT_NA, HIT_NO, HIT_UNSET, HIT_YES, TARGET_INDEXES, CalloutValidationError,
    Position, PositionUpdate, coerce_optional_price,
)
from callout_store import CalloutStore, StorePersistenceError
from price_fetcher import NoPriceAvailableError, PriceAggregator
from target_engine import describe_transition, evaluate


# =============================================================================
# CONSTANTS
# =============================================================================

LARGE_LIST_THRESHOLD = 30   # positions
SMALL_BATCH_SIZE = 15
LARGE_BATCH_SIZE = 20
SMALL_BATCH_DELAY = 0.3     # seconds between batches
LARGE_BATCH_DELAY = 0.5

# Fields produced by the target engine; a refresh writes only these
DERIVED_FIELDS = (
    "current_price", "percent_since_callout", "percent_made",
    "target1_hit", "target2_hit", "target3_hit", "stop_hit", "buy_zone_hit",
    "target1_date", "target2_date", "target3_date",
)

def target_level_resets(position: Position, update: PositionUpdate) -> PositionUpdate:
    """
    Add the flag and date resets implied by changed target levels.

    A cleared level (None or 0) clears its flag. A new level starts over at
    NO, or N/A once the stop has fired. Unchanged levels and targets whose
    flag the update sets explicitly are left alone.
    """
    resets: Dict[str, Any] = {}
    for i in TARGET_INDEXES:
        name = f"target{i}"
        if not update.has(name) or update.has(f"{name}_hit"):
            continue
        level = update.get(name)
        if level == position.target(i):
            continue
        if not level:
            resets[name] = None
            resets[f"{name}_hit"] = HIT_UNSET
        elif position.stop_hit == HIT_YES:
            resets[f"{name}_hit"] = HIT_NA
        else:
            resets[f"{name}_hit"] = HIT_NO
        resets[f"{name}_date"] = None
    return update.merged(PositionUpdate(values=resets))


def batch_plan(count: int) -> Tuple[int, float]:
    """(batch_size, delay_seconds) for a refresh over count positions."""
    if count >= LARGE_LIST_THRESHOLD:
        return LARGE_BATCH_SIZE, LARGE_BATCH_DELAY
    return SMALL_BATCH_SIZE, SMALL_BATCH_DELAY


def derived_update(position: Position) -> PositionUpdate:
    return PositionUpdate(values={name: getattr(position, name) for name in DERIVED_FIELDS})


def _hit_snapshot(position: Position) -> Dict[str, str]:
    return {
        "target1Hit": position.target1_hit,
        "target2Hit": position.target2_hit,
        "target3Hit": position.target3_hit,
        "stopHit": position.stop_hit,
        "buyZoneHit": position.buy_zone_hit,
    }


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class RefreshResult:
    success_count: int = 0
    error_count: int = 0
    total: int = 0
    failed_tickers: List[str] = field(default_factory=list)
    skipped: bool = False
    elapsed_sec: float = 0.0

    def message(self) -> str:
        if self.skipped:
            return "Refresh already in progress"
        msg = f"Updated {self.success_count}/{self.total} stocks"
        if self.error_count:
            msg += f" ({self.error_count} errors)"
        return msg

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message(),
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "total": self.total,
            "failedTickers": list(self.failed_tickers),
            "skipped": self.skipped,
        }


@dataclass
class MassImportResult:
    added: List[Position] = field(default_factory=list)
    failed_tickers: List[str] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.added)

    @property
    def error_count(self) -> int:
        return len(self.failed_tickers)

    def message(self) -> str:
        msg = f"Mass import completed: {self.success_count} stocks added successfully"
        if self.failed_tickers:
            msg += f", {self.error_count} failed"
            if self.error_count <= 5:
                msg += f" ({', '.join(self.failed_tickers)})"
            else:
                msg += f" ({', '.join(self.failed_tickers[:5])} and {self.error_count - 5} more)"
        return msg

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message(),
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "failedTickers": list(self.failed_tickers),
            "added": [p.to_dict() for p in self.added],
        }


def parse_ticker_lines(text: Union[str, Iterable[str]]) -> List[str]:
    """Split a textarea / list into upper-cased, non-empty tickers."""
    lines = text.splitlines() if isinstance(text, str) else list(text)
    return [str(line).strip().upper() for line in lines if str(line).strip()]


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class RefreshOrchestrator:
    """Runs price refreshes and user edits against a CalloutStore."""

    def __init__(self, store: CalloutStore, prices: PriceAggregator,
                 sleep: Callable[[float], None] = time.sleep):
        self.store = store
        self.prices = prices
        self._sleep = sleep
        self._busy = threading.Lock()
        self.last_result: Optional[RefreshResult] = None

    @property
    def is_refreshing(self) -> bool:
        return self._busy.locked()

    # --- Batch refresh -------------------------------------------------------

    def refresh_all(self) -> RefreshResult:
        """
        Re-price every stored position.

        Reads one snapshot up front. Price fetches within a batch run
        concurrently; evaluation and writes happen here, one position at
        a time. A second call while one is running returns skipped=True.
        """
        if not self._busy.acquire(blocking=False):
            print("[refresh] Refresh already running, skipping")
            return RefreshResult(skipped=True)

        started = time.time()
        try:
            positions = self.store.list()
            result = RefreshResult(total=len(positions))
            if not positions:
                return result

            batch_size, delay = batch_plan(len(positions))
            print(f"[refresh] Starting price refresh for {len(positions)} stocks "
                  f"(batch size: {batch_size}, delay: {delay}s)")

            for start in range(0, len(positions), batch_size):
                batch = positions[start:start + batch_size]
                self._refresh_batch(batch, result)
                if start + batch_size < len(positions):
                    self._sleep(delay)

            result.elapsed_sec = round(time.time() - started, 2)
            print(f"[refresh] {result.message()} in {result.elapsed_sec}s")
            self.last_result = result
            return result
        finally:
            self._busy.release()

    def _refresh_batch(self, batch: List[Position], result: RefreshResult) -> None:
        with ThreadPoolExecutor(max_workers=len(batch)) as executor:
            futures = {executor.submit(self.prices.get_price, p.ticker): p for p in batch}
            for future in as_completed(futures):
                position = futures[future]
                try:
                    price = future.result()
                except Exception as e:
                    print(f"[refresh] Failed to update {position.ticker}: {e}")
                    result.error_count += 1
                    result.failed_tickers.append(position.ticker)
                    continue

                try:
                    saved = self._apply_price(position, price)
                except (StorePersistenceError, CalloutValidationError) as e:
                    print(f"[refresh] Failed to save {position.ticker}: {e}")
                    saved = None

                if saved is None:
                    result.error_count += 1
                    result.failed_tickers.append(position.ticker)
                else:
                    result.success_count += 1

    def _apply_price(self, position: Position, price: float) -> Optional[Position]:
        after = evaluate(position, price)
        changes = describe_transition(position, after)
        if changes:
            print(f"[refresh] {position.ticker} @ {price}: {'; '.join(changes)}")
        return self.store.update(position.id, derived_update(after))

    # --- Adding positions ----------------------------------------------------

    def fetch_price_or(self, ticker: str, fallback: float) -> float:
        """Fresh price for ticker, or fallback when no source has one."""
        try:
            return self.prices.get_price(ticker)
        except (NoPriceAvailableError, ValueError) as e:
            print(f"[refresh] {e}; using {fallback}")
            return fallback

    def add_callout(self, fields: Dict[str, Any]) -> Position:
        """
        Create a position from user input.

        Requires a ticker and a callout price > 0 (CalloutValidationError
        otherwise). The current price comes from the price chain, falling
        back to the callout price.
        """
        ticker = str(fields.get("ticker", "") or "").upper().strip()
        callout = coerce_optional_price(fields.get("calloutPrice", fields.get("callout_price")))
        if not ticker or callout is None:
            raise CalloutValidationError("Ticker and callout price are required")
        if callout <= 0:
            raise CalloutValidationError("Callout price must be greater than 0")

        current = fields.get("currentPrice", fields.get("current_price"))
        current = coerce_optional_price(current) or self.fetch_price_or(ticker, callout)

        position = Position.from_dict({**fields, "ticker": ticker})
        position.callout_price = callout
        for name in ("target1", "target2", "target3", "stop_loss", "buy_zone_low", "buy_zone_high"):
            if not getattr(position, name):
                setattr(position, name, None)
        position = evaluate(position, current)
        return self.store.add(position)

    def mass_import(self, tickers: Union[str, Iterable[str]]) -> MassImportResult:
        """Add one callout per ticker, using its current price as the callout price."""
        result = MassImportResult()
        for ticker in parse_ticker_lines(tickers):
            try:
                price = self.prices.get_price(ticker)
                result.added.append(self.add_callout({
                    "ticker": ticker,
                    "calloutPrice": price,
                    "currentPrice": price,
                }))
            except (NoPriceAvailableError, CalloutValidationError, StorePersistenceError, ValueError) as e:
                print(f"[refresh] Failed to import {ticker}: {e}")
                result.failed_tickers.append(ticker)
        print(f"[refresh] {result.message()}")
        return result

    # --- Edits ---------------------------------------------------------------

    def apply_edit(self, position_id: str, field_name: str, value: Any) -> Optional[Position]:
        """
        Apply a single-field user edit, then re-evaluate at the stored price.

        Target edits go through target_level_resets() so the engine can
        re-detect the new level.
        """
        return self.apply_update(position_id, {field_name: value})

    def apply_update(self, position_id: str,
                     update: Union[PositionUpdate, Dict[str, Any]]) -> Optional[Position]:
        """Multi-field edit (API PUT): store merge, then re-evaluate."""
        if not isinstance(update, PositionUpdate):
            update = PositionUpdate.from_dict(update)
        existing = self.store.get_by_id(position_id)
        if existing is None:
            return None
        updated = self.store.update(position_id, target_level_resets(existing, update))
        if updated is None:
            return None
        return self._reevaluate(updated)

    def _reevaluate(self, position: Position) -> Position:
        if position.current_price <= 0:
            return position
        after = evaluate(position, position.current_price)
        saved = self.store.update(position.id, derived_update(after))
        return saved if saved is not None else after

    def reevaluate_all(self) -> List[Dict[str, Any]]:
        """Re-run the engine for every position at its stored price."""
        report = []
        for position in self.store.list():
            if position.current_price <= 0:
                continue
            after = self._reevaluate(position)
            report.append({
                "ticker": position.ticker,
                "currentPrice": position.current_price,
                "targets": {f"target{i}": position.target(i) for i in TARGET_INDEXES},
                "before": _hit_snapshot(position),
                "after": _hit_snapshot(after),
            })
        return report
