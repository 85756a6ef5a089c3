"""
Callout Tracker Target Engine — Target / Stop / Buy-Zone Evaluation
=====================================================================

Pure state transition: given a Position and a freshly observed price,
compute the next Position. NO network calls. NO storage. NO UI code.

Rules, applied in order (later steps depend on earlier resets):
  1. Record the price and recompute % since callout.
  2. Retrace reset: a target that was YES un-hits when price falls below it.
  3. Target hits, 1 → 2 → 3. Each hit snapshots % made (last one wins).
  4. Buy zone, recomputed from scratch every call.
  5. Stop-loss. A stop hit overrides % made and marks defined targets N/A.
  6. Defined targets still unset become NO (unless the stop had already fired).
  7. All three targets YES deactivates the stop (X); otherwise an untouched
     stop with no target hit reads N/A.
  8. % made only changes when step 3 or 5 produced a hit.

A level of 0 counts as "not defined" everywhere.

Version: 1.0.0 (2026-10-18)
"""

from datetime import date, datetime, timezone
from typing import List, Optional

from callout_models import (
    HIT_NA, HIT_NO, HIT_UNSET, HIT_YES, STOP_DEACTIVATED, TARGET_INDEXES,
    Position,
)


# =============================================================================
# HELPERS
# =============================================================================

def percent_change(price: float, callout_price: float) -> float:
    """Percent move from callout_price to price. 0 when there is no baseline."""
    if not callout_price:
        return 0.0
    return (float(price) - float(callout_price)) / float(callout_price) * 100.0


def is_defined(level: Optional[float]) -> bool:
    """Price levels of None or 0 are treated as not set."""
    return bool(level)


def today_iso(today: Optional[date] = None) -> str:
    return (today or datetime.now(timezone.utc).date()).isoformat()


def reset_hit_history(position: Position) -> Position:
    """
    Copy of position with every hit flag (stop included), hit date,
    buy-zone status and % made back at their unset defaults.
    """
    out = position.copy()
    for i in TARGET_INDEXES:
        out.set_target_hit(i, HIT_UNSET)
        out.set_target_date(i, None)
    out.stop_hit = HIT_UNSET
    out.buy_zone_hit = HIT_UNSET
    out.percent_made = 0.0
    return out


def buy_zone_status(price: float, low: Optional[float], high: Optional[float]) -> str:
    if is_defined(low) and is_defined(high):
        return HIT_YES if low <= price <= high else HIT_NO
    if is_defined(low):
        return HIT_YES if price <= low else HIT_NO
    if is_defined(high):
        return HIT_YES if price <= high else HIT_NO
    return HIT_UNSET


# =============================================================================
# EVALUATION
# =============================================================================

def evaluate(position: Position, new_price: float, today: Optional[date] = None) -> Position:
    """
    Compute the next state of position at new_price.

    Args:
        position: Current recorded state. Never modified.
        new_price: Observed market price.
        today: Date used to stamp newly hit targets (defaults to UTC today).

    Returns:
        A new Position.
    """
    price = float(new_price)
    callout = position.callout_price
    stamp = today_iso(today)

    out = position.copy()
    out.current_price = price
    out.percent_since_callout = percent_change(price, callout)

    stop_was_hit = position.stop_hit == HIT_YES
    stop_was_deactivated = position.stop_hit == STOP_DEACTIVATED

    # Retrace reset
    for i in TARGET_INDEXES:
        level = out.target(i)
        if out.target_hit(i) == HIT_YES and is_defined(level) and price < level:
            out.set_target_hit(i, HIT_UNSET)
            out.set_target_date(i, None)

    pending_percent_made: Optional[float] = None

    # Target hits
    for i in TARGET_INDEXES:
        level = out.target(i)
        if (is_defined(level) and out.target_hit(i) != HIT_YES
                and not stop_was_hit and price >= level):
            out.set_target_hit(i, HIT_YES)
            if not out.target_date(i):
                out.set_target_date(i, stamp)
            pending_percent_made = percent_change(level, callout)

    out.buy_zone_hit = buy_zone_status(price, out.buy_zone_low, out.buy_zone_high)

    # Stop-loss
    stop = out.stop_loss
    if is_defined(stop) and not stop_was_hit and not stop_was_deactivated and price <= stop:
        out.stop_hit = HIT_YES
        pending_percent_made = percent_change(stop, callout)
        for i in TARGET_INDEXES:
            if is_defined(out.target(i)):
                out.set_target_hit(i, HIT_NA)

    if not stop_was_hit:
        for i in TARGET_INDEXES:
            if is_defined(out.target(i)) and not out.target_hit(i):
                out.set_target_hit(i, HIT_NO)

    # Stop auto-deactivation
    hits = [out.target_hit(i) == HIT_YES for i in TARGET_INDEXES]
    if all(hits) and not stop_was_deactivated:
        out.stop_hit = STOP_DEACTIVATED
    elif not any(hits) and not out.stop_hit and is_defined(stop):
        out.stop_hit = HIT_NA

    if pending_percent_made is not None:
        out.percent_made = pending_percent_made

    return out


def has_target_hit(position: Position) -> bool:
    return any(position.target_hit(i) == HIT_YES for i in TARGET_INDEXES)


# =============================================================================
# DIAGNOSTICS
# =============================================================================

_WATCHED = (
    ("target1_hit", "T1"),
    ("target2_hit", "T2"),
    ("target3_hit", "T3"),
    ("stop_hit", "Stop"),
    ("buy_zone_hit", "Buy zone"),
)


def describe_transition(before: Position, after: Position) -> List[str]:
    """Human-readable list of status changes between two states."""
    changes = []
    for attr, label in _WATCHED:
        old = getattr(before, attr) or "-"
        new = getattr(after, attr) or "-"
        if old != new:
            changes.append(f"{label} {old} -> {new}")
    if before.percent_made != after.percent_made:
        changes.append(f"% made {before.percent_made:.2f} -> {after.percent_made:.2f}")
    return changes
