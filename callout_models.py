"""
Callout Tracker Models
======================

Position record and the explicit partial-update structure.

Stored JSON and the interchange format use camelCase keys (calloutPrice,
target1Hit, ...). Python code uses the snake_case attributes below;
to_dict()/from_dict() translate between the two.

Version: 1.0.0 (2026-10-18)
"""

import math
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional


# =============================================================================
# CONSTANTS
# =============================================================================

HIT_YES = "YES"
HIT_NO = "NO"
HIT_NA = "N/A"
HIT_UNSET = ""
STOP_DEACTIVATED = "X"

TARGET_INDEXES = (1, 2, 3)

TARGET_HIT_VALUES = frozenset({HIT_UNSET, HIT_NO, HIT_YES, HIT_NA})
STOP_HIT_VALUES = frozenset({HIT_UNSET, HIT_NO, HIT_NA, HIT_YES, STOP_DEACTIVATED})
BUY_ZONE_VALUES = frozenset({HIT_UNSET, HIT_YES, HIT_NO})

# Status field -> allowed values
STATUS_VALUES = {
    "target1_hit": TARGET_HIT_VALUES,
    "target2_hit": TARGET_HIT_VALUES,
    "target3_hit": TARGET_HIT_VALUES,
    "stop_hit": STOP_HIT_VALUES,
    "buy_zone_hit": BUY_ZONE_VALUES,
}

# snake_case attribute -> camelCase storage key
FIELD_KEYS = {
    "id": "id",
    "ticker": "ticker",
    "date": "date",
    "callout_price": "calloutPrice",
    "target1": "target1",
    "target2": "target2",
    "target3": "target3",
    "stop_loss": "stopLoss",
    "buy_zone_low": "buyZoneLow",
    "buy_zone_high": "buyZoneHigh",
    "current_price": "currentPrice",
    "percent_since_callout": "percentSinceCallout",
    "percent_made": "percentMade",
    "target1_hit": "target1Hit",
    "target2_hit": "target2Hit",
    "target3_hit": "target3Hit",
    "stop_hit": "stopHit",
    "buy_zone_hit": "buyZoneHit",
    "target1_date": "target1Date",
    "target2_date": "target2Date",
    "target3_date": "target3Date",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
}
KEY_FIELDS = {v: k for k, v in FIELD_KEYS.items()}

OPTIONAL_PRICE_FIELDS = frozenset({
    "target1", "target2", "target3", "stop_loss", "buy_zone_low", "buy_zone_high",
})
NUMBER_FIELDS = frozenset({
    "callout_price", "current_price", "percent_since_callout", "percent_made",
})
OPTIONAL_TEXT_FIELDS = frozenset({"target1_date", "target2_date", "target3_date"})

# Fields a caller may never overwrite through an update
IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


class CalloutValidationError(ValueError):
    """A required field is missing or a value cannot be used."""


# =============================================================================
# NUMBER COERCION
# =============================================================================

def coerce_optional_price(value: Any) -> Optional[float]:
    """
    Parse an optional price level.

    None, blank strings and NaN become None. Strings may carry '$' and
    thousands separators. Raises CalloutValidationError for anything else
    that is not a finite number.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.replace("$", "").replace(",", "").strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise CalloutValidationError(f"Not a number: {value!r}")
    if math.isnan(number):
        return None
    if math.isinf(number):
        raise CalloutValidationError(f"Not a finite number: {value!r}")
    return number


# =============================================================================
# POSITION
# =============================================================================

@dataclass
class Position:
    """One tracked callout."""
    ticker: str
    id: str = ""
    date: str = ""
    callout_price: float = 0.0
    target1: Optional[float] = None
    target2: Optional[float] = None
    target3: Optional[float] = None
    stop_loss: Optional[float] = None
    buy_zone_low: Optional[float] = None
    buy_zone_high: Optional[float] = None
    current_price: float = 0.0
    percent_since_callout: float = 0.0
    percent_made: float = 0.0
    target1_hit: str = HIT_UNSET
    target2_hit: str = HIT_UNSET
    target3_hit: str = HIT_UNSET
    stop_hit: str = HIT_UNSET
    buy_zone_hit: str = HIT_UNSET
    target1_date: Optional[str] = None
    target2_date: Optional[str] = None
    target3_date: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    # --- Indexed target access -----------------------------------------------

    def target(self, i: int) -> Optional[float]:
        return getattr(self, f"target{i}")

    def target_hit(self, i: int) -> str:
        return getattr(self, f"target{i}_hit")

    def target_date(self, i: int) -> Optional[str]:
        return getattr(self, f"target{i}_date")

    def set_target_hit(self, i: int, status: str) -> None:
        setattr(self, f"target{i}_hit", status)

    def set_target_date(self, i: int, value: Optional[str]) -> None:
        setattr(self, f"target{i}_date", value)

    def copy(self) -> "Position":
        return replace(self)

    # --- Serialization -------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """camelCase dict; undefined optional levels and dates are omitted."""
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            out[FIELD_KEYS[f.name]] = value
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        """Build from a stored/imported dict (camelCase or snake_case keys)."""
        kwargs = _normalize_keys(data, strict=False)
        kwargs.setdefault("ticker", "")
        for name in NUMBER_FIELDS:
            if kwargs.get(name, 0.0) is None:
                kwargs[name] = 0.0
        return cls(**kwargs)


def _normalize_keys(data: Dict[str, Any], strict: bool) -> Dict[str, Any]:
    """Map incoming keys to attribute names and coerce value types."""
    out: Dict[str, Any] = {}
    for key, value in data.items():
        name = KEY_FIELDS.get(key, key)
        if name not in FIELD_KEYS:
            if strict:
                raise CalloutValidationError(f"Unknown field: {key}")
            continue
        out[name] = _coerce_field(name, value, strict)
    return out


def _coerce_field(name: str, value: Any, strict: bool = False) -> Any:
    if name in STATUS_VALUES:
        return _coerce_status(name, value, strict)
    if name in OPTIONAL_PRICE_FIELDS or name in NUMBER_FIELDS:
        return coerce_optional_price(value)
    if name in OPTIONAL_TEXT_FIELDS:
        return str(value) if value else None
    if name == "ticker":
        return str(value or "").upper().strip()
    return "" if value is None else str(value)


def _coerce_status(name: str, value: Any, strict: bool) -> str:
    """Hit flags are case-insensitive; unknown values raise (strict) or read as unset."""
    status = "" if value is None else str(value).strip().upper()
    if status in STATUS_VALUES[name]:
        return status
    if strict:
        raise CalloutValidationError(f"Invalid {FIELD_KEYS[name]}: {value!r}")
    print(f"[callout_models] Unknown {FIELD_KEYS[name]} {value!r}, treating as unset")
    return HIT_UNSET


# =============================================================================
# PARTIAL UPDATE
# =============================================================================

@dataclass
class PositionUpdate:
    """
    Field-level update for a Position.

    Only fields that were explicitly provided are applied. A provided field
    may carry None (e.g. clearing target2), which is different from the
    field being absent.
    """
    values: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def of(cls, **kwargs) -> "PositionUpdate":
        return cls.from_dict(kwargs)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PositionUpdate":
        values = _normalize_keys(data, strict=True)
        blocked = IMMUTABLE_FIELDS.intersection(values)
        if blocked:
            raise CalloutValidationError(f"Field cannot be updated: {', '.join(sorted(blocked))}")
        return cls(values=values)

    def has(self, name: str) -> bool:
        return name in self.values

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def is_empty(self) -> bool:
        return not self.values

    def merged(self, other: "PositionUpdate") -> "PositionUpdate":
        return PositionUpdate(values={**self.values, **other.values})

    def apply_to(self, position: Position) -> Position:
        """Return a copy of position with the provided fields overwritten."""
        updated = position.copy()
        for name, value in self.values.items():
            if name == "ticker" and not value:
                raise CalloutValidationError("Ticker cannot be empty")
            if name == "callout_price" and value is None:
                raise CalloutValidationError("Callout price cannot be empty")
            if name in NUMBER_FIELDS and value is None:
                value = 0.0
            setattr(updated, name, value)
        return updated
