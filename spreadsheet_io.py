"""
Callout Tracker Spreadsheet I/O — Excel Import & Export
========================================================

Import layout (first sheet, no header row, first row skipped):

    A      B       C             D        E        F        G
    Empty  Ticker  CalloutPrice  Target1  Target2  Target3  StopLoss
    H             I                    J      K      L      M        N
    CurrentPrice  PercentSinceCallout  T1Hit  T2Hit  T3Hit  StopHit  PercentMade
    O       P       Q
    T1Date  T2Date  T3Date

Only ticker, callout price and levels are carried into the store; hit
status is recomputed by the target engine at a freshly fetched price.

Export writes one "Stock Positions" sheet with formatted percent columns.

Version: 1.0.0 (2026-10-18)
"""

import io
import zipfile
from datetime import date
from typing import Any, BinaryIO, Callable, Dict, Iterable, List, Optional, Union

import pandas as pd
from openpyxl.utils import get_column_letter

from callout_models import (
    HIT_UNSET, CalloutValidationError, Position, coerce_optional_price,
)


# =============================================================================
# CONSTANTS
# =============================================================================

IMPORT_COLUMNS = [
    "Empty", "Ticker", "CalloutPrice", "Target1", "Target2", "Target3",
    "StopLoss", "CurrentPrice", "PercentSinceCallout", "T1Hit", "T2Hit",
    "T3Hit", "StopHit", "PercentMade", "T1Date", "T2Date", "T3Date",
]

ALLOWED_EXTENSIONS = (".xlsx", ".xls", ".xlsm")
ALLOWED_CONTENT_TYPES = (
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
    "application/vnd.ms-excel.sheet.macroEnabled.12",
)
XLSX_CONTENT_TYPE = ALLOWED_CONTENT_TYPES[0]

EXPORT_SHEET_NAME = "Stock Positions"

# (header, column width)
EXPORT_COLUMNS = [
    ("Ticker", 10),
    ("Callout", 15),
    ("Target 1", 12),
    ("Target 2", 12),
    ("Target 3", 12),
    ("Stop Loss", 12),
    ("Buy Zone Low", 12),
    ("Buy Zone High", 12),
    ("Current Price", 15),
    ("% Since Callout", 18),
    ("T1 Hit", 8),
    ("T2 Hit", 8),
    ("T3 Hit", 8),
    ("Stop Hit", 10),
    ("Buy Hit", 8),
    ("% Made", 12),
    ("T1 Date", 12),
    ("T2 Date", 12),
    ("T3 Date", 12),
    ("Created Date", 15),
]

class SpreadsheetImportError(ValueError):
    """The uploaded file is not a usable callout sheet."""


def is_spreadsheet_upload(filename: str, content_type: str = "") -> bool:
    name = (filename or "").lower()
    return content_type in ALLOWED_CONTENT_TYPES or name.endswith(ALLOWED_EXTENSIONS)


# =============================================================================
# CELL PARSING
# =============================================================================

def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and pd.isna(value):
        return True
    return isinstance(value, str) and not value.strip()


def _sheet_number(value: Any) -> Optional[float]:
    """Numeric cell or None. Text that is not a number counts as empty."""
    try:
        return coerce_optional_price(value)
    except CalloutValidationError:
        return None


# =============================================================================
# IMPORT
# =============================================================================

def read_callout_rows(source: Union[str, bytes, BinaryIO]) -> List[Dict[str, Any]]:
    """
    Read the first sheet into dicts keyed by IMPORT_COLUMNS.

    Cells are returned as read; blank cells are None. Hit and date
    columns are left uninterpreted since import recomputes them. Raises
    SpreadsheetImportError when the file cannot be read or has no data rows.
    """
    if isinstance(source, bytes):
        source = io.BytesIO(source)
    try:
        df = pd.read_excel(source, sheet_name=0, header=None, skiprows=1)
    except (ValueError, ImportError, OSError, KeyError, zipfile.BadZipFile) as e:
        raise SpreadsheetImportError(f"Could not read spreadsheet: {e}") from e

    df = df.dropna(how="all")
    if df.empty:
        raise SpreadsheetImportError("Excel file is empty")

    df = df.iloc[:, :len(IMPORT_COLUMNS)].copy()
    df.columns = IMPORT_COLUMNS[:df.shape[1]]
    for col in IMPORT_COLUMNS[df.shape[1]:]:
        df[col] = None
    df = df.astype(object).where(pd.notna(df), None)

    return df.to_dict("records")


def rows_to_import_records(rows: Iterable[Dict[str, Any]],
                           price_lookup: Callable[[str], float]) -> List[Dict[str, Any]]:
    """
    Turn sheet rows into CalloutStore.import_many() records.

    Rows with a blank ticker or a callout price <= 0 are passed through
    unpriced so the store counts them as errors. Everything else gets a fresh
    market price (callout price when the lookup fails) and clean hit state.
    """
    records = []
    for i, row in enumerate(rows, start=1):
        ticker = "" if _blank(row.get("Ticker")) else str(row.get("Ticker")).strip().upper()
        callout = _sheet_number(row.get("CalloutPrice")) or 0.0
        levels = {
            key: _sheet_number(row.get(col)) or None
            for key, col in (("target1", "Target1"), ("target2", "Target2"),
                             ("target3", "Target3"), ("stopLoss", "StopLoss"))
        }

        market = 0.0
        if ticker and callout > 0:
            try:
                market = float(price_lookup(ticker) or 0)
            except Exception as e:
                print(f"[spreadsheet_io] Row {i}: price lookup failed for {ticker}: {e}")
            if market <= 0:
                print(f"[spreadsheet_io] Row {i}: no market price for {ticker}, using callout price")
                market = callout

        records.append({
            "ticker": ticker,
            "calloutPrice": callout,
            **levels,
            "currentPrice": market,
            "percentSinceCallout": 0.0,
            "percentMade": 0.0,
            "target1Hit": HIT_UNSET,
            "target2Hit": HIT_UNSET,
            "target3Hit": HIT_UNSET,
            "stopHit": HIT_UNSET,
            "buyZoneHit": HIT_UNSET,
        })
    return records


# =============================================================================
# EXPORT
# =============================================================================

def _level(value: Optional[float]) -> Any:
    return value if value else ""


def _pct(value: float) -> str:
    return f"{value:.2f}%"


def export_rows(positions: Iterable[Position]) -> List[Dict[str, Any]]:
    rows = []
    for p in positions:
        rows.append({
            "Ticker": p.ticker,
            "Callout": p.callout_price,
            "Target 1": _level(p.target1),
            "Target 2": _level(p.target2),
            "Target 3": _level(p.target3),
            "Stop Loss": _level(p.stop_loss),
            "Buy Zone Low": _level(p.buy_zone_low),
            "Buy Zone High": _level(p.buy_zone_high),
            "Current Price": p.current_price,
            "% Since Callout": _pct(p.percent_since_callout),
            "T1 Hit": p.target1_hit or "",
            "T2 Hit": p.target2_hit or "",
            "T3 Hit": p.target3_hit or "",
            "Stop Hit": p.stop_hit or "",
            "Buy Hit": p.buy_zone_hit or "",
            "% Made": _pct(p.percent_made) if p.percent_made != 0 else "",
            "T1 Date": p.target1_date or "",
            "T2 Date": p.target2_date or "",
            "T3 Date": p.target3_date or "",
            "Created Date": (p.created_at or "")[:10],
        })
    return rows


def export_workbook_bytes(positions: Iterable[Position]) -> bytes:
    headers = [name for name, _ in EXPORT_COLUMNS]
    df = pd.DataFrame(export_rows(positions), columns=headers)

    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=EXPORT_SHEET_NAME, index=False)
        sheet = writer.sheets[EXPORT_SHEET_NAME]
        for idx, (_, width) in enumerate(EXPORT_COLUMNS, start=1):
            sheet.column_dimensions[get_column_letter(idx)].width = width
    return buffer.getvalue()


def export_filename(today: Optional[date] = None) -> str:
    today = today or date.today()
    return f"stock_positions_{today.isoformat()}.xlsx"
