"""
Callout Tracker Settings
========================

Configuration lookup shared by the dashboard, API and CLI.

Values come from environment variables first, then Streamlit secrets
(when running under Streamlit Cloud), then the defaults below.

Version: 1.0.0 (2026-10-18)
"""

import os
from dataclasses import dataclass
from typing import Any, Optional


# =============================================================================
# DEFAULTS
# =============================================================================

DEFAULT_DATA_PATH = "v2_callouts.json"
DEFAULT_PRICE_CACHE_TTL = 25        # seconds
DEFAULT_REQUEST_TIMEOUT = 10        # seconds per provider request


def get_setting(name: str, default: Any = "") -> Any:
    """Best-effort lookup from env, then Streamlit secrets, then default."""
    value = str(os.environ.get(name, "") or "").strip()
    if value:
        return value
    try:
        import streamlit as st  # Optional dependency path.
        value = str(st.secrets.get(name, "") or "").strip()
    except Exception:
        value = ""
    return value if value else default


def _int_setting(name: str, default: int) -> int:
    raw = get_setting(name, default)
    try:
        return int(raw)
    except (TypeError, ValueError):
        print(f"[settings] Ignoring non-integer {name}={raw!r}, using {default}")
        return default


@dataclass
class TrackerSettings:
    data_path: str = DEFAULT_DATA_PATH
    finnhub_api_key: str = ""
    price_cache_ttl: int = DEFAULT_PRICE_CACHE_TTL
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT


def load_settings(data_path: Optional[str] = None) -> TrackerSettings:
    """Build settings from the environment. An explicit data_path wins."""
    return TrackerSettings(
        data_path=data_path or str(get_setting("CALLOUT_DATA_PATH", DEFAULT_DATA_PATH)),
        finnhub_api_key=str(get_setting("FINNHUB_API_KEY", "")),
        price_cache_ttl=_int_setting("PRICE_CACHE_TTL", DEFAULT_PRICE_CACHE_TTL),
        request_timeout=_int_setting("PRICE_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT),
    )
