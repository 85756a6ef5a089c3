from unittest.mock import Mock

import pytest
import requests

from symbol_search import FALLBACK_SYMBOLS, fallback_matches, search_symbols


def _session(status=200, payload=None, exc=None):
    session = Mock()
    if exc is not None:
        session.get.side_effect = exc
    else:
        resp = Mock()
        resp.status_code = status
        resp.json.return_value = payload
        session.get.return_value = resp
    return session


def test_filters_to_common_stock():
    session = _session(payload={"result": [
        {"symbol": "AAPL", "description": "APPLE INC", "displaySymbol": "AAPL", "type": "Common Stock"},
        {"symbol": "AAPL.SW", "description": "APPLE INC", "displaySymbol": "AAPL.SW", "type": "ETP"},
        {"symbol": "APLE", "description": "APPLE HOSPITALITY", "displaySymbol": "APLE"},
    ]})
    results = search_symbols("apple", api_key="k", session=session)
    assert [r["symbol"] for r in results] == ["AAPL", "APLE"]
    assert results[0] == {"symbol": "AAPL", "name": "APPLE INC", "displaySymbol": "AAPL"}
    _, kwargs = session.get.call_args
    assert kwargs["params"] == {"q": "apple", "token": "k"}


def test_caps_results_at_ten():
    rows = [{"symbol": f"S{i}", "description": "", "displaySymbol": f"S{i}"} for i in range(25)]
    assert len(search_symbols("s", api_key="k", session=_session(payload={"result": rows}))) == 10


def test_missing_key_uses_fallback():
    session = _session()
    assert [r["symbol"] for r in search_symbols("alphabet", api_key="", session=session)] == ["GOOGL"]
    session.get.assert_not_called()


def test_http_failures_use_fallback():
    assert search_symbols("ms", api_key="k", session=_session(status=500))[0]["symbol"] == "MSFT"
    boom = _session(exc=requests.ConnectionError("down"))
    assert search_symbols("tsla", api_key="k", session=boom)[0]["symbol"] == "TSLA"


def test_empty_query_rejected():
    with pytest.raises(ValueError):
        search_symbols("   ", api_key="k")


def test_fallback_caps_at_five():
    assert len(fallback_matches("")) == len(FALLBACK_SYMBOLS) == 5
    assert fallback_matches("zzz") == []
