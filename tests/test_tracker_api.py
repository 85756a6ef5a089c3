import io
import tempfile
from pathlib import Path

import pandas as pd
import pytest
from fastapi.testclient import TestClient

from callout_store import CalloutStore
from price_fetcher import PriceAggregator, PriceCache, PriceProvider
from refresh_engine import RefreshOrchestrator
from spreadsheet_io import IMPORT_COLUMNS, XLSX_CONTENT_TYPE
from tracker_api import create_app
from tracker_services import TrackerServices

QUOTES = {"AAPL": 101.0, "MSFT": 310.0}


@pytest.fixture
def services():
    with tempfile.TemporaryDirectory() as tmp:
        store = CalloutStore(str(Path(tmp) / "callouts.json"))
        prices = PriceAggregator(PriceCache(ttl=25), [PriceProvider("Fake", QUOTES.get)])
        orchestrator = RefreshOrchestrator(store, prices, sleep=lambda s: None)
        yield TrackerServices(store=store, prices=prices, orchestrator=orchestrator)


@pytest.fixture
def client(services):
    return TestClient(create_app(services))


def _create(client, **body):
    body.setdefault("ticker", "AAPL")
    body.setdefault("calloutPrice", 90)
    resp = client.post("/stocks", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_create_and_list(client):
    created = _create(client, target1=100, stopLoss=80)
    assert created["ticker"] == "AAPL"
    assert created["currentPrice"] == 101.0
    assert created["target1Hit"] == "YES"
    assert created["id"].startswith("stock_")

    listed = client.get("/stocks").json()
    assert [s["id"] for s in listed] == [created["id"]]


def test_create_requires_ticker_and_callout(client):
    resp = client.post("/stocks", json={"ticker": "AAPL"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Ticker and callout price are required"}

    resp = client.post("/stocks", json={"ticker": "AAPL", "calloutPrice": -1})
    assert resp.status_code == 400

    resp = client.post("/stocks", json={"ticker": "AAPL", "calloutPrice": "abc"})
    assert resp.status_code == 400
    assert "error" in resp.json()


def test_update_rebaselines_on_callout_change(client):
    created = _create(client, target1=100)
    resp = client.put(f"/stocks/{created['id']}", json={"calloutPrice": 95})
    assert resp.status_code == 200
    body = resp.json()
    assert body["calloutPrice"] == 95.0
    assert body["target1Hit"] == "YES"
    assert body["percentMade"] == pytest.approx((100 - 95) / 95 * 100)


def test_update_errors(client):
    created = _create(client)
    assert client.put(f"/stocks/{created['id']}", json={}).status_code == 400
    assert client.put(f"/stocks/{created['id']}", json={"nope": 1}).status_code == 400

    resp = client.put("/stocks/missing", json={"target1": 5})
    assert resp.status_code == 404
    assert resp.json() == {"error": "Stock not found"}


def test_delete(client):
    created = _create(client)
    assert client.delete(f"/stocks/{created['id']}").status_code == 200
    assert client.delete(f"/stocks/{created['id']}").status_code == 404


def test_refresh_and_clear(client, services):
    _create(client)
    _create(client, ticker="ZZZZ", calloutPrice=5)
    services.prices.clear_cache()

    body = client.post("/stocks/refresh").json()
    assert body["successCount"] == 1
    assert body["errorCount"] == 1
    assert body["failedTickers"] == ["ZZZZ"]

    body = client.post("/stocks/clear").json()
    assert body["deletedCount"] == 2
    assert client.get("/stocks").json() == []


def test_mass_import(client):
    body = client.post("/stocks/mass-import", json={"tickers": ["aapl", "msft", "nope"]}).json()
    assert body["successCount"] == 2
    assert body["failedTickers"] == ["NOPE"]

    resp = client.post("/stocks/mass-import", json={"tickers": "\n  \n"})
    assert resp.status_code == 400


def test_quote(client):
    assert client.get("/stocks/quote").status_code == 400
    assert client.get("/stocks/quote", params={"symbol": "nope"}).status_code == 404

    body = client.get("/stocks/quote", params={"symbol": "aapl", "clearCache": "true"}).json()
    assert body["symbol"] == "AAPL"
    assert body["currentPrice"] == 101.0
    assert body["source"] == "Fake"


def test_search(client):
    assert client.get("/stocks/search").status_code == 400
    body = client.get("/stocks/search", params={"q": "micro"}).json()
    assert [r["symbol"] for r in body["result"]] == ["MSFT"]


def test_export(client):
    _create(client)
    resp = client.get("/stocks/export")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith(XLSX_CONTENT_TYPE)
    assert "stock_positions_" in resp.headers["content-disposition"]
    assert resp.content.startswith(b"PK")


def test_import(client):
    header = ["#"] + IMPORT_COLUMNS[1:]
    rows = [
        header,
        [None, "aapl", 90, 100, None, None, 80],
        [None, "bad", 0],
        [None, None, 12],
    ]
    buf = io.BytesIO()
    pd.DataFrame(rows).to_excel(buf, header=False, index=False)

    resp = client.post(
        "/stocks/import",
        files={"file": ("callouts.xlsx", buf.getvalue(), XLSX_CONTENT_TYPE)},
        data={"clearExisting": "true"},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["imported"] == 1
    assert body["errors"] == 2
    assert body["clearedExisting"] is True

    stored = client.get("/stocks").json()
    assert stored[0]["ticker"] == "AAPL"
    assert stored[0]["target1Hit"] == "YES"


def test_import_rejects_other_files(client):
    resp = client.post("/stocks/import", files={"file": ("notes.txt", b"hello", "text/plain")})
    assert resp.status_code == 400
    assert "Invalid file type" in resp.json()["error"]


def test_test_targets_and_health(client):
    _create(client, target1=100)
    body = client.post("/stocks/test-targets").json()
    assert body["results"][0]["after"]["target1Hit"] == "YES"

    report = client.get("/health").json()
    assert report["overall_ok"] is True
    assert {c["name"] for c in report["checks"]} >= {"Price feed", "Position store", "Last updated"}


def test_update_rejects_invalid_hit_flags(client):
    created = _create(client, target1=100)
    resp = client.put(f"/stocks/{created['id']}", json={"target1Hit": "MAYBE", "stopHit": "whatever"})
    assert resp.status_code == 400
    assert "target1Hit" in resp.json()["error"]
    assert client.get("/stocks").json()[0]["target1Hit"] == "YES"
