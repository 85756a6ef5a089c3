import tempfile
import threading
import unittest
from pathlib import Path

from callout_models import CalloutValidationError, Position
from callout_store import CalloutStore
from price_fetcher import NoPriceAvailableError
from refresh_engine import (
    MassImportResult, RefreshOrchestrator, batch_plan, parse_ticker_lines,
)


class FakePrices:
    """Stand-in for PriceAggregator backed by a dict."""

    def __init__(self, prices):
        self.prices = prices
        self.calls = []
        self._lock = threading.Lock()

    def get_price(self, ticker):
        ticker = ticker.upper().strip()
        with self._lock:
            self.calls.append(ticker)
        if ticker not in self.prices:
            raise NoPriceAvailableError(f"Could not fetch price for {ticker} from any source")
        return self.prices[ticker]


class RefreshOrchestratorTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.store = CalloutStore(str(Path(self.tmp.name) / "callouts.json"))
        self.sleeps = []
        self.prices = FakePrices({"AAPL": 101.0, "MSFT": 310.0, "NVDA": 75.0})
        self.orch = RefreshOrchestrator(self.store, self.prices, sleep=self.sleeps.append)

    def tearDown(self):
        self.tmp.cleanup()

    def _add(self, ticker, **kw):
        kw.setdefault("callout_price", 90.0)
        return self.store.add(Position(ticker=ticker, **kw))

    def test_batch_plan(self):
        self.assertEqual(batch_plan(1), (15, 0.3))
        self.assertEqual(batch_plan(29), (15, 0.3))
        self.assertEqual(batch_plan(30), (20, 0.5))
        self.assertEqual(batch_plan(200), (20, 0.5))

    def test_refresh_isolates_failures(self):
        self._add("AAPL", target1=100.0)
        failing = self._add("ZZZZ", target1=100.0, current_price=50.0)
        self._add("MSFT", callout_price=300.0, stop_loss=290.0)

        result = self.orch.refresh_all()

        self.assertEqual(result.success_count, 2)
        self.assertEqual(result.error_count, 1)
        self.assertEqual(result.total, 3)
        self.assertEqual(result.failed_tickers, ["ZZZZ"])
        self.assertFalse(result.skipped)
        self.assertEqual(self.store.get_by_id(failing.id).to_dict(), failing.to_dict())

        by_ticker = {p.ticker: p for p in self.store.list()}
        self.assertEqual(by_ticker["AAPL"].current_price, 101.0)
        self.assertEqual(by_ticker["AAPL"].target1_hit, "YES")
        self.assertEqual(by_ticker["MSFT"].stop_hit, "N/A")
        self.assertIn("2/3", result.message())

    def test_refresh_sleeps_between_batches(self):
        self.store.import_many(
            [{"ticker": "AAPL", "calloutPrice": 90} for _ in range(16)]
        )
        result = self.orch.refresh_all()
        self.assertEqual(result.success_count, 16)
        self.assertEqual(self.sleeps, [0.3])

    def test_refresh_skips_when_busy(self):
        self._add("AAPL")
        self.orch._busy.acquire()
        try:
            result = self.orch.refresh_all()
        finally:
            self.orch._busy.release()
        self.assertTrue(result.skipped)
        self.assertEqual(self.prices.calls, [])

    def test_refresh_empty_store(self):
        result = self.orch.refresh_all()
        self.assertEqual((result.total, result.success_count, result.error_count), (0, 0, 0))

    def test_add_callout_uses_live_price(self):
        p = self.orch.add_callout({"ticker": "aapl", "calloutPrice": "90", "target1": 100})
        self.assertEqual(p.ticker, "AAPL")
        self.assertEqual(p.current_price, 101.0)
        self.assertEqual(p.target1_hit, "YES")
        self.assertEqual(len(self.store.list()), 1)

    def test_add_callout_falls_back_to_callout_price(self):
        p = self.orch.add_callout({"ticker": "QQQQ", "calloutPrice": 12.5, "stopLoss": 10})
        self.assertEqual(p.current_price, 12.5)
        self.assertEqual(p.percent_since_callout, 0.0)
        self.assertEqual(p.stop_hit, "N/A")

    def test_add_callout_validation(self):
        with self.assertRaises(CalloutValidationError):
            self.orch.add_callout({"ticker": "AAPL", "calloutPrice": 0})
        with self.assertRaises(CalloutValidationError):
            self.orch.add_callout({"ticker": "", "calloutPrice": 5})
        self.assertEqual(self.store.list(), [])

    def test_mass_import(self):
        result = self.orch.mass_import("aapl\n\n  msft \nzzzz\n")
        self.assertIsInstance(result, MassImportResult)
        self.assertEqual([p.ticker for p in result.added], ["AAPL", "MSFT"])
        self.assertEqual(result.failed_tickers, ["ZZZZ"])
        self.assertEqual(result.added[0].callout_price, 101.0)
        self.assertEqual(result.added[0].current_price, 101.0)
        self.assertIn("2 stocks added successfully, 1 failed (ZZZZ)", result.message())

    def test_apply_edit_clearing_target(self):
        p = self._add("AAPL", target1=100.0, current_price=101.0,
                      target1_hit="YES", target1_date="2026-01-02")
        out = self.orch.apply_edit(p.id, "target1", None)
        self.assertIsNone(out.target1)
        self.assertEqual(out.target1_hit, "")
        self.assertIsNone(out.target1_date)

    def test_apply_edit_raising_target(self):
        p = self._add("AAPL", target1=100.0, current_price=105.0,
                      target1_hit="YES", target1_date="2026-01-02")
        out = self.orch.apply_edit(p.id, "target1", 120)
        self.assertEqual(out.target1, 120.0)
        self.assertEqual(out.target1_hit, "NO")
        self.assertIsNone(out.target1_date)

    def test_apply_edit_lowering_target_rehits(self):
        p = self._add("AAPL", target1=120.0, current_price=105.0, target1_hit="NO")
        out = self.orch.apply_edit(p.id, "target1", 100)
        self.assertEqual(out.target1_hit, "YES")
        self.assertTrue(out.target1_date)
        self.assertEqual(self.store.get_by_id(p.id).target1_hit, "YES")

    def test_apply_edit_after_stop_keeps_targets_not_applicable(self):
        p = self._add("NVDA", target1=100.0, stop_loss=80.0, current_price=75.0,
                      stop_hit="YES", target1_hit="N/A", percent_made=-11.11)
        out = self.orch.apply_edit(p.id, "target1", 110)
        self.assertEqual(out.stop_hit, "YES")
        self.assertEqual(out.target1_hit, "N/A")

        out = self.orch.apply_edit(p.id, "target2", 120)
        self.assertEqual(out.target2_hit, "N/A")
        stored = self.store.get_by_id(p.id)
        self.assertEqual((stored.target1_hit, stored.target2_hit), ("N/A", "N/A"))

    def test_apply_update_with_unchanged_target_keeps_hit_date(self):
        p = self._add("AAPL", target1=100.0, current_price=101.0,
                      target1_hit="YES", target1_date="2026-01-02")
        out = self.orch.apply_update(p.id, {"target1": 100, "stopLoss": 80})
        self.assertEqual(out.target1_hit, "YES")
        self.assertEqual(out.target1_date, "2026-01-02")
        self.assertEqual(out.stop_loss, 80.0)

    def test_apply_update_rejects_invalid_flags(self):
        p = self._add("AAPL", target1=100.0, current_price=101.0, target1_hit="YES")
        with self.assertRaises(CalloutValidationError):
            self.orch.apply_update(p.id, {"target1Hit": "MAYBE"})
        self.assertEqual(self.store.get_by_id(p.id).target1_hit, "YES")

    def test_apply_edit_unknown_id(self):
        self.assertIsNone(self.orch.apply_edit("nope", "target1", 5))

    def test_reevaluate_all_reports_changes(self):
        self._add("AAPL", target1=100.0, current_price=101.0, target1_hit="NO")
        self._add("NOPX", target1=100.0)
        report = self.orch.reevaluate_all()
        self.assertEqual(len(report), 1)
        self.assertEqual(report[0]["ticker"], "AAPL")
        self.assertEqual(report[0]["before"]["target1Hit"], "NO")
        self.assertEqual(report[0]["after"]["target1Hit"], "YES")
        self.assertEqual(self.prices.calls, [])


def test_parse_ticker_lines():
    assert parse_ticker_lines(" aapl\n\nMsft \n") == ["AAPL", "MSFT"]
    assert parse_ticker_lines(["tsla", " ", "nvda"]) == ["TSLA", "NVDA"]


if __name__ == "__main__":
    unittest.main()
