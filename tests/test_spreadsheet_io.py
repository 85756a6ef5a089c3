import io
import tempfile
import unittest
from datetime import date

import pandas as pd

from callout_models import Position
from callout_store import CalloutStore
from spreadsheet_io import (
    EXPORT_COLUMNS, EXPORT_SHEET_NAME, IMPORT_COLUMNS, SpreadsheetImportError,
    export_filename, export_rows, export_workbook_bytes, is_spreadsheet_upload,
    read_callout_rows, rows_to_import_records,
)


def _sheet_bytes(rows):
    buf = io.BytesIO()
    pd.DataFrame(rows).to_excel(buf, header=False, index=False)
    return buf.getvalue()


class UploadTypeTests(unittest.TestCase):
    def test_upload_types(self):
        self.assertTrue(is_spreadsheet_upload("Callouts.XLSM"))
        self.assertTrue(is_spreadsheet_upload("blob", "application/vnd.ms-excel"))
        self.assertFalse(is_spreadsheet_upload("notes.csv", "text/csv"))


class ImportTests(unittest.TestCase):
    def test_rows_to_import_records(self):
        rows = [
            {"Ticker": "aapl", "CalloutPrice": 150, "Target1": 160, "Target2": 0,
             "StopLoss": "140", "T1Hit": "YES"},
            {"Ticker": None, "CalloutPrice": 10},
            {"Ticker": "bad", "CalloutPrice": 0},
            {"Ticker": "msft", "CalloutPrice": 300},
        ]
        prices = {"AAPL": 165.0}

        def lookup(ticker):
            if ticker not in prices:
                raise RuntimeError("no quote")
            return prices[ticker]

        records = rows_to_import_records(rows, lookup)

        self.assertEqual([r["ticker"] for r in records], ["AAPL", "", "BAD", "MSFT"])
        aapl = records[0]
        self.assertEqual(aapl["currentPrice"], 165.0)
        self.assertEqual(aapl["target1"], 160.0)
        self.assertIsNone(aapl["target2"])
        self.assertEqual(aapl["stopLoss"], 140.0)
        self.assertEqual(aapl["target1Hit"], "")
        self.assertEqual(records[1]["currentPrice"], 0.0)
        self.assertEqual(records[2]["calloutPrice"], 0.0)
        self.assertEqual(records[3]["currentPrice"], 300.0)

    def test_blank_ticker_and_zero_callout_count_as_errors(self):
        rows = [
            {"Ticker": None, "CalloutPrice": 10},
            {"Ticker": "MSFT", "CalloutPrice": 0},
            {"Ticker": "AAPL", "CalloutPrice": 100},
        ]
        records = rows_to_import_records(rows, lambda t: 110.0)
        with tempfile.TemporaryDirectory() as tmp:
            store = CalloutStore(f"{tmp}/callouts.json")
            result = store.import_many(records)
            self.assertEqual(result.to_dict(), {"imported": 1, "errors": 2})
            self.assertEqual([p.ticker for p in store.list()], ["AAPL"])

    def test_read_callout_rows(self):
        header = ["#"] + IMPORT_COLUMNS[1:]
        data = [None, "NVDA", 100, 110, 120, None, 90, 105, 5, "y", "n", None, "na", None, 45000, None, None]
        rows = read_callout_rows(_sheet_bytes([header, data]))

        self.assertEqual(len(rows), 1)
        row = rows[0]
        self.assertEqual(row["Ticker"], "NVDA")
        self.assertEqual(row["CalloutPrice"], 100)
        self.assertEqual(row["T1Hit"], "y")
        self.assertIsNone(row["T3Hit"])
        self.assertIsNone(row["Target3"])

    def test_empty_sheet_rejected(self):
        with self.assertRaises(SpreadsheetImportError):
            read_callout_rows(_sheet_bytes([["only a header row"]]))

    def test_garbage_bytes_rejected(self):
        with self.assertRaises(SpreadsheetImportError):
            read_callout_rows(b"definitely not a workbook")


class ExportTests(unittest.TestCase):
    def setUp(self):
        self.position = Position(
            ticker="AAPL", callout_price=100.0, target1=110.0, stop_loss=90.0,
            current_price=112.345, percent_since_callout=12.3456, percent_made=10.0,
            target1_hit="YES", target2_hit="", stop_hit="", target1_date="2026-01-05",
            created_at="2026-01-01T15:30:00+00:00",
        )

    def test_export_rows(self):
        row = export_rows([self.position])[0]
        self.assertEqual(list(row.keys()), [name for name, _ in EXPORT_COLUMNS])
        self.assertEqual(row["Target 1"], 110.0)
        self.assertEqual(row["Target 2"], "")
        self.assertEqual(row["% Since Callout"], "12.35%")
        self.assertEqual(row["% Made"], "10.00%")
        self.assertEqual(row["T1 Date"], "2026-01-05")
        self.assertEqual(row["Created Date"], "2026-01-01")

    def test_zero_percent_made_is_blank(self):
        self.position.percent_made = 0.0
        self.assertEqual(export_rows([self.position])[0]["% Made"], "")

    def test_workbook_bytes(self):
        content = export_workbook_bytes([self.position])
        self.assertTrue(content.startswith(b"PK"))
        df = pd.read_excel(io.BytesIO(content), sheet_name=EXPORT_SHEET_NAME)
        self.assertEqual(list(df.columns), [name for name, _ in EXPORT_COLUMNS])
        self.assertEqual(df.iloc[0]["Ticker"], "AAPL")

    def test_empty_workbook_has_headers(self):
        df = pd.read_excel(io.BytesIO(export_workbook_bytes([])), sheet_name=EXPORT_SHEET_NAME)
        self.assertEqual(len(df), 0)
        self.assertIn("Stop Hit", df.columns)

    def test_export_filename(self):
        self.assertEqual(export_filename(date(2026, 3, 9)), "stock_positions_2026-03-09.xlsx")


if __name__ == "__main__":
    unittest.main()
