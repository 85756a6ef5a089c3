#!/usr/bin/env python3
import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from callout_views import format_percent, row_status
from spreadsheet_io import export_filename, export_workbook_bytes
from tracker_services import TrackerServices, build_services
from tracker_settings import load_settings


def cmd_refresh(svc: TrackerServices, args) -> int:
    result = svc.orchestrator.refresh_all()
    print(f"[refresh_callouts] {result.message()}")
    if result.failed_tickers:
        print(f"[refresh_callouts] failed: {', '.join(result.failed_tickers)}")
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    return 1 if result.total and result.success_count == 0 else 0


def cmd_list(svc: TrackerServices, args) -> int:
    positions = svc.store.list()
    if args.json:
        print(json.dumps([p.to_dict() for p in positions], indent=2))
        return 0
    for p in positions:
        hits = "/".join(p.target_hit(i) or "-" for i in (1, 2, 3))
        print(f"{p.ticker:<8} callout={p.callout_price:<10.2f} price={p.current_price:<10.2f} "
              f"{format_percent(p.percent_since_callout):>9}  T={hits:<12} stop={p.stop_hit or '-':<4} "
              f"{row_status(p)}")
    print(f"[refresh_callouts] {len(positions)} callouts")
    return 0


def cmd_export(svc: TrackerServices, args) -> int:
    out = Path(args.out or export_filename())
    positions = svc.store.list()
    out.write_bytes(export_workbook_bytes(positions))
    print(f"[refresh_callouts] wrote {len(positions)} callouts to {out}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Refresh, list or export tracked stock callouts.")
    ap.add_argument("--data", default=None, help="Callout JSON file (default: CALLOUT_DATA_PATH or v2_callouts.json).")
    sub = ap.add_subparsers(dest="command", required=True)

    p_refresh = sub.add_parser("refresh", help="Fetch prices and re-evaluate every callout.")
    p_refresh.add_argument("--json", action="store_true", help="Print the result as JSON.")
    p_refresh.set_defaults(func=cmd_refresh)

    p_list = sub.add_parser("list", help="Print stored callouts.")
    p_list.add_argument("--json", action="store_true", help="Print callouts as JSON.")
    p_list.set_defaults(func=cmd_list)

    p_export = sub.add_parser("export", help="Write callouts to an .xlsx file.")
    p_export.add_argument("--out", default=None, help="Output path (default: stock_positions_<date>.xlsx).")
    p_export.set_defaults(func=cmd_export)
    return ap


def main(argv: Optional[List[str]] = None, services: Optional[TrackerServices] = None) -> int:
    args = build_parser().parse_args(argv)
    svc = services or build_services(load_settings(data_path=args.data))
    return args.func(svc, args)


if __name__ == "__main__":
    sys.exit(main())
