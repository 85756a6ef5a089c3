"""
Callout Tracker — Main Streamlit UI
====================================

Flow: Add / import callouts → Refresh prices → Watch targets, stops and buy zones

This is a THIN LAYER. All logic lives in the backend modules:
- target_engine: target / stop / buy-zone evaluation
- callout_store: position CRUD & persistence
- price_fetcher: multi-source quotes
- refresh_engine: batched refresh, add, mass import, edits
- refresh_scheduler: auto-refresh lifecycle
- spreadsheet_io: Excel import / export
- callout_views: filters, sorting, formatting

Version: 1.0.0 (2026-10-18)
"""

import streamlit as st
import pandas as pd
from datetime import date

from callout_models import CalloutValidationError
from callout_store import StorePersistenceError
from callout_views import (
    FILTER_MODES, STATUS_CLOSED, STATUS_HIT, filter_callouts, format_buy_zone,
    format_percent, row_status, sort_by_date,
)
from refresh_scheduler import AutoRefreshScheduler, interval_for
from spreadsheet_io import (
    XLSX_CONTENT_TYPE, SpreadsheetImportError, export_filename,
    export_workbook_bytes, read_callout_rows, rows_to_import_records,
)
from symbol_search import search_symbols
from system_self_test import collect_store_health, run_system_self_test
from tracker_services import TrackerServices, build_services

# =============================================================================
# CONFIG
# =============================================================================

st.set_page_config(
    page_title="Callout Tracker",
    page_icon="🎯",
    layout="wide",
    initial_sidebar_state="expanded",
)

if 'services' not in st.session_state:
    st.session_state['services'] = build_services()

if 'scheduler' not in st.session_state:
    svc = st.session_state['services']
    st.session_state['scheduler'] = AutoRefreshScheduler(svc.orchestrator, svc.store)

if 'sort_order' not in st.session_state:
    st.session_state['sort_order'] = 'newest'

if 'auto_refresh' not in st.session_state:
    st.session_state['auto_refresh'] = True


def get_services() -> TrackerServices:
    return st.session_state['services']


def get_scheduler() -> AutoRefreshScheduler:
    return st.session_state['scheduler']


EDITABLE_FIELDS = {
    'Callout Price': 'calloutPrice',
    'Target 1': 'target1',
    'Target 2': 'target2',
    'Target 3': 'target3',
    'Stop Loss': 'stopLoss',
    'Buy Zone Low': 'buyZoneLow',
    'Buy Zone High': 'buyZoneHigh',
}


# =============================================================================
# SIDEBAR — Refresh controls, auto-refresh, diagnostics
# =============================================================================

def render_sidebar():
    svc = get_services()
    positions = svc.store.list()

    st.sidebar.title("🎯 Callout Tracker")
    st.sidebar.caption(f"📋 {len(positions)} callouts tracked")

    stamp = svc.store.last_updated()
    if stamp:
        st.sidebar.caption(f"Last updated: {stamp.strftime('%Y-%m-%d %H:%M:%S')} UTC")

    if st.sidebar.button("🔄 Refresh Prices", use_container_width=True, type="primary",
                         disabled=(len(positions) == 0)):
        with st.spinner(f"Refreshing {len(positions)} stocks..."):
            result = svc.orchestrator.refresh_all()
        if result.error_count:
            st.sidebar.warning(result.message())
        else:
            st.sidebar.success(result.message())

    # ── Auto-refresh ──────────────────────────────────────────────────
    auto = st.sidebar.toggle("Auto-refresh", value=st.session_state['auto_refresh'])
    st.session_state['auto_refresh'] = auto
    scheduler = get_scheduler()
    if auto:
        scheduler.sync()
    elif scheduler.is_running:
        scheduler.stop()
    if scheduler.is_running:
        st.sidebar.caption(f"⏱️ Every {interval_for(len(positions))}s")

    st.sidebar.divider()
    if st.sidebar.button("🧪 Test Targets", use_container_width=True,
                         disabled=(len(positions) == 0)):
        results = svc.orchestrator.reevaluate_all()
        changed = [r for r in results if r['before'] != r['after']]
        st.sidebar.info(f"Re-evaluated {len(results)} stocks, {len(changed)} changed")

    # ── Clear all ─────────────────────────────────────────────────────
    with st.sidebar.expander("🗑️ Clear All"):
        confirm = st.checkbox("I understand this deletes every callout")
        if st.button("Clear All Stocks", disabled=not confirm):
            count = svc.store.clear()
            scheduler.sync()
            st.success(f"Deleted {count} stocks")
            st.rerun()

    # ── Diagnostics ───────────────────────────────────────────────────
    with st.sidebar.expander("🩺 Diagnostics"):
        report = run_system_self_test(
            svc.prices.get_fetch_health(),
            collect_store_health(svc.store),
            svc.orchestrator.last_result,
        )
        st.write(f"**{report['summary']}**")
        for check in report['checks']:
            icon = "✅" if check['ok'] else "❌"
            st.caption(f"{icon} {check['name']}: {check['detail']}")


# =============================================================================
# CALLOUT TABLE
# =============================================================================

def _status_icon(status: str) -> str:
    if status == STATUS_CLOSED:
        return "⚫"
    if status == STATUS_HIT:
        return "🟢"
    return ""


def _money(value) -> str:
    return f"${value:.2f}" if value else "-"


def render_callout_table():
    svc = get_services()

    col_filter, col_sort = st.columns([3, 1])
    with col_filter:
        mode = st.selectbox(
            "Filter", list(FILTER_MODES.keys()),
            format_func=lambda m: FILTER_MODES[m],
        )
    with col_sort:
        label = "⬇️ Newest first" if st.session_state['sort_order'] == 'newest' else "⬆️ Oldest first"
        if st.button(label, use_container_width=True):
            st.session_state['sort_order'] = (
                'oldest' if st.session_state['sort_order'] == 'newest' else 'newest'
            )
            st.rerun()

    positions = sort_by_date(filter_callouts(svc.store.list(), mode), st.session_state['sort_order'])
    if not positions:
        st.info("No callouts yet. Add one or import a spreadsheet.")
        return

    rows = []
    for p in positions:
        rows.append({
            '': _status_icon(row_status(p)),
            'Ticker': p.ticker,
            'Date': p.date or '',
            'Callout': _money(p.callout_price),
            'T1': _money(p.target1),
            'T2': _money(p.target2),
            'T3': _money(p.target3),
            'Stop': _money(p.stop_loss),
            'Buy Zone': format_buy_zone(p),
            'Price': _money(p.current_price),
            '% Since': format_percent(p.percent_since_callout),
            'T1 Hit': p.target1_hit,
            'T2 Hit': p.target2_hit,
            'T3 Hit': p.target3_hit,
            'Stop Hit': p.stop_hit,
            'Buy Hit': p.buy_zone_hit,
            '% Made': format_percent(p.percent_made) if p.percent_made else '-',
        })
    st.dataframe(pd.DataFrame(rows), hide_index=True, use_container_width=True)

    _render_edit_form(positions)


def _render_edit_form(positions):
    svc = get_services()
    with st.expander("✏️ Edit / Delete"):
        by_label = {f"{p.ticker} ({p.id[-6:]})": p for p in positions}
        choice = st.selectbox("Callout", list(by_label.keys()))
        position = by_label[choice]

        field_label = st.selectbox("Field", list(EDITABLE_FIELDS.keys()))
        field_key = EDITABLE_FIELDS[field_label]
        current = position.to_dict().get(field_key) or 0.0
        value = st.number_input("New value (0 clears)", value=float(current),
                                min_value=0.0, step=0.01, format="%.2f")

        col_save, col_delete = st.columns(2)
        with col_save:
            if st.button("💾 Save", use_container_width=True, type="primary"):
                try:
                    svc.orchestrator.apply_edit(position.id, field_key, value or None)
                    st.rerun()
                except (CalloutValidationError, StorePersistenceError) as e:
                    st.error(str(e))
        with col_delete:
            if st.button(f"🗑️ Delete {position.ticker}", use_container_width=True):
                svc.store.delete(position.id)
                get_scheduler().sync()
                st.rerun()


# =============================================================================
# ADD CALLOUTS
# =============================================================================

def render_add_tab():
    svc = get_services()

    query = st.text_input("🔎 Search symbol", placeholder="Apple, MSFT...")
    if query.strip():
        matches = search_symbols(query, api_key=svc.finnhub_api_key)
        if matches:
            st.caption(" · ".join(f"**{m['symbol']}** {m['name']}" for m in matches))
        else:
            st.caption("No matches")

    with st.form("add_callout", clear_on_submit=True):
        c1, c2, c3 = st.columns(3)
        ticker = c1.text_input("Ticker")
        callout = c2.number_input("Callout Price", min_value=0.0, step=0.01, format="%.2f")
        callout_date = c3.date_input("Date", value=date.today())

        t1, t2, t3, sl = st.columns(4)
        target1 = t1.number_input("Target 1", min_value=0.0, step=0.01, format="%.2f")
        target2 = t2.number_input("Target 2", min_value=0.0, step=0.01, format="%.2f")
        target3 = t3.number_input("Target 3", min_value=0.0, step=0.01, format="%.2f")
        stop = sl.number_input("Stop Loss", min_value=0.0, step=0.01, format="%.2f")

        bz1, bz2 = st.columns(2)
        zone_low = bz1.number_input("Buy Zone Low", min_value=0.0, step=0.01, format="%.2f")
        zone_high = bz2.number_input("Buy Zone High", min_value=0.0, step=0.01, format="%.2f")

        if st.form_submit_button("➕ Add Callout", type="primary"):
            try:
                position = svc.orchestrator.add_callout({
                    'ticker': ticker,
                    'calloutPrice': callout,
                    'date': callout_date.isoformat() if callout_date else '',
                    'target1': target1 or None,
                    'target2': target2 or None,
                    'target3': target3 or None,
                    'stopLoss': stop or None,
                    'buyZoneLow': zone_low or None,
                    'buyZoneHigh': zone_high or None,
                })
                get_scheduler().sync()
                st.success(f"Added {position.ticker} @ ${position.current_price:.2f}")
            except (CalloutValidationError, StorePersistenceError) as e:
                st.error(str(e))

    st.divider()
    st.subheader("Mass Import")
    st.caption("One ticker per line. Each is added at its current price.")
    text = st.text_area("Tickers", height=150, placeholder="AAPL\nMSFT\nNVDA")
    if st.button("📥 Import Tickers", disabled=not text.strip()):
        with st.spinner("Fetching prices..."):
            result = svc.orchestrator.mass_import(text)
        get_scheduler().sync()
        if result.failed_tickers:
            st.warning(result.message())
        else:
            st.success(result.message())


# =============================================================================
# IMPORT / EXPORT
# =============================================================================

def render_import_export_tab():
    svc = get_services()

    st.subheader("Import Spreadsheet")
    upload = st.file_uploader("Excel file", type=["xlsx", "xls", "xlsm"])
    clear_existing = st.checkbox("Replace existing callouts")
    if upload is not None and st.button("📥 Import", type="primary"):
        try:
            rows = read_callout_rows(upload.getvalue())
        except SpreadsheetImportError as e:
            st.error(str(e))
            return
        with st.spinner(f"Pricing {len(rows)} rows..."):
            records = rows_to_import_records(rows, svc.prices.get_price)
            result = svc.store.import_many(records, clear_existing=clear_existing)
        get_scheduler().sync()
        st.success(f"Imported {result.imported} stocks ({result.errors} errors)")

    st.divider()
    st.subheader("Export")
    positions = svc.store.list()
    st.download_button(
        "📤 Download Excel",
        data=export_workbook_bytes(positions),
        file_name=export_filename(),
        mime=XLSX_CONTENT_TYPE,
        disabled=not positions,
    )


# =============================================================================
# APP MAIN
# =============================================================================

def main():
    render_sidebar()

    tab_table, tab_add, tab_io = st.tabs(["📋 Callouts", "➕ Add", "📁 Import / Export"])

    with tab_table:
        render_callout_table()

    with tab_add:
        render_add_tab()

    with tab_io:
        render_import_export_tab()


if __name__ == "__main__":
    main()
