"""
Callout Tracker REST API.

FastAPI routes over the store, price aggregator and refresh engine. Every
error response is {"error": "..."} with a matching HTTP status.

Run:
    uvicorn tracker_api:app --port 8000
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from fastapi import Body, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from callout_models import CalloutValidationError, PositionUpdate
from callout_store import CalloutNotFoundError, StorePersistenceError
from price_fetcher import NoPriceAvailableError
from spreadsheet_io import (
    XLSX_CONTENT_TYPE, SpreadsheetImportError, export_filename,
    export_workbook_bytes, is_spreadsheet_upload, read_callout_rows,
    rows_to_import_records,
)
from symbol_search import search_symbols
from system_self_test import collect_store_health, run_system_self_test
from tracker_services import TrackerServices, build_services


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CalloutCreate(BaseModel):
    ticker: str = ""
    calloutPrice: Optional[float] = None
    date: Optional[str] = None
    target1: Optional[float] = None
    target2: Optional[float] = None
    target3: Optional[float] = None
    stopLoss: Optional[float] = None
    buyZoneLow: Optional[float] = None
    buyZoneHigh: Optional[float] = None


class MassImportRequest(BaseModel):
    tickers: Union[List[str], str] = []


# =============================================================================
# APP FACTORY
# =============================================================================

def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _services(request: Request) -> TrackerServices:
    return request.app.state.services


def create_app(services: Optional[TrackerServices] = None) -> FastAPI:
    app = FastAPI(
        title="Callout Tracker API",
        description="Stock callout target / stop-loss tracking",
        version="1.0.0",
    )
    app.state.services = services or build_services()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Error mapping -------------------------------------------------------

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return _error(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _error(400, f"Invalid request: {exc.errors()}")

    @app.exception_handler(CalloutValidationError)
    async def callout_validation_handler(request: Request, exc: CalloutValidationError):
        return _error(400, str(exc))

    @app.exception_handler(CalloutNotFoundError)
    async def not_found_handler(request: Request, exc: CalloutNotFoundError):
        return _error(404, "Stock not found")

    @app.exception_handler(StorePersistenceError)
    async def persistence_handler(request: Request, exc: StorePersistenceError):
        print(f"[tracker_api] Persistence failure: {exc}")
        return _error(500, "Failed to save stocks")

    # --- Positions -----------------------------------------------------------

    @app.get("/stocks")
    def list_stocks(request: Request):
        return [p.to_dict() for p in _services(request).store.list()]

    @app.post("/stocks", status_code=201)
    def create_stock(request: Request, body: CalloutCreate):
        if not body.ticker.strip() or not body.calloutPrice:
            raise ApiError(400, "Ticker and callout price are required")
        fields = {k: v for k, v in body.model_dump().items() if v is not None}
        position = _services(request).orchestrator.add_callout(fields)
        return position.to_dict()

    @app.put("/stocks/{position_id}")
    def update_stock(request: Request, position_id: str, body: Dict[str, Any] = Body(...)):
        update = PositionUpdate.from_dict(body)
        if update.is_empty():
            raise ApiError(400, "At least one field must be provided for update")
        updated = _services(request).orchestrator.apply_update(position_id, update)
        if updated is None:
            raise CalloutNotFoundError(position_id)
        return updated.to_dict()

    @app.delete("/stocks/{position_id}")
    def delete_stock(request: Request, position_id: str):
        if not _services(request).store.delete(position_id):
            raise CalloutNotFoundError(position_id)
        return {"message": "Stock deleted successfully"}

    # --- Bulk operations -----------------------------------------------------

    @app.post("/stocks/refresh")
    def refresh_stocks(request: Request):
        return _services(request).orchestrator.refresh_all().to_dict()

    @app.post("/stocks/clear")
    def clear_stocks(request: Request):
        count = _services(request).store.clear()
        return {"message": "All stocks cleared successfully", "deletedCount": count}

    @app.post("/stocks/mass-import")
    def mass_import(request: Request, body: MassImportRequest):
        result = _services(request).orchestrator.mass_import(body.tickers)
        if not result.added and not result.failed_tickers:
            raise ApiError(400, "Please enter at least one ticker symbol")
        return result.to_dict()

    @app.post("/stocks/import")
    def import_stocks(request: Request, file: UploadFile = File(...),
                      clearExisting: str = Form("false")):
        if not is_spreadsheet_upload(file.filename or "", file.content_type or ""):
            raise ApiError(400, "Invalid file type. Please upload .xlsx, .xls, or .xlsm files")
        services = _services(request)
        try:
            rows = read_callout_rows(file.file.read())
        except SpreadsheetImportError as e:
            raise ApiError(400, str(e))

        records = rows_to_import_records(rows, services.prices.get_price)
        clear_existing = str(clearExisting).lower() == "true"
        result = services.store.import_many(records, clear_existing=clear_existing)
        return {
            "message": "Import completed",
            **result.to_dict(),
            "total": len(rows),
            "clearedExisting": clear_existing,
        }

    @app.get("/stocks/export")
    def export_stocks(request: Request):
        positions = _services(request).store.list()
        return Response(
            content=export_workbook_bytes(positions),
            media_type=XLSX_CONTENT_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
        )

    @app.post("/stocks/test-targets")
    def test_targets(request: Request):
        results = _services(request).orchestrator.reevaluate_all()
        return {"message": "Target detection test completed", "results": results}

    # --- Market data ---------------------------------------------------------

    @app.get("/stocks/search")
    def search(request: Request, q: Optional[str] = Query(None)):
        if not q or not q.strip():
            raise ApiError(400, "Query parameter is required")
        results = search_symbols(q, api_key=_services(request).finnhub_api_key)
        return {"result": results}

    @app.get("/stocks/quote")
    def quote(request: Request, symbol: Optional[str] = Query(None),
              clearCache: Optional[str] = Query(None)):
        if not symbol or not symbol.strip():
            raise ApiError(400, "Symbol parameter is required")
        ticker = symbol.upper().strip()
        prices = _services(request).prices
        if str(clearCache).lower() == "true":
            prices.clear_cache(ticker)
        try:
            price = prices.get_price(ticker)
        except NoPriceAvailableError:
            raise ApiError(404, f"Failed to fetch price for {ticker}")
        return {
            "symbol": ticker,
            "currentPrice": price,
            "source": prices.get_price_source(ticker),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/health")
    def health(request: Request):
        services = _services(request)
        return run_system_self_test(
            services.prices.get_fetch_health(),
            collect_store_health(services.store),
            services.orchestrator.last_result,
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
