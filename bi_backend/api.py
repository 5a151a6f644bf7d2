from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from bi_backend import core
from bi_backend.config import get_settings
from bi_backend.exceptions import InternalServiceError, InvalidFilterError, UnknownKPIError
from bi_backend.services import corporate, data_layer
from bi_backend.services.data_sources import SqlDataSource
from bi_backend.services.initializer import AnalyticsFilters
from bi_backend.services.mock_data import build_mock_frames

settings = get_settings()
core.configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service graph (unless one was injected) and run the provider."""
    if getattr(app.state, "container", None) is None:
        app.state.container = core.build_container(settings)
    container = app.state.container
    logger.info(
        "Starting BI backend (data source: %s, KPI source: %s)",
        container.settings.data_source,
        container.settings.kpi_source,
    )
    await container.provider.mount()
    yield
    container.provider.unmount()


app = FastAPI(
    title="Corporate BI backend",
    version="1.0.0",
    description="Query engine, API façade and dashboard state for the POS database",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def ok(data: Any = None) -> dict:
    return {"success": True, "data": data}


def fail(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder({"success": False, "error": error, **extra}),
    )


def _container(request: Request) -> core.Container:
    return request.app.state.container


def _account(request: Request, account_id: Optional[int]) -> int:
    return account_id if account_id is not None else _container(request).settings.pos_accnt_id


@app.exception_handler(InternalServiceError)
async def internal_error_handler(request: Request, exc: InternalServiceError):
    return fail(500, str(exc))


@app.exception_handler(UnknownKPIError)
async def unknown_kpi_handler(request: Request, exc: UnknownKPIError):
    return fail(404, str(exc))


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return fail(422, "Invalid input", detail=exc.errors(include_url=False, include_context=False))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    detail = [{k: v for k, v in err.items() if k not in ("ctx", "url")} for err in exc.errors()]
    return fail(422, "Invalid input", detail=detail)


@app.exception_handler(InvalidFilterError)
async def invalid_filter_handler(request: Request, exc: InvalidFilterError):
    return fail(422, str(exc))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 405:
        return fail(405, "Method not allowed")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


@app.get("/healthz")
def healthcheck(request: Request):
    return {"status": "ok", "database": _container(request).service.health()}


# ---------------------------------------------------------------------------
# Local database helpers (SQLite only)
# ---------------------------------------------------------------------------


def _local_engine(request: Request):
    source = _container(request).source
    if not isinstance(source, SqlDataSource) or source.engine.dialect.name != "sqlite":
        return None
    return source.engine


@app.post("/data/sample")
async def load_sample(request: Request):
    engine = _local_engine(request)
    if engine is None:
        return fail(403, "Sample data can only be loaded into a local SQLite database")
    container = _container(request)
    frames = build_mock_frames(container.engine.clock())
    counts = await asyncio.to_thread(data_layer.load_sample_data, engine, frames)
    container.initializer.clear_cache()
    return ok(counts)


@app.post("/data/reset")
async def reset(request: Request):
    engine = _local_engine(request)
    if engine is None:
        return fail(403, "Only a local SQLite database can be reset")
    await asyncio.to_thread(data_layer.reset_db, engine)
    _container(request).initializer.clear_cache()
    return ok()


# ---------------------------------------------------------------------------
# KPI endpoints
# ---------------------------------------------------------------------------


@app.get("/api/kpi/dashboard")
def kpi_dashboard(request: Request, period: Optional[str] = None, account_id: Optional[int] = None):
    query = corporate.AccountQuery(account_id=_account(request, account_id))
    return ok(_container(request).service.get_kpi_data(query, None, {"period": period}))


@app.get("/api/kpi/{kpi_type}")
def kpi_detail(
    request: Request,
    kpi_type: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    account_id: Optional[int] = None,
):
    query = corporate.AccountQuery(account_id=_account(request, account_id))
    params = {
        "start_date": start_date.isoformat() if start_date else None,
        "end_date": end_date.isoformat() if end_date else None,
    }
    return ok(_container(request).service.get_kpi_data(query, kpi_type, params))


# ---------------------------------------------------------------------------
# Corporate queries
# ---------------------------------------------------------------------------


@app.get("/api/corporate/billers")
def list_billers(request: Request, account_id: int):
    return ok(_container(request).service.get_billers(corporate.AccountQuery(account_id=account_id)))


@app.get("/api/corporate/billers/{biller_id}")
def get_biller(request: Request, biller_id: int, account_id: int):
    query = corporate.BillerQuery(account_id=account_id, biller_id=biller_id)
    return ok(_container(request).service.get_biller(query))


@app.get("/api/corporate/warehouses")
def list_warehouses(request: Request, account_id: int, biller_id: Optional[int] = None):
    query = corporate.WarehouseListQuery(account_id=account_id, biller_id=biller_id)
    return ok(_container(request).service.get_warehouses(query))


@app.get("/api/corporate/warehouses/{warehouse_id}")
def get_warehouse(request: Request, warehouse_id: int, account_id: int):
    query = corporate.WarehouseQuery(account_id=account_id, warehouse_id=warehouse_id)
    return ok(_container(request).service.get_warehouse(query))


@app.get("/api/corporate/customers")
def list_customers(request: Request, account_id: int, warehouse_id: Optional[int] = None):
    query = corporate.CustomerListQuery(account_id=account_id, warehouse_id=warehouse_id)
    return ok(_container(request).service.get_customers(query))


@app.get("/api/corporate/customer-groups")
def list_customer_groups(request: Request, account_id: int):
    query = corporate.AccountQuery(account_id=account_id)
    return ok(_container(request).service.get_customer_groups(query))


@app.get("/api/corporate/sales")
def sales_data(
    request: Request,
    account_id: int,
    warehouse_id: Optional[int] = None,
    biller_id: Optional[int] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
):
    query = corporate.SalesQuery(
        account_id=account_id,
        warehouse_id=warehouse_id,
        biller_id=biller_id,
        start_date=start_date,
        end_date=end_date,
    )
    return ok(_container(request).service.get_sales_data(query))


@app.get("/api/corporate/sales/today")
def today_sale(request: Request, account_id: int, warehouse_id: Optional[int] = None):
    query = corporate.CustomerListQuery(account_id=account_id, warehouse_id=warehouse_id)
    return ok(_container(request).service.get_today_sale(query))


@app.get("/api/corporate/kpi")
def corporate_kpi(request: Request, account_id: int, kpi_type: Optional[str] = None):
    query = corporate.AccountQuery(account_id=account_id)
    return ok(_container(request).service.get_kpi_data(query, kpi_type))


@app.get("/api/corporate/reports")
def analytics_reports(
    request: Request,
    account_id: int,
    warehouse_id: Optional[int] = None,
    type: Optional[str] = None,
):
    query = corporate.ReportsQuery(account_id=account_id, warehouse_id=warehouse_id, type=type)
    return ok(_container(request).service.get_analytics_reports(query))


def _hierarchy(account_id: int, selected_biller: str, selected_warehouse: str, date_range: str):
    return corporate.HierarchyFilter(
        account_id=account_id,
        selected_biller=selected_biller,
        selected_warehouse=selected_warehouse,
        date_range=date_range,
    )


@app.get("/api/corporate/dashboard")
def corporate_dashboard(
    request: Request,
    account_id: int,
    selected_biller: str = "all",
    selected_warehouse: str = "all",
    date_range: str = "30d",
):
    query = _hierarchy(account_id, selected_biller, selected_warehouse, date_range)
    return ok(_container(request).service.get_corporate_dashboard_data(query))


@app.get("/api/corporate/smart-activation")
def smart_activation(
    request: Request,
    account_id: int,
    selected_biller: str = "all",
    selected_warehouse: str = "all",
    date_range: str = "30d",
):
    query = _hierarchy(account_id, selected_biller, selected_warehouse, date_range)
    return ok(_container(request).service.get_smart_activation_metrics(query))


@app.get("/api/corporate/customer-segmentation")
def customer_segmentation(
    request: Request,
    account_id: int,
    selected_biller: str = "all",
    selected_warehouse: str = "all",
    date_range: str = "30d",
):
    query = _hierarchy(account_id, selected_biller, selected_warehouse, date_range)
    return ok(_container(request).service.get_customer_segmentation(query))


@app.get("/api/corporate/revenue-breakdown")
def revenue_breakdown(
    request: Request,
    account_id: int,
    selected_biller: str = "all",
    selected_warehouse: str = "all",
    date_range: str = "30d",
):
    query = _hierarchy(account_id, selected_biller, selected_warehouse, date_range)
    return ok(_container(request).service.get_revenue_breakdown(query))


# ---------------------------------------------------------------------------
# Dashboard state
# ---------------------------------------------------------------------------


class FiltersUpdate(BaseModel):
    selected_biller: Optional[str] = None
    selected_warehouse: Optional[str] = None
    date_range: Optional[str] = None


class AnalyticsUpdate(BaseModel):
    warehouse_id: Optional[int] = None
    type: Optional[str] = None


@app.get("/api/state")
async def state_snapshot(request: Request):
    return ok(_container(request).provider.snapshot())


@app.post("/api/state/filters")
async def update_filters(request: Request, payload: FiltersUpdate):
    container = _container(request)
    changes = payload.model_dump(exclude_none=True)
    # validate before touching provider state
    corporate.HierarchyFilter(account_id=container.settings.pos_accnt_id, **changes)
    await container.provider.update_filters(**changes)
    return ok(container.provider.snapshot())


@app.post("/api/state/analytics")
async def update_analytics(request: Request, payload: AnalyticsUpdate):
    container = _container(request)
    corporate.ReportsQuery(account_id=container.settings.pos_accnt_id, **payload.model_dump())
    await container.provider.set_analytics_filters(AnalyticsFilters(**payload.model_dump()))
    return ok(container.provider.snapshot())


@app.post("/api/state/refresh")
async def refresh_state(request: Request):
    container = _container(request)
    await container.provider.refresh_data()
    return ok(container.provider.snapshot())


@app.post("/api/state/clear-cache")
async def clear_cache(request: Request):
    container = _container(request)
    container.provider.clear_cache()
    return ok(container.initializer.cache_stats())
