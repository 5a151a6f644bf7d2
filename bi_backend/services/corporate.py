"""API façade over the query engine.

Input is validated with the request models below before anything is queried.
Every downstream failure is logged and surfaced as ``InternalServiceError``
with a fixed message; not-found lookups return ``None`` (or an empty list).
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from functools import wraps
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, PositiveInt, field_validator, model_validator

from bi_backend.exceptions import InternalServiceError, UnknownKPIError
from bi_backend.models import (
    AnalyticsReport,
    Biller,
    CorporateDashboard,
    Customer,
    CustomerGroup,
    CustomerSegment,
    DashboardData,
    ReportType,
    RevenueBreakdown,
    Sale,
    SmartActivationSummary,
    TodaySale,
    Warehouse,
)
from bi_backend.services.data_sources import SalesFilter
from bi_backend.services.kpi import KpiProvider, StaticKpiProvider, get_spec
from bi_backend.services.query_engine import QueryEngine

logger = logging.getLogger(__name__)

ALL = "all"
REPORT_TYPES: tuple[str, ...] = ("revenue", "customer", "activation", "performance")
REPORT_TITLES = {
    "revenue": "Revenue by Warehouse",
    "customer": "Customer Segmentation",
    "activation": "Smart Activation Summary",
    "performance": "Warehouse Performance",
}


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class AccountQuery(BaseModel):
    account_id: PositiveInt


class BillerQuery(AccountQuery):
    biller_id: PositiveInt


class WarehouseQuery(AccountQuery):
    warehouse_id: PositiveInt


class WarehouseListQuery(AccountQuery):
    biller_id: Optional[PositiveInt] = None


class CustomerListQuery(AccountQuery):
    warehouse_id: Optional[PositiveInt] = None


class SalesQuery(AccountQuery):
    warehouse_id: Optional[PositiveInt] = None
    biller_id: Optional[PositiveInt] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def check_range(self) -> "SalesQuery":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self

    @property
    def has_filters(self) -> bool:
        return any(
            v is not None for v in (self.warehouse_id, self.biller_id, self.start_date, self.end_date)
        )


class HierarchyFilter(AccountQuery):
    """Dashboard selection: ``"all"`` or a numeric id, plus a ``<n>d`` window."""

    selected_biller: str = ALL
    selected_warehouse: str = ALL
    date_range: str = Field(default="30d", pattern=r"^\d{1,3}d$")

    @field_validator("selected_biller", "selected_warehouse")
    @classmethod
    def all_or_id(cls, v: str) -> str:
        v = v.strip()
        if v != ALL and not (v.isdigit() and int(v) > 0):
            raise ValueError("must be 'all' or a positive numeric id")
        return v

    @field_validator("date_range")
    @classmethod
    def positive_window(cls, v: str) -> str:
        if int(v[:-1]) < 1:
            raise ValueError("date_range must cover at least one day")
        return v

    @property
    def days(self) -> int:
        return int(self.date_range[:-1])


class ReportsQuery(AccountQuery):
    warehouse_id: Optional[PositiveInt] = None
    type: Optional[ReportType] = None


# ---------------------------------------------------------------------------
# Row -> DTO mapping
# ---------------------------------------------------------------------------

_COMMON = {"pos_accnt_id": "account_id"}


def _dto(model: type[BaseModel], row: dict[str, Any], **renames: str) -> BaseModel:
    data = {k: v for k, v in row.items() if v is not None}
    for src, dst in {**_COMMON, **renames}.items():
        if src in data:
            data[dst] = data.pop(src)
    return model.model_validate(data)


def to_biller(row: dict[str, Any]) -> Biller:
    return _dto(Biller, row)


def to_warehouse(row: dict[str, Any]) -> Warehouse:
    return _dto(Warehouse, row)


def to_customer(row: dict[str, Any]) -> Customer:
    return _dto(Customer, row, MemberNo="member_no", assigned="assigned_warehouse_id")


def to_customer_group(row: dict[str, Any]) -> CustomerGroup:
    return _dto(CustomerGroup, row)


def to_sale(row: dict[str, Any]) -> Sale:
    return _dto(Sale, row)


def to_today_sale(summary: dict[str, Any]) -> TodaySale:
    return TodaySale(
        day=summary["day"],
        total_revenue=summary["total_sale_amount"],
        sale_count=summary["sale_count"],
        warehouse_revenue=summary["warehouse_sale"],
    )


def _fails_with(message: str):
    """Turn any unexpected failure of the wrapped operation into ``InternalServiceError``."""

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except (InternalServiceError, UnknownKPIError):
                raise
            except Exception as exc:
                logger.error("%s: %s", message, exc, exc_info=True)
                raise InternalServiceError(message) from exc

        return wrapper

    return decorator


class CorporateService:
    def __init__(self, engine: QueryEngine, kpi_provider: Optional[KpiProvider] = None):
        self.engine = engine
        self.kpi_provider = kpi_provider or StaticKpiProvider(engine.clock)

    # -- entities -----------------------------------------------------------

    @_fails_with("Failed to fetch billers")
    def get_billers(self, query: AccountQuery) -> list[Biller]:
        return [to_biller(r) for r in self.engine.get_billers(query.account_id)]

    @_fails_with("Failed to fetch biller")
    def get_biller(self, query: BillerQuery) -> Optional[Biller]:
        row = self.engine.get_biller(query.account_id, query.biller_id)
        return to_biller(row) if row else None

    @_fails_with("Failed to fetch warehouses")
    def get_warehouses(self, query: WarehouseListQuery) -> list[Warehouse]:
        rows = self.engine.get_warehouses(query.account_id, query.biller_id)
        return [to_warehouse(r) for r in rows]

    @_fails_with("Failed to fetch warehouse")
    def get_warehouse(self, query: WarehouseQuery) -> Optional[Warehouse]:
        row = self.engine.get_warehouse(query.account_id, query.warehouse_id)
        return to_warehouse(row) if row else None

    @_fails_with("Failed to fetch customers")
    def get_customers(self, query: CustomerListQuery) -> list[Customer]:
        rows = self.engine.get_customers(query.account_id, query.warehouse_id)
        return [to_customer(r) for r in rows]

    @_fails_with("Failed to fetch customer groups")
    def get_customer_groups(self, query: AccountQuery) -> list[CustomerGroup]:
        return [to_customer_group(r) for r in self.engine.get_customer_groups(query.account_id)]

    # -- sales --------------------------------------------------------------

    @_fails_with("Failed to fetch sales data")
    def get_sales_data(self, query: SalesQuery) -> Union[list[Sale], TodaySale]:
        if not query.has_filters:
            return to_today_sale(self.engine.get_today_sale(query.account_id))
        filters = SalesFilter(
            warehouse_id=query.warehouse_id,
            biller_id=query.biller_id,
            start_date=query.start_date,
            end_date=query.end_date,
        )
        return [to_sale(r) for r in self.engine.get_sales(query.account_id, filters)]

    @_fails_with("Failed to fetch today's sales")
    def get_today_sale(self, query: CustomerListQuery) -> TodaySale:
        ids = [query.warehouse_id] if query.warehouse_id else None
        return to_today_sale(self.engine.get_today_sale(query.account_id, ids))

    # -- KPIs / reports -----------------------------------------------------

    @_fails_with("Failed to fetch KPI data")
    def get_kpi_data(
        self,
        query: AccountQuery,
        kpi_type: Optional[str] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        params = params or {}
        if kpi_type is None:
            return self.kpi_provider.get_dashboard(params.get("period"))
        spec = get_spec(kpi_type)
        if kpi_type == "customer-segmentation" and isinstance(self.kpi_provider, StaticKpiProvider):
            segments = self.engine.get_customer_segmentation(query.account_id)
            return {spec.key: segments}
        return self.kpi_provider.get_kpi(kpi_type, params)

    @_fails_with("Failed to fetch analytics reports")
    def get_analytics_reports(self, query: ReportsQuery) -> list[AnalyticsReport]:
        ids = [query.warehouse_id] if query.warehouse_id else None
        types = [query.type] if query.type else list(REPORT_TYPES)
        now = datetime.now(timezone.utc)
        reports = []
        for kind in types:
            reports.append(
                AnalyticsReport(
                    id=f"{kind}-{query.account_id}-{now:%Y%m%d%H%M%S}",
                    title=REPORT_TITLES[kind],
                    type=kind,
                    generated_at=now,
                    data=self._report_data(kind, query.account_id, ids),
                    warehouse_ids=ids or [],
                )
            )
        return reports

    def _report_data(self, kind: str, account_id: int, ids: Optional[list[int]]) -> Any:
        if kind == "revenue":
            return self.engine.get_revenue_breakdown(account_id, ids)
        if kind == "customer":
            return self.engine.get_customer_segmentation(account_id, ids)
        if kind == "activation":
            return self.engine.get_smart_activation_summary(account_id, ids)
        today = self.engine.get_today_sale(account_id, ids)
        return {
            "warehouse_sale": today["warehouse_sale"],
            "sales_trend": self.engine.get_sales_trend(account_id, 30, ids),
        }

    # -- dashboard ----------------------------------------------------------

    def _resolve_hierarchy(self, query: HierarchyFilter) -> tuple[list[dict], Optional[list[int]]]:
        """Apply biller -> warehouse filtering; ``None`` ids means no restriction."""
        warehouses = self.engine.get_warehouses(query.account_id)
        if query.selected_biller != ALL:
            biller = int(query.selected_biller)
            warehouses = [w for w in warehouses if w.get("biller_id") == biller]
        if query.selected_warehouse != ALL:
            warehouse = int(query.selected_warehouse)
            warehouses = [w for w in warehouses if w.get("id") == warehouse]
        if query.selected_biller == ALL and query.selected_warehouse == ALL:
            return warehouses, None
        return warehouses, [int(w["id"]) for w in warehouses]

    @_fails_with("Failed to fetch corporate dashboard data")
    def get_corporate_dashboard_data(self, query: HierarchyFilter) -> CorporateDashboard:
        warehouses, ids = self._resolve_hierarchy(query)
        billers = self.engine.get_billers(query.account_id)
        customers = self.engine.get_customers(query.account_id)
        if ids is not None:
            customers = [c for c in customers if c.get("assigned") in ids]

        dashboard = self.engine.get_dashboard_data(query.account_id, ids, query.days)
        today = self.engine.get_today_sale(query.account_id, ids)
        total_revenue = float(today["total_sale_amount"])
        total_orders = sum(w["sale_count"] for w in today["warehouse_sale"])

        return CorporateDashboard(
            billers=[to_biller(r) for r in billers],
            warehouses=[to_warehouse(r) for r in warehouses],
            customers=[to_customer(r) for r in customers],
            dashboard_data=DashboardData(
                **dashboard,
                total_revenue=total_revenue,
                total_orders=total_orders,
                total_customers=len(customers),
                avg_order_value=total_revenue / total_orders if total_orders else 0.0,
            ),
            timestamp=datetime.now(timezone.utc),
        )

    @_fails_with("Failed to fetch smart activation metrics")
    def get_smart_activation_metrics(self, query: HierarchyFilter) -> SmartActivationSummary:
        _, ids = self._resolve_hierarchy(query)
        return SmartActivationSummary(
            **self.engine.get_smart_activation_summary(query.account_id, ids, query.days)
        )

    @_fails_with("Failed to fetch customer segmentation")
    def get_customer_segmentation(self, query: HierarchyFilter) -> list[CustomerSegment]:
        _, ids = self._resolve_hierarchy(query)
        rows = self.engine.get_customer_segmentation(query.account_id, ids, query.days)
        return [CustomerSegment(**r) for r in rows]

    @_fails_with("Failed to fetch revenue breakdown")
    def get_revenue_breakdown(self, query: HierarchyFilter) -> list[RevenueBreakdown]:
        _, ids = self._resolve_hierarchy(query)
        return [RevenueBreakdown(**r) for r in self.engine.get_revenue_breakdown(query.account_id, ids)]

    def health(self) -> bool:
        return self.engine.ping()
