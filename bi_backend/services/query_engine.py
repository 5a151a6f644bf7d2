from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

import numpy as np
import pandas as pd

from .data_layer import _ensure_columns
from .data_sources import DataSource, SalesFilter

logger = logging.getLogger(__name__)

STUDENTS = "Students"
VILLAGERS = "Villagers"
HOUSEHOLDS = "Households"
SEGMENTS = (STUDENTS, VILLAGERS, HOUSEHOLDS)

ACTIVATION_TARGET = 75
CUSTOMER_TARGET = 1000
LOYALTY_CAP = 100


def _records(df: pd.DataFrame) -> list[dict[str, Any]]:
    if df.empty:
        return []
    return df.astype(object).where(df.notna(), None).to_dict("records")


def _text(col: pd.Series) -> pd.Series:
    return col.astype(object).where(col.notna(), "").astype(str)


def _with_numeric(df: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    for col in columns:
        if col not in df.columns:
            df[col] = np.nan
        df[col] = pd.to_numeric(df[col], errors="coerce")
    return df


def prepare_sales(sales: Optional[pd.DataFrame]) -> pd.DataFrame:
    sales = pd.DataFrame() if sales is None else sales.copy()
    sales = _with_numeric(sales, ["customer_id", "warehouse_id", "grand_total", "total_qty"])
    sales["grand_total"] = sales["grand_total"].fillna(0.0)
    sales["total_qty"] = sales["total_qty"].fillna(0.0)
    if "created_at" not in sales.columns:
        sales["created_at"] = pd.NaT
    sales["created_at"] = pd.to_datetime(sales["created_at"], errors="coerce")
    return sales


def _ids(values: pd.Series) -> pd.Series:
    return pd.to_numeric(values, errors="coerce").astype(float)


def classify_customers(customers: pd.DataFrame) -> pd.Series:
    """Assign each customer to exactly one segment.

    First match wins: an origin mentioning "student" or any member number makes
    a student; otherwise a village or sub-county makes a villager; everyone
    else is a household.
    """
    df = _ensure_columns(customers.copy(), ["origin", "MemberNo", "village", "sub_county"])
    is_student = _text(df["origin"]).str.lower().str.contains("student", regex=False) | _text(
        df["MemberNo"]
    ).ne("")
    is_villager = _text(df["village"]).ne("") | _text(df["sub_county"]).ne("")
    labels = np.select([is_student, is_villager], [STUDENTS, VILLAGERS], default=HOUSEHOLDS)
    return pd.Series(labels, index=df.index, dtype=object)


def _revenue_by_customer(sales: pd.DataFrame) -> pd.Series:
    valid = sales.dropna(subset=["customer_id"])
    if valid.empty:
        return pd.Series(dtype=float)
    return valid.groupby("customer_id")["grand_total"].sum()


def segment_customers(
    customers: pd.DataFrame, sales: Optional[pd.DataFrame] = None
) -> list[dict[str, Any]]:
    df = _ensure_columns(customers.copy(), ["id", "assigned"])
    df["segment"] = classify_customers(df)
    revenue_lookup = _revenue_by_customer(prepare_sales(sales))

    result = []
    for name in SEGMENTS:
        members = df[df["segment"] == name]
        count = int(len(members))
        revenue = float(_ids(members["id"]).map(revenue_lookup).fillna(0.0).sum())
        distribution = _ids(members["assigned"]).dropna().astype("int64").value_counts().sort_index()
        result.append(
            dict(
                segment=name,
                count=count,
                revenue=revenue,
                avg_order_value=revenue / count if count else 0.0,
                loyalty_score=min(count * 10, LOYALTY_CAP),
                # no purchase history is modelled, so there is nothing to compare against
                growth_rate=None,
                warehouse_distribution={int(k): int(v) for k, v in distribution.items()},
            )
        )
    return result


def summarize_warehouse_sales(warehouses: pd.DataFrame, sales: pd.DataFrame) -> pd.DataFrame:
    """Left-join sales onto warehouses; warehouses without sales are zero-filled."""
    warehouses = _ensure_columns(warehouses.copy(), ["id", "name"])
    sales = prepare_sales(sales).dropna(subset=["warehouse_id"])
    grouped = sales.groupby(sales["warehouse_id"].astype("int64"))["grand_total"].agg(
        ["sum", "count", "mean"]
    )

    ids = _ids(warehouses["id"]).astype("int64")
    summary = pd.DataFrame(
        {"warehouse_id": ids.to_numpy(), "warehouse_name": warehouses["name"].to_numpy()}
    )
    summary["total_sales"] = summary["warehouse_id"].map(grouped["sum"]).fillna(0.0).astype(float)
    summary["sale_count"] = summary["warehouse_id"].map(grouped["count"]).fillna(0).astype("int64")
    summary["avg_sale"] = summary["warehouse_id"].map(grouped["mean"]).fillna(0.0).astype(float)
    return summary.sort_values("total_sales", ascending=False, kind="mergesort").reset_index(
        drop=True
    )


def build_sales_trend(sales: pd.DataFrame) -> list[dict[str, Any]]:
    sales = prepare_sales(sales).dropna(subset=["created_at"])
    if sales.empty:
        return []
    trend = (
        sales.groupby(sales["created_at"].dt.date)["grand_total"]
        .agg(sale_count="count", total_revenue="sum", avg_order_value="mean")
        .sort_index()
    )
    return [
        dict(
            day=day,
            sale_count=int(row.sale_count),
            total_revenue=float(row.total_revenue),
            avg_order_value=float(row.avg_order_value),
        )
        for day, row in trend.iterrows()
    ]


def _activation_trend(rate: float) -> str:
    if rate > 60:
        return "up"
    if rate > 30:
        return "stable"
    return "down"


def calculate_smart_activation_metrics(
    customers: pd.DataFrame, sales: pd.DataFrame, days: int = 30
) -> list[dict[str, Any]]:
    total_customers = int(len(customers))
    active_customers = int(prepare_sales(sales)["customer_id"].dropna().nunique())
    activation_rate = active_customers / total_customers * 100 if total_customers else 0.0

    return [
        dict(
            metric="Customer Activation Rate",
            value=f"{activation_rate:.2f}",
            trend=_activation_trend(activation_rate),
            target=ACTIVATION_TARGET,
            description="Percentage of customers with recent activity",
        ),
        dict(
            metric="Total Customers",
            value=str(total_customers),
            trend="stable",
            target=CUSTOMER_TARGET,
            description="Total registered customers",
        ),
        dict(
            metric=f"Active Customers ({days}d)",
            value=str(active_customers),
            trend="up" if active_customers > total_customers * 0.3 else "down",
            target=total_customers * 0.4,
            description=f"Customers with transactions in last {days} days",
        ),
    ]


def summarize_activation(
    customers: pd.DataFrame,
    groups: pd.DataFrame,
    sales: pd.DataFrame,
    warehouse_sale: pd.DataFrame,
) -> dict[str, Any]:
    customers = _ensure_columns(customers.copy(), ["id", "customer_group_id"])
    groups = _ensure_columns(groups.copy(), ["id", "name"])
    sales = prepare_sales(sales)

    customers["_group"] = _ids(customers["customer_group_id"])
    customers["_active"] = _ids(customers["id"]).isin(sales["customer_id"].dropna().tolist())
    per_group = customers.dropna(subset=["_group"]).groupby("_group")["_active"].agg(["sum", "count"])
    per_group = per_group[per_group.index.isin(_ids(groups["id"]))]

    rates = per_group["sum"] / per_group["count"] * 100
    group_names = pd.Series(groups["name"].to_numpy(), index=_ids(groups["id"]).to_numpy())

    revenue = _revenue_by_customer(sales)
    customers["_revenue"] = _ids(customers["id"]).map(revenue).fillna(0.0)
    group_revenue = customers.dropna(subset=["_group"]).groupby("_group")["_revenue"].sum()
    group_revenue = group_revenue[group_revenue.index.isin(group_names.index) & (group_revenue > 0)]
    top_group = (
        str(group_names.get(group_revenue.idxmax())) if not group_revenue.empty else None
    )

    totals = warehouse_sale["total_sales"] if "total_sales" in warehouse_sale else pd.Series(dtype=float)
    return dict(
        total_groups=int(len(groups)),
        active_groups=int((per_group["sum"] > 0).sum()),
        avg_activation_rate=float(rates.mean()) if not rates.empty else 0.0,
        total_members=int(len(customers)),
        avg_revenue=float(totals.mean()) if not totals.empty else 0.0,
        top_performing_group=top_group,
        growth_rate=None,
    )


def build_revenue_breakdown(
    warehouses: pd.DataFrame, sales: pd.DataFrame, customers: pd.DataFrame
) -> list[dict[str, Any]]:
    sales = prepare_sales(sales).dropna(subset=["warehouse_id"])
    segments = pd.Series(
        classify_customers(customers).to_numpy(),
        index=_ids(_ensure_columns(customers.copy(), ["id"])["id"]).to_numpy(),
    )
    sales["segment"] = sales["customer_id"].astype(float).map(segments).fillna(HOUSEHOLDS)
    sales["warehouse_id"] = sales["warehouse_id"].astype("int64")

    summary = summarize_warehouse_sales(warehouses, sales)
    selected_total = float(summary["total_sales"].sum())
    rows = []
    for item in summary.itertuples(index=False):
        wh_sales = sales[sales["warehouse_id"] == item.warehouse_id]
        by_segment = wh_sales.groupby("segment")["grand_total"].sum()
        rows.append(
            dict(
                warehouse=item.warehouse_name,
                warehouse_id=int(item.warehouse_id),
                total_sales=int(item.sale_count),
                total_revenue=float(item.total_sales),
                avg_sale_value=float(item.avg_sale),
                total_quantity=float(wh_sales["total_qty"].sum()),
                unique_customers=int(wh_sales["customer_id"].dropna().nunique()),
                revenue_by_customer_type=dict(
                    students=float(by_segment.get(STUDENTS, 0.0)),
                    villagers=float(by_segment.get(VILLAGERS, 0.0)),
                    households=float(by_segment.get(HOUSEHOLDS, 0.0)),
                ),
                growth_rate=None,
                market_share=float(item.total_sales) / selected_total * 100 if selected_total else 0.0,
            )
        )
    return rows


class QueryEngine:
    """Read queries and derived views for one POS database.

    ``clock`` returns the current calendar date; it decides what "today" and
    the trend window mean, so tests can pin it.
    """

    def __init__(self, source: DataSource, clock: Callable[[], date] = date.today):
        self.source = source
        self.clock = clock

    # -- entities -----------------------------------------------------------

    def get_billers(self, account_id: int) -> list[dict[str, Any]]:
        return _records(self.source.get_billers(account_id))

    def get_biller(self, account_id: int, biller_id: int) -> dict[str, Any] | None:
        rows = _records(self.source.get_biller(account_id, biller_id))
        return rows[0] if rows else None

    def get_warehouses(self, account_id: int, biller_id: int | None = None) -> list[dict[str, Any]]:
        df = self.source.get_warehouses(account_id)
        if biller_id is not None:
            df = df[_ids(df["biller_id"]) == biller_id]
        return _records(df)

    def get_warehouse(self, account_id: int, warehouse_id: int) -> dict[str, Any] | None:
        rows = _records(self.source.get_warehouse(account_id, warehouse_id))
        return rows[0] if rows else None

    def get_customers(
        self, account_id: int, warehouse_id: int | None = None
    ) -> list[dict[str, Any]]:
        df = self.source.get_customers(account_id)
        if warehouse_id is not None:
            df = df[_ids(df["assigned"]) == warehouse_id]
        return _records(df)

    def get_customer_groups(self, account_id: int) -> list[dict[str, Any]]:
        return _records(self.source.get_customer_groups(account_id))

    def get_sales(self, account_id: int, filters: SalesFilter | None = None) -> list[dict[str, Any]]:
        sales = self.source.get_sales(account_id, filters)
        sales = sales.assign(created_at=pd.to_datetime(sales["created_at"], errors="coerce"))
        return _records(sales)

    def ping(self) -> bool:
        return self.source.ping()

    # -- derived views ------------------------------------------------------

    def _warehouse_frame(self, account_id: int, warehouse_ids: Iterable[int] | None) -> pd.DataFrame:
        df = self.source.get_warehouses(account_id)
        if warehouse_ids is not None:
            df = df[_ids(df["id"]).isin(list(warehouse_ids))]
        return df

    def _sales_frame(
        self,
        account_id: int,
        start: date,
        end: date,
        warehouse_ids: Iterable[int] | None,
    ) -> pd.DataFrame:
        sales = prepare_sales(
            self.source.get_sales(account_id, SalesFilter(start_date=start, end_date=end, limit=None))
        )
        if warehouse_ids is not None:
            sales = sales[sales["warehouse_id"].isin(list(warehouse_ids))]
        return sales

    def _customer_frame(self, account_id: int, warehouse_ids: Iterable[int] | None) -> pd.DataFrame:
        df = self.source.get_customers(account_id)
        if warehouse_ids is not None:
            df = df[_ids(df["assigned"]).isin(list(warehouse_ids))]
        return df

    def get_today_sale(
        self, account_id: int, warehouse_ids: Iterable[int] | None = None
    ) -> dict[str, Any]:
        warehouse_ids = list(warehouse_ids) if warehouse_ids is not None else None
        today = self.clock()
        sales = self._sales_frame(account_id, today, today, warehouse_ids)
        summary = summarize_warehouse_sales(self._warehouse_frame(account_id, warehouse_ids), sales)
        return dict(
            day=today,
            total_sale_amount=float(sales["grand_total"].sum()),
            sale_count=int(len(sales)),
            warehouse_sale=_records(summary),
            sales=_records(sales),
        )

    def get_sales_trend(
        self, account_id: int, days: int = 30, warehouse_ids: Iterable[int] | None = None
    ) -> list[dict[str, Any]]:
        today = self.clock()
        sales = self._sales_frame(account_id, today - timedelta(days=days), today, warehouse_ids)
        return build_sales_trend(sales)

    def get_revenue_breakdown(
        self, account_id: int, warehouse_ids: Iterable[int] | None = None
    ) -> list[dict[str, Any]]:
        warehouse_ids = list(warehouse_ids) if warehouse_ids is not None else None
        today = self.clock()
        return build_revenue_breakdown(
            self._warehouse_frame(account_id, warehouse_ids),
            self._sales_frame(account_id, today, today, warehouse_ids),
            self.source.get_customers(account_id),
        )

    def get_customer_segmentation(
        self, account_id: int, warehouse_ids: Iterable[int] | None = None, days: int = 30
    ) -> list[dict[str, Any]]:
        warehouse_ids = list(warehouse_ids) if warehouse_ids is not None else None
        today = self.clock()
        return segment_customers(
            self._customer_frame(account_id, warehouse_ids),
            self._sales_frame(account_id, today - timedelta(days=days), today, warehouse_ids),
        )

    def get_smart_activation_summary(
        self, account_id: int, warehouse_ids: Iterable[int] | None = None, days: int = 30
    ) -> dict[str, Any]:
        warehouse_ids = list(warehouse_ids) if warehouse_ids is not None else None
        today = self.clock()
        window = self._sales_frame(account_id, today - timedelta(days=days), today, warehouse_ids)
        today_sales = window[window["created_at"].dt.date == today]
        return summarize_activation(
            self._customer_frame(account_id, warehouse_ids),
            self.source.get_customer_groups(account_id),
            window,
            summarize_warehouse_sales(self._warehouse_frame(account_id, warehouse_ids), today_sales),
        )

    def get_dashboard_data(
        self, account_id: int, warehouse_ids: Iterable[int] | None = None, days: int = 30
    ) -> dict[str, Any]:
        warehouse_ids = list(warehouse_ids) if warehouse_ids is not None else None
        today = self.clock()
        all_customers = self.source.get_customers(account_id)
        customers = all_customers
        if warehouse_ids is not None:
            customers = all_customers[_ids(all_customers["assigned"]).isin(warehouse_ids)]
        window = self._sales_frame(account_id, today - timedelta(days=days), today, warehouse_ids)
        today_sales = window[window["created_at"].dt.date == today]
        logger.debug(
            "Dashboard data for account %s: %d customers, %d sales in %dd window",
            account_id, len(customers), len(window), days,
        )

        return dict(
            customer_segmentation=segment_customers(customers, window),
            sales_trend=build_sales_trend(window),
            smart_activation_metrics=calculate_smart_activation_metrics(customers, window, days),
            revenue_breakdown=build_revenue_breakdown(
                self._warehouse_frame(account_id, warehouse_ids), today_sales, all_customers
            ),
            timestamp=datetime.now(timezone.utc),
        )
