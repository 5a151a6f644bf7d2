from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Callable

import pandas as pd
from sqlalchemy.engine import Engine

from bi_backend.config import Settings
from bi_backend.exceptions import ConfigError
from bi_backend.services import data_layer
from bi_backend.services.mock_data import build_mock_frames

logger = logging.getLogger(__name__)

SALES_LIMIT = 1000

BILLER_COLUMNS = [
    "id", "name", "company_name", "email", "phone_number", "address",
    "pos_accnt_id", "is_active", "created_at", "updated_at",
]
WAREHOUSE_COLUMNS = [
    "id", "name", "phone", "email", "address", "is_active",
    "pos_accnt_id", "biller_id", "created_at", "updated_at",
]
CUSTOMER_COLUMNS = [
    "id", "customer_group_id", "name", "email", "phone_number", "location",
    "origin", "sub_county", "ward", "sublocation", "village", "MemberNo",
    "assigned", "pos_accnt_id", "created_at", "updated_at",
]
CUSTOMER_GROUP_COLUMNS = ["id", "name", "percentage", "is_active", "pos_accnt_id"]
SALE_COLUMNS = [
    "id", "reference_no", "customer_id", "warehouse_id", "biller_id",
    "total_qty", "total_discount", "total_tax", "grand_total",
    "pos_accnt_id", "created_at", "customer_name", "warehouse_name", "biller_name",
]


@dataclass(frozen=True)
class SalesFilter:
    warehouse_id: int | None = None
    biller_id: int | None = None
    start_date: date | None = None
    end_date: date | None = None
    limit: int | None = SALES_LIMIT


class DataSource(ABC):
    """Read-only access to the POS tables of one account at a time."""

    @abstractmethod
    def get_billers(self, account_id: int) -> pd.DataFrame: ...

    @abstractmethod
    def get_biller(self, account_id: int, biller_id: int) -> pd.DataFrame: ...

    @abstractmethod
    def get_warehouses(self, account_id: int) -> pd.DataFrame: ...

    @abstractmethod
    def get_warehouse(self, account_id: int, warehouse_id: int) -> pd.DataFrame: ...

    @abstractmethod
    def get_customers(self, account_id: int) -> pd.DataFrame: ...

    @abstractmethod
    def get_customer_groups(self, account_id: int) -> pd.DataFrame: ...

    @abstractmethod
    def get_sales(self, account_id: int, filters: SalesFilter | None = None) -> pd.DataFrame: ...

    @abstractmethod
    def ping(self) -> bool: ...


class SqlDataSource(DataSource):
    """Parameterized queries against the POS database."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _query(self, query: str, **params) -> pd.DataFrame:
        return data_layer.execute_query(self.engine, query, params)

    def get_billers(self, account_id: int) -> pd.DataFrame:
        return self._query(
            """
            SELECT id, name, company_name, email, phone_number, address, pos_accnt_id,
                   is_active, created_at, updated_at
            FROM billers
            WHERE pos_accnt_id = :account_id AND is_active = 1
            ORDER BY name ASC
            """,
            account_id=account_id,
        )

    def get_biller(self, account_id: int, biller_id: int) -> pd.DataFrame:
        return self._query(
            """
            SELECT id, name, company_name, email, phone_number, address, pos_accnt_id,
                   is_active, created_at, updated_at
            FROM billers
            WHERE id = :biller_id AND pos_accnt_id = :account_id AND is_active = 1
            LIMIT 1
            """,
            account_id=account_id,
            biller_id=biller_id,
        )

    def get_warehouses(self, account_id: int) -> pd.DataFrame:
        return self._query(
            """
            SELECT w.id, w.name, w.phone, w.email, w.address, w.is_active,
                   w.pos_accnt_id, w.biller_id, w.created_at, w.updated_at
            FROM warehouses w
            WHERE w.pos_accnt_id = :account_id AND w.is_active = 1
            ORDER BY w.name ASC
            """,
            account_id=account_id,
        )

    def get_warehouse(self, account_id: int, warehouse_id: int) -> pd.DataFrame:
        return self._query(
            """
            SELECT w.id, w.name, w.phone, w.email, w.address, w.is_active,
                   w.pos_accnt_id, w.biller_id, w.created_at, w.updated_at
            FROM warehouses w
            WHERE w.id = :warehouse_id AND w.pos_accnt_id = :account_id AND w.is_active = 1
            LIMIT 1
            """,
            account_id=account_id,
            warehouse_id=warehouse_id,
        )

    def get_customers(self, account_id: int) -> pd.DataFrame:
        return self._query(
            """
            SELECT id, customer_group_id, name, email, phone_number, location,
                   origin, sub_county, ward, sublocation, village, MemberNo,
                   assigned, pos_accnt_id, created_at, updated_at
            FROM customers
            WHERE pos_accnt_id = :account_id
            ORDER BY name ASC
            """,
            account_id=account_id,
        )

    def get_customer_groups(self, account_id: int) -> pd.DataFrame:
        return self._query(
            """
            SELECT id, name, percentage, is_active, pos_accnt_id
            FROM customer_groups
            WHERE pos_accnt_id = :account_id AND is_active = 1
            ORDER BY name ASC
            """,
            account_id=account_id,
        )

    def get_sales(self, account_id: int, filters: SalesFilter | None = None) -> pd.DataFrame:
        filters = filters or SalesFilter()
        query = """
            SELECT s.id, s.reference_no, s.customer_id, s.warehouse_id, s.biller_id,
                   s.total_qty, s.total_discount, s.total_tax, s.grand_total,
                   s.pos_accnt_id, s.created_at,
                   c.name AS customer_name, w.name AS warehouse_name, b.name AS biller_name
            FROM sales s
            LEFT JOIN customers c ON s.customer_id = c.id
            LEFT JOIN warehouses w ON s.warehouse_id = w.id
            LEFT JOIN billers b ON s.biller_id = b.id
            WHERE s.pos_accnt_id = :account_id
        """
        params: dict = {"account_id": account_id}
        if filters.warehouse_id is not None:
            query += " AND s.warehouse_id = :warehouse_id"
            params["warehouse_id"] = filters.warehouse_id
        if filters.biller_id is not None:
            query += " AND s.biller_id = :biller_id"
            params["biller_id"] = filters.biller_id
        if filters.start_date is not None:
            query += " AND DATE(s.created_at) >= :start_date"
            params["start_date"] = filters.start_date.isoformat()
        if filters.end_date is not None:
            query += " AND DATE(s.created_at) <= :end_date"
            params["end_date"] = filters.end_date.isoformat()
        query += " ORDER BY s.created_at DESC"
        if filters.limit is not None:
            query += " LIMIT :limit"
            params["limit"] = int(filters.limit)
        return data_layer.execute_query(self.engine, query, params)

    def ping(self) -> bool:
        return data_layer.check_connection(self.engine)


class MockDataSource(DataSource):
    """In-memory stand-in for the POS database, filtered the same way."""

    def __init__(self, frames: dict[str, pd.DataFrame] | None = None, today: date | None = None):
        frames = frames if frames is not None else build_mock_frames(today)
        self.billers = data_layer._ensure_columns(frames.get("billers", pd.DataFrame()).copy(), BILLER_COLUMNS)
        self.warehouses = data_layer._ensure_columns(
            frames.get("warehouses", pd.DataFrame()).copy(), WAREHOUSE_COLUMNS
        )
        self.customers = data_layer._ensure_columns(
            frames.get("customers", pd.DataFrame()).copy(), CUSTOMER_COLUMNS
        )
        self.customer_groups = data_layer._ensure_columns(
            frames.get("customer_groups", pd.DataFrame()).copy(), CUSTOMER_GROUP_COLUMNS
        )
        self.sales = data_layer._ensure_columns(
            frames.get("sales", pd.DataFrame()).copy(), SALE_COLUMNS[:11]
        )

    @staticmethod
    def _scoped(df: pd.DataFrame, account_id: int, active_only: bool = False) -> pd.DataFrame:
        mask = df["pos_accnt_id"] == account_id
        if active_only:
            mask &= df["is_active"].fillna(False).astype(bool)
        return df[mask]

    @staticmethod
    def _by_name(df: pd.DataFrame, columns: list[str]) -> pd.DataFrame:
        return df.sort_values("name", kind="mergesort")[columns].reset_index(drop=True)

    def get_billers(self, account_id: int) -> pd.DataFrame:
        return self._by_name(self._scoped(self.billers, account_id, True), BILLER_COLUMNS)

    def get_biller(self, account_id: int, biller_id: int) -> pd.DataFrame:
        df = self.get_billers(account_id)
        return df[df["id"] == biller_id].head(1).reset_index(drop=True)

    def get_warehouses(self, account_id: int) -> pd.DataFrame:
        return self._by_name(self._scoped(self.warehouses, account_id, True), WAREHOUSE_COLUMNS)

    def get_warehouse(self, account_id: int, warehouse_id: int) -> pd.DataFrame:
        df = self.get_warehouses(account_id)
        return df[df["id"] == warehouse_id].head(1).reset_index(drop=True)

    def get_customers(self, account_id: int) -> pd.DataFrame:
        return self._by_name(self._scoped(self.customers, account_id), CUSTOMER_COLUMNS)

    def get_customer_groups(self, account_id: int) -> pd.DataFrame:
        return self._by_name(
            self._scoped(self.customer_groups, account_id, True), CUSTOMER_GROUP_COLUMNS
        )

    def get_sales(self, account_id: int, filters: SalesFilter | None = None) -> pd.DataFrame:
        filters = filters or SalesFilter()
        sales = self._scoped(self.sales, account_id).copy()
        created = pd.to_datetime(sales["created_at"], errors="coerce")
        mask = pd.Series(True, index=sales.index)
        if filters.warehouse_id is not None:
            mask &= sales["warehouse_id"] == filters.warehouse_id
        if filters.biller_id is not None:
            mask &= sales["biller_id"] == filters.biller_id
        if filters.start_date is not None:
            mask &= created.dt.date >= filters.start_date
        if filters.end_date is not None:
            mask &= created.dt.date <= filters.end_date
        sales = sales[mask].assign(_created=created[mask])

        names = {
            "customer": self._scoped(self.customers, account_id).set_index("id")["name"],
            "warehouse": self._scoped(self.warehouses, account_id).set_index("id")["name"],
            "biller": self._scoped(self.billers, account_id).set_index("id")["name"],
        }
        for prefix, lookup in names.items():
            sales[f"{prefix}_name"] = sales[f"{prefix}_id"].map(lookup)

        sales = sales.sort_values("_created", ascending=False, kind="mergesort")
        if filters.limit is not None:
            sales = sales.head(filters.limit)
        return sales[SALE_COLUMNS].reset_index(drop=True)

    def ping(self) -> bool:
        return True


def build_data_source(
    settings: Settings,
    engine_factory: Callable[[Settings], Engine] = data_layer.build_engine,
) -> DataSource:
    if settings.data_source == "mock":
        logger.info("Using mock data source")
        return MockDataSource()
    if settings.data_source == "sql":
        return SqlDataSource(engine_factory(settings))
    raise ConfigError(f"Unsupported data source: {settings.data_source}")
