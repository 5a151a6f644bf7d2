from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

import pandas as pd
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from bi_backend.config import Settings, get_settings
from bi_backend.exceptions import DataSourceError

logger = logging.getLogger(__name__)

POS_TABLES = ("billers", "warehouses", "customers", "customer_groups", "sales")

SCHEMA_DDL = (
    """
    CREATE TABLE IF NOT EXISTS billers (
        id INTEGER PRIMARY KEY,
        name VARCHAR(191) NOT NULL,
        company_name VARCHAR(191),
        email VARCHAR(191),
        phone_number VARCHAR(64),
        address VARCHAR(255),
        pos_accnt_id INTEGER NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT 1,
        created_at DATETIME,
        updated_at DATETIME
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS warehouses (
        id INTEGER PRIMARY KEY,
        name VARCHAR(191) NOT NULL,
        phone VARCHAR(64),
        email VARCHAR(191),
        address VARCHAR(255),
        is_active BOOLEAN NOT NULL DEFAULT 1,
        pos_accnt_id INTEGER NOT NULL,
        biller_id INTEGER,
        created_at DATETIME,
        updated_at DATETIME
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS customer_groups (
        id INTEGER PRIMARY KEY,
        name VARCHAR(191) NOT NULL,
        percentage FLOAT DEFAULT 0,
        is_active BOOLEAN NOT NULL DEFAULT 1,
        pos_accnt_id INTEGER NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS customers (
        id INTEGER PRIMARY KEY,
        customer_group_id INTEGER,
        name VARCHAR(191) NOT NULL,
        email VARCHAR(191),
        phone_number VARCHAR(64),
        location VARCHAR(191),
        origin VARCHAR(191),
        sub_county VARCHAR(191),
        ward VARCHAR(191),
        sublocation VARCHAR(191),
        village VARCHAR(191),
        MemberNo VARCHAR(64),
        assigned INTEGER,
        pos_accnt_id INTEGER NOT NULL,
        created_at DATETIME,
        updated_at DATETIME
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sales (
        id INTEGER PRIMARY KEY,
        reference_no VARCHAR(64),
        customer_id INTEGER,
        warehouse_id INTEGER,
        biller_id INTEGER,
        total_qty FLOAT DEFAULT 0,
        total_discount FLOAT DEFAULT 0,
        total_tax FLOAT DEFAULT 0,
        grand_total FLOAT DEFAULT 0,
        pos_accnt_id INTEGER NOT NULL,
        created_at DATETIME,
        updated_at DATETIME
    )
    """,
)


def build_engine(settings: Settings | None = None) -> Engine:
    settings = settings or get_settings()
    url = settings.resolved_database_url()
    if url.startswith("sqlite"):
        return create_engine(url)
    return create_engine(
        url,
        pool_size=settings.db_pool_size,
        pool_timeout=settings.db_pool_timeout,
        pool_pre_ping=True,
    )


def execute_query(
    engine: Engine, query: str, params: Mapping[str, Any] | None = None
) -> pd.DataFrame:
    """Run a parameterized SELECT and return the rows as a DataFrame."""
    try:
        with engine.connect() as con:
            return pd.read_sql_query(text(query), con, params=dict(params or {}))
    except (SQLAlchemyError, pd.errors.DatabaseError) as exc:
        logger.error("Query execution failed: %s", exc)
        raise DataSourceError(str(exc)) from exc


def check_connection(engine: Engine) -> bool:
    try:
        with engine.connect() as con:
            con.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("Database connection failed: %s", exc)
        return False
    logger.info("Database connection successful")
    return True


def _ensure_columns(df: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    for col in columns:
        if col not in df.columns:
            df[col] = None
    return df


def create_schema(engine: Engine) -> None:
    with engine.begin() as con:
        for ddl in SCHEMA_DDL:
            con.execute(text(ddl))


def reset_db(engine: Engine) -> None:
    with engine.begin() as con:
        for table in reversed(POS_TABLES):
            con.execute(text(f"DROP TABLE IF EXISTS {table}"))


def load_sample_data(engine: Engine, frames: Mapping[str, pd.DataFrame]) -> dict[str, int]:
    """Replace the contents of the POS tables with the given frames.

    Only meant for local development databases; the production schema is owned
    by the POS backend and is never written to.
    """
    create_schema(engine)
    counts: dict[str, int] = {}
    with engine.begin() as con:
        for table in POS_TABLES:
            df = frames.get(table)
            if df is None:
                continue
            con.execute(text(f"DELETE FROM {table}"))
            df.to_sql(table, con, if_exists="append", index=False)
            counts[table] = len(df)
    logger.info("Loaded sample data: %s", counts)
    return counts
