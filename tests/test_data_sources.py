from datetime import timedelta

import pytest
from sqlalchemy import create_engine

from bi_backend.config import Settings
from bi_backend.exceptions import ConfigError, DataSourceError
from bi_backend.services import data_layer
from bi_backend.services.data_sources import (
    MockDataSource,
    SalesFilter,
    SqlDataSource,
    build_data_source,
)

from conftest import TODAY


def test_sample_data_is_loaded(sqlite_engine):
    df = data_layer.execute_query(sqlite_engine, "SELECT COUNT(*) AS n FROM sales")
    assert int(df.loc[0, "n"]) == 11


def test_execute_query_binds_named_params(sqlite_engine):
    df = data_layer.execute_query(
        sqlite_engine, "SELECT name FROM billers WHERE id = :id", {"id": 2}
    )
    assert df["name"].tolist() == ["Test Biller"]


def test_execute_query_wraps_driver_errors(sqlite_engine):
    with pytest.raises(DataSourceError):
        data_layer.execute_query(sqlite_engine, "SELECT * FROM no_such_table")


def test_check_connection(sqlite_engine, tmp_path):
    assert data_layer.check_connection(sqlite_engine) is True
    broken = create_engine(f"sqlite:///{tmp_path / 'missing' / 'dir' / 'pos.db'}")
    assert data_layer.check_connection(broken) is False


def test_reset_db_drops_tables(sqlite_engine):
    data_layer.reset_db(sqlite_engine)
    with pytest.raises(DataSourceError):
        data_layer.execute_query(sqlite_engine, "SELECT * FROM billers")


@pytest.mark.parametrize("source_name", ["sql_source", "mock_source"])
def test_sources_agree_on_entities(source_name, request):
    source = request.getfixturevalue(source_name)

    assert source.get_billers(1)["name"].tolist() == ["Demo Biller", "Test Biller"]
    assert source.get_warehouses(1)["name"].tolist() == [
        "East Warehouse", "Main Warehouse", "West Warehouse",
    ]
    assert len(source.get_customers(1)) == 4
    assert source.get_customer_groups(1)["name"].tolist() == ["Campus Members", "Town Households"]
    assert source.get_biller(1, 2)["name"].tolist() == ["Test Biller"]
    assert source.get_warehouse(1, 42).empty
    assert source.get_billers(7).empty
    assert source.ping() is True


@pytest.mark.parametrize("source_name", ["sql_source", "mock_source"])
def test_sources_filter_sales(source_name, request):
    source = request.getfixturevalue(source_name)

    everything = source.get_sales(1)
    assert len(everything) == 11
    assert everything["created_at"].tolist() == sorted(everything["created_at"], reverse=True)
    assert everything.loc[0, "warehouse_name"] is not None

    today = source.get_sales(1, SalesFilter(start_date=TODAY, end_date=TODAY))
    assert sorted(today["grand_total"].tolist()) == [800.0, 950.0, 1200.0, 1500.0]

    west = source.get_sales(1, SalesFilter(warehouse_id=3))
    assert set(west["warehouse_name"]) == {"West Warehouse"}
    assert set(west["biller_name"]) == {"Test Biller"}

    week = source.get_sales(1, SalesFilter(biller_id=1, start_date=TODAY - timedelta(days=7)))
    assert len(week) == 7

    assert len(source.get_sales(1, SalesFilter(limit=3))) == 3


def test_inactive_rows_are_hidden():
    from bi_backend.services.mock_data import build_mock_frames

    frames = build_mock_frames(TODAY)
    frames["warehouses"].loc[frames["warehouses"]["id"] == 3, "is_active"] = False
    source = MockDataSource(frames)
    assert 3 not in source.get_warehouses(1)["id"].tolist()


def test_mock_sale_names_are_scoped_to_the_account():
    import pandas as pd

    from bi_backend.services.mock_data import build_mock_frames

    frames = build_mock_frames(TODAY)
    other = frames["warehouses"].iloc[[0]].assign(name="Other Tenant Depot", pos_accnt_id=2)
    frames["warehouses"] = pd.concat([frames["warehouses"], other], ignore_index=True)
    source = MockDataSource(frames)

    sales = source.get_sales(1, SalesFilter(warehouse_id=1))
    assert not sales.empty
    assert set(sales["warehouse_name"]) == {"Main Warehouse"}


def test_build_data_source_selects_by_config(sqlite_engine):
    mock = build_data_source(Settings(_env_file=None, data_source="mock"))
    assert isinstance(mock, MockDataSource)

    sql = build_data_source(
        Settings(_env_file=None, data_source="sql"), engine_factory=lambda _settings: sqlite_engine
    )
    assert isinstance(sql, SqlDataSource)
    assert sql.engine is sqlite_engine


def test_build_data_source_rejects_unknown_kind():
    settings = Settings(_env_file=None).model_copy(update={"data_source": "legacy"})
    with pytest.raises(ConfigError):
        build_data_source(settings)
