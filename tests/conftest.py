from datetime import date

import pytest
from sqlalchemy import create_engine

from bi_backend.config import Settings
from bi_backend.core import build_container
from bi_backend.services.corporate import CorporateService
from bi_backend.services.data_layer import load_sample_data
from bi_backend.services.data_sources import MockDataSource, SqlDataSource
from bi_backend.services.kpi import StaticKpiProvider
from bi_backend.services.mock_data import build_mock_frames
from bi_backend.services.query_engine import QueryEngine

TODAY = date(2024, 6, 14)


def fixed_clock() -> date:
    return TODAY


@pytest.fixture
def mock_source():
    return MockDataSource(today=TODAY)


@pytest.fixture
def engine(mock_source):
    return QueryEngine(mock_source, clock=fixed_clock)


@pytest.fixture
def service(engine):
    return CorporateService(engine, StaticKpiProvider(fixed_clock))


@pytest.fixture
def sqlite_engine(tmp_path):
    db = create_engine(f"sqlite:///{tmp_path / 'pos.db'}")
    load_sample_data(db, build_mock_frames(TODAY))
    yield db
    db.dispose()


@pytest.fixture
def sql_source(sqlite_engine):
    return SqlDataSource(sqlite_engine)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        data_source="mock",
        kpi_source="static",
        pos_accnt_id=1,
        realtime_interval_seconds=0,
    )


@pytest.fixture
def container(settings, mock_source):
    return build_container(settings, source=mock_source, clock=fixed_clock)
