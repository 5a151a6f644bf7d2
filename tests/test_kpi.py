from datetime import date

import pytest
import requests

from bi_backend.config import Settings
from bi_backend.exceptions import RemoteBackendError, UnknownKPIError
from bi_backend.services.kpi import (
    KPI_CATALOGUE,
    RemoteKpiProvider,
    StaticKpiProvider,
    build_kpi_provider,
    resolve_period,
)

from conftest import fixed_clock


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.headers = {}
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        if self.error is not None:
            raise self.error
        return self.response


@pytest.mark.parametrize(
    "period, expected",
    [
        (None, (date(2024, 6, 1), date(2024, 6, 14))),
        ("current_month", (date(2024, 6, 1), date(2024, 6, 14))),
        ("last_month", (date(2024, 5, 1), date(2024, 5, 31))),
        ("current_quarter", (date(2024, 4, 1), date(2024, 6, 14))),
        ("current_year", (date(2024, 1, 1), date(2024, 6, 14))),
        ("last_30_days", (date(2024, 5, 15), date(2024, 6, 14))),
    ],
)
def test_resolve_period(period, expected):
    assert resolve_period(period, fixed_clock()) == expected


def test_resolve_period_rejects_unknown():
    with pytest.raises(ValueError):
        resolve_period("fortnight", fixed_clock())


def test_static_dashboard_groups_by_phase():
    data = StaticKpiProvider(fixed_clock).get_dashboard("current_year")

    assert data["phase_1"]["gross_profit_margin"] == 25.5
    assert data["phase_2"]["sales_forecast_30_days"] == 125000.0
    assert data["phase_3"]["customer_churn_rate"] == 5.8
    assert data["period"]["start_date"] == "2024-01-01"
    assert "abc_analysis" not in data["phase_2"]


def test_static_kpi_detail():
    data = StaticKpiProvider(fixed_clock).get_kpi(
        "gross-profit-margin", {"start_date": "2024-02-01", "end_date": "2024-02-29"}
    )
    assert data == {
        "gross_profit_margin": 25.5,
        "trend": "up",
        "period": {"start_date": "2024-02-01", "end_date": "2024-02-29"},
        "interpretation": "Good - Healthy profit margins",
    }


def test_static_kpi_unknown_and_remote_only():
    provider = StaticKpiProvider(fixed_clock)
    with pytest.raises(UnknownKPIError, match="Unknown KPI type: bogus"):
        provider.get_kpi("bogus")
    with pytest.raises(UnknownKPIError, match="remote backend"):
        provider.get_kpi("abc-analysis")


def test_catalogue_covers_every_endpoint():
    assert len(KPI_CATALOGUE) == 14
    assert "customer-segmentation" in KPI_CATALOGUE


def test_remote_provider_unwraps_envelope():
    session = FakeSession(FakeResponse({"success": True, "data": {"gross_profit_margin": 31.0}}))
    provider = RemoteKpiProvider("http://pos.example/", timeout=5, token="abc", session=session)

    data = provider.get_kpi("gross-profit-margin", {"start_date": "2024-01-01", "end_date": None})

    assert data == {"gross_profit_margin": 31.0}
    url, params, timeout = session.calls[0]
    assert url == "http://pos.example/api/kpi/gross-profit-margin"
    assert params == {"start_date": "2024-01-01"}
    assert timeout == 5
    assert session.headers["Authorization"] == "Bearer abc"


def test_remote_provider_failures():
    down = RemoteKpiProvider("http://pos.example", session=FakeSession(error=requests.ConnectionError()))
    with pytest.raises(RemoteBackendError):
        down.get_dashboard()

    erroring = RemoteKpiProvider("http://pos.example", session=FakeSession(FakeResponse({}, 502)))
    with pytest.raises(RemoteBackendError):
        erroring.get_dashboard("current_month")

    refusing = RemoteKpiProvider(
        "http://pos.example", session=FakeSession(FakeResponse({"success": False, "error": "nope"}))
    )
    with pytest.raises(RemoteBackendError, match="nope"):
        refusing.get_kpi("inventory-turnover")


def test_remote_provider_checks_catalogue_before_calling():
    session = FakeSession(FakeResponse({"success": True, "data": {}}))
    with pytest.raises(UnknownKPIError):
        RemoteKpiProvider("http://pos.example", session=session).get_kpi("bogus")
    assert session.calls == []


def test_build_kpi_provider():
    assert isinstance(build_kpi_provider(Settings(_env_file=None, kpi_source="static")), StaticKpiProvider)
    remote = build_kpi_provider(
        Settings(_env_file=None, kpi_source="remote", api_base_url="http://pos.example/")
    )
    assert isinstance(remote, RemoteKpiProvider)
    assert remote.base_url == "http://pos.example"
