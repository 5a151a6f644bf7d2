import pytest
from pydantic import ValidationError

from bi_backend.exceptions import DataSourceError, InternalServiceError, UnknownKPIError
from bi_backend.models import Sale, TodaySale
from bi_backend.services.corporate import (
    AccountQuery,
    BillerQuery,
    CorporateService,
    CustomerListQuery,
    HierarchyFilter,
    ReportsQuery,
    SalesQuery,
    WarehouseListQuery,
)
from bi_backend.services.data_sources import MockDataSource
from bi_backend.services.query_engine import QueryEngine

from conftest import TODAY, fixed_clock


class BrokenSource(MockDataSource):
    def get_billers(self, account_id):
        raise DataSourceError("connection reset")

    def get_warehouses(self, account_id):
        raise DataSourceError("connection reset")


@pytest.fixture
def broken_service():
    return CorporateService(QueryEngine(BrokenSource(today=TODAY), clock=fixed_clock))


@pytest.mark.parametrize(
    "model, kwargs",
    [
        (AccountQuery, {"account_id": 0}),
        (AccountQuery, {"account_id": -4}),
        (BillerQuery, {"account_id": 1, "biller_id": 0}),
        (SalesQuery, {"account_id": 1, "start_date": "2024-06-10", "end_date": "2024-06-01"}),
        (SalesQuery, {"account_id": 1, "start_date": "not-a-date"}),
        (HierarchyFilter, {"account_id": 1, "selected_biller": "abc"}),
        (HierarchyFilter, {"account_id": 1, "selected_warehouse": "0"}),
        (HierarchyFilter, {"account_id": 1, "date_range": "thirty"}),
        (HierarchyFilter, {"account_id": 1, "date_range": "0d"}),
        (ReportsQuery, {"account_id": 1, "type": "forecast"}),
    ],
)
def test_invalid_input_is_rejected(model, kwargs):
    with pytest.raises(ValidationError):
        model(**kwargs)


def test_hierarchy_filter_defaults():
    query = HierarchyFilter(account_id=1)
    assert (query.selected_biller, query.selected_warehouse, query.date_range) == ("all", "all", "30d")
    assert HierarchyFilter(account_id=1, date_range="7d").days == 7


def test_engine_failures_become_internal_errors(broken_service):
    with pytest.raises(InternalServiceError, match="Failed to fetch billers") as excinfo:
        broken_service.get_billers(AccountQuery(account_id=1))
    assert isinstance(excinfo.value.__cause__, DataSourceError)

    with pytest.raises(InternalServiceError, match="Failed to fetch corporate dashboard data"):
        broken_service.get_corporate_dashboard_data(HierarchyFilter(account_id=1))


def test_entities_use_public_field_names(service):
    customers = service.get_customers(CustomerListQuery(account_id=1, warehouse_id=3))
    assert len(customers) == 1
    alice = customers[0]
    assert alice.member_no == "STU002"
    assert alice.assigned_warehouse_id == 3
    assert alice.account_id == 1
    assert alice.village is None

    warehouses = service.get_warehouses(WarehouseListQuery(account_id=1, biller_id=2))
    assert [w.name for w in warehouses] == ["West Warehouse"]


def test_not_found_is_none(service):
    assert service.get_biller(BillerQuery(account_id=1, biller_id=99)) is None
    assert service.get_billers(AccountQuery(account_id=5)) == []


def test_sales_data_without_filters_is_todays_summary(service):
    result = service.get_sales_data(SalesQuery(account_id=1))
    assert isinstance(result, TodaySale)
    assert result.day == TODAY
    assert result.total_revenue == pytest.approx(4450.0)
    assert result.sale_count == 4


def test_sales_data_with_filters_is_detailed(service):
    rows = service.get_sales_data(SalesQuery(account_id=1, warehouse_id=2))
    assert all(isinstance(r, Sale) for r in rows)
    assert {r.warehouse_id for r in rows} == {2}
    assert rows[0].created_at >= rows[-1].created_at


def test_dashboard_applies_hierarchy_filters(service):
    result = service.get_corporate_dashboard_data(
        HierarchyFilter(account_id=1, selected_biller="1")
    )

    assert [b.name for b in result.billers] == ["Demo Biller", "Test Biller"]
    assert {w.id for w in result.warehouses} == {1, 2}
    assert {c.assigned_warehouse_id for c in result.customers} == {1, 2}
    data = result.dashboard_data
    assert data.total_revenue == pytest.approx(3500.0)
    assert data.total_orders == 3
    assert data.total_customers == 3
    assert data.avg_order_value == pytest.approx(3500.0 / 3)


def test_dashboard_for_one_warehouse(service):
    result = service.get_corporate_dashboard_data(
        HierarchyFilter(account_id=1, selected_biller="2", selected_warehouse="3", date_range="7d")
    )
    data = result.dashboard_data
    assert data.total_revenue == pytest.approx(950.0)
    assert data.total_orders == 1
    assert data.total_customers == 1
    assert [r.warehouse_id for r in data.revenue_breakdown] == [3]


def test_unfiltered_dashboard_totals(service):
    data = service.get_corporate_dashboard_data(HierarchyFilter(account_id=1)).dashboard_data
    assert data.total_revenue == pytest.approx(4450.0)
    assert data.total_orders == 4
    assert data.total_customers == 4


def test_segmentation_and_activation(service):
    segments = service.get_customer_segmentation(HierarchyFilter(account_id=1))
    assert [s.segment for s in segments] == ["Students", "Villagers", "Households"]
    assert sum(s.count for s in segments) == 4

    summary = service.get_smart_activation_metrics(
        HierarchyFilter(account_id=1, selected_biller="2")
    )
    assert summary.total_members == 1
    assert summary.top_performing_group == "Campus Members"


def test_revenue_breakdown_market_share(service):
    rows = service.get_revenue_breakdown(HierarchyFilter(account_id=1, selected_biller="1"))
    assert sum(r.market_share for r in rows) == pytest.approx(100.0)


def test_analytics_reports(service):
    reports = service.get_analytics_reports(ReportsQuery(account_id=1))
    assert [r.type for r in reports] == ["revenue", "customer", "activation", "performance"]

    (only,) = service.get_analytics_reports(
        ReportsQuery(account_id=1, warehouse_id=2, type="performance")
    )
    assert only.warehouse_ids == [2]
    assert [w["warehouse_id"] for w in only.data["warehouse_sale"]] == [2]


def test_kpi_data(service):
    dashboard = service.get_kpi_data(AccountQuery(account_id=1))
    assert dashboard["phase_1"]["gross_profit_margin"] == 25.5

    gpm = service.get_kpi_data(AccountQuery(account_id=1), "gross-profit-margin")
    assert gpm["trend"] == "up"

    segmentation = service.get_kpi_data(AccountQuery(account_id=1), "customer-segmentation")
    assert len(segmentation["customer_segmentation"]) == 3

    with pytest.raises(UnknownKPIError):
        service.get_kpi_data(AccountQuery(account_id=1), "bogus")


def test_health(service):
    assert service.health() is True
