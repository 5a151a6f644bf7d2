from datetime import timedelta

import pandas as pd
import pytest

from bi_backend.services.data_sources import MockDataSource
from bi_backend.services.query_engine import (
    QueryEngine,
    calculate_smart_activation_metrics,
    classify_customers,
    segment_customers,
    summarize_warehouse_sales,
)

from conftest import TODAY, fixed_clock


def by_segment(rows):
    return {row["segment"]: row for row in rows}


def test_one_customer_per_segment():
    customers = pd.DataFrame([{"origin": "student"}, {"village": "X"}, {}])
    rows = segment_customers(customers)

    assert [r["segment"] for r in rows] == ["Students", "Villagers", "Households"]
    assert [r["count"] for r in rows] == [1, 1, 1]
    assert all(r["revenue"] == 0 for r in rows)


def test_first_matching_rule_wins():
    customers = pd.DataFrame(
        [
            {"origin": "University STUDENT", "village": "Y"},
            {"MemberNo": "M-1", "sub_county": "Z"},
            {"sub_county": "Z"},
            {"origin": "farmer"},
        ]
    )
    assert list(classify_customers(customers)) == [
        "Students", "Students", "Villagers", "Households",
    ]


def test_segment_counts_sum_to_input(mock_source):
    customers = mock_source.get_customers(1)
    rows = segment_customers(customers)
    assert sum(r["count"] for r in rows) == len(customers)


@pytest.mark.parametrize("count, expected", [(0, 0), (3, 30), (10, 100), (25, 100)])
def test_loyalty_score_is_capped(count, expected):
    customers = pd.DataFrame([{"origin": "student"}] * count, columns=["origin"])
    students = by_segment(segment_customers(customers))["Students"]
    assert students["loyalty_score"] == expected
    assert students["growth_rate"] is None


def test_segment_revenue_and_distribution(engine):
    rows = by_segment(engine.get_customer_segmentation(1))

    # 30 day window excludes the 40 day old sale
    assert rows["Students"]["count"] == 2
    assert rows["Students"]["revenue"] == pytest.approx(6050.0)
    assert rows["Students"]["avg_order_value"] == pytest.approx(3025.0)
    assert rows["Students"]["warehouse_distribution"] == {1: 1, 3: 1}
    assert rows["Villagers"]["revenue"] == pytest.approx(1250.0)
    assert rows["Households"]["revenue"] == pytest.approx(3300.0)


def test_zero_sales_warehouses_are_zero_filled():
    warehouses = pd.DataFrame([{"id": 1, "name": "A"}, {"id": 2, "name": "B"}])
    sales = pd.DataFrame([{"warehouse_id": 1, "grand_total": 100.0}])

    summary = summarize_warehouse_sales(warehouses, sales).set_index("warehouse_id")

    assert summary.loc[1, "total_sales"] == 100
    assert summary.loc[1, "sale_count"] == 1
    assert summary.loc[2, "total_sales"] == 0
    assert summary.loc[2, "sale_count"] == 0
    assert summary.loc[2, "avg_sale"] == 0


def test_today_sale_example():
    frames = {
        "warehouses": pd.DataFrame(
            [
                {"id": 1, "name": "A", "pos_accnt_id": 1, "is_active": True},
                {"id": 2, "name": "B", "pos_accnt_id": 1, "is_active": True},
            ]
        ),
        "sales": pd.DataFrame(
            [
                {"id": 1, "warehouse_id": 1, "grand_total": 100.0, "pos_accnt_id": 1,
                 "created_at": f"{TODAY} 10:00:00"},
                {"id": 2, "warehouse_id": 2, "grand_total": 40.0, "pos_accnt_id": 1,
                 "created_at": f"{TODAY - timedelta(days=1)} 10:00:00"},
            ]
        ),
    }
    engine = QueryEngine(MockDataSource(frames), clock=fixed_clock)

    result = engine.get_today_sale(1)

    assert result["total_sale_amount"] == 100
    assert result["sale_count"] == 1
    per_warehouse = {row["warehouse_id"]: row for row in result["warehouse_sale"]}
    assert (per_warehouse[1]["total_sales"], per_warehouse[1]["sale_count"]) == (100, 1)
    assert (per_warehouse[2]["total_sales"], per_warehouse[2]["sale_count"]) == (0, 0)


def test_today_sale_orders_by_revenue(engine):
    result = engine.get_today_sale(1)

    assert result["day"] == TODAY
    assert result["total_sale_amount"] == pytest.approx(4450.0)
    assert [r["warehouse_id"] for r in result["warehouse_sale"]] == [1, 2, 3]
    assert result["warehouse_sale"][0]["avg_sale"] == pytest.approx(1000.0)


def test_today_sale_for_selected_warehouses(engine):
    result = engine.get_today_sale(1, [3])
    assert result["total_sale_amount"] == pytest.approx(950.0)
    assert [r["warehouse_id"] for r in result["warehouse_sale"]] == [3]


def test_activation_metrics():
    customers = pd.DataFrame({"id": [1, 2, 3, 4]})
    sales = pd.DataFrame({"customer_id": [1, 1, 2], "grand_total": [10.0, 5.0, 1.0]})

    rate, total, active = calculate_smart_activation_metrics(customers, sales, days=7)

    assert rate["value"] == "50.00"
    assert rate["trend"] == "stable"
    assert rate["target"] == 75
    assert total["value"] == "4"
    assert total["target"] == 1000
    assert active["metric"] == "Active Customers (7d)"
    assert active["value"] == "2"
    assert active["trend"] == "up"
    assert active["target"] == pytest.approx(1.6)


def test_activation_metrics_without_customers():
    rate, total, active = calculate_smart_activation_metrics(pd.DataFrame(), pd.DataFrame())
    assert rate["value"] == "0.00"
    assert rate["trend"] == "down"
    assert total["value"] == "0"


def test_sales_trend_window(engine):
    trend = engine.get_sales_trend(1, days=7)

    days = [point["day"] for point in trend]
    assert days == sorted(days)
    assert days[-1] == TODAY
    assert TODAY - timedelta(days=8) not in days
    today = trend[-1]
    assert today["sale_count"] == 4
    assert today["avg_order_value"] == pytest.approx(4450.0 / 4)


def test_revenue_breakdown(engine):
    rows = {row["warehouse_id"]: row for row in engine.get_revenue_breakdown(1)}

    main = rows[1]
    assert main["warehouse"] == "Main Warehouse"
    assert main["total_sales"] == 2
    assert main["total_revenue"] == pytest.approx(2000.0)
    assert main["unique_customers"] == 2
    assert main["revenue_by_customer_type"] == {
        "students": 1200.0, "villagers": 800.0, "households": 0.0,
    }
    assert main["market_share"] == pytest.approx(2000 / 4450 * 100)
    assert sum(r["market_share"] for r in rows.values()) == pytest.approx(100.0)


def test_smart_activation_summary(engine):
    summary = engine.get_smart_activation_summary(1)

    assert summary["total_groups"] == 2
    assert summary["active_groups"] == 2
    assert summary["avg_activation_rate"] == pytest.approx(100.0)
    assert summary["total_members"] == 4
    assert summary["avg_revenue"] == pytest.approx(4450.0 / 3)
    assert summary["top_performing_group"] == "Campus Members"
    assert summary["growth_rate"] is None


def test_dashboard_data_is_scoped_to_warehouses(engine):
    data = engine.get_dashboard_data(1, [3], days=30)

    segments = by_segment(data["customer_segmentation"])
    assert segments["Students"]["count"] == 1
    assert segments["Villagers"]["count"] == 0
    assert [r["warehouse_id"] for r in data["revenue_breakdown"]] == [3]
    assert data["smart_activation_metrics"][1]["value"] == "1"
    assert data["timestamp"].tzinfo is not None


def test_entity_lookups(engine):
    assert [b["name"] for b in engine.get_billers(1)] == ["Demo Biller", "Test Biller"]
    assert [w["id"] for w in engine.get_warehouses(1, biller_id=1)] == [2, 1]
    assert [c["name"] for c in engine.get_customers(1, warehouse_id=1)] == [
        "Jane Villager", "John Student",
    ]
    assert engine.get_biller(1, 99) is None
    assert engine.get_warehouse(1, 3)["name"] == "West Warehouse"
    assert engine.get_billers(2) == []
