"""Demo POS records for one account (``pos_accnt_id = 1``).

Used by :class:`~bi_backend.services.data_sources.MockDataSource` and to seed a
local SQLite database. Sales are laid out relative to ``today`` so the
today's-sale and trend views always have something to show.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta

import pandas as pd

BILLERS = [
    dict(id=1, name="Demo Biller", company_name="Demo Corp", email="demo@biller.com",
         phone_number="+1234567890", address="123 Demo St", pos_accnt_id=1, is_active=True),
    dict(id=2, name="Test Biller", company_name="Test Ltd", email="test@biller.com",
         phone_number="+0987654321", address="456 Test Ave", pos_accnt_id=1, is_active=True),
]

WAREHOUSES = [
    dict(id=1, name="Main Warehouse", phone="+1111111111", email="main@warehouse.com",
         address="789 Warehouse Rd", is_active=True, pos_accnt_id=1, biller_id=1),
    dict(id=2, name="East Warehouse", phone="+2222222222", email="east@warehouse.com",
         address="321 East Blvd", is_active=True, pos_accnt_id=1, biller_id=1),
    dict(id=3, name="West Warehouse", phone="+3333333333", email="west@warehouse.com",
         address="654 West St", is_active=True, pos_accnt_id=1, biller_id=2),
]

CUSTOMER_GROUPS = [
    dict(id=1, name="Campus Members", percentage=5.0, is_active=True, pos_accnt_id=1),
    dict(id=2, name="Town Households", percentage=0.0, is_active=True, pos_accnt_id=1),
]

CUSTOMERS = [
    dict(id=1, customer_group_id=1, name="John Student", email="john@student.com",
         phone_number="+4444444444", location="Campus", origin="student", MemberNo="STU001",
         assigned=1, pos_accnt_id=1),
    dict(id=2, customer_group_id=1, name="Jane Villager", email="jane@village.com",
         phone_number="+5555555555", village="Vilage A", sub_county="County 1",
         assigned=1, pos_accnt_id=1),
    dict(id=3, customer_group_id=2, name="Bob Householder", email="bob@house.com",
         phone_number="+6666666666", location="City Center", assigned=2, pos_accnt_id=1),
    dict(id=4, customer_group_id=1, name="Alice Student", email="alice@student.com",
         phone_number="+7777777777", origin="university student", MemberNo="STU002",
         assigned=3, pos_accnt_id=1),
]

# (days ago, hour, customer, warehouse, biller, qty, grand_total)
_SALES_PLAN = [
    (0, 9, 1, 1, 1, 2, 1200.0),
    (0, 11, 2, 1, 1, 1, 800.0),
    (0, 14, 3, 2, 1, 3, 1500.0),
    (0, 16, 4, 3, 2, 1, 950.0),
    (1, 10, 1, 1, 1, 1, 600.0),
    (1, 15, 3, 2, 1, 2, 1100.0),
    (2, 12, 4, 3, 2, 4, 2000.0),
    (3, 9, 2, 1, 1, 1, 450.0),
    (5, 13, 1, 1, 1, 2, 1300.0),
    (8, 17, 3, 2, 1, 1, 700.0),
    (40, 10, 2, 1, 1, 1, 300.0),
]


def build_sales(today: date) -> list[dict]:
    rows = []
    for idx, (days_ago, hour, customer, warehouse, biller, qty, total) in enumerate(
        _SALES_PLAN, start=1
    ):
        created = datetime.combine(today - timedelta(days=days_ago), time(hour=hour))
        rows.append(
            dict(
                id=idx,
                reference_no=f"posr-{created:%Y%m%d}-{idx:04d}",
                customer_id=customer,
                warehouse_id=warehouse,
                biller_id=biller,
                total_qty=float(qty),
                total_discount=0.0,
                total_tax=round(total * 0.16, 2),
                grand_total=total,
                pos_accnt_id=1,
                created_at=created.strftime("%Y-%m-%d %H:%M:%S"),
            )
        )
    return rows


def build_mock_frames(today: date | None = None) -> dict[str, pd.DataFrame]:
    today = today or date.today()
    return {
        "billers": pd.DataFrame(BILLERS),
        "warehouses": pd.DataFrame(WAREHOUSES),
        "customer_groups": pd.DataFrame(CUSTOMER_GROUPS),
        "customers": pd.DataFrame(CUSTOMERS),
        "sales": pd.DataFrame(build_sales(today)),
    }
