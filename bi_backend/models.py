"""Response DTOs.

Field names are the public contract of the API and deliberately do not track
the POS column names (``MemberNo`` -> ``member_no``, ``assigned`` ->
``assigned_warehouse_id`` ...). The façade in ``services.corporate`` does the
mapping.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Trend = Literal["up", "down", "stable"]
ReportType = Literal["revenue", "customer", "activation", "performance"]


class DTO(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)


class Biller(DTO):
    id: int
    name: str
    company_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    account_id: int
    is_active: bool = True


class Warehouse(DTO):
    id: int
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    account_id: int
    is_active: bool = True
    biller_id: Optional[int] = None


class Customer(DTO):
    id: int
    name: str
    customer_group_id: Optional[int] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    location: Optional[str] = None
    origin: Optional[str] = None
    sub_county: Optional[str] = None
    ward: Optional[str] = None
    sublocation: Optional[str] = None
    village: Optional[str] = None
    member_no: Optional[str] = None
    assigned_warehouse_id: Optional[int] = None
    account_id: int


class CustomerGroup(DTO):
    id: int
    name: str
    percentage: float = 0.0
    is_active: bool = True
    account_id: int


class Sale(DTO):
    id: int
    reference_no: Optional[str] = None
    customer_id: Optional[int] = None
    warehouse_id: Optional[int] = None
    biller_id: Optional[int] = None
    total_qty: float = 0.0
    total_discount: float = 0.0
    total_tax: float = 0.0
    grand_total: float = 0.0
    account_id: int
    created_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    warehouse_name: Optional[str] = None
    biller_name: Optional[str] = None


class WarehouseSale(DTO):
    warehouse_id: int
    warehouse_name: Optional[str] = None
    total_sales: float = 0.0
    sale_count: int = 0
    avg_sale: float = 0.0


class TodaySale(DTO):
    day: date
    total_revenue: float = 0.0
    sale_count: int = 0
    warehouse_revenue: List[WarehouseSale] = Field(default_factory=list)


class SalesTrendPoint(DTO):
    day: date
    sale_count: int
    total_revenue: float
    avg_order_value: float


class CustomerSegment(DTO):
    segment: str
    count: int
    revenue: float = 0.0
    avg_order_value: float = 0.0
    loyalty_score: int = 0
    growth_rate: Optional[float] = Field(
        default=None, description="Not computed: no purchase history is modelled yet"
    )
    warehouse_distribution: Dict[int, int] = Field(default_factory=dict)


class ActivationMetric(DTO):
    metric: str
    value: str
    trend: Trend
    target: float
    description: str


class SmartActivationSummary(DTO):
    total_groups: int
    active_groups: int
    avg_activation_rate: float
    total_members: int
    avg_revenue: float
    top_performing_group: Optional[str] = None
    growth_rate: Optional[float] = None


class RevenueByCustomerType(DTO):
    students: float = 0.0
    villagers: float = 0.0
    households: float = 0.0


class RevenueBreakdown(DTO):
    warehouse: Optional[str] = None
    warehouse_id: int
    total_sales: int = 0
    total_revenue: float = 0.0
    avg_sale_value: float = 0.0
    total_quantity: float = 0.0
    unique_customers: int = 0
    revenue_by_customer_type: RevenueByCustomerType = Field(default_factory=RevenueByCustomerType)
    growth_rate: Optional[float] = None
    market_share: float = 0.0


class DashboardData(DTO):
    customer_segmentation: List[CustomerSegment]
    sales_trend: List[SalesTrendPoint]
    smart_activation_metrics: List[ActivationMetric]
    revenue_breakdown: List[RevenueBreakdown]
    total_revenue: float = 0.0
    total_orders: int = 0
    total_customers: int = 0
    avg_order_value: float = 0.0
    timestamp: datetime


class CorporateDashboard(DTO):
    billers: List[Biller]
    warehouses: List[Warehouse]
    customers: List[Customer]
    dashboard_data: DashboardData
    timestamp: datetime


class AnalyticsReport(DTO):
    id: str
    title: str
    type: ReportType
    generated_at: datetime
    data: Any
    warehouse_ids: List[int] = Field(default_factory=list)

