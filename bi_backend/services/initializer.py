"""Fetches the bundles the dashboard needs, in parallel, with caching.

Each ``initialize_*`` coroutine fans its service calls out to worker threads
and gathers them. A failure in any branch propagates and nothing is cached.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from bi_backend.services.cache import CacheKey, ResponseCache
from bi_backend.services.corporate import (
    AccountQuery,
    CorporateService,
    CustomerListQuery,
    HierarchyFilter,
    ReportsQuery,
    SalesQuery,
    WarehouseListQuery,
)

logger = logging.getLogger(__name__)

DATA_KINDS = ("hierarchy", "dashboard", "analytics")
UNKNOWN_BILLER = "unknown"
UNASSIGNED = "unassigned"

Callback = Callable[[Any], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class Filters:
    selected_biller: str = "all"
    selected_warehouse: str = "all"
    date_range: str = "30d"

    def cache_key(self, kind: str = "dashboard") -> CacheKey:
        return CacheKey(kind, self.selected_biller, self.selected_warehouse, self.date_range)


@dataclass(frozen=True)
class AnalyticsFilters:
    warehouse_id: Optional[int] = None
    type: Optional[str] = None


@dataclass
class RealtimeCallbacks:
    on_dashboard_update: Optional[Callback] = None
    on_sales_update: Optional[Callback] = None
    on_customer_update: Optional[Callback] = None


def group_warehouses_by_biller(warehouses: list) -> dict[str, list]:
    grouped: dict[str, list] = {}
    for warehouse in warehouses:
        key = str(warehouse.biller_id) if warehouse.biller_id is not None else UNKNOWN_BILLER
        grouped.setdefault(key, []).append(warehouse)
    return grouped


def group_customers_by_warehouse(customers: list) -> dict[str, list]:
    grouped: dict[str, list] = {}
    for customer in customers:
        assigned = customer.assigned_warehouse_id
        key = str(assigned) if assigned is not None else UNASSIGNED
        grouped.setdefault(key, []).append(customer)
    return grouped


async def _notify(callback: Optional[Callback], payload: Any) -> None:
    if callback is None:
        return
    result = callback(payload)
    if inspect.isawaitable(result):
        await result


class DataInitializer:
    def __init__(
        self,
        service: CorporateService,
        account_id: int,
        cache: Optional[ResponseCache] = None,
        realtime_interval: float = 30.0,
    ):
        self.service = service
        self.account_id = account_id
        self.cache = cache if cache is not None else ResponseCache()
        self.realtime_interval = realtime_interval

    async def _call(self, func, *args):
        return await asyncio.to_thread(func, *args)

    async def initialize_hierarchy_data(self) -> dict[str, Any]:
        account = AccountQuery(account_id=self.account_id)
        billers, warehouses, customers = await asyncio.gather(
            self._call(self.service.get_billers, account),
            self._call(self.service.get_warehouses, WarehouseListQuery(account_id=self.account_id)),
            self._call(self.service.get_customers, CustomerListQuery(account_id=self.account_id)),
        )
        logger.info(
            "Hierarchy loaded: %d billers, %d warehouses, %d customers",
            len(billers), len(warehouses), len(customers),
        )
        return {
            "billers": billers,
            "warehouses": warehouses,
            "customers": customers,
            "warehouses_by_biller": group_warehouses_by_biller(warehouses),
            "customers_by_warehouse": group_customers_by_warehouse(customers),
        }

    async def initialize_dashboard_data(self, filters: Optional[Filters] = None) -> dict[str, Any]:
        filters = filters or Filters()
        key = filters.cache_key()
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        query = HierarchyFilter(account_id=self.account_id, **asdict(filters))
        logger.info("Initializing dashboard data for %s", filters)
        dashboard, activation, segmentation, breakdown = await asyncio.gather(
            self._call(self.service.get_corporate_dashboard_data, query),
            self._call(self.service.get_smart_activation_metrics, query),
            self._call(self.service.get_customer_segmentation, query),
            self._call(self.service.get_revenue_breakdown, query),
        )
        bundle = {
            "filters": asdict(filters),
            "dashboard": dashboard,
            "smart_activation": activation,
            "customer_segmentation": segmentation,
            "revenue_breakdown": breakdown,
            "last_updated": datetime.now(timezone.utc),
        }
        self.cache.set(key, bundle)
        return bundle

    async def initialize_analytics_data(
        self, filters: Optional[AnalyticsFilters] = None
    ) -> dict[str, Any]:
        filters = filters or AnalyticsFilters()
        reports_query = ReportsQuery(account_id=self.account_id, **asdict(filters))
        sales_query = SalesQuery(account_id=self.account_id, warehouse_id=filters.warehouse_id)
        reports, sales, kpis = await asyncio.gather(
            self._call(self.service.get_analytics_reports, reports_query),
            self._call(self.service.get_sales_data, sales_query),
            self._call(self.service.get_kpi_data, AccountQuery(account_id=self.account_id)),
        )
        return {"reports": reports, "sales": sales, "kpis": kpis}

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info("Data cache cleared")

    async def refresh_data(self, kind: str, filters: Any = None) -> dict[str, Any]:
        if kind not in DATA_KINDS:
            raise ValueError(f"Unknown data type: {kind}")
        if kind == "dashboard":
            filters = filters or Filters()
            self.cache.delete(filters.cache_key())
            return await self.initialize_dashboard_data(filters)
        if kind == "hierarchy":
            return await self.initialize_hierarchy_data()
        return await self.initialize_analytics_data(filters)

    def is_data_fresh(self, key: CacheKey, max_age: Optional[float] = None) -> bool:
        return self.cache.is_fresh(key, max_age)

    def cache_stats(self) -> dict[str, Any]:
        return self.cache.stats()

    # -- realtime -----------------------------------------------------------

    async def sync_once(
        self,
        callbacks: RealtimeCallbacks,
        filters: Optional[Callable[[], Filters]] = None,
    ) -> None:
        sales, customers = await asyncio.gather(
            self._call(self.service.get_sales_data, SalesQuery(account_id=self.account_id)),
            self._call(self.service.get_customers, CustomerListQuery(account_id=self.account_id)),
        )
        await _notify(callbacks.on_sales_update, sales)
        await _notify(callbacks.on_customer_update, customers)
        if callbacks.on_dashboard_update is not None:
            current = filters() if filters else Filters()
            await _notify(callbacks.on_dashboard_update, await self.refresh_data("dashboard", current))

    async def _sync_loop(self, callbacks, interval, filters) -> None:
        while True:
            await asyncio.sleep(interval)
            logger.debug("Realtime sync tick")
            try:
                await self.sync_once(callbacks, filters)
            except Exception:
                logger.exception("Error in realtime sync")

    def setup_realtime_sync(
        self,
        callbacks: RealtimeCallbacks,
        interval: Optional[float] = None,
        filters: Optional[Callable[[], Filters]] = None,
    ) -> Callable[[], None]:
        """Start periodic re-pulls on the running loop; returns an unsubscribe function.

        An interval of 0 (or less) disables the sync and returns a no-op.
        """
        interval = self.realtime_interval if interval is None else interval
        if interval <= 0:
            logger.info("Realtime sync disabled")
            return lambda: None

        task = asyncio.get_running_loop().create_task(self._sync_loop(callbacks, interval, filters))
        logger.info("Realtime sync started (every %ss)", interval)

        def unsubscribe() -> None:
            if not task.done():
                task.cancel()
                logger.info("Realtime sync stopped")

        return unsubscribe
