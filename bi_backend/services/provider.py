from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Literal, Optional

from bi_backend.exceptions import InvalidFilterError
from bi_backend.models import Biller, Warehouse
from bi_backend.services.initializer import AnalyticsFilters, DataInitializer, Filters, RealtimeCallbacks

logger = logging.getLogger(__name__)

Status = Literal["idle", "loading", "ready", "error"]
DOMAINS = ("hierarchy", "dashboard", "analytics")


@dataclass
class DomainState:
    status: Status = "idle"
    data: Any = None
    error: Optional[str] = None
    generation: int = 0
    updated_at: Optional[datetime] = None


class CorporateDataProvider:
    """Holds the dashboard filters and the load state of each data domain.

    Every load bumps the domain's generation; a response that comes back after
    a newer load was started is dropped, so the last trigger always wins.
    """

    def __init__(self, initializer: DataInitializer, filters: Optional[Filters] = None):
        self.initializer = initializer
        self.filters = filters or Filters()
        self.analytics_filters = AnalyticsFilters()
        self.domains: dict[str, DomainState] = {name: DomainState() for name in DOMAINS}
        self.realtime: dict[str, Any] = {"sales": None, "customers": None, "last_sync": None}
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def hierarchy(self) -> DomainState:
        return self.domains["hierarchy"]

    @property
    def dashboard(self) -> DomainState:
        return self.domains["dashboard"]

    @property
    def analytics(self) -> DomainState:
        return self.domains["analytics"]

    async def _load(self, domain: str, fetch: Callable[[], Awaitable[Any]]) -> None:
        state = self.domains[domain]
        state.generation += 1
        generation = state.generation
        state.status = "loading"
        state.error = None
        try:
            data = await fetch()
        except Exception as exc:
            if generation != state.generation:
                logger.debug("Dropping stale %s failure (generation %d)", domain, generation)
                return
            logger.error("Failed to load %s data: %s", domain, exc)
            state.status = "error"
            state.error = str(exc) or f"Failed to load {domain} data"
            return
        if generation != state.generation:
            logger.debug(
                "Dropping stale %s response (generation %d, current %d)",
                domain, generation, state.generation,
            )
            return
        state.status = "ready"
        state.data = data
        state.updated_at = datetime.now(timezone.utc)

    async def load_hierarchy(self) -> None:
        await self._load("hierarchy", self.initializer.initialize_hierarchy_data)

    async def load_dashboard(self) -> None:
        filters = self.filters
        await self._load("dashboard", lambda: self.initializer.initialize_dashboard_data(filters))

    async def load_analytics(self) -> None:
        filters = self.analytics_filters
        await self._load("analytics", lambda: self.initializer.initialize_analytics_data(filters))

    # -- lifecycle ----------------------------------------------------------

    async def mount(self) -> None:
        await asyncio.gather(self.load_hierarchy(), self.load_dashboard(), self.load_analytics())
        self._unsubscribe = self.initializer.setup_realtime_sync(
            RealtimeCallbacks(
                on_dashboard_update=self._apply_realtime_dashboard,
                on_sales_update=lambda sales: self._record_realtime("sales", sales),
                on_customer_update=lambda customers: self._record_realtime("customers", customers),
            ),
            filters=lambda: self.filters,
        )

    def unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _record_realtime(self, name: str, payload: Any) -> None:
        self.realtime[name] = payload
        self.realtime["last_sync"] = datetime.now(timezone.utc)

    def _apply_realtime_dashboard(self, bundle: dict[str, Any]) -> None:
        state = self.dashboard
        # a pending load or a filter change since the tick started wins over the sync
        if state.status == "loading" or bundle.get("filters") != asdict(self.filters):
            return
        state.status = "ready"
        state.data = bundle
        state.updated_at = datetime.now(timezone.utc)

    # -- filters ------------------------------------------------------------

    async def update_filters(
        self,
        selected_biller: Optional[str] = None,
        selected_warehouse: Optional[str] = None,
        date_range: Optional[str] = None,
    ) -> None:
        """Apply filter changes as one update, then reload the dashboard once.

        Changing the biller resets the warehouse to ``"all"``. A warehouse given
        in the same call must belong to the resulting biller, otherwise
        :class:`InvalidFilterError` is raised and nothing changes.
        """
        filters = self.filters
        if selected_biller is not None and selected_biller != filters.selected_biller:
            filters = replace(filters, selected_biller=selected_biller, selected_warehouse="all")
        if selected_warehouse is not None:
            filters = replace(filters, selected_warehouse=selected_warehouse)
            self._check_warehouse_owner(filters)
        if date_range is not None:
            filters = replace(filters, date_range=date_range)
        self.filters = filters
        await self.load_dashboard()

    def _check_warehouse_owner(self, filters: Filters) -> None:
        if "all" in (filters.selected_biller, filters.selected_warehouse):
            return
        warehouses = (self.hierarchy.data or {}).get("warehouses", [])
        warehouse = next((w for w in warehouses if str(w.id) == filters.selected_warehouse), None)
        if warehouse is not None and str(warehouse.biller_id) != filters.selected_biller:
            raise InvalidFilterError(
                f"Warehouse {filters.selected_warehouse} does not belong to biller "
                f"{filters.selected_biller}"
            )

    async def set_selected_biller(self, biller: str) -> None:
        await self.update_filters(selected_biller=biller)

    async def set_selected_warehouse(self, warehouse: str) -> None:
        await self.update_filters(selected_warehouse=warehouse)

    async def set_date_range(self, date_range: str) -> None:
        await self.update_filters(date_range=date_range)

    async def set_analytics_filters(self, filters: AnalyticsFilters) -> None:
        self.analytics_filters = filters
        await self.load_analytics()

    async def refresh_data(self) -> None:
        self.initializer.clear_cache()
        await asyncio.gather(self.load_hierarchy(), self.load_dashboard())

    def clear_cache(self) -> None:
        self.initializer.clear_cache()

    # -- selectors ----------------------------------------------------------

    def get_filtered_warehouses(self) -> list[Warehouse]:
        data = self.hierarchy.data or {}
        warehouses = data.get("warehouses", [])
        if self.filters.selected_biller == "all":
            return list(warehouses)
        return [w for w in warehouses if str(w.biller_id) == self.filters.selected_biller]

    def get_current_biller(self) -> Optional[Biller]:
        if self.filters.selected_biller == "all":
            return None
        billers = (self.hierarchy.data or {}).get("billers", [])
        return next((b for b in billers if str(b.id) == self.filters.selected_biller), None)

    def get_current_warehouse(self) -> Optional[Warehouse]:
        if self.filters.selected_warehouse == "all":
            return None
        warehouses = (self.hierarchy.data or {}).get("warehouses", [])
        return next((w for w in warehouses if str(w.id) == self.filters.selected_warehouse), None)

    def snapshot(self) -> dict[str, Any]:
        return {
            "filters": asdict(self.filters),
            "analytics_filters": asdict(self.analytics_filters),
            "domains": {name: asdict(state) for name, state in self.domains.items()},
            "current_biller": self.get_current_biller(),
            "current_warehouse": self.get_current_warehouse(),
            "filtered_warehouses": self.get_filtered_warehouses(),
            "realtime": {"last_sync": self.realtime["last_sync"]},
            "cache": self.initializer.cache_stats(),
        }
