from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional

import requests

from bi_backend.config import Settings
from bi_backend.exceptions import ConfigError, RemoteBackendError, UnknownKPIError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KpiSpec:
    kpi_type: str
    key: str
    phase: int
    value: Optional[float] = None
    trend: str = "stable"
    interpretation: Optional[str] = None


# Placeholder figures served until the POS backend exposes the real numbers.
KPI_CATALOGUE: dict[str, KpiSpec] = {
    spec.kpi_type: spec
    for spec in (
        KpiSpec("gross-profit-margin", "gross_profit_margin", 1, 25.5, "up",
                "Good - Healthy profit margins"),
        KpiSpec("sales-growth-rate", "sales_growth_rate", 1, 12.3, "up"),
        KpiSpec("inventory-turnover", "inventory_turnover", 1, 8.7, "stable"),
        KpiSpec("customer-lifetime-value", "customer_lifetime_value", 1, 1540.50, "up"),
        KpiSpec("net-profit-margin", "net_profit_margin", 2, 18.2, "up"),
        KpiSpec("customer-acquisition-cost", "customer_acquisition_cost", 2, 125.75, "down"),
        KpiSpec("customer-retention-rate", "customer_retention_rate", 2, 78.5, "stable"),
        KpiSpec("sales-forecast", "sales_forecast_30_days", 2, 125000.0, "up"),
        KpiSpec("abc-analysis", "abc_analysis", 2),
        KpiSpec("return-on-investment", "return_on_investment", 3, 22.1, "up"),
        KpiSpec("customer-churn-rate", "customer_churn_rate", 3, 5.8, "down"),
        KpiSpec("predictive-analytics", "predictive_analytics_90_days", 3),
        KpiSpec("seasonal-trends", "seasonal_trends", 3),
        KpiSpec("customer-segmentation", "customer_segmentation", 3),
    )
}

PERIODS = ("current_month", "last_month", "current_quarter", "current_year", "last_30_days")


def get_spec(kpi_type: str) -> KpiSpec:
    try:
        return KPI_CATALOGUE[kpi_type]
    except KeyError:
        raise UnknownKPIError(kpi_type) from None


def resolve_period(period: Optional[str], today: date) -> tuple[date, date]:
    """Translate a named reporting period into an inclusive date range."""
    period = period or "current_month"
    if period == "current_month":
        return today.replace(day=1), today
    if period == "last_month":
        end = today.replace(day=1) - timedelta(days=1)
        return end.replace(day=1), end
    if period == "current_quarter":
        first_month = (today.month - 1) // 3 * 3 + 1
        return today.replace(month=first_month, day=1), today
    if period == "current_year":
        return today.replace(month=1, day=1), today
    if period == "last_30_days":
        return today - timedelta(days=30), today
    raise ValueError(f"Unknown period '{period}'. Expected one of: {', '.join(PERIODS)}")


class KpiProvider(ABC):
    @abstractmethod
    def get_dashboard(self, period: Optional[str] = None) -> dict[str, Any]: ...

    @abstractmethod
    def get_kpi(self, kpi_type: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]: ...


class StaticKpiProvider(KpiProvider):
    """Serves the catalogue's placeholder figures in the backend's response shape."""

    def __init__(self, clock: Callable[[], date] = date.today):
        self.clock = clock

    def get_dashboard(self, period: Optional[str] = None) -> dict[str, Any]:
        start, end = resolve_period(period, self.clock())
        phases: dict[str, dict[str, Any]] = {"phase_1": {}, "phase_2": {}, "phase_3": {}}
        for spec in KPI_CATALOGUE.values():
            if spec.value is not None:
                phases[f"phase_{spec.phase}"][spec.key] = spec.value
        return {
            **phases,
            "period": {
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "generated_at": datetime.now(timezone.utc).isoformat(),
            },
        }

    def get_kpi(self, kpi_type: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        spec = get_spec(kpi_type)
        if spec.value is None:
            raise UnknownKPIError(
                kpi_type, f"KPI '{kpi_type}' is only available from the remote backend"
            )
        params = params or {}
        today = self.clock()
        data: dict[str, Any] = {
            spec.key: spec.value,
            "trend": spec.trend,
            "period": {
                "start_date": params.get("start_date") or today.replace(month=1, day=1).isoformat(),
                "end_date": params.get("end_date") or today.isoformat(),
            },
        }
        if spec.interpretation:
            data["interpretation"] = spec.interpretation
        return data


class RemoteKpiProvider(KpiProvider):
    """Proxies KPI requests to the POS backend's ``/api/kpi`` endpoints.

    No retries: a failed call surfaces immediately as ``RemoteBackendError``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {"Accept": "application/json", "X-Requested-With": "XMLHttpRequest"}
        )
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        query = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            response = self.session.get(url, params=query, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.error("Remote KPI request failed: GET %s: %s", url, exc)
            raise RemoteBackendError(f"GET {path} failed") from exc

        if isinstance(body, dict):
            if body.get("success") is False:
                raise RemoteBackendError(body.get("error") or f"GET {path} failed")
            return body.get("data", body)
        return body

    def get_dashboard(self, period: Optional[str] = None) -> dict[str, Any]:
        return self._get("/api/kpi/dashboard", {"period": period})

    def get_kpi(self, kpi_type: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        get_spec(kpi_type)
        return self._get(f"/api/kpi/{kpi_type}", params)


def build_kpi_provider(settings: Settings, clock: Callable[[], date] = date.today) -> KpiProvider:
    if settings.kpi_source == "static":
        return StaticKpiProvider(clock)
    if settings.kpi_source == "remote":
        return RemoteKpiProvider(
            settings.api_base_url, settings.api_timeout_seconds, settings.api_token
        )
    raise ConfigError(f"Unsupported KPI source: {settings.kpi_source}")
