# core.py: wiring of the BI backend, no HTTP in here

import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Callable, Optional

from bi_backend.config import Settings, get_settings
from bi_backend.services.cache import ResponseCache
from bi_backend.services.corporate import CorporateService
from bi_backend.services.data_sources import DataSource, build_data_source
from bi_backend.services.initializer import DataInitializer
from bi_backend.services.kpi import KpiProvider, build_kpi_provider
from bi_backend.services.provider import CorporateDataProvider
from bi_backend.services.query_engine import QueryEngine

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


@dataclass
class Container:
    settings: Settings
    source: DataSource
    engine: QueryEngine
    service: CorporateService
    initializer: DataInitializer
    provider: CorporateDataProvider


def build_container(
    settings: Optional[Settings] = None,
    source: Optional[DataSource] = None,
    kpi_provider: Optional[KpiProvider] = None,
    clock: Callable[[], date] = date.today,
    cache_clock: Callable[[], float] = time.monotonic,
) -> Container:
    """
    Build the whole object graph from settings.

    ``source`` and ``kpi_provider`` override what the settings select; the
    two clocks decide what "today" is and when cache entries expire.
    """
    settings = settings or get_settings()
    source = source or build_data_source(settings)
    engine = QueryEngine(source, clock)
    service = CorporateService(engine, kpi_provider or build_kpi_provider(settings, clock))
    cache = ResponseCache(
        max_entries=settings.cache_max_entries,
        ttl=settings.cache_ttl_seconds,
        clock=cache_clock,
    )
    initializer = DataInitializer(
        service,
        settings.pos_accnt_id,
        cache=cache,
        realtime_interval=settings.realtime_interval_seconds,
    )
    return Container(
        settings=settings,
        source=source,
        engine=engine,
        service=service,
        initializer=initializer,
        provider=CorporateDataProvider(initializer),
    )
