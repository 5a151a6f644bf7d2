from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings
from pydantic import AliasChoices, Field, field_validator, ConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_SQLITE_PATH = BASE_DIR / "bi_backend.db"


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="BI_",
        populate_by_name=True,
        extra="ignore",
    )

    # Database
    database_url: str | None = Field(
        default=None,
        description="Optional SQLAlchemy connection string. Takes precedence over db_* fields.",
    )
    db_host: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("BI_DB_HOST", "DB_HOST", "db_host"),
        description="MySQL host of the POS database. Falls back to sqlite file when unset.",
    )
    db_port: int = Field(
        default=3306, validation_alias=AliasChoices("BI_DB_PORT", "DB_PORT", "db_port")
    )
    db_database: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("BI_DB_DATABASE", "DB_DATABASE", "db_database"),
    )
    db_username: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("BI_DB_USERNAME", "DB_USERNAME", "db_username"),
    )
    db_password: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("BI_DB_PASSWORD", "DB_PASSWORD", "db_password"),
    )
    db_pool_size: int = Field(default=10, description="Connection pool size (MySQL only)")
    db_pool_timeout: int = Field(default=60, description="Seconds to wait for a pooled connection")

    # Data source selection
    data_source: Literal["sql", "mock"] = Field(
        default="mock", description="Backing store for the query engine"
    )
    pos_accnt_id: int = Field(default=1, description="Default tenant for dashboard state")

    # Remote KPI backend
    kpi_source: Literal["static", "remote"] = Field(
        default="static", description="Serve placeholder KPIs or proxy to the remote backend"
    )
    api_base_url: str = Field(
        default="http://localhost:8000",
        validation_alias=AliasChoices("BI_API_BASE_URL", "NEXT_PUBLIC_API_URL", "api_base_url"),
    )
    api_timeout_seconds: float = Field(default=30.0)
    api_token: Optional[str] = Field(default=None, description="Bearer token for the remote backend")

    # Cache / realtime
    cache_ttl_seconds: float = Field(default=15 * 60, description="Dashboard cache entry lifetime")
    cache_max_entries: int = Field(default=128, description="Bound on cached dashboard bundles")
    realtime_interval_seconds: float = Field(
        default=30.0, description="Realtime re-sync interval. 0 disables the sync task."
    )

    log_level: str = Field(default="INFO")

    # Frontend origins - can be comma-separated string or list
    allowed_origins: str | list[str] = Field(
        default="http://localhost:3000,http://127.0.0.1:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_origins(cls, v):
        if isinstance(v, str):
            # Split by comma and strip whitespace
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        if self.db_host:
            user = quote_plus(self.db_username or "")
            password = quote_plus(self.db_password or "")
            return (
                f"mysql+pymysql://{user}:{password}"
                f"@{self.db_host}:{self.db_port}/{self.db_database or ''}"
            )
        return f"sqlite:///{DEFAULT_SQLITE_PATH}"


@lru_cache
def get_settings() -> Settings:
    return Settings()
