"""Error taxonomy for the BI backend.

Connection failures never raise: the health check reports them as ``False``.
Everything else propagates to the caller and is turned into a response at the
HTTP boundary (or into a per-domain error string by the data provider).
"""


class BIError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(BIError):
    """Raised when settings select something that cannot be built."""


class DataSourceError(BIError):
    """Raised when a query against the backing store fails."""


class InternalServiceError(BIError):
    """The single failure kind surfaced by the corporate API façade.

    The message is fixed per operation (e.g. ``"Failed to fetch billers"``);
    the underlying cause is kept as ``__cause__`` and logged, never exposed.
    """


class RemoteBackendError(BIError):
    """Raised when the remote KPI backend is unreachable or answers badly."""


class UnknownKPIError(BIError):
    """Raised for a KPI type that is not in the catalogue."""

    def __init__(self, kpi_type: str, message: str | None = None):
        super().__init__(message or f"Unknown KPI type: {kpi_type}")
        self.kpi_type = kpi_type


class InvalidFilterError(BIError):
    """Raised when a warehouse selection does not belong to the selected biller."""
