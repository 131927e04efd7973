from __future__ import annotations


class MetricsCollectorError(Exception):
    """Base class for every error raised by metrics_collector."""


class StoreReadError(MetricsCollectorError):
    """Raised when an object read fails for any reason other than absence."""


class StoreWriteError(MetricsCollectorError):
    """Raised when an object write fails."""


class SourceError(MetricsCollectorError):
    """Raised when the monitoring service cannot be reached or rejects a query."""


class ConfigurationError(MetricsCollectorError, ValueError):
    """Raised for malformed metric properties or unknown source kinds."""


class DocumentFormatError(MetricsCollectorError, ValueError):
    """Raised when a stored daily document is not an array of datapoints."""
