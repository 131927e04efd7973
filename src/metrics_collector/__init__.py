from metrics_collector.collector import (
    CollectionFailure,
    CollectionReport,
    CollectionResult,
    Collector,
    drop_resume_point,
    split_by_day,
)
from metrics_collector.config import CollectorSettings, MetricDefinition, MetricStatus, load_settings
from metrics_collector.documents import DailyDocument, Datapoint, iter_datapoints, object_key
from metrics_collector.errors import (
    ConfigurationError,
    DocumentFormatError,
    MetricsCollectorError,
    SourceError,
    StoreReadError,
    StoreWriteError,
)
from metrics_collector.sources import CloudWatchSource, DatapointSource, MonitoringServiceKind, build_source
from metrics_collector.store import FileSystemObjectStore, ObjectStore, S3ObjectStore

__all__ = [
    "CloudWatchSource",
    "CollectionFailure",
    "CollectionReport",
    "CollectionResult",
    "Collector",
    "CollectorSettings",
    "ConfigurationError",
    "DailyDocument",
    "Datapoint",
    "DatapointSource",
    "DocumentFormatError",
    "FileSystemObjectStore",
    "MetricDefinition",
    "MetricStatus",
    "MetricsCollectorError",
    "MonitoringServiceKind",
    "ObjectStore",
    "S3ObjectStore",
    "SourceError",
    "StoreReadError",
    "StoreWriteError",
    "build_source",
    "drop_resume_point",
    "iter_datapoints",
    "load_settings",
    "object_key",
    "split_by_day",
]
