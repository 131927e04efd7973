from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Mapping, Sequence

import structlog

from metrics_collector.config import MetricDefinition
from metrics_collector.documents import DailyDocument, Datapoint
from metrics_collector.errors import ConfigurationError
from metrics_collector.sources import DatapointSource, MonitoringServiceKind
from metrics_collector.store import ObjectStore
from metrics_collector.timestamps import day_prefix, ensure_utc, format_timestamp, prefix_to_day

logger = structlog.get_logger()


@dataclass(frozen=True)
class CollectionResult:
    """Summary of one collection run for one metric."""

    metric_id: str
    resume_timestamp: str
    cold_start: bool
    fetched: int
    written: dict[str, int] = field(default_factory=dict)

    @property
    def appended(self) -> int:
        return sum(self.written.values())


@dataclass(frozen=True)
class CollectionFailure:
    metric_id: str
    error: Exception


@dataclass
class CollectionReport:
    results: list[CollectionResult] = field(default_factory=list)
    failures: list[CollectionFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def drop_resume_point(datapoints: Sequence[Datapoint], resume_timestamp: str) -> list[Datapoint]:
    """Drop the leading datapoint when it is the one already stored at `resume_timestamp`."""
    if datapoints and datapoints[0].timestamp == resume_timestamp:
        return list(datapoints[1:])
    return list(datapoints)


def split_by_day(datapoints: Sequence[Datapoint], curr_day: date) -> dict[date, list[Datapoint]]:
    """
    Assign ordered datapoints to daily documents.

    Everything from the first datapoint dated `curr_day` onward belongs to
    `curr_day`. Earlier datapoints belong to the previous day unless their own
    date prefix names an even earlier day, in which case they are filed there.
    Days without datapoints are absent from the result.
    """
    prev_day = curr_day - timedelta(days=1)
    prefix = curr_day.isoformat()
    split_index = len(datapoints)
    for index, datapoint in enumerate(datapoints):
        if datapoint.timestamp.startswith(prefix):
            split_index = index
            break

    buckets: dict[date, list[Datapoint]] = {}
    for datapoint in datapoints[:split_index]:
        day = prefix_to_day(datapoint.timestamp)
        if day is None or day >= prev_day:
            day = prev_day
        buckets.setdefault(day, []).append(datapoint)
    if split_index < len(datapoints):
        buckets[curr_day] = list(datapoints[split_index:])
    return buckets


class Collector:
    """Brings the daily documents of a metric up to date with its datapoint source.

    A run for one metric is a single read-merge-write pass. Runs for different
    metrics share nothing and may proceed in parallel; two runs for the same
    metric must never overlap.
    """

    def __init__(
        self,
        store: ObjectStore,
        sources: Mapping[MonitoringServiceKind, DatapointSource],
        *,
        max_lookback_days: int = 1,
        max_workers: int = 4,
    ) -> None:
        if max_lookback_days < 1:
            raise ValueError("max_lookback_days must be at least 1")
        self.store = store
        self.sources = dict(sources)
        self.max_lookback_days = max_lookback_days
        self.max_workers = max_workers

    def _source_for(self, metric_config: MetricDefinition) -> DatapointSource:
        source = self.sources.get(metric_config.type)
        if source is None:
            raise ConfigurationError(f"No datapoint source configured for {metric_config.type!r}")
        return source

    def _find_resume_point(
        self,
        metric_id: str,
        data_bucket: str,
        now: datetime,
    ) -> tuple[str | None, dict[date, DailyDocument | None]]:
        """Walk back from today through daily documents until one has data."""
        loaded: dict[date, DailyDocument | None] = {}
        for offset in range(self.max_lookback_days + 1):
            day = (now - timedelta(days=offset)).date()
            document = DailyDocument.load(self.store, data_bucket, metric_id, day)
            loaded[day] = document
            if document is not None and document.last_timestamp is not None:
                return document.last_timestamp, loaded
        return None, loaded

    def collect_data(
        self,
        metric_id: str,
        metric_config: MetricDefinition,
        data_bucket: str,
        now: datetime | None = None,
    ) -> CollectionResult:
        """Fetch the datapoints stored documents are missing and merge them in."""
        curr_date = ensure_utc(now or datetime.now(timezone.utc))
        prev_date = curr_date - timedelta(days=1)
        log = logger.bind(metric_id=metric_id, bucket=data_bucket)

        source = self._source_for(metric_config)
        resume_timestamp, loaded = self._find_resume_point(metric_id, data_bucket, curr_date)
        cold_start = resume_timestamp is None
        if resume_timestamp is None:
            resume_timestamp = format_timestamp(prev_date)

        fetched = source.fetch(metric_config.props, resume_timestamp, curr_date)
        datapoints = drop_resume_point(fetched, resume_timestamp)
        buckets = split_by_day(datapoints, curr_date.date())

        # Oldest day first: a failed write must never leave a newer day persisted.
        written: dict[str, int] = {}
        for day in sorted(buckets):
            document = loaded.get(day)
            if document is None and day not in loaded:
                document = DailyDocument.load(self.store, data_bucket, metric_id, day)
            if document is None:
                document = DailyDocument.empty(data_bucket, metric_id, day)
            document.append(buckets[day])
            document.save(self.store)
            written[document.key] = len(buckets[day])

        log.info(
            "collection_completed",
            resume_timestamp=resume_timestamp,
            cold_start=cold_start,
            fetched=len(fetched),
            appended=sum(written.values()),
            day=day_prefix(curr_date),
        )
        return CollectionResult(
            metric_id=metric_id,
            resume_timestamp=resume_timestamp,
            cold_start=cold_start,
            fetched=len(fetched),
            written=written,
        )

    def collect_all(
        self,
        metrics: Iterable[MetricDefinition],
        data_bucket: str,
        now: datetime | None = None,
    ) -> CollectionReport:
        """Collect every enabled metric in parallel; one failure never stops the others."""
        run_at = ensure_utc(now or datetime.now(timezone.utc))
        unique: dict[str, MetricDefinition] = {}
        for metric in metrics:
            if not metric.enabled:
                logger.info("metric_skipped", metric_id=metric.metric_id, reason="disabled")
                continue
            unique.setdefault(metric.metric_id, metric)

        report = CollectionReport()
        if not unique:
            return report

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_metric = {
                executor.submit(self.collect_data, metric_id, metric, data_bucket, run_at): metric_id
                for metric_id, metric in unique.items()
            }
            for future in as_completed(future_to_metric):
                metric_id = future_to_metric[future]
                try:
                    report.results.append(future.result())
                except Exception as exc:
                    logger.error(
                        "collection_failed",
                        metric_id=metric_id,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                    report.failures.append(CollectionFailure(metric_id=metric_id, error=exc))

        report.results.sort(key=lambda result: result.metric_id)
        report.failures.sort(key=lambda failure: failure.metric_id)
        return report
