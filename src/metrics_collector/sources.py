from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Mapping, Protocol

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError, ParamValidationError

from metrics_collector.documents import Datapoint
from metrics_collector.errors import ConfigurationError, SourceError
from metrics_collector.timestamps import ensure_utc, format_timestamp, parse_timestamp

logger = structlog.get_logger()

DEFAULT_STATISTIC = "Average"
DEFAULT_PERIOD_SECONDS = 60
# GetMetricStatistics rejects requests that would return more datapoints than this.
MAX_DATAPOINTS_PER_REQUEST = 1440


class MonitoringServiceKind(str, Enum):
    CLOUDWATCH = "CloudWatch"


class DatapointSource(Protocol):
    """Returns datapoints in [since, until], ascending, inclusive of `since`."""

    def fetch(self, props: Mapping[str, Any], since: str, until: datetime) -> list[Datapoint]: ...


def _require(props: Mapping[str, Any], name: str) -> Any:
    value = props.get(name)
    if value is None or value == "":
        raise ConfigurationError(f"metric props missing required field {name!r}")
    return value


def _dimensions(props: Mapping[str, Any]) -> list[dict[str, str]]:
    raw = props.get("dimensions") or []
    if not isinstance(raw, list):
        raise ConfigurationError("metric props field 'dimensions' must be a list")
    dimensions: list[dict[str, str]] = []
    for item in raw:
        if not isinstance(item, Mapping) or "name" not in item or "value" not in item:
            raise ConfigurationError(f"invalid dimension {item!r}; expected {{name, value}}")
        dimensions.append({"Name": str(item["name"]), "Value": str(item["value"])})
    return dimensions


class CloudWatchSource:
    """Datapoint source backed by CloudWatch `GetMetricStatistics`.

    Recognised props: `namespace`, `metric_name`, `dimensions` (list of
    `{name, value}`), `statistic` (a standard statistic or a percentile such
    as `p99`), `period` in seconds and an optional `unit`.
    """

    def __init__(self, client: Any = None, *, region: str | None = None, endpoint_url: str | None = None) -> None:
        if client is None:
            client = boto3.client("cloudwatch", region_name=region, endpoint_url=endpoint_url)
        self.client = client

    def _build_query(self, props: Mapping[str, Any], since: str, until: datetime) -> dict[str, Any]:
        start_time = parse_timestamp(since)
        if start_time is None:
            raise ConfigurationError(f"invalid since timestamp {since!r}")
        statistic = str(props.get("statistic") or DEFAULT_STATISTIC)
        period = props.get("period", DEFAULT_PERIOD_SECONDS)
        if isinstance(period, bool) or not isinstance(period, int) or period <= 0:
            raise ConfigurationError(f"metric props field 'period' must be a positive integer, got {period!r}")

        query: dict[str, Any] = {
            "Namespace": str(_require(props, "namespace")),
            "MetricName": str(_require(props, "metric_name")),
            "Dimensions": _dimensions(props),
            "StartTime": start_time,
            "EndTime": ensure_utc(until),
            "Period": period,
        }
        if statistic.startswith("p"):
            query["ExtendedStatistics"] = [statistic]
        else:
            query["Statistics"] = [statistic]
        if props.get("unit"):
            query["Unit"] = str(props["unit"])
        return query

    def _query_windows(self, query: dict[str, Any]) -> list[dict[str, Any]]:
        """Split a query into consecutive windows of at most MAX_DATAPOINTS_PER_REQUEST periods."""
        span = timedelta(seconds=query["Period"] * MAX_DATAPOINTS_PER_REQUEST)
        windows: list[dict[str, Any]] = []
        window_start = query["StartTime"]
        while True:
            window_end = min(window_start + span, query["EndTime"])
            windows.append({**query, "StartTime": window_start, "EndTime": window_end})
            if window_end >= query["EndTime"]:
                return windows
            window_start = window_end

    def fetch(self, props: Mapping[str, Any], since: str, until: datetime) -> list[Datapoint]:
        query = self._build_query(props, since, until)
        by_timestamp: dict[datetime, dict[str, Any]] = {}
        for window in self._query_windows(query):
            try:
                response = self.client.get_metric_statistics(**window)
            except ParamValidationError as exc:
                raise ConfigurationError(f"invalid CloudWatch query: {exc}") from exc
            except (ClientError, BotoCoreError) as exc:
                raise SourceError(f"CloudWatch query for {query['MetricName']!r} failed: {exc}") from exc
            # Adjacent windows share a boundary instant.
            for item in response.get("Datapoints", []):
                by_timestamp.setdefault(ensure_utc(item["Timestamp"]), item)

        statistic = (query.get("ExtendedStatistics") or query["Statistics"])[0]
        raw_points = [by_timestamp[timestamp] for timestamp in sorted(by_timestamp)]
        datapoints: list[Datapoint] = []
        for item in raw_points:
            if "ExtendedStatistics" in query:
                value = item.get("ExtendedStatistics", {}).get(statistic)
            else:
                value = item.get(statistic)
            if value is None:
                continue
            datapoints.append(Datapoint(timestamp=format_timestamp(item["Timestamp"]), value=value))
        logger.debug(
            "cloudwatch_datapoints_fetched",
            metric_name=query["MetricName"],
            since=since,
            count=len(datapoints),
        )
        return datapoints

    def list_metrics(self, namespace: str | None = None) -> list[dict[str, Any]]:
        """List the metrics CloudWatch knows about, optionally within one namespace."""
        kwargs: dict[str, Any] = {}
        if namespace:
            kwargs["Namespace"] = namespace
        metrics: list[dict[str, Any]] = []
        try:
            paginator = self.client.get_paginator("list_metrics")
            for page in paginator.paginate(**kwargs):
                for item in page.get("Metrics", []):
                    metrics.append(
                        {
                            "namespace": item.get("Namespace"),
                            "metric_name": item.get("MetricName"),
                            "dimensions": [
                                {"name": dim["Name"], "value": dim["Value"]} for dim in item.get("Dimensions", [])
                            ],
                        }
                    )
        except (ClientError, BotoCoreError) as exc:
            raise SourceError(f"CloudWatch list_metrics failed: {exc}") from exc
        return metrics


def build_source(
    kind: MonitoringServiceKind | str,
    *,
    region: str | None = None,
    endpoint_url: str | None = None,
) -> DatapointSource:
    """Construct the datapoint source for a monitoring service kind."""
    try:
        resolved = MonitoringServiceKind(kind)
    except ValueError as exc:
        raise ConfigurationError(f"Unsupported monitoring service {kind!r}") from exc
    if resolved is MonitoringServiceKind.CLOUDWATCH:
        return CloudWatchSource(region=region, endpoint_url=endpoint_url)
    raise ConfigurationError(f"Unsupported monitoring service {kind!r}")
