"""Command line entry point: `metrics-collector`."""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from typing import Sequence

import structlog

from metrics_collector.collector import Collector
from metrics_collector.config import CollectorSettings, MetricStatus, load_settings, validate_metric_id
from metrics_collector.documents import iter_datapoints
from metrics_collector.errors import ConfigurationError, MetricsCollectorError
from metrics_collector.logs import setup_logging
from metrics_collector.sources import CloudWatchSource, DatapointSource, MonitoringServiceKind, build_source
from metrics_collector.store import FileSystemObjectStore, ObjectStore, S3ObjectStore
from metrics_collector.timestamps import parse_timestamp

logger = structlog.get_logger()


def build_store(settings: CollectorSettings) -> ObjectStore:
    if settings.store == "filesystem":
        return FileSystemObjectStore(settings.workspace)
    return S3ObjectStore(region=settings.region, endpoint_url=settings.endpoint_url)


def build_collector(settings: CollectorSettings) -> Collector:
    sources: dict[MonitoringServiceKind, DatapointSource] = {}
    for metric in settings.metrics:
        if metric.type not in sources:
            sources[metric.type] = build_source(metric.type, region=settings.region, endpoint_url=settings.endpoint_url)
    return Collector(
        build_store(settings),
        sources,
        max_lookback_days=settings.max_lookback_days,
        max_workers=settings.max_workers,
    )


def _timestamp_arg(value: str) -> datetime:
    parsed = parse_timestamp(value)
    if parsed is None:
        raise argparse.ArgumentTypeError(f"invalid ISO-8601 timestamp: {value!r}")
    return parsed


def _cmd_collect(args: argparse.Namespace, settings: CollectorSettings) -> int:
    metrics = settings.metrics
    if args.metric:
        metrics = [settings.get_metric(metric_id) for metric_id in args.metric]
    collector = build_collector(settings)
    report = collector.collect_all(metrics, settings.data_bucket, now=args.now)
    logger.info(
        "collection_run_finished",
        succeeded=len(report.results),
        failed=[failure.metric_id for failure in report.failures],
    )
    return 0 if report.ok else 1


def _cmd_show(args: argparse.Namespace, settings: CollectorSettings) -> int:
    validate_metric_id(args.metric_id)
    if args.end < args.start:
        raise ConfigurationError(f"--end {args.end.isoformat()} is before --start {args.start.isoformat()}")
    store = build_store(settings)
    for datapoint in iter_datapoints(store, settings.data_bucket, args.metric_id, args.start, args.end):
        print(json.dumps(datapoint.to_dict(), sort_keys=True))
    return 0


def _cmd_list(args: argparse.Namespace, settings: CollectorSettings) -> int:
    for metric in settings.metrics:
        if args.public and metric.status is not MetricStatus.VISIBLE:
            continue
        print(json.dumps(metric.model_dump(mode="json"), sort_keys=True))
    return 0


def _cmd_list_external(args: argparse.Namespace, settings: CollectorSettings) -> int:
    source = CloudWatchSource(region=settings.region, endpoint_url=settings.endpoint_url)
    for item in source.list_metrics(args.namespace):
        print(json.dumps(item, sort_keys=True))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="metrics-collector", description="Collect metric datapoints into daily JSON documents")
    parser.add_argument("--config", help="YAML settings file (environment variables override it)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    collect = subparsers.add_parser("collect", help="Bring stored documents up to date")
    collect.add_argument("--metric", action="append", help="Collect only this metric id (repeatable)")
    collect.add_argument("--now", type=_timestamp_arg, default=None, help="Override the invocation instant")
    collect.set_defaults(handler=_cmd_collect)

    show = subparsers.add_parser("show", help="Print stored datapoints as JSON lines")
    show.add_argument("metric_id")
    show.add_argument("--start", type=_timestamp_arg, required=True)
    show.add_argument("--end", type=_timestamp_arg, default=None)
    show.set_defaults(handler=_cmd_show)

    list_cmd = subparsers.add_parser("list", help="Print the configured metric catalog")
    list_cmd.add_argument("--public", action="store_true", help="Only metrics with status 'visible'")
    list_cmd.set_defaults(handler=_cmd_list)

    external = subparsers.add_parser("list-external", help="List metrics available in CloudWatch")
    external.add_argument("--namespace")
    external.set_defaults(handler=_cmd_list_external)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if getattr(args, "end", "unset") is None:
        args.end = datetime.now(timezone.utc)
    try:
        settings = load_settings(args.config)
        setup_logging(settings.logging)
        return args.handler(args, settings)
    except MetricsCollectorError as exc:
        logger.error("command_failed", command=args.command, error_type=type(exc).__name__, error=str(exc))
        return 2


if __name__ == "__main__":
    sys.exit(main())
