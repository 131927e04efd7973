from __future__ import annotations

from datetime import datetime, timezone

import boto3
import pytest
from botocore.stub import Stubber

from metrics_collector import CloudWatchSource, ConfigurationError, SourceError, build_source

PROPS = {
    "namespace": "AWS/EC2",
    "metric_name": "CPUUtilization",
    "dimensions": [{"name": "InstanceId", "value": "i-0abc"}],
    "period": 300,
}


def _cloudwatch_client():
    return boto3.client(
        "cloudwatch",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


def _ts(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 3, 10, hour, minute, tzinfo=timezone.utc)


def test_fetch_builds_query_and_returns_sorted_datapoints() -> None:
    client = _cloudwatch_client()
    with Stubber(client) as stubber:
        stubber.add_response(
            "get_metric_statistics",
            {
                "Label": "CPUUtilization",
                "Datapoints": [
                    {"Timestamp": _ts(7, 5), "Average": 12.5, "Unit": "Percent"},
                    {"Timestamp": _ts(7, 0), "Average": 10.0, "Unit": "Percent"},
                ],
            },
            {
                "Namespace": "AWS/EC2",
                "MetricName": "CPUUtilization",
                "Dimensions": [{"Name": "InstanceId", "Value": "i-0abc"}],
                "StartTime": _ts(7, 0),
                "EndTime": _ts(8, 0),
                "Period": 300,
                "Statistics": ["Average"],
            },
        )
        points = CloudWatchSource(client).fetch(PROPS, "2024-03-10T07:00:00.000Z", _ts(8, 0))

    assert [(p.timestamp, p.value) for p in points] == [
        ("2024-03-10T07:00:00.000Z", 10.0),
        ("2024-03-10T07:05:00.000Z", 12.5),
    ]


def test_fetch_reads_percentile_statistics() -> None:
    client = _cloudwatch_client()
    with Stubber(client) as stubber:
        stubber.add_response(
            "get_metric_statistics",
            {"Datapoints": [{"Timestamp": _ts(7, 0), "ExtendedStatistics": {"p99": 250.0}}]},
        )
        points = CloudWatchSource(client).fetch({**PROPS, "statistic": "p99"}, "2024-03-10T07:00:00.000Z", _ts(8, 0))

    assert [p.value for p in points] == [250.0]


def test_fetch_requires_namespace_and_metric_name() -> None:
    source = CloudWatchSource(_cloudwatch_client())
    with pytest.raises(ConfigurationError):
        source.fetch({"metric_name": "CPUUtilization"}, "2024-03-10T07:00:00.000Z", _ts(8, 0))
    with pytest.raises(ConfigurationError):
        source.fetch({**PROPS, "dimensions": "InstanceId=i-0abc"}, "2024-03-10T07:00:00.000Z", _ts(8, 0))
    with pytest.raises(ConfigurationError):
        source.fetch({**PROPS, "period": 0}, "2024-03-10T07:00:00.000Z", _ts(8, 0))


def test_fetch_wraps_service_errors() -> None:
    client = _cloudwatch_client()
    with Stubber(client) as stubber:
        stubber.add_client_error("get_metric_statistics", service_error_code="Throttling", http_status_code=400)
        with pytest.raises(SourceError):
            CloudWatchSource(client).fetch(PROPS, "2024-03-10T07:00:00.000Z", _ts(8, 0))


def test_list_metrics_flattens_pages() -> None:
    client = _cloudwatch_client()
    with Stubber(client) as stubber:
        stubber.add_response(
            "list_metrics",
            {
                "Metrics": [
                    {
                        "Namespace": "AWS/EC2",
                        "MetricName": "CPUUtilization",
                        "Dimensions": [{"Name": "InstanceId", "Value": "i-0abc"}],
                    }
                ]
            },
            {"Namespace": "AWS/EC2"},
        )
        metrics = CloudWatchSource(client).list_metrics("AWS/EC2")

    assert metrics == [
        {
            "namespace": "AWS/EC2",
            "metric_name": "CPUUtilization",
            "dimensions": [{"name": "InstanceId", "value": "i-0abc"}],
        }
    ]


def test_build_source_rejects_unknown_kind() -> None:
    with pytest.raises(ConfigurationError):
        build_source("Prometheus")


def test_build_source_returns_cloudwatch() -> None:
    assert isinstance(build_source("CloudWatch", region="us-east-1"), CloudWatchSource)


def test_fetch_splits_long_windows_into_request_sized_chunks() -> None:
    client = _cloudwatch_client()
    props = {**PROPS, "period": 60}
    base = {
        "Namespace": "AWS/EC2",
        "MetricName": "CPUUtilization",
        "Dimensions": [{"Name": "InstanceId", "Value": "i-0abc"}],
        "Period": 60,
        "Statistics": ["Average"],
    }
    day7_22 = datetime(2024, 3, 7, 22, 0, tzinfo=timezone.utc)
    day8_22 = datetime(2024, 3, 8, 22, 0, tzinfo=timezone.utc)
    day9_22 = datetime(2024, 3, 9, 22, 0, tzinfo=timezone.utc)
    with Stubber(client) as stubber:
        stubber.add_response(
            "get_metric_statistics",
            {
                "Datapoints": [
                    {"Timestamp": day8_22, "Average": 2.0},
                    {"Timestamp": day7_22, "Average": 1.0},
                ]
            },
            {**base, "StartTime": day7_22, "EndTime": day8_22},
        )
        stubber.add_response(
            "get_metric_statistics",
            {
                "Datapoints": [
                    {"Timestamp": day8_22, "Average": 2.0},
                    {"Timestamp": day9_22, "Average": 3.0},
                ]
            },
            {**base, "StartTime": day8_22, "EndTime": day9_22},
        )
        stubber.add_response(
            "get_metric_statistics",
            {"Datapoints": [{"Timestamp": _ts(7, 59), "Average": 4.0}]},
            {**base, "StartTime": day9_22, "EndTime": _ts(8, 0)},
        )
        points = CloudWatchSource(client).fetch(props, "2024-03-07T22:00:00.000Z", _ts(8, 0))
        stubber.assert_no_pending_responses()

    assert [(p.timestamp, p.value) for p in points] == [
        ("2024-03-07T22:00:00.000Z", 1.0),
        ("2024-03-08T22:00:00.000Z", 2.0),
        ("2024-03-09T22:00:00.000Z", 3.0),
        ("2024-03-10T07:59:00.000Z", 4.0),
    ]


def test_fetch_within_one_request_window_issues_a_single_call() -> None:
    client = _cloudwatch_client()
    with Stubber(client) as stubber:
        stubber.add_response("get_metric_statistics", {"Datapoints": []})
        assert CloudWatchSource(client).fetch({**PROPS, "period": 60}, "2024-03-09T08:00:00.000Z", _ts(8, 0)) == []
        stubber.assert_no_pending_responses()
