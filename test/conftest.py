from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Mapping

import pytest

from metrics_collector import Datapoint, StoreReadError, StoreWriteError
from metrics_collector.timestamps import parse_timestamp


class RecordingStore:
    """In-memory object store that records every get/put."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.gets: list[str] = []
        self.puts: list[str] = []
        self.fail_get: set[str] = set()
        self.fail_put: set[str] = set()

    def get(self, bucket: str, key: str) -> bytes | None:
        self.gets.append(key)
        if key in self.fail_get:
            raise StoreReadError(f"boom reading {key}")
        return self.objects.get((bucket, key))

    def put(self, bucket: str, key: str, body: bytes) -> None:
        if key in self.fail_put:
            raise StoreWriteError(f"boom writing {key}")
        self.puts.append(key)
        self.objects[(bucket, key)] = body

    def seed(self, bucket: str, key: str, records: list[dict[str, Any]]) -> None:
        self.objects[(bucket, key)] = json.dumps(records).encode("utf-8")

    def read(self, bucket: str, key: str) -> list[dict[str, Any]] | None:
        raw = self.objects.get((bucket, key))
        if raw is None:
            return None
        return json.loads(raw)


class HistorySource:
    """Serves datapoints from a fixed history, inclusive of `since` and `until`."""

    def __init__(self, history: list[Datapoint] | None = None) -> None:
        self.history = list(history or [])
        self.calls: list[tuple[str, datetime]] = []
        self.error: Exception | None = None

    def fetch(self, props: Mapping[str, Any], since: str, until: datetime) -> list[Datapoint]:
        self.calls.append((since, until))
        if self.error is not None:
            raise self.error
        since_ts = parse_timestamp(since)
        assert since_ts is not None
        return [
            point
            for point in self.history
            if since_ts <= parse_timestamp(point.timestamp) <= until  # type: ignore[operator]
        ]


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def source() -> HistorySource:
    return HistorySource()


@pytest.fixture(autouse=True)
def restore_root_logging():
    """setup_logging replaces the root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
