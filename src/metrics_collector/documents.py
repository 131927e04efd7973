from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Iterator

import structlog

from metrics_collector.errors import ConfigurationError, DocumentFormatError
from metrics_collector.store import ObjectStore
from metrics_collector.timestamps import ensure_utc, iter_days, parse_timestamp

logger = structlog.get_logger()


def object_key(metric_id: str, day: date) -> str:
    """Object key of a daily document; month and day are not zero padded."""
    return f"metrics/{metric_id}/{day.year}/{day.month}/{day.day}.json"


@dataclass(frozen=True)
class Datapoint:
    """A single observation. Keys other than timestamp/value are carried in `extra`."""

    timestamp: str
    value: float
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {**self.extra, "timestamp": self.timestamp, "value": self.value}

    @classmethod
    def from_dict(cls, data: Any) -> Datapoint:
        if not isinstance(data, dict):
            raise DocumentFormatError(f"Datapoint must be an object, got {type(data).__name__}")
        timestamp = data.get("timestamp")
        value = data.get("value")
        if not isinstance(timestamp, str):
            raise DocumentFormatError(f"Datapoint timestamp must be a string: {data!r}")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise DocumentFormatError(f"Datapoint value must be a number: {data!r}")
        extra = {k: v for k, v in data.items() if k not in ("timestamp", "value")}
        return cls(timestamp=timestamp, value=value, extra=extra)


@dataclass
class DailyDocument:
    """All datapoints stored for one metric on one UTC calendar day."""

    bucket: str
    metric_id: str
    day: date
    body: list[Datapoint] = field(default_factory=list)

    @property
    def key(self) -> str:
        return object_key(self.metric_id, self.day)

    @property
    def last_timestamp(self) -> str | None:
        if self.body:
            return self.body[-1].timestamp
        return None

    @classmethod
    def empty(cls, bucket: str, metric_id: str, day: date) -> DailyDocument:
        return cls(bucket=bucket, metric_id=metric_id, day=day)

    @classmethod
    def load(cls, store: ObjectStore, bucket: str, metric_id: str, day: date) -> DailyDocument | None:
        """Read the document for `day`, or None when it has never been written."""
        key = object_key(metric_id, day)
        raw = store.get(bucket, key)
        if raw is None:
            return None
        try:
            records = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DocumentFormatError(f"{bucket}/{key} is not valid JSON: {exc}") from exc
        if not isinstance(records, list):
            raise DocumentFormatError(f"{bucket}/{key} must hold a JSON array")
        body = [Datapoint.from_dict(record) for record in records]
        return cls(bucket=bucket, metric_id=metric_id, day=day, body=body)

    def append(self, datapoints: Iterable[Datapoint]) -> None:
        self.body.extend(datapoints)

    def to_json(self) -> bytes:
        payload = [datapoint.to_dict() for datapoint in self.body]
        return json.dumps(payload, separators=(",", ":")).encode("utf-8")

    def save(self, store: ObjectStore) -> None:
        """Overwrite the stored object with the full body."""
        store.put(self.bucket, self.key, self.to_json())
        logger.debug("document_saved", bucket=self.bucket, key=self.key, datapoints=len(self.body))


def iter_datapoints(
    store: ObjectStore,
    bucket: str,
    metric_id: str,
    start: datetime,
    end: datetime,
) -> Iterator[Datapoint]:
    """Stream stored datapoints in [start, end], walking daily documents in order."""
    start_utc = ensure_utc(start)
    end_utc = ensure_utc(end)
    if end_utc < start_utc:
        raise ConfigurationError("end must be greater than or equal to start")

    for day in iter_days(start_utc.date(), end_utc.date()):
        document = DailyDocument.load(store, bucket, metric_id, day)
        if document is None:
            continue
        for datapoint in document.body:
            point_ts = parse_timestamp(datapoint.timestamp)
            if point_ts is None:
                logger.warning("unparseable_timestamp", key=document.key, timestamp=datapoint.timestamp)
                continue
            if point_ts < start_utc or point_ts > end_utc:
                continue
            yield datapoint
