from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from metrics_collector.errors import ConfigurationError, StoreReadError, StoreWriteError

logger = structlog.get_logger()

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


class ObjectStore(Protocol):
    """Key/value blob store; a missing object reads as None, never as an error."""

    def get(self, bucket: str, key: str) -> bytes | None: ...

    def put(self, bucket: str, key: str, body: bytes) -> None: ...


class FileSystemObjectStore:
    """Object store backed by a local directory, one sub-directory per bucket."""

    def __init__(self, workspace: str | Path) -> None:
        self.workspace = Path(workspace)
        self.workspace.mkdir(parents=True, exist_ok=True)

    def _path(self, bucket: str, key: str) -> Path:
        relative = Path(bucket) / key
        if relative.is_absolute() or ".." in relative.parts:
            raise ConfigurationError(f"Invalid object path: {bucket!r}/{key!r}")
        return self.workspace / relative

    def get(self, bucket: str, key: str) -> bytes | None:
        path = self._path(bucket, key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreReadError(f"Failed to read {bucket}/{key}: {exc}") from exc

    def put(self, bucket: str, key: str, body: bytes) -> None:
        destination = self._path(bucket, key)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=destination.parent, suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(body)
                os.replace(tmp_name, destination)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise StoreWriteError(f"Failed to write {bucket}/{key}: {exc}") from exc


class S3ObjectStore:
    """Object store backed by an S3 (or S3-compatible) client."""

    def __init__(self, client: Any = None, *, region: str | None = None, endpoint_url: str | None = None) -> None:
        if client is None:
            client = boto3.client("s3", region_name=region, endpoint_url=endpoint_url)
        self.client = client

    def get(self, bucket: str, key: str) -> bytes | None:
        try:
            response = self.client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _NOT_FOUND_CODES:
                logger.debug("object_not_found", bucket=bucket, key=key)
                return None
            raise StoreReadError(f"Failed to read s3://{bucket}/{key}: {code or exc}") from exc
        except BotoCoreError as exc:
            raise StoreReadError(f"Failed to read s3://{bucket}/{key}: {exc}") from exc

    def put(self, bucket: str, key: str, body: bytes) -> None:
        try:
            self.client.put_object(Bucket=bucket, Key=key, Body=body, ContentType="application/json")
        except (ClientError, BotoCoreError) as exc:
            raise StoreWriteError(f"Failed to write s3://{bucket}/{key}: {exc}") from exc
