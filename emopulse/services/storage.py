"""
Object storage for bulk exports.

S3ObjectStorage         production bucket via boto3. Completion markers
                        reach the app as S3 event notifications
                        (POST /exports/notifications).
LocalObjectStorage      a directory tree for development and tests. It
                        publishes an object-created notification to its
                        subscribers after every put, like a bucket
                        notification would.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional, Protocol

import boto3

from emopulse.core.config import Settings

logger = logging.getLogger(__name__)

ObjectCreatedHandler = Callable[[str, str], None]  # (bucket, key)


class ObjectStorage(Protocol):
    bucket: str

    def put_object(self, key: str, data: bytes) -> None: ...

    def get_object(self, key: str) -> bytes: ...

    def list_objects(self, prefix: str) -> list[str]: ...

    def delete_objects(self, keys: list[str]) -> None: ...


class S3ObjectStorage:
    # delete_objects accepts at most 1000 keys per call
    _DELETE_BATCH = 1000

    def __init__(self, bucket: str, client=None, region: Optional[str] = None):
        self.bucket = bucket
        self.client = client or boto3.client("s3", region_name=region)

    def put_object(self, key: str, data: bytes) -> None:
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data)

    def get_object(self, key: str) -> bytes:
        response = self.client.get_object(Bucket=self.bucket, Key=key)
        return response["Body"].read()

    def list_objects(self, prefix: str) -> list[str]:
        keys: list[str] = []
        paginator = self.client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return sorted(keys)

    def delete_objects(self, keys: list[str]) -> None:
        for i in range(0, len(keys), self._DELETE_BATCH):
            batch = keys[i : i + self._DELETE_BATCH]
            self.client.delete_objects(
                Bucket=self.bucket,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )


class LocalObjectStorage:
    def __init__(self, root: str | Path, bucket: str = "local"):
        self.root = Path(root)
        self.bucket = bucket
        self._subscribers: list[ObjectCreatedHandler] = []

    def subscribe(self, handler: ObjectCreatedHandler) -> None:
        self._subscribers.append(handler)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"key escapes storage root: {key!r}")
        return path

    def put_object(self, key: str, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        for handler in self._subscribers:
            handler(self.bucket, key)

    def get_object(self, key: str) -> bytes:
        return self._path(key).read_bytes()

    def list_objects(self, prefix: str) -> list[str]:
        if not self.root.exists():
            return []
        keys = (
            p.relative_to(self.root).as_posix()
            for p in self.root.rglob("*")
            if p.is_file()
        )
        return sorted(k for k in keys if k.startswith(prefix))

    def delete_objects(self, keys: list[str]) -> None:
        for key in keys:
            self._path(key).unlink(missing_ok=True)


def build_storage(settings: Settings) -> ObjectStorage:
    if settings.STORAGE_BACKEND == "s3":
        return S3ObjectStorage(bucket=settings.BUCKET_NAME, region=settings.AWS_REGION)
    if settings.STORAGE_BACKEND == "local":
        return LocalObjectStorage(settings.LOCAL_STORAGE_ROOT, bucket=settings.BUCKET_NAME or "local")
    raise ValueError(f"Unknown STORAGE_BACKEND {settings.STORAGE_BACKEND!r}")
