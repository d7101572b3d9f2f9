"""
Two-phase bulk export of the event store.

Phase 1: snapshot (weekly, `emopulse export start`)
    start_export()   claims the ISO-week run and allocates an export id
    write_snapshot() streams every record as typed-attribute JSON lines
                     (`{"Item": {"joy": {"N": "0.1"}, ...}}`), gzip shards under
                     exports/<export_id>/data/, then writes the completion
                     marker exports/<export_id>/manifest-files.json

Phase 2: transform (on the marker's object-created notification)
    handle_object_created() ignores anything that is not a completion
                     marker in our bucket, then transform_export() replaces
                     the processed folder with flattened rows, one typed
                     column per EXPORT_COLUMNS entry

The phases only share the marker object; nothing waits on phase 2.
"""
from __future__ import annotations

import gzip
import json
import logging
import posixpath
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional
from urllib.parse import unquote_plus

from sqlalchemy.orm import Session

from emopulse.core.config import Settings
from emopulse.core.dates import today_in
from emopulse.core.errors import ExportFormatError, JobFailedError
from emopulse.models.emotion_event import EMOTIONS, EmotionEvent
from emopulse.services.event_store import iter_all_events
from emopulse.services.job_runs import claim_run, fail_run, finish_run, get_run
from emopulse.services.storage import ObjectStorage

logger = logging.getLogger(__name__)

EXPORT_JOB = "export_snapshot"
TRANSFORM_JOB = "export_transform"
MANIFEST_FILE_NAME = "manifest-files.json"
DATA_FOLDER = "data/"

# Column schema of the processed layout. The catalog table is registered
# against exactly these names and types.
EXPORT_COLUMNS: tuple[tuple[str, str], ...] = (
    ("event_id", "string"),
    ("user_id", "string"),
    ("channel_id", "string"),
    ("channel_type", "string"),
    ("text", "string"),
    ("timestamp", "bigint"),
    ("date", "string"),
    ("month", "string"),
) + tuple((name, "double") for name in EMOTIONS)


@dataclass(frozen=True)
class ExportRequest:
    export_id: str
    run_key: str
    prefix: str

    @property
    def manifest_key(self) -> str:
        return f"{self.prefix}{MANIFEST_FILE_NAME}"

    @property
    def data_prefix(self) -> str:
        return f"{self.prefix}{DATA_FOLDER}"


@dataclass
class SnapshotResult:
    export_id: str
    manifest_key: str
    item_count: int
    data_keys: list[str] = field(default_factory=list)


@dataclass
class TransformResult:
    manifest_key: str
    item_count: int
    written_keys: list[str] = field(default_factory=list)
    deleted_keys: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def encode_item(record: EmotionEvent) -> dict[str, Any]:
    """Typed-attribute form of one record: strings as S, numbers as N."""
    item: dict[str, Any] = {}
    for name, col_type in EXPORT_COLUMNS:
        value = getattr(record, name)
        item[name] = {"S": value} if col_type == "string" else {"N": repr(value)}
    return {"Item": item}


def flatten_item(line: dict[str, Any], source_key: str) -> dict[str, Any]:
    """Inverse of encode_item, producing one typed value per column."""
    try:
        item = line["Item"]
        row: dict[str, Any] = {}
        for name, col_type in EXPORT_COLUMNS:
            attr = item[name]
            if col_type == "string":
                row[name] = attr["S"]
            elif col_type == "bigint":
                row[name] = int(attr["N"])
            else:
                row[name] = float(attr["N"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ExportFormatError(f"Malformed export item: {exc!r}", key=source_key) from exc
    return row


def _gzip_lines(rows: Iterable[dict[str, Any]]) -> bytes:
    body = "".join(json.dumps(r, ensure_ascii=False) + "\n" for r in rows)
    return gzip.compress(body.encode("utf-8"))


def _gunzip_lines(data: bytes, source_key: str) -> list[dict[str, Any]]:
    try:
        text = gzip.decompress(data).decode("utf-8")
        return [json.loads(line) for line in text.splitlines() if line.strip()]
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ExportFormatError(f"Unreadable export shard: {exc}", key=source_key) from exc


# ---------------------------------------------------------------------------
# Phase 1: snapshot
# ---------------------------------------------------------------------------

def export_run_key(day: date) -> str:
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def new_export_id(now: Optional[float] = None) -> str:
    now = time.time() if now is None else now
    return f"{int(now * 1000):014d}-{uuid.uuid4().hex[:8]}"


def start_export(
    db: Session,
    settings: Settings,
    today: Optional[date] = None,
    force: bool = False,
) -> Optional[ExportRequest]:
    """Claim this week's export. Returns None if it was already requested."""
    run_key = export_run_key(today or today_in(settings.timezone))
    run = claim_run(db, EXPORT_JOB, run_key, force=force)
    if run is None:
        return None
    export_id = new_export_id()
    run.detail = f"export_id={export_id}"
    db.commit()
    return ExportRequest(
        export_id=export_id,
        run_key=run_key,
        prefix=f"{settings.EXPORT_PREFIX}{export_id}/",
    )


def write_snapshot(
    db: Session,
    storage: ObjectStorage,
    request: ExportRequest,
    shard_size: int = 1000,
) -> SnapshotResult:
    """
    Write all records as shards, then the completion marker.

    The records come from a single SELECT, so on MVCC databases the shards
    reflect one point in time even while workers keep writing.
    """
    result = SnapshotResult(export_id=request.export_id, manifest_key=request.manifest_key, item_count=0)
    manifest_files = []
    shard: list[dict[str, Any]] = []

    def flush() -> None:
        key = f"{request.data_prefix}part-{len(result.data_keys):05d}.json.gz"
        storage.put_object(key, _gzip_lines(shard))
        result.data_keys.append(key)
        manifest_files.append({"dataFileKey": key, "itemCount": len(shard)})
        shard.clear()

    for record in iter_all_events(db, batch_size=shard_size):
        shard.append(encode_item(record))
        result.item_count += 1
        if len(shard) >= shard_size:
            flush()
    if shard:
        flush()

    manifest = {
        "exportId": request.export_id,
        "exportTime": datetime.now(tz=timezone.utc).isoformat(),
        "itemCount": result.item_count,
        "files": manifest_files,
    }
    # The marker goes last: its arrival means every shard is in place
    storage.put_object(request.manifest_key, json.dumps(manifest, indent=2).encode("utf-8"))
    logger.info(
        "export %s written: %d items in %d shards",
        request.export_id, result.item_count, len(result.data_keys),
    )
    return result


def run_export(
    db: Session,
    settings: Settings,
    storage: ObjectStorage,
    today: Optional[date] = None,
    force: bool = False,
) -> Optional[SnapshotResult]:
    """Scheduled entry point for phase 1. Does not wait for the transform."""
    request = start_export(db, settings, today=today, force=force)
    if request is None:
        return None
    run = get_run(db, EXPORT_JOB, request.run_key)
    try:
        result = write_snapshot(db, storage, request, shard_size=settings.EXPORT_SHARD_SIZE)
    except Exception as exc:
        db.rollback()
        fail_run(db, run, f"export_id={request.export_id}: {exc}")
        raise JobFailedError(EXPORT_JOB, request.run_key, str(exc)) from exc
    finish_run(db, run, detail=f"export_id={request.export_id} items={result.item_count}")
    return result


# ---------------------------------------------------------------------------
# Phase 2: transform
# ---------------------------------------------------------------------------

def is_completion_marker(key: str) -> bool:
    return posixpath.basename(key) == MANIFEST_FILE_NAME


def transform_export(
    storage: ObjectStorage,
    manifest_key: str,
    processed_prefix: str,
) -> TransformResult:
    """Replace everything under `processed_prefix` with the flattened export."""
    try:
        manifest = json.loads(storage.get_object(manifest_key))
        files = [f["dataFileKey"] for f in manifest["files"]]
    except (json.JSONDecodeError, KeyError, TypeError) as exc:
        raise ExportFormatError(f"Malformed completion marker: {exc!r}", key=manifest_key) from exc

    result = TransformResult(manifest_key=manifest_key, item_count=0)
    result.deleted_keys = storage.list_objects(processed_prefix)
    if result.deleted_keys:
        storage.delete_objects(result.deleted_keys)

    for data_key in files:
        rows = [flatten_item(line, data_key) for line in _gunzip_lines(storage.get_object(data_key), data_key)]
        target = f"{processed_prefix}{posixpath.basename(data_key)}"
        storage.put_object(target, _gzip_lines(rows))
        result.written_keys.append(target)
        result.item_count += len(rows)

    logger.info(
        "export %s transformed: %d items into %s",
        manifest_key, result.item_count, processed_prefix,
    )
    return result


def handle_object_created(
    db: Session,
    settings: Settings,
    storage: ObjectStorage,
    bucket: Optional[str],
    key: Optional[str],
    force: bool = False,
) -> Optional[TransformResult]:
    """
    Completion handler. Returns None for objects that are not our
    completion markers, and for markers that were already transformed
    (notifications are delivered at least once).
    """
    if not bucket or not key or bucket != storage.bucket:
        logger.debug("ignoring object %s/%s: other bucket", bucket, key)
        return None
    key = unquote_plus(key)
    if not is_completion_marker(key):
        logger.debug("ignoring object %s: not a completion marker", key)
        return None

    export_id = posixpath.basename(posixpath.dirname(key))
    run = claim_run(db, TRANSFORM_JOB, export_id, force=force)
    if run is None:
        return None
    try:
        result = transform_export(storage, key, settings.PROCESSED_S3_FOLDER)
    except Exception as exc:
        db.rollback()
        fail_run(db, run, str(exc))
        raise JobFailedError(TRANSFORM_JOB, key, str(exc)) from exc
    finish_run(db, run, detail=f"items={result.item_count}")
    return result
