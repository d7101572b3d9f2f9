"""
Event store service: idempotent writes and the two range orderings.

Public API
----------
put_event_if_absent(db, record)             → bool   (first writer wins)
write_event(db, record, attempts)           → bool   (with local retries)
get_event(db, event_id)                     → EmotionEvent | None
events_for_user(db, user_id, since, until)  → list   (user_id, timestamp) ordering
events_between_dates(db, start, end)        → list   (date, timestamp) ordering
iter_all_events(db, batch_size)             → iterator, used by the exporter
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Iterator, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from emopulse.core.errors import StoreWriteError
from emopulse.models.emotion_event import EmotionEvent

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def event_exists(db: Session, event_id: str) -> bool:
    return (
        db.query(EmotionEvent.event_id)
        .filter(EmotionEvent.event_id == event_id)
        .first()
        is not None
    )


def put_event_if_absent(db: Session, record: EmotionEvent) -> bool:
    """
    Insert `record` unless a row with its event_id already exists.
    Returns True if this call created the row. An existing row is never
    touched; the primary key is the final guard against a concurrent writer.
    """
    if event_exists(db, record.event_id):
        return False
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        # Another worker inserted the same event first
        db.rollback()
        return False
    return True


def write_event(
    db: Session,
    record: EmotionEvent,
    attempts: int = 3,
    wait_max: float = 4.0,
) -> bool:
    """
    `put_event_if_absent` with local retries on connection-level failures.
    Raises StoreWriteError once `attempts` are exhausted.
    """
    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=0.5, max=wait_max),
        retry=retry_if_exception_type(OperationalError),
    )
    try:
        for attempt in retrying:
            with attempt:
                try:
                    return put_event_if_absent(db, record)
                except OperationalError:
                    db.rollback()
                    logger.warning(
                        "store write for %s failed (attempt %d/%d)",
                        record.event_id, attempt.retry_state.attempt_number, attempts,
                    )
                    raise
    except RetryError as exc:
        cause = exc.last_attempt.exception()
        raise StoreWriteError(record.event_id, str(cause)) from cause
    raise StoreWriteError(record.event_id, "no write attempt was made")


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_event(db: Session, event_id: str) -> Optional[EmotionEvent]:
    return db.get(EmotionEvent, event_id)


def events_for_user(
    db: Session,
    user_id: str,
    since: Optional[int] = None,
    until: Optional[int] = None,
    limit: int = 100,
    offset: int = 0,
) -> list[EmotionEvent]:
    """Records of one user ordered by timestamp; `since`/`until` are inclusive epoch bounds."""
    q = db.query(EmotionEvent).filter(EmotionEvent.user_id == user_id)
    if since is not None:
        q = q.filter(EmotionEvent.timestamp >= since)
    if until is not None:
        q = q.filter(EmotionEvent.timestamp <= until)
    return (
        q.order_by(EmotionEvent.timestamp.asc(), EmotionEvent.event_id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def events_between_dates(db: Session, start: date, end: date) -> list[EmotionEvent]:
    """All records whose `date` lies in [start, end], ordered by (date, timestamp)."""
    return (
        db.query(EmotionEvent)
        .filter(
            EmotionEvent.date >= start.isoformat(),
            EmotionEvent.date <= end.isoformat(),
        )
        .order_by(
            EmotionEvent.date.asc(),
            EmotionEvent.timestamp.asc(),
            EmotionEvent.event_id.asc(),
        )
        .all()
    )


def iter_all_events(db: Session, batch_size: int = 1000) -> Iterator[EmotionEvent]:
    """Stream the whole table in primary-key order."""
    stmt = (
        select(EmotionEvent)
        .order_by(EmotionEvent.event_id.asc())
        .execution_options(yield_per=batch_size)
    )
    for record in db.scalars(stmt):
        yield record
