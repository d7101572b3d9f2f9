"""
Event store read router.

GET /events/by-user/{user_id}     (user_id, timestamp) ordering
GET /events/by-date/{day}         (date, timestamp) ordering
GET /events/{event_id}
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from emopulse.core.errors import EventNotFoundError
from emopulse.db.base import get_db
from emopulse.schemas.events import EmotionEventListResponse, EmotionEventOut
from emopulse.services.event_store import events_between_dates, events_for_user, get_event

router = APIRouter(prefix="/events", tags=["events"])


def _page(records) -> EmotionEventListResponse:
    return EmotionEventListResponse(
        total=len(records),
        items=[EmotionEventOut.model_validate(r) for r in records],
    )


@router.get(
    "/by-user/{user_id}",
    response_model=EmotionEventListResponse,
    summary="Records of one user, oldest first",
)
def list_by_user(
    user_id: str,
    since: Optional[int] = Query(default=None, ge=0, description="Inclusive epoch lower bound."),
    until: Optional[int] = Query(default=None, ge=0, description="Inclusive epoch upper bound."),
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return _page(events_for_user(db, user_id, since=since, until=until, limit=limit, offset=offset))


@router.get(
    "/by-date/{day}",
    response_model=EmotionEventListResponse,
    summary="Records of one calendar day (display timezone), oldest first",
)
def list_by_date(
    day: date,
    end: Optional[date] = Query(default=None, description="Inclusive last day of the range."),
    db: Session = Depends(get_db),
):
    return _page(events_between_dates(db, day, end or day))


@router.get("/{event_id}", response_model=EmotionEventOut, summary="One record by event id")
def read_event(event_id: str, db: Session = Depends(get_db)):
    record = get_event(db, event_id)
    if record is None:
        raise EventNotFoundError(event_id)
    return EmotionEventOut.model_validate(record)
