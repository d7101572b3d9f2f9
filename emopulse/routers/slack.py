"""
Slack ingestion router.

POST /slack/events      Events API webhook (url_verification + event_callback)
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from emopulse.core.config import Settings, get_settings
from emopulse.deps import get_queue
from emopulse.services.ingest import ingest_event
from emopulse.services.queue import EventQueue

router = APIRouter(prefix="/slack", tags=["slack"])


@router.post(
    "/events",
    summary="Slack Events API webhook",
    responses={
        200: {"description": "Challenge answered, or event enqueued / skipped."},
        400: {"description": "Body is not a valid event_callback."},
        401: {"description": "Verification token missing or wrong. Nothing enqueued."},
    },
)
def slack_events(
    payload: dict[str, Any] = Body(...),
    queue: EventQueue = Depends(get_queue),
    settings: Settings = Depends(get_settings),
):
    """
    Verify the shared verification token, then enqueue the message for
    scoring. Returns as soon as the message is queued; scoring happens in
    the worker.

    Bot messages, channel notifications and empty messages are acknowledged
    with `enqueued: false` so Slack does not retry them.
    """
    result = ingest_event(payload, queue, settings.SLACK_VERIFICATION_TOKEN)
    if isinstance(result, dict):
        return result
    return result.model_dump(exclude_none=True)
