"""
Ingestion gateway: verify, extract, enqueue. Never scores.

Public API
----------
verify_token(payload, expected)      → None, raises AuthenticationFailedError
answer_challenge(payload)            → dict  ({"challenge": ...})
extract_event(payload)               → QueuedEvent | str (ignore reason)
ingest_event(payload, queue, token)  → SlackEventResponse | dict
"""
from __future__ import annotations

import hmac
import logging
from typing import Any, Union

from pydantic import ValidationError

from emopulse.core.errors import AuthenticationFailedError, MalformedEventError
from emopulse.schemas.pipeline import QueuedEvent
from emopulse.schemas.slack import (
    EVENT_CALLBACK_TYPE,
    MESSAGE_EVENT_TYPE,
    URL_VERIFICATION_TYPE,
    EventChallengeRequest,
    EventEnvelope,
    MessageEvent,
    SlackEventResponse,
)
from emopulse.services.queue import EventQueue

logger = logging.getLogger(__name__)


def _field_errors(exc: ValidationError) -> list[dict]:
    return [
        {"field": ".".join(str(loc) for loc in e["loc"]), "message": e["msg"]}
        for e in exc.errors()
    ]


def verify_token(payload: dict[str, Any], expected: str) -> None:
    token = payload.get("token")
    if not expected:
        # An unset secret must never accept anything
        raise AuthenticationFailedError("verification token not configured")
    if not isinstance(token, str) or not token:
        raise AuthenticationFailedError("verification token missing")
    if not hmac.compare_digest(token.encode(), expected.encode()):
        raise AuthenticationFailedError("verification token mismatch")


def answer_challenge(payload: dict[str, Any]) -> dict[str, str]:
    try:
        req = EventChallengeRequest.model_validate(payload)
    except ValidationError as exc:
        raise MalformedEventError("Invalid url_verification body.", _field_errors(exc)) from exc
    return {"challenge": req.challenge}


def extract_event(payload: dict[str, Any]) -> Union[QueuedEvent, str]:
    """
    Turn an `event_callback` body into a QueuedEvent, or return the reason
    it is skipped. Raises MalformedEventError for bodies that do not parse.
    """
    if payload.get("type") != EVENT_CALLBACK_TYPE:
        return f"unsupported callback type {payload.get('type')!r}"
    try:
        envelope = EventEnvelope.model_validate(payload)
        if envelope.event.get("type") != MESSAGE_EVENT_TYPE:
            return f"unsupported event type {envelope.event.get('type')!r}"
        message = MessageEvent.model_validate(envelope.event)
    except ValidationError as exc:
        raise MalformedEventError("Invalid event_callback body.", _field_errors(exc)) from exc

    reason = message.ignore_reason()
    if reason is not None:
        return reason
    if not message.user:
        raise MalformedEventError("Message event has no user.", [{"field": "event.user", "message": "required"}])

    return QueuedEvent(
        event_id=envelope.event_id,
        user_id=message.user,
        channel_id=message.channel,
        channel_type=message.channel_type,
        text=message.text,
        timestamp=envelope.event_time,
        thread_ts=message.event_ts,
    )


def ingest_event(
    payload: dict[str, Any],
    queue: EventQueue,
    verification_token: str,
) -> Union[SlackEventResponse, dict[str, str]]:
    """Verify then enqueue at most one message. Authentication always comes first."""
    verify_token(payload, verification_token)

    if payload.get("type") == URL_VERIFICATION_TYPE:
        return answer_challenge(payload)

    extracted = extract_event(payload)
    if isinstance(extracted, str):
        logger.debug("skipping event %s: %s", payload.get("event_id"), extracted)
        return SlackEventResponse(enqueued=False, event_id=payload.get("event_id"), reason=extracted)

    result = queue.enqueue(
        group_id=extracted.group_id,
        dedup_id=extracted.event_id,
        body=extracted.model_dump_json(),
    )
    if result.duplicate:
        logger.info("duplicate delivery of %s collapsed", extracted.event_id)
        return SlackEventResponse(
            enqueued=False, event_id=extracted.event_id, reason="duplicate delivery"
        )
    logger.info("enqueued %s in group %s", extracted.event_id, extracted.group_id)
    return SlackEventResponse(enqueued=True, event_id=extracted.event_id)
