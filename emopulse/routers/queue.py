"""
Dead-letter inspection router.

GET  /queue/dead-letters                 messages that exhausted their retries
POST /queue/dead-letters/{id}/redrive    put one back on the queue
"""
from fastapi import APIRouter, Depends, Query

from emopulse.deps import get_queue
from emopulse.schemas.events import DeadLetterListResponse, DeadLetterOut
from emopulse.services.queue import EventQueue

router = APIRouter(prefix="/queue", tags=["queue"])


@router.get("/dead-letters", response_model=DeadLetterListResponse)
def list_dead_letters(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    queue: EventQueue = Depends(get_queue),
):
    items = queue.dead_letters(limit=limit, offset=offset)
    return DeadLetterListResponse(
        total=len(items),
        items=[DeadLetterOut.model_validate(m) for m in items],
    )


@router.post(
    "/dead-letters/{message_id}/redrive",
    response_model=DeadLetterOut,
    responses={404: {"description": "No dead-lettered message with that id."}},
)
def redrive_dead_letter(message_id: int, queue: EventQueue = Depends(get_queue)):
    """Reset the receive budget and make the message deliverable again."""
    return DeadLetterOut.model_validate(queue.redrive(message_id))
