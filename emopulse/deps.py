"""
FastAPI dependency providers. Every request handler receives its
collaborators through these, so tests can swap any of them with
`app.dependency_overrides`.
"""
from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from emopulse.core.config import Settings, get_settings
from emopulse.db.base import get_db
from emopulse.services.queue import EventQueue
from emopulse.services.storage import ObjectStorage, build_storage


def get_queue(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> EventQueue:
    return EventQueue(
        db,
        visibility_timeout=settings.QUEUE_VISIBILITY_TIMEOUT_SECONDS,
        max_receives=settings.QUEUE_MAX_RECEIVES,
    )


@lru_cache
def _storage() -> ObjectStorage:
    return build_storage(get_settings())


def get_storage() -> ObjectStorage:
    return _storage()
