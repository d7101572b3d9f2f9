"""
Read-side schemas for the event store and the dead-letter queue.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class EmotionEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    event_id: str
    user_id: str
    channel_id: str
    channel_type: str
    text: str
    timestamp: int
    date: str
    month: str
    joy: float
    sad: float
    anger: float
    fear: float
    disgust: float
    contempt: float
    surprise: float


class EmotionEventListResponse(BaseModel):
    total: int = Field(description="Number of items in this page.")
    items: list[EmotionEventOut]


class DeadLetterOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    group_id: str
    dedup_id: str
    body: str
    receive_count: int
    last_error: Optional[str] = None


class DeadLetterListResponse(BaseModel):
    total: int
    items: list[DeadLetterOut]
