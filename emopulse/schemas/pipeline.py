"""
Internal pipeline payloads: the queue body and the classifier output.
"""
from pydantic import BaseModel, ConfigDict, Field


class QueuedEvent(BaseModel):
    """Body of one queue message, produced by the gateway."""
    model_config = ConfigDict(frozen=True)

    event_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    channel_id: str = Field(min_length=1)
    channel_type: str
    text: str
    timestamp: int = Field(ge=0)
    # Slack ts of the original message, used to thread replies onto it.
    thread_ts: str

    @property
    def group_id(self) -> str:
        return f"{self.channel_id}:{self.user_id}"


class EmotionScores(BaseModel):
    """All seven scores, each in [0.0, 1.0]."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    joy: float = Field(ge=0.0, le=1.0)
    sad: float = Field(ge=0.0, le=1.0)
    anger: float = Field(ge=0.0, le=1.0)
    fear: float = Field(ge=0.0, le=1.0)
    disgust: float = Field(ge=0.0, le=1.0)
    contempt: float = Field(ge=0.0, le=1.0)
    surprise: float = Field(ge=0.0, le=1.0)


class DailyAdvice(BaseModel):
    advice: str
    song: str
