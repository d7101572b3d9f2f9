"""
Slack Events API payloads.

POST /slack/events receives either a `url_verification` challenge or an
`event_callback` envelope. Only plain user messages are scored; see
`MessageEvent.ignore_reason`.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

URL_VERIFICATION_TYPE = "url_verification"
EVENT_CALLBACK_TYPE = "event_callback"
MESSAGE_EVENT_TYPE = "message"

_IGNORED_SUBTYPE_MARKERS = ("bot", "channel", "notification")


class EventChallengeRequest(BaseModel):
    token: str
    type: str
    challenge: str


class EventEnvelope(BaseModel):
    """Outer `event_callback` body; `event` is validated separately."""
    model_config = ConfigDict(extra="ignore")

    token: str
    type: str
    event_id: str = Field(min_length=1, max_length=128)
    event_time: int = Field(ge=0)
    api_app_id: Optional[str] = None
    event: dict[str, Any]


class MessageEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str
    channel: str = Field(min_length=1)
    channel_type: str = "channel"
    user: Optional[str] = None
    text: str = ""
    event_ts: str
    subtype: Optional[str] = None
    bot_id: Optional[str] = None

    def ignore_reason(self) -> Optional[str]:
        """Why this message is not scored, or None if it should be."""
        if self.type != MESSAGE_EVENT_TYPE:
            return "not a message event"
        if self.bot_id:
            return "bot message"
        if self.subtype and any(m in self.subtype for m in _IGNORED_SUBTYPE_MARKERS):
            return f"ignored subtype {self.subtype}"
        if not self.text.strip():
            return "empty text"
        return None


class SlackEventResponse(BaseModel):
    ok: bool = True
    enqueued: bool
    event_id: Optional[str] = None
    reason: Optional[str] = None
