"""
EmotionEvent: one scored chat message.

Primary key is the platform's own event id, so a redelivered message can
never produce a second row. The two secondary orderings are plain indexes
on this table:

  ix_emotion_events_user_ts  (user_id, timestamp)     per-user lookups
  ix_emotion_events_date_ts  (date, timestamp)        daily digest

`date` / `month` are only ever set by `EmotionEvent.build`, which derives
them from `timestamp`.
"""
from __future__ import annotations

from datetime import datetime, tzinfo

from sqlalchemy import BigInteger, DateTime, Float, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from emopulse.core.dates import date_month_for
from emopulse.db.base import Base

EMOTIONS = ("joy", "sad", "anger", "fear", "disgust", "contempt", "surprise")
NEGATIVE_EMOTIONS = ("anger", "contempt", "disgust")


class EmotionEvent(Base):
    __tablename__ = "emotion_events"
    __table_args__ = (
        Index("ix_emotion_events_user_ts", "user_id", "timestamp"),
        Index("ix_emotion_events_date_ts", "date", "timestamp"),
    )

    event_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    channel_id: Mapped[str] = mapped_column(String(64), nullable=False)
    channel_type: Mapped[str] = mapped_column(String(32), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    date: Mapped[str] = mapped_column(String(10), nullable=False)
    month: Mapped[str] = mapped_column(String(7), nullable=False)

    joy: Mapped[float] = mapped_column(Float, nullable=False)
    sad: Mapped[float] = mapped_column(Float, nullable=False)
    anger: Mapped[float] = mapped_column(Float, nullable=False)
    fear: Mapped[float] = mapped_column(Float, nullable=False)
    disgust: Mapped[float] = mapped_column(Float, nullable=False)
    contempt: Mapped[float] = mapped_column(Float, nullable=False)
    surprise: Mapped[float] = mapped_column(Float, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    @classmethod
    def build(
        cls,
        *,
        event_id: str,
        user_id: str,
        channel_id: str,
        channel_type: str,
        text: str,
        timestamp: int,
        scores: dict[str, float],
        tz: tzinfo,
    ) -> "EmotionEvent":
        day, month = date_month_for(timestamp, tz)
        return cls(
            event_id=event_id,
            user_id=user_id,
            channel_id=channel_id,
            channel_type=channel_type,
            text=text,
            timestamp=timestamp,
            date=day,
            month=month,
            **{name: float(scores[name]) for name in EMOTIONS},
        )

    @property
    def scores(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in EMOTIONS}
