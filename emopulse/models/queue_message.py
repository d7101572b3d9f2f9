"""
QueueMessage: one message in the ordered event queue.

`id` is the enqueue sequence; within a `group_id` messages are delivered
strictly in `id` order and only the head of a group may be in flight.
`dedup_id` is unique, so a retried enqueue of the same event collapses
onto the existing row.

`visible_at` is epoch seconds (float) to keep comparisons portable
across SQLite and Postgres.
"""
from datetime import datetime

from sqlalchemy import DateTime, Float, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from emopulse.db.base import Base


class MessageStatus:
    AVAILABLE = "available"
    ACKED = "acked"
    DEAD = "dead"


class QueueMessage(Base):
    __tablename__ = "queue_messages"
    __table_args__ = (
        Index("ix_queue_messages_status_group", "status", "group_id", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    group_id: Mapped[str] = mapped_column(String(160), nullable=False)
    dedup_id: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=MessageStatus.AVAILABLE
    )
    visible_at: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    receipt_handle: Mapped[str | None] = mapped_column(String(64), nullable=True)
    receive_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )
