"""
Ordered event queue backed by the `queue_messages` table.

Guarantees
----------
- FIFO per `group_id`: only the oldest unfinished message of a group
  (its *head*) can be received. A later message waits while the head is
  in flight or waiting for redelivery.
- Single flight per group: the head is hidden for the visibility timeout
  once received; claims are conditional UPDATEs on the previous receipt
  handle, so two workers can never hold the same message.
- At-least-once: a message whose visibility expires without an ack is
  delivered again. After `max_receives` deliveries it is dead-lettered
  instead.
- Deduplication: `dedup_id` is unique; enqueueing it twice returns the
  first message.
- No ordering across groups.
"""
from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from emopulse.core.errors import DeadLetterNotFoundError
from emopulse.models.queue_message import MessageStatus, QueueMessage

logger = logging.getLogger(__name__)

# Candidates inspected per receive() call before giving up.
_RECEIVE_SCAN_LIMIT = 20


@dataclass(frozen=True)
class ReceivedMessage:
    """A claimed delivery. `receipt_handle` is needed to ack/release it."""
    id: int
    group_id: str
    dedup_id: str
    body: str
    receipt_handle: str
    receive_count: int


@dataclass(frozen=True)
class EnqueueResult:
    message_id: int
    duplicate: bool


class EventQueue:
    def __init__(
        self,
        db: Session,
        visibility_timeout: float = 600,
        max_receives: int = 5,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.visibility_timeout = visibility_timeout
        self.max_receives = max_receives
        self.clock = clock

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def enqueue(self, group_id: str, dedup_id: str, body: str) -> EnqueueResult:
        existing = self._find_by_dedup(dedup_id)
        if existing is not None:
            return EnqueueResult(message_id=existing, duplicate=True)

        msg = QueueMessage(
            group_id=group_id,
            dedup_id=dedup_id,
            body=body,
            status=MessageStatus.AVAILABLE,
            visible_at=self.clock(),
            receive_count=0,
        )
        self.db.add(msg)
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent delivery of the same event won the insert
            self.db.rollback()
            existing = self._find_by_dedup(dedup_id)
            if existing is None:
                raise
            return EnqueueResult(message_id=existing, duplicate=True)
        return EnqueueResult(message_id=msg.id, duplicate=False)

    def _find_by_dedup(self, dedup_id: str) -> Optional[int]:
        return self.db.scalar(
            select(QueueMessage.id).where(QueueMessage.dedup_id == dedup_id)
        )

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    def _visible_heads(self, now: float) -> list[QueueMessage]:
        heads = (
            select(
                QueueMessage.group_id,
                func.min(QueueMessage.id).label("head_id"),
            )
            .where(QueueMessage.status == MessageStatus.AVAILABLE)
            .group_by(QueueMessage.group_id)
            .subquery()
        )
        stmt = (
            select(QueueMessage)
            .join(heads, QueueMessage.id == heads.c.head_id)
            .where(QueueMessage.visible_at <= now)
            .order_by(QueueMessage.id.asc())
            .limit(_RECEIVE_SCAN_LIMIT)
        )
        return list(self.db.scalars(stmt))

    def receive(self) -> Optional[ReceivedMessage]:
        """Claim the oldest deliverable group head, or return None."""
        now = self.clock()
        for candidate in self._visible_heads(now):
            if candidate.receive_count >= self.max_receives:
                # Visibility expired on its last allowed delivery
                self._mark_dead(
                    candidate.id,
                    candidate.receipt_handle,
                    candidate.last_error or "visibility expired after final receive",
                )
                continue

            # Snapshot before commit expires the instance
            delivery = ReceivedMessage(
                id=candidate.id,
                group_id=candidate.group_id,
                dedup_id=candidate.dedup_id,
                body=candidate.body,
                receipt_handle=uuid.uuid4().hex,
                receive_count=candidate.receive_count + 1,
            )
            claimed = self.db.execute(
                update(QueueMessage)
                .where(
                    QueueMessage.id == delivery.id,
                    QueueMessage.status == MessageStatus.AVAILABLE,
                    QueueMessage.receive_count == delivery.receive_count - 1,
                    QueueMessage.visible_at <= now,
                )
                .values(
                    receipt_handle=delivery.receipt_handle,
                    visible_at=now + self.visibility_timeout,
                    receive_count=delivery.receive_count,
                )
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            if claimed.rowcount != 1:
                # Lost the race to another consumer
                continue
            return delivery
        return None

    def _settle(self, message_id: int, receipt_handle: Optional[str], **values) -> bool:
        result = self.db.execute(
            update(QueueMessage)
            .where(
                QueueMessage.id == message_id,
                QueueMessage.status == MessageStatus.AVAILABLE,
                QueueMessage.receipt_handle == receipt_handle,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def ack(self, message: ReceivedMessage) -> bool:
        """Finish a delivery. False if the receipt is stale (message was re-claimed)."""
        ok = self._settle(message.id, message.receipt_handle, status=MessageStatus.ACKED)
        if not ok:
            logger.warning("stale ack for message %s (group %s)", message.id, message.group_id)
        return ok

    def release(self, message: ReceivedMessage, delay: float = 0, error: Optional[str] = None) -> bool:
        """Make a delivery visible again after `delay` seconds."""
        return self._settle(
            message.id,
            message.receipt_handle,
            visible_at=self.clock() + delay,
            last_error=error,
        )

    def dead_letter(self, message: ReceivedMessage, reason: str) -> bool:
        ok = self._mark_dead(message.id, message.receipt_handle, reason)
        if ok:
            logger.error(
                "message %s (dedup %s) dead-lettered: %s",
                message.id, message.dedup_id, reason,
            )
        return ok

    def _mark_dead(self, message_id: int, receipt_handle: Optional[str], reason: str) -> bool:
        return self._settle(
            message_id,
            receipt_handle,
            status=MessageStatus.DEAD,
            last_error=reason,
        )

    def exhausted(self, message: ReceivedMessage) -> bool:
        return message.receive_count >= self.max_receives

    # ------------------------------------------------------------------
    # Dead-letter inspection
    # ------------------------------------------------------------------

    def dead_letters(self, limit: int = 50, offset: int = 0) -> list[QueueMessage]:
        return list(self.db.scalars(
            select(QueueMessage)
            .where(QueueMessage.status == MessageStatus.DEAD)
            .order_by(QueueMessage.id.asc())
            .offset(offset)
            .limit(limit)
        ))

    def redrive(self, message_id: int) -> QueueMessage:
        """Return a dead-lettered message to the queue with a fresh receive budget."""
        msg = self.db.get(QueueMessage, message_id)
        if msg is None or msg.status != MessageStatus.DEAD:
            raise DeadLetterNotFoundError(message_id)
        msg.status = MessageStatus.AVAILABLE
        msg.receive_count = 0
        msg.receipt_handle = None
        msg.visible_at = self.clock()
        self.db.commit()
        self.db.refresh(msg)
        logger.info("message %s redriven from dead-letter", message_id)
        return msg

    def depth(self) -> int:
        return self.db.scalar(
            select(func.count(QueueMessage.id)).where(
                QueueMessage.status == MessageStatus.AVAILABLE
            )
        ) or 0
