"""
Scoring worker: queue message → classifier → event store → warning.

Per message
-----------
  1. Parse the body              unparseable → dead-letter (permanent)
  2. Already stored?             ack, no second warning
  3. Classify                    ClassifierError → release / dead-letter
  4. Assess negative intensity
  5. Write (first writer wins)   StoreWriteError → release / dead-letter
  6. Warn if this call created the record and intensity >= threshold;
     a failed warning is logged and never fails the message
  7. Ack

Many workers may run at once; the queue hands each group to one of them
at a time, which is what keeps per-conversation write order.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from emopulse.core.config import Settings
from emopulse.core.errors import (
    AlertSendError,
    PermanentProcessingError,
    TransientDependencyError,
)
from emopulse.models.emotion_event import EmotionEvent
from emopulse.schemas.pipeline import QueuedEvent
from emopulse.services.classifier import EmotionClassifier
from emopulse.services.event_store import event_exists, write_event
from emopulse.services.notifier import Notifier, excerpt
from emopulse.services.queue import EventQueue, ReceivedMessage
from emopulse.services.scoring import (
    WARNING_MESSAGES,
    Assessment,
    IntensityFn,
    assess,
    get_intensity_fn,
)

logger = logging.getLogger(__name__)


class Outcome:
    STORED = "stored"
    DUPLICATE = "duplicate"
    RELEASED = "released"
    DEAD_LETTERED = "dead_lettered"


@dataclass
class ProcessResult:
    message_id: int
    outcome: str
    event_id: Optional[str] = None
    intensity: Optional[float] = None
    alerted: bool = False
    error: Optional[str] = None


def format_warning(event: QueuedEvent, assessment: Assessment) -> str:
    return (
        f":warning:<@{event.user_id}>:warning:\n"
        f"{WARNING_MESSAGES[assessment.dominant]}\n"
        f"*Negative intensity*: {assessment.intensity:.2f} ({assessment.dominant}) "
        f"in <#{event.channel_id}>\n"
        f"> {excerpt(event.text)}"
    )


class ScoringWorker:
    def __init__(
        self,
        db: Session,
        queue: EventQueue,
        classifier: EmotionClassifier,
        notifier: Notifier,
        settings: Settings,
        intensity_fn: Optional[IntensityFn] = None,
    ):
        self.db = db
        self.queue = queue
        self.classifier = classifier
        self.notifier = notifier
        self.settings = settings
        self.intensity_fn = intensity_fn or get_intensity_fn(settings.NEGATIVE_INTENSITY_METHOD)

    # ------------------------------------------------------------------
    # Failure routing
    # ------------------------------------------------------------------

    def _fail_permanently(self, message: ReceivedMessage, reason: str) -> ProcessResult:
        self.queue.dead_letter(message, reason)
        return ProcessResult(message_id=message.id, outcome=Outcome.DEAD_LETTERED, error=reason)

    def _fail_transiently(self, message: ReceivedMessage, event_id: str, reason: str) -> ProcessResult:
        if self.queue.exhausted(message):
            self.queue.dead_letter(message, f"gave up after {message.receive_count} attempts: {reason}")
            return ProcessResult(
                message_id=message.id, outcome=Outcome.DEAD_LETTERED,
                event_id=event_id, error=reason,
            )
        logger.warning(
            "event %s failed on attempt %d, will be redelivered: %s",
            event_id, message.receive_count, reason,
        )
        self.queue.release(message, delay=self.settings.QUEUE_RETRY_DELAY_SECONDS, error=reason)
        return ProcessResult(
            message_id=message.id, outcome=Outcome.RELEASED, event_id=event_id, error=reason,
        )

    # ------------------------------------------------------------------
    # Warning
    # ------------------------------------------------------------------

    def _send_warning(self, event: QueuedEvent, assessment: Assessment) -> bool:
        if self.settings.ALERT_CHANNEL_ID:
            channel, thread_ts = self.settings.ALERT_CHANNEL_ID, None
        else:
            channel, thread_ts = event.channel_id, event.thread_ts
        try:
            self.notifier.post_message(channel, format_warning(event, assessment), thread_ts=thread_ts)
        except AlertSendError as exc:
            logger.error("warning for %s not delivered: %s", event.event_id, exc.message)
            return False
        logger.info(
            "warning sent for %s (intensity %.2f, %s)",
            event.event_id, assessment.intensity, assessment.dominant,
        )
        return True

    # ------------------------------------------------------------------
    # One message
    # ------------------------------------------------------------------

    def process(self, message: ReceivedMessage) -> ProcessResult:
        try:
            event = QueuedEvent.model_validate_json(message.body)
        except ValidationError as exc:
            err = PermanentProcessingError(f"unparseable queue body: {exc.error_count()} error(s)")
            return self._fail_permanently(message, err.message)

        if event_exists(self.db, event.event_id):
            self.queue.ack(message)
            logger.info("event %s already stored, redelivery acknowledged", event.event_id)
            return ProcessResult(message_id=message.id, outcome=Outcome.DUPLICATE, event_id=event.event_id)

        try:
            scores = self.classifier.score(event.text)
            assessment = assess(scores, self.settings.IMMEDIATE_WARNING_THRESHOLD, self.intensity_fn)
            record = EmotionEvent.build(
                event_id=event.event_id,
                user_id=event.user_id,
                channel_id=event.channel_id,
                channel_type=event.channel_type,
                text=event.text,
                timestamp=event.timestamp,
                scores=scores.model_dump(),
                tz=self.settings.timezone,
            )
            created = write_event(self.db, record, attempts=self.settings.STORE_WRITE_ATTEMPTS)
        except TransientDependencyError as exc:
            return self._fail_transiently(message, event.event_id, exc.message)

        if not created:
            # A concurrent delivery stored it between the check and the write
            self.queue.ack(message)
            return ProcessResult(message_id=message.id, outcome=Outcome.DUPLICATE, event_id=event.event_id)

        alerted = False
        if assessment.should_alert:
            alerted = self._send_warning(event, assessment)

        self.queue.ack(message)
        return ProcessResult(
            message_id=message.id,
            outcome=Outcome.STORED,
            event_id=event.event_id,
            intensity=assessment.intensity,
            alerted=alerted,
        )

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def run_once(self) -> Optional[ProcessResult]:
        message = self.queue.receive()
        if message is None:
            return None
        try:
            return self.process(message)
        except Exception as exc:
            logger.exception("unexpected failure processing message %s", message.id)
            self.db.rollback()
            return self._fail_transiently(message, message.dedup_id, repr(exc))

    def run_forever(
        self,
        should_stop: Callable[[], bool] = lambda: False,
        poll_interval: Optional[float] = None,
    ) -> int:
        """Process until `should_stop()` is true; sleeps only when the queue is empty."""
        interval = self.settings.WORKER_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        processed = 0
        while not should_stop():
            result = self.run_once()
            if result is None:
                time.sleep(interval)
                continue
            processed += 1
        return processed
