"""
Tests for the scoring worker.

Covered scenarios:
  A) low-negativity message      → stored, no warning
  B) angry message (anger 0.75)  → stored, warning threaded onto the message
  C) redelivery after a crash    → one record, one warning
  D) classifier down             → released, then dead-lettered after max receives
  E) unparseable body            → dead-lettered at once, never classified

Additional:
  - threshold boundary 0.6 is inclusive
  - a failed warning never blocks the write or the ack, whatever Slack replies
  - ALERT_CHANNEL_ID routes warnings to a dedicated channel
  - store write failure is retried through the queue
  - per-conversation write order is preserved across interleaved groups
"""
from __future__ import annotations

import pytest

from emopulse.core.errors import StoreWriteError
from emopulse.models.emotion_event import EmotionEvent
from emopulse.models.queue_message import MessageStatus, QueueMessage
from emopulse.schemas.pipeline import QueuedEvent
from emopulse.services import worker as worker_module
from emopulse.services.event_store import get_event
from emopulse.services.worker import Outcome, ScoringWorker
from tests.helpers import (
    FakeClassifier,
    FakeNotifier,
    classifier_down,
    make_settings,
    scores,
    slack_behind_gateway,
)

TS = 1700000000


def _event(event_id: str, text: str, user: str = "U1", channel: str = "C1", ts: int = TS) -> QueuedEvent:
    return QueuedEvent(
        event_id=event_id,
        user_id=user,
        channel_id=channel,
        channel_type="channel",
        text=text,
        timestamp=ts,
        thread_ts=f"{ts}.000100",
    )


def _enqueue(queue, event: QueuedEvent) -> None:
    queue.enqueue(group_id=event.group_id, dedup_id=event.event_id, body=event.model_dump_json())


def _worker(db, queue, classifier, notifier, **overrides) -> ScoringWorker:
    return ScoringWorker(db, queue, classifier, notifier, make_settings(**overrides))


class TestScenarios:
    def test_exam_failure_stored_without_warning(self, db, queue, notifier):
        text = "I failed the exam"
        classifier = FakeClassifier({text: scores(sad=0.8, fear=0.7, anger=0.1)})
        _enqueue(queue, _event("Ev1", text))

        result = _worker(db, queue, classifier, notifier).run_once()

        assert result.outcome == Outcome.STORED
        assert result.alerted is False
        assert notifier.posts == []
        stored = get_event(db, "Ev1")
        assert stored.sad == pytest.approx(0.8)
        assert stored.date == "2023-11-15"
        assert stored.month == "2023-11"
        assert queue.depth() == 0

    def test_angry_message_warns_in_thread(self, db, queue, notifier):
        text = "This is unacceptable, fix it now"
        classifier = FakeClassifier({text: scores(anger=0.75)})
        event = _event("Ev1", text)
        _enqueue(queue, event)

        result = _worker(db, queue, classifier, notifier).run_once()

        assert result.outcome == Outcome.STORED
        assert result.alerted is True
        assert result.intensity == pytest.approx(0.75)
        assert len(notifier.posts) == 1
        post = notifier.posts[0]
        assert post["channel"] == "C1"
        assert post["thread_ts"] == event.thread_ts
        assert "<@U1>" in post["text"]
        assert "0.75" in post["text"]
        assert text in post["text"]
        assert get_event(db, "Ev1") is not None

    def test_redelivery_after_crash_stores_and_warns_once(self, db, queue, clock, notifier, monkeypatch):
        text = "I am furious"
        classifier = FakeClassifier({text: scores(anger=0.9)})
        _enqueue(queue, _event("Ev1", text))
        worker = _worker(db, queue, classifier, notifier)

        # Crash between the write and the ack: the ack never happens
        monkeypatch.setattr(queue, "ack", lambda message: False)
        first = worker.run_once()
        monkeypatch.undo()
        assert first.outcome == Outcome.STORED

        clock.advance(600)
        second = worker.run_once()

        assert second.outcome == Outcome.DUPLICATE
        assert db.query(EmotionEvent).count() == 1
        assert len(notifier.posts) == 1
        assert classifier.calls == [text]
        assert queue.depth() == 0

    def test_classifier_down_then_dead_letter(self, db, queue, notifier):
        classifier = FakeClassifier(default=classifier_down())
        _enqueue(queue, _event("Ev1", "hello"))
        worker = _worker(db, queue, classifier, notifier)

        outcomes = [worker.run_once().outcome for _ in range(3)]

        assert outcomes == [Outcome.RELEASED, Outcome.RELEASED, Outcome.DEAD_LETTERED]
        assert worker.run_once() is None
        assert db.query(EmotionEvent).count() == 0
        dead = db.query(QueueMessage).one()
        assert dead.status == MessageStatus.DEAD
        assert "throttled" in dead.last_error

    def test_unparseable_body_dead_lettered_immediately(self, db, queue, classifier, notifier):
        queue.enqueue(group_id="C1:U1", dedup_id="Ev1", body="not json")

        result = _worker(db, queue, classifier, notifier).run_once()

        assert result.outcome == Outcome.DEAD_LETTERED
        assert classifier.calls == []
        assert db.query(QueueMessage).one().status == MessageStatus.DEAD


class TestWarningRule:
    @pytest.mark.parametrize("contempt,alerted", [(0.6, True), (0.59, False)])
    def test_threshold_is_inclusive(self, db, queue, notifier, contempt, alerted):
        classifier = FakeClassifier(default=scores(contempt=contempt))
        _enqueue(queue, _event("Ev1", "meh"))

        result = _worker(db, queue, classifier, notifier).run_once()

        assert result.alerted is alerted
        assert len(notifier.posts) == (1 if alerted else 0)

    def test_mean_method_configurable(self, db, queue, notifier):
        classifier = FakeClassifier(default=scores(anger=0.75, contempt=0.0, disgust=0.0))
        _enqueue(queue, _event("Ev1", "grr"))

        result = _worker(db, queue, classifier, notifier, NEGATIVE_INTENSITY_METHOD="mean").run_once()

        assert result.intensity == pytest.approx(0.25)
        assert result.alerted is False

    def test_failed_warning_does_not_block_write(self, db, queue):
        classifier = FakeClassifier(default=scores(anger=0.95))
        _enqueue(queue, _event("Ev1", "angry"))

        result = _worker(db, queue, classifier, FakeNotifier(fail=True)).run_once()

        assert result.outcome == Outcome.STORED
        assert result.alerted is False
        assert get_event(db, "Ev1") is not None
        assert queue.depth() == 0

    def test_non_json_slack_reply_does_not_block_write(self, db, queue):
        classifier = FakeClassifier(default=scores(anger=0.9))
        _enqueue(queue, _event("Ev1", "angry"))

        result = _worker(db, queue, classifier, slack_behind_gateway()).run_once()

        assert result.outcome == Outcome.STORED
        assert result.alerted is False
        assert get_event(db, "Ev1") is not None
        assert queue.depth() == 0

    def test_alert_channel_override(self, db, queue, notifier):
        classifier = FakeClassifier(default=scores(disgust=0.8))
        _enqueue(queue, _event("Ev1", "gross"))

        _worker(db, queue, classifier, notifier, ALERT_CHANNEL_ID="C_ALERTS").run_once()

        assert notifier.posts[0]["channel"] == "C_ALERTS"
        assert notifier.posts[0]["thread_ts"] is None


class TestFailureRouting:
    def test_store_failure_released(self, db, queue, classifier, notifier, monkeypatch):
        def broken_write(*args, **kwargs):
            raise StoreWriteError("Ev1", "database is down")

        monkeypatch.setattr(worker_module, "write_event", broken_write)
        _enqueue(queue, _event("Ev1", "hello"))

        result = _worker(db, queue, classifier, notifier).run_once()

        assert result.outcome == Outcome.RELEASED
        assert "database is down" in result.error
        assert queue.depth() == 1

    def test_unexpected_error_released(self, db, queue, notifier):
        classifier = FakeClassifier(default=RuntimeError("bug"))
        _enqueue(queue, _event("Ev1", "hello"))

        result = _worker(db, queue, classifier, notifier).run_once()

        assert result.outcome == Outcome.RELEASED
        assert "bug" in result.error

    def test_empty_queue(self, db, queue, classifier, notifier):
        assert _worker(db, queue, classifier, notifier).run_once() is None


class TestOrdering:
    def test_per_conversation_write_order(self, db, queue, notifier):
        classifier = FakeClassifier()
        for i in range(3):
            _enqueue(queue, _event(f"A{i}", f"a{i}", user="U1", ts=TS + i))
            _enqueue(queue, _event(f"B{i}", f"b{i}", user="U2", ts=TS + i))
        worker = _worker(db, queue, classifier, notifier)

        while worker.run_once() is not None:
            pass

        a_calls = [t for t in classifier.calls if t.startswith("a")]
        b_calls = [t for t in classifier.calls if t.startswith("b")]
        assert a_calls == ["a0", "a1", "a2"]
        assert b_calls == ["b0", "b1", "b2"]
        assert db.query(EmotionEvent).count() == 6

    def test_failed_head_holds_back_conversation(self, db, queue, notifier):
        classifier = FakeClassifier({"first": classifier_down()})
        _enqueue(queue, _event("Ev1", "first", ts=TS))
        _enqueue(queue, _event("Ev2", "second", ts=TS + 1))
        worker = _worker(db, queue, classifier, notifier, QUEUE_RETRY_DELAY_SECONDS=60)

        assert worker.run_once().outcome == Outcome.RELEASED
        # Head is waiting for redelivery, so Ev2 must not overtake it
        assert worker.run_once() is None
        assert classifier.calls == ["first"]

    def test_run_forever_stops(self, db, queue, classifier, notifier):
        for i in range(2):
            _enqueue(queue, _event(f"Ev{i}", f"t{i}", ts=TS + i))
        worker = _worker(db, queue, classifier, notifier)
        ticks = iter([False, False, True])

        processed = worker.run_forever(should_stop=lambda: next(ticks), poll_interval=0)

        assert processed == 2
