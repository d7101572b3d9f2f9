"""
Test helpers: builders for settings / scores / records and in-memory
fakes for the classifier, Slack and the queue clock.
"""
from __future__ import annotations

import os

import httpx

from emopulse.core.config import Settings
from emopulse.core.errors import AlertSendError, ClassifierError
from emopulse.models.emotion_event import EMOTIONS, EmotionEvent
from emopulse.schemas.pipeline import DailyAdvice, EmotionScores
from emopulse.services.notifier import SlackNotifier

SQLITE_URL = os.environ.get("DATABASE_URL", "sqlite:///./test_emopulse.db")
VERIFICATION_TOKEN = "test-verification-token"


def make_settings(**overrides) -> Settings:
    values = dict(
        DATABASE_URL=SQLITE_URL,
        SLACK_VERIFICATION_TOKEN=VERIFICATION_TOKEN,
        BOT_OAUTH_TOKEN="xoxb-test",
        RESULT_CHANNEL_ID="C_DIGEST",
        ALERT_CHANNEL_ID="",
        DISPLAY_TIMEZONE="Asia/Tokyo",
        STORAGE_BACKEND="local",
        BUCKET_NAME="emotion-data",
        QUEUE_RETRY_DELAY_SECONDS=0,
        QUEUE_MAX_RECEIVES=3,
        STORE_WRITE_ATTEMPTS=2,
        DIGEST_INCLUDE_ADVICE=False,
    )
    values.update(overrides)
    return Settings(**values)


def scores(**overrides) -> EmotionScores:
    values = {name: 0.05 for name in EMOTIONS}
    values.update(overrides)
    return EmotionScores(**values)


def make_record(event_id: str, user_id: str = "U1", timestamp: int = 1700000000,
                channel_id: str = "C1", text: str = "hello", **score_overrides) -> EmotionEvent:
    return EmotionEvent.build(
        event_id=event_id,
        user_id=user_id,
        channel_id=channel_id,
        channel_type="channel",
        text=text,
        timestamp=timestamp,
        scores=scores(**score_overrides).model_dump(),
        tz=make_settings().timezone,
    )


def classifier_down() -> ClassifierError:
    return ClassifierError("Model invocation failed: throttled")


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeClassifier:
    """Returns canned scores per text; an Exception value is raised instead."""

    def __init__(self, by_text=None, default=None):
        self.by_text = dict(by_text or {})
        self.default = default or scores()
        self.calls: list[str] = []
        self.advice_calls: list[list[EmotionScores]] = []
        self.advice_error = None

    def score(self, text: str) -> EmotionScores:
        self.calls.append(text)
        result = self.by_text.get(text, self.default)
        if isinstance(result, Exception):
            raise result
        return result

    def advise(self, scores_list):
        self.advice_calls.append(list(scores_list))
        if self.advice_error is not None:
            raise self.advice_error
        return DailyAdvice(advice="Take a short walk.", song="Here Comes the Sun")


class FakeNotifier:
    """Records posts; `fail` raises AlertSendError, `error` raises that exception as is."""

    def __init__(self, fail: bool = False, error: Exception = None):
        self.fail = fail
        self.error = error
        self.posts: list[dict] = []

    def post_message(self, channel, text, thread_ts=None):
        if self.fail:
            raise AlertSendError("Slack chat.postMessage failed: channel_not_found")
        if self.error is not None:
            raise self.error
        self.posts.append({"channel": channel, "text": text, "thread_ts": thread_ts})
        return f"ts-{len(self.posts)}"

    def close(self):
        pass


def slack_behind_gateway() -> SlackNotifier:
    """A real SlackNotifier whose every call gets a 200 HTML page instead of JSON."""
    client = httpx.Client(
        base_url="https://slack.test/api",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>")),
    )
    return SlackNotifier(token="xoxb-test", client=client)
