"""
Daily digest: aggregate the previous business day and post it to Slack.

Public API
----------
build_digest(db, start, end, group_by, ...)        → DigestReport (pure read)
deliver_digest(report, notifier, channel, ...)     → int (messages posted)
run_daily_digest(db, settings, notifier, ...)      → DigestRunResult

run_daily_digest is the scheduled entry point. It is a no-op on weekends,
runs at most once per (target day, grouping) and never retries: a failed
run is recorded in `job_runs` and reported via JobFailedError.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from emopulse.core.config import Settings
from emopulse.core.dates import is_weekday, previous_business_day, today_in
from emopulse.core.errors import ClassifierError, JobFailedError
from emopulse.models.emotion_event import NEGATIVE_EMOTIONS, EmotionEvent
from emopulse.schemas.pipeline import DailyAdvice, EmotionScores
from emopulse.services.classifier import EmotionClassifier
from emopulse.services.event_store import events_between_dates
from emopulse.services.job_runs import claim_run, fail_run, finish_run
from emopulse.services.notifier import Notifier, excerpt
from emopulse.services.scoring import IntensityFn, get_intensity_fn

logger = logging.getLogger(__name__)

JOB_NAME = "daily_digest"
GROUP_BY_CHOICES = ("user", "channel")


# ---------------------------------------------------------------------------
# Report types (never persisted)
# ---------------------------------------------------------------------------

@dataclass
class Highlight:
    emotion: str
    score: float
    text: str


@dataclass
class GroupDigest:
    key: str
    message_count: int
    mean_intensity: float
    max_intensity: float
    highlights: list[Highlight] = field(default_factory=list)
    scores: list[EmotionScores] = field(default_factory=list)
    advice: Optional[DailyAdvice] = None


@dataclass
class DigestReport:
    start: date
    end: date
    group_by: str
    groups: list[GroupDigest]
    event_ids: list[str] = field(default_factory=list)

    @property
    def total_messages(self) -> int:
        return sum(g.message_count for g in self.groups)


@dataclass
class DigestRunResult:
    run_key: Optional[str]
    status: str  # "skipped" | "empty" | "posted"
    reason: Optional[str] = None
    messages_posted: int = 0
    report: Optional[DigestReport] = None


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def _group_key(record: EmotionEvent, group_by: str) -> str:
    return record.user_id if group_by == "user" else record.channel_id


def _summarize(
    key: str,
    records: list[EmotionEvent],
    intensity_fn: IntensityFn,
    highlight_threshold: float,
) -> GroupDigest:
    scores = [EmotionScores.model_validate(r.scores) for r in records]
    intensities = [intensity_fn(s) for s in scores]

    highlights = []
    for emotion in NEGATIVE_EMOTIONS:
        top = max(records, key=lambda r: getattr(r, emotion))
        value = getattr(top, emotion)
        if value >= highlight_threshold:
            highlights.append(Highlight(emotion=emotion, score=value, text=top.text))

    return GroupDigest(
        key=key,
        message_count=len(records),
        mean_intensity=sum(intensities) / len(intensities),
        max_intensity=max(intensities),
        highlights=highlights,
        scores=scores,
    )


def build_digest(
    db: Session,
    start: date,
    end: date,
    group_by: str = "user",
    intensity_fn: Optional[IntensityFn] = None,
    highlight_threshold: float = 0.4,
) -> DigestReport:
    """Aggregate every record with `date` in [start, end], grouped per user or channel."""
    if group_by not in GROUP_BY_CHOICES:
        raise ValueError(f"group_by must be one of {GROUP_BY_CHOICES}, got {group_by!r}")
    intensity_fn = intensity_fn or get_intensity_fn("max")

    records = events_between_dates(db, start, end)
    grouped: dict[str, list[EmotionEvent]] = defaultdict(list)
    for record in records:
        grouped[_group_key(record, group_by)].append(record)

    groups = [
        _summarize(key, grouped[key], intensity_fn, highlight_threshold)
        for key in sorted(grouped)
    ]
    return DigestReport(
        start=start,
        end=end,
        group_by=group_by,
        groups=groups,
        event_ids=[r.event_id for r in records],
    )


# ---------------------------------------------------------------------------
# Formatting / delivery
# ---------------------------------------------------------------------------

def format_header(report: DigestReport) -> str:
    span = str(report.start) if report.start == report.end else f"{report.start} – {report.end}"
    return (
        f":star::star: *{span}* :star::star:\n"
        f"Check out how you did and start your day off with an AI recommended song!\n"
        f"_{report.total_messages} messages from {len(report.groups)} {report.group_by}s_"
    )


def format_group(group: GroupDigest, group_by: str) -> str:
    who = f"<@{group.key}>" if group_by == "user" else f"<#{group.key}>"
    lines = [
        f":heart: {who} :heart:",
        f"*Messages*: {group.message_count}  "
        f"*Negative intensity*: mean {group.mean_intensity:.2f}, max {group.max_intensity:.2f}",
    ]
    for h in group.highlights:
        lines.append(f"*Message with max {h.emotion} ({h.score:.2f})*: {excerpt(h.text)}")
    if group.advice is not None:
        lines.append(f"*Advice*: {group.advice.advice}")
        lines.append(f"*Song Recommendation*: {group.advice.song}")
    return "\n".join(lines)


def _attach_advice(report: DigestReport, classifier: EmotionClassifier) -> None:
    for group in report.groups:
        try:
            group.advice = classifier.advise(group.scores)
        except ClassifierError as exc:
            logger.warning("no advice for %s: %s", group.key, exc.message)


def deliver_digest(
    report: DigestReport,
    notifier: Notifier,
    channel: str,
    classifier: Optional[EmotionClassifier] = None,
) -> int:
    """Post the header, then one thread reply per group. Returns messages posted."""
    if classifier is not None:
        _attach_advice(report, classifier)
    thread_ts = notifier.post_message(channel, format_header(report))
    posted = 1
    for group in report.groups:
        notifier.post_message(channel, format_group(group, report.group_by), thread_ts=thread_ts)
        posted += 1
    return posted


# ---------------------------------------------------------------------------
# Scheduled entry point
# ---------------------------------------------------------------------------

def run_daily_digest(
    db: Session,
    settings: Settings,
    notifier: Notifier,
    classifier: Optional[EmotionClassifier] = None,
    today: Optional[date] = None,
    group_by: str = "user",
    force: bool = False,
) -> DigestRunResult:
    today = today or today_in(settings.timezone)
    if not is_weekday(today):
        return DigestRunResult(run_key=None, status="skipped", reason="weekend")

    day = previous_business_day(today)
    run_key = f"{day.isoformat()}:{group_by}"
    run = claim_run(db, JOB_NAME, run_key, force=force)
    if run is None:
        return DigestRunResult(run_key=run_key, status="skipped", reason="already ran")

    try:
        report = build_digest(
            db, day, day,
            group_by=group_by,
            intensity_fn=get_intensity_fn(settings.NEGATIVE_INTENSITY_METHOD),
            highlight_threshold=settings.DIGEST_HIGHLIGHT_THRESHOLD,
        )
        if not report.groups:
            finish_run(db, run, detail="no records")
            return DigestRunResult(run_key=run_key, status="empty", report=report)

        advisor = classifier if settings.DIGEST_INCLUDE_ADVICE else None
        posted = deliver_digest(report, notifier, settings.RESULT_CHANNEL_ID, classifier=advisor)
    except Exception as exc:
        db.rollback()
        fail_run(db, run, str(exc))
        raise JobFailedError(JOB_NAME, run_key, str(exc)) from exc

    finish_run(db, run, detail=f"{report.total_messages} messages, {len(report.groups)} groups")
    logger.info("digest %s posted (%d messages)", run_key, posted)
    return DigestRunResult(run_key=run_key, status="posted", messages_posted=posted, report=report)
