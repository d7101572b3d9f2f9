"""
Command-line entry points, invoked by the process supervisor (worker)
and the external scheduler (digest, export).

  emopulse worker [--once]                       scoring worker loop
  emopulse digest [--today D] [--group-by G]     daily digest (weekdays)
  emopulse export start                          weekly snapshot, phase 1
  emopulse export finish KEY                     transform, phase 2 (manual)

Scheduled commands exit 1 on failure and are never retried by the
scheduler; the next firing supersedes a failed one.
"""
from __future__ import annotations

import argparse
import logging
import signal
import sys
from datetime import date
from typing import Optional, Sequence

from emopulse.core.config import Settings, get_settings
from emopulse.core.errors import JobFailedError
from emopulse.core.logging import configure_logging
from emopulse.db.base import SessionLocal
from emopulse.services.classifier import build_classifier
from emopulse.services.digest import GROUP_BY_CHOICES, run_daily_digest
from emopulse.services.export import handle_object_created, run_export
from emopulse.services.notifier import SlackNotifier
from emopulse.services.queue import EventQueue
from emopulse.services.storage import LocalObjectStorage, ObjectStorage, build_storage
from emopulse.services.worker import ScoringWorker

logger = logging.getLogger("emopulse.cli")


def _cmd_worker(args: argparse.Namespace, settings: Settings) -> int:
    stopping = False

    def _stop(signum, frame):
        nonlocal stopping
        logger.info("signal %s received, finishing current message", signum)
        stopping = True

    signal.signal(signal.SIGTERM, _stop)
    signal.signal(signal.SIGINT, _stop)

    db = SessionLocal()
    notifier = SlackNotifier.from_settings(settings)
    try:
        queue = EventQueue(
            db,
            visibility_timeout=settings.QUEUE_VISIBILITY_TIMEOUT_SECONDS,
            max_receives=settings.QUEUE_MAX_RECEIVES,
        )
        worker = ScoringWorker(db, queue, build_classifier(settings), notifier, settings)
        if args.once:
            result = worker.run_once()
            logger.info("processed: %s", result)
            return 0
        processed = worker.run_forever(should_stop=lambda: stopping, poll_interval=args.poll_interval)
        logger.info("worker stopped after %d messages", processed)
        return 0
    finally:
        notifier.close()
        db.close()


def _cmd_digest(args: argparse.Namespace, settings: Settings) -> int:
    db = SessionLocal()
    notifier = SlackNotifier.from_settings(settings)
    try:
        classifier = build_classifier(settings) if settings.DIGEST_INCLUDE_ADVICE else None
        result = run_daily_digest(
            db, settings, notifier,
            classifier=classifier,
            today=args.today,
            group_by=args.group_by,
            force=args.force,
        )
    except JobFailedError as exc:
        logger.error(exc.message)
        return 1
    finally:
        notifier.close()
        db.close()
    logger.info("digest %s: %s %s", result.run_key, result.status, result.reason or "")
    return 0


def _subscribe_local_transform(storage: ObjectStorage, settings: Settings) -> None:
    """Local storage has no bucket notifications; run phase 2 on the marker put."""
    if not isinstance(storage, LocalObjectStorage):
        return

    def on_created(bucket: str, key: str) -> None:
        db = SessionLocal()
        try:
            handle_object_created(db, settings, storage, bucket, key)
        except JobFailedError as exc:
            logger.error(exc.message)
        finally:
            db.close()

    storage.subscribe(on_created)


def _cmd_export_start(args: argparse.Namespace, settings: Settings) -> int:
    storage = build_storage(settings)
    _subscribe_local_transform(storage, settings)
    db = SessionLocal()
    try:
        result = run_export(db, settings, storage, force=args.force)
    except JobFailedError as exc:
        logger.error(exc.message)
        return 1
    finally:
        db.close()
    if result is None:
        logger.info("export for this week already requested")
    else:
        logger.info("export %s requested (%d items)", result.export_id, result.item_count)
    return 0


def _cmd_export_finish(args: argparse.Namespace, settings: Settings) -> int:
    storage = build_storage(settings)
    db = SessionLocal()
    try:
        result = handle_object_created(
            db, settings, storage,
            bucket=args.bucket or storage.bucket,
            key=args.key,
            force=args.force,
        )
    except JobFailedError as exc:
        logger.error(exc.message)
        return 1
    finally:
        db.close()
    if result is None:
        logger.info("%s ignored (not a pending completion marker)", args.key)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="emopulse", description=__doc__.split("\n\n")[0])
    sub = parser.add_subparsers(dest="command", required=True)

    worker = sub.add_parser("worker", help="consume the event queue")
    worker.add_argument("--once", action="store_true", help="process at most one message")
    worker.add_argument("--poll-interval", type=float, default=None)
    worker.set_defaults(handler=_cmd_worker)

    digest = sub.add_parser("digest", help="post the previous business day's digest")
    digest.add_argument("--today", type=date.fromisoformat, default=None,
                        help="pretend today is this date (YYYY-MM-DD)")
    digest.add_argument("--group-by", choices=GROUP_BY_CHOICES, default="user")
    digest.add_argument("--force", action="store_true", help="re-run an already handled day")
    digest.set_defaults(handler=_cmd_digest)

    export = sub.add_parser("export", help="bulk export of the event store")
    export_sub = export.add_subparsers(dest="export_command", required=True)
    start = export_sub.add_parser("start", help="write this week's snapshot")
    start.add_argument("--force", action="store_true")
    start.set_defaults(handler=_cmd_export_start)
    finish = export_sub.add_parser("finish", help="transform a finished export")
    finish.add_argument("key", help="object key of the completion marker")
    finish.add_argument("--bucket", default=None)
    finish.add_argument("--force", action="store_true")
    finish.set_defaults(handler=_cmd_export_finish)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    return args.handler(args, settings)


if __name__ == "__main__":
    sys.exit(main())
