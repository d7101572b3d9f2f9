"""
Run bookkeeping for scheduled entry points.

claim_run() inserts the (job_name, run_key) row; if it already exists the
window has been handled (successfully or not) and the caller skips. The
unique constraint is the guard against two concurrent firings.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from emopulse.models.job_run import JobRun, JobStatus

logger = logging.getLogger(__name__)


def get_run(db: Session, job_name: str, run_key: str) -> Optional[JobRun]:
    return (
        db.query(JobRun)
        .filter(JobRun.job_name == job_name, JobRun.run_key == run_key)
        .first()
    )


def claim_run(db: Session, job_name: str, run_key: str, force: bool = False) -> Optional[JobRun]:
    """Return the run row to work under, or None if this window was already handled."""
    existing = get_run(db, job_name, run_key)
    if existing is not None:
        if not force:
            logger.info(
                "%s [%s] already %s, skipping", job_name, run_key, existing.status
            )
            return None
        existing.status = JobStatus.STARTED
        existing.detail = None
        existing.finished_at = None
        db.commit()
        return existing

    run = JobRun(job_name=job_name, run_key=run_key, status=JobStatus.STARTED)
    db.add(run)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("%s [%s] claimed by a concurrent firing, skipping", job_name, run_key)
        return None
    return run


def _close(db: Session, run: JobRun, status: str, detail: Optional[str]) -> JobRun:
    run.status = status
    run.detail = detail
    run.finished_at = datetime.now(tz=timezone.utc)
    db.commit()
    return run


def finish_run(db: Session, run: JobRun, detail: Optional[str] = None) -> JobRun:
    return _close(db, run, JobStatus.SUCCEEDED, detail)


def fail_run(db: Session, run: JobRun, error: str) -> JobRun:
    logger.error("%s [%s] failed: %s", run.job_name, run.run_key, error)
    return _close(db, run, JobStatus.FAILED, error)
