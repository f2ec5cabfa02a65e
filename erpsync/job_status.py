"""
Execution-status ledger for the scheduled sync jobs.

A cron entry invokes `erpsync run <task_type>` at 01:00 and 07:00. Each task
type is its own job named sync-job-<task_type>; the ledger keeps the last run
time, outcome and error, and when the next slot is due.
"""

from datetime import datetime, time, timedelta
from typing import Any, Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from .database import JobTaskStatus
from .errors import PersistenceFailure
from .logger import get_logger

logger = get_logger()

JOB_PREFIX = "sync-job"
SCHEDULE_SLOTS = (time(1, 0), time(7, 0))
CRON_EXPRESSION = "0 1,7 * * *"

STATUS_FIELDS = ("last_run_at", "last_status", "last_error", "next_scheduled_at")


def job_name(task_type: str) -> str:
    return f"{JOB_PREFIX}-{task_type}"


def next_scheduled_run(now: Optional[datetime] = None) -> datetime:
    """Next slot strictly after `now` (a run at exactly 01:00 is due again at 07:00)."""
    now = now or datetime.now()
    for slot in SCHEDULE_SLOTS:
        candidate = datetime.combine(now.date(), slot, tzinfo=now.tzinfo)
        if candidate > now:
            return candidate
    return datetime.combine(now.date() + timedelta(days=1), SCHEDULE_SLOTS[0], tzinfo=now.tzinfo)


def upsert_job_task_status(session_factory, job: str, task_type: str, **fields: Any) -> None:
    """Create or update a ledger row; only the fields passed are written."""
    unknown = set(fields) - set(STATUS_FIELDS)
    if unknown:
        raise TypeError(f"Unknown job status fields: {', '.join(sorted(unknown))}")
    try:
        with session_factory() as session:
            row = session.get(JobTaskStatus, job)
            if row is None:
                row = JobTaskStatus(job_name=job, task_type=task_type)
                session.add(row)
            for name, value in fields.items():
                setattr(row, name, value)
            session.commit()
    except SQLAlchemyError as e:
        raise PersistenceFailure(f"Failed to write job status for {job}: {e}") from e


def list_job_task_status(session_factory, prefix: Optional[str] = None) -> List[JobTaskStatus]:
    stmt = select(JobTaskStatus)
    if prefix:
        stmt = stmt.where(JobTaskStatus.job_name.startswith(prefix))
    stmt = stmt.order_by(JobTaskStatus.task_type)
    with session_factory() as session:
        return list(session.scalars(stmt))


def _write_quietly(session_factory, job: str, task_type: str, **fields: Any) -> None:
    try:
        upsert_job_task_status(session_factory, job, task_type, **fields)
    except PersistenceFailure as e:
        logger.error("Failed to update job status", job_name=job, error=str(e))


def run_sync_job(
    orchestrator,
    session_factory,
    task_type: str,
    options=None,
    clock: Callable[[], datetime] = datetime.now,
):
    """
    Run one task type as its scheduled job and record the outcome.

    Returns:
        The orchestrator's TaskRunSummary

    Raises:
        Whatever run_by_task_type raises, after the failure is recorded
    """
    job = job_name(task_type)
    _write_quietly(session_factory, job, task_type, next_scheduled_at=next_scheduled_run(clock()))

    try:
        summary = orchestrator.run_by_task_type(task_type, options)
    except Exception as e:
        logger.error("Sync job failed", job_name=job, error=str(e))
        _write_quietly(
            session_factory, job, task_type,
            last_run_at=clock(), last_status="failed", last_error=str(e),
        )
        raise

    if summary.fail_count:
        status = "failed"
        error = f"{summary.fail_count} of {summary.account_count} accounts failed"
    else:
        status = "success"
        error = None
    _write_quietly(session_factory, job, task_type, last_run_at=clock(), last_status=status, last_error=error)
    logger.info("Sync job finished", job_name=job, status=status, total_records=summary.total_records)
    return summary
