"""Durable job table with debounced progress writes.

The persisted table is the only authority: every read goes back to the
backend, so a job created or changed by another process is always visible.
Progress updates from the worker may be held in memory for up to
``debounce_seconds``. Only the changed fields are held, and they are laid
over the freshly read record, so fields written meanwhile by another process
survive the flush. Creations, status changes and removals are written
immediately.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional
from uuid import uuid4

import structlog
from pydantic import ValidationError

from yt_batch.core.exceptions import InvalidJobStateError, JobNotFoundError
from yt_batch.models.job import (
    CANCELLABLE_STATUSES,
    DELETABLE_STATUSES,
    Job,
    JobCreate,
    JobStatus,
    TaskProgress,
)
from yt_batch.services.backends import PersistenceBackend
from yt_batch.services.progress import ProgressTracker, summarize
from yt_batch.services.scheduler import align_to

logger = structlog.get_logger()

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id(now: datetime) -> str:
    """Opaque id whose prefix orders by creation time."""
    return f"job-{int(now.timestamp() * 1000)}-{uuid4().hex[:7]}"


class JobStore:
    """Manages the persisted upload job table."""

    def __init__(
        self,
        backend: PersistenceBackend,
        clock: Clock = utc_now,
        debounce_seconds: float = 1.0,
    ):
        self._backend = backend
        self._clock = clock
        self._debounce = timedelta(seconds=max(debounce_seconds, 0))
        # Fields changed by this process and not yet written, per job id
        self._buffered: dict[str, dict[str, Any]] = {}
        self._flush_due: Optional[datetime] = None

    # -- persistence -------------------------------------------------------

    def _read_table(self) -> dict[str, Job]:
        jobs: dict[str, Job] = {}
        for job_id, record in self._backend.load().items():
            try:
                jobs[job_id] = Job.model_validate(record)
            except ValidationError as e:
                logger.error("job_record_invalid", job_id=job_id, error=str(e))

        for job_id, fields in self._buffered.items():
            # A job removed by another process stays removed
            if job_id in jobs:
                jobs[job_id] = jobs[job_id].model_copy(update=fields)
        return jobs

    def _write_table(self, jobs: dict[str, Job]) -> bool:
        try:
            self._backend.save({job_id: job.to_record() for job_id, job in jobs.items()})
        except (OSError, TypeError, ValueError) as e:
            logger.error("job_table_write_failed", error=str(e))
            return False

        self._buffered.clear()
        self._flush_due = None
        return True

    @property
    def has_pending_writes(self) -> bool:
        return bool(self._buffered)

    def flush(self) -> bool:
        """Write buffered progress updates now."""
        if not self._buffered:
            return True
        logger.debug("job_table_flush", buffered=len(self._buffered))
        return self._write_table(self._read_table())

    def flush_if_due(self) -> bool:
        """Flush if the debounce window has elapsed. Returns True if a write happened."""
        if self._flush_due is None or self._clock() < self._flush_due:
            return False
        return self.flush()

    # -- queries -----------------------------------------------------------

    def get_job(self, job_id: str) -> Optional[Job]:
        """Get a job by ID."""
        return self._read_table().get(job_id)

    def get_all_jobs(self) -> list[Job]:
        """Get all jobs, oldest first."""
        return sorted(self._read_table().values(), key=lambda j: (j.created_at, j.job_id))

    def get_jobs_for_owner(self, user_id: Optional[str], session_id: Optional[str]) -> list[Job]:
        return [j for j in self.get_all_jobs() if j.belongs_to(user_id, session_id)]

    def get_pending_jobs(self) -> list[Job]:
        """Pending jobs in claim order (oldest created first)."""
        return [j for j in self.get_all_jobs() if j.status == JobStatus.PENDING]

    def get_next_pending(self, now: Optional[datetime] = None) -> Optional[Job]:
        """The oldest pending job that is ready to run at ``now``.

        Jobs waiting for a later window carry ``next_run_at`` and are skipped
        until it passes, so they do not block jobs queued behind them.
        """
        now = now or self._clock()
        for job in self.get_pending_jobs():
            if job.next_run_at is None or align_to(job.next_run_at, now) <= now:
                return job
        return None

    def get_queue_stats(self, jobs: Optional[list[Job]] = None) -> dict:
        """Job counts per status."""
        jobs = self.get_all_jobs() if jobs is None else jobs
        stats = {"total": len(jobs)}
        for status in JobStatus:
            stats[status.value] = len([j for j in jobs if j.status == status])
        return stats

    # -- mutations ---------------------------------------------------------

    def create_job(self, request: JobCreate) -> Job:
        """Create a new pending job and persist it immediately."""
        now = self._clock()
        job = Job(
            job_id=new_job_id(now),
            status=JobStatus.PENDING,
            progress=[],
            created_at=now,
            updated_at=now,
            **request.model_dump(exclude_none=True),
        )

        jobs = self._read_table()
        jobs[job.job_id] = job
        self._write_table(jobs)
        logger.info(
            "job_created",
            job_id=job.job_id,
            user_id=job.user_id,
            total_videos=job.total_videos,
            upload_interval=job.upload_interval,
        )
        return job

    def update_job(self, job_id: str, immediate: bool = False, **fields) -> Optional[Job]:
        """Merge fields into a job and bump ``updated_at``.

        Status changes are always written immediately; anything else is
        buffered unless ``immediate`` is set.
        """
        jobs = self._read_table()
        job = jobs.get(job_id)
        if not job:
            return None

        changes = {**fields, "updated_at": self._clock()}
        updated = job.model_copy(update=changes)

        if immediate or "status" in fields or self._debounce.total_seconds() == 0:
            jobs[job_id] = updated
            self._write_table(jobs)
            if "status" in fields:
                logger.info("job_status_changed", job_id=job_id, status=updated.status)
        else:
            self._buffered.setdefault(job_id, {}).update(changes)
            if self._flush_due is None:
                self._flush_due = self._clock() + self._debounce
        return updated

    def update_progress(self, job_id: str, progress: list[TaskProgress]) -> Optional[Job]:
        """Buffered write of a job's progress array."""
        job = self.update_job(job_id, progress=progress)
        if job:
            summary = summarize(progress)
            logger.debug("job_progress_updated", job_id=job_id, **summary.as_dict())
        return job

    def mark_processing(self, job_id: str) -> Optional[Job]:
        """Claim a job: pending -> processing.

        Returns None when the job is gone or no longer pending, e.g. it was
        cancelled or paused by the web process after it was polled.
        """
        job = self.get_job(job_id)
        if job is None or job.status != JobStatus.PENDING:
            logger.info(
                "job_claim_skipped",
                job_id=job_id,
                status=job.status if job else None,
            )
            return None
        return self.update_job(job_id, status=JobStatus.PROCESSING, error=None)

    def mark_completed(self, job_id: str) -> Optional[Job]:
        return self.update_job(job_id, status=JobStatus.COMPLETED)

    def mark_failed(self, job_id: str, error: str) -> Optional[Job]:
        return self.update_job(job_id, status=JobStatus.FAILED, error=error)

    def pause_job(self, job_id: str) -> Optional[Job]:
        """pending -> paused; no-op from any other status."""
        job = self.get_job(job_id)
        if job and job.status == JobStatus.PENDING:
            return self.update_job(job_id, status=JobStatus.PAUSED)
        return job

    def resume_job(self, job_id: str) -> Optional[Job]:
        """paused -> pending; no-op from any other status."""
        job = self.get_job(job_id)
        if job and job.status == JobStatus.PAUSED:
            return self.update_job(job_id, status=JobStatus.PENDING, next_run_at=None)
        return job

    def _remove(self, job_id: str, action: str, allowed: tuple[JobStatus, ...]) -> Job:
        jobs = self._read_table()
        job = jobs.get(job_id)
        if not job:
            raise JobNotFoundError(job_id)
        if job.status not in allowed:
            raise InvalidJobStateError(
                job_id, job.status.value, action, tuple(s.value for s in allowed)
            )

        del jobs[job_id]
        self._buffered.pop(job_id, None)
        self._write_table(jobs)
        logger.info("job_removed", job_id=job_id, action=action, status=job.status)
        return job

    def cancel_job(self, job_id: str) -> Job:
        """Remove a pending or paused job. In-flight jobs cannot be cancelled."""
        return self._remove(job_id, "cancel", CANCELLABLE_STATUSES)

    def delete_job(self, job_id: str) -> Job:
        """Remove a completed, failed or cancelled job."""
        return self._remove(job_id, "delete", DELETABLE_STATUSES)

    def delete_terminal_jobs(
        self, user_id: Optional[str] = None, session_id: Optional[str] = None
    ) -> list[Job]:
        """Remove every deletable job, restricted to an owner when one is given."""
        jobs = self._read_table()
        doomed = [
            job
            for job in jobs.values()
            if job.status in DELETABLE_STATUSES
            and (not (user_id or session_id) or job.belongs_to(user_id, session_id))
        ]
        if not doomed:
            return []

        for job in doomed:
            del jobs[job.job_id]
            self._buffered.pop(job.job_id, None)
        self._write_table(jobs)
        logger.info("jobs_deleted", count=len(doomed))
        return doomed

    def retry_failed(self, job_id: str) -> Job:
        """Reset failed tasks to ``Pending`` and put a finished job back in the queue."""
        job = self.get_job(job_id)
        if not job:
            raise JobNotFoundError(job_id)
        allowed = (JobStatus.PENDING, JobStatus.PAUSED, JobStatus.COMPLETED, JobStatus.FAILED)
        if job.status not in allowed:
            raise InvalidJobStateError(
                job_id, job.status.value, "retry", tuple(s.value for s in allowed)
            )

        tracker = ProgressTracker(job.progress)
        reset = tracker.reset_failed()
        status = job.status
        if status in (JobStatus.COMPLETED, JobStatus.FAILED):
            status = JobStatus.PENDING

        logger.info("job_retry_requested", job_id=job_id, reset_tasks=reset)
        return self.update_job(
            job_id,
            immediate=True,
            status=status,
            progress=tracker.entries(),
            error=None,
            next_run_at=None,
        )

    def recover_stale(self) -> list[str]:
        """Return jobs left ``processing`` by a crashed worker to ``pending``."""
        recovered = []
        for job in self.get_all_jobs():
            if job.status != JobStatus.PROCESSING:
                continue
            tracker = ProgressTracker(job.progress)
            interrupted = tracker.reset_in_progress()
            self.update_job(job.job_id, status=JobStatus.PENDING, progress=tracker.entries())
            logger.warning("stale_job_recovered", job_id=job.job_id, interrupted_tasks=interrupted)
            recovered.append(job.job_id)
        return recovered
