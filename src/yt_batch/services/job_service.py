"""Operations offered to the web layer and the CLI."""

import csv
import io
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from yt_batch.core.exceptions import (
    ConfigurationError,
    JobNotFoundError,
    ManifestError,
    NotAuthorizedError,
)
from yt_batch.models.job import Job, JobCreate, JobStatus, JobSubmission, UploadInterval
from yt_batch.services.job_store import Clock, JobStore, utc_now
from yt_batch.services.manifest import ManifestSource
from yt_batch.services.progress import summarize
from yt_batch.services.storage import UploadStorage

logger = structlog.get_logger()


@dataclass(frozen=True)
class Owner:
    """Who is asking: the signed-in user, and the browser session they use."""

    user_id: Optional[str]
    session_id: str = ""


class JobService:
    """Job submission, queries and owner-checked mutations."""

    def __init__(
        self,
        store: JobStore,
        storage: UploadStorage,
        manifests: ManifestSource,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.storage = storage
        self.manifests = manifests
        self._clock = clock

    # -- submission --------------------------------------------------------

    def _validate(self, submission: JobSubmission) -> None:
        scheduled = submission.upload_interval is not None
        if scheduled and not submission.videos_per_interval:
            raise ConfigurationError("Videos per interval is required when scheduling is enabled")
        if submission.videos_per_interval is not None and submission.videos_per_interval < 1:
            raise ConfigurationError("Videos per interval must be at least 1")
        if submission.upload_interval == UploadInterval.CUSTOM:
            if not submission.custom_interval_minutes:
                raise ConfigurationError(
                    "Custom interval minutes is required when using custom interval"
                )
            if submission.custom_interval_minutes < 1:
                raise ConfigurationError("Custom interval minutes must be at least 1")
        if submission.videos_per_day < 0:
            raise ConfigurationError("Videos per day cannot be negative")
        if not Path(submission.csv_path).is_file():
            raise ConfigurationError(f"Manifest not found: {submission.csv_path}")

    def submit(self, owner: Owner, submission: JobSubmission) -> Job:
        """Validate a submission and queue it. Nothing is created on error."""
        self._validate(submission)

        try:
            rows = self.manifests.read_rows(submission.csv_path)
        except ManifestError as e:
            raise ConfigurationError(f"CSV parsing failed: {e.message}") from e
        if not rows:
            raise ConfigurationError("CSV file is empty or contains no valid rows")

        scheduled = submission.upload_interval is not None or submission.videos_per_day > 0
        start_date = submission.start_date
        if scheduled and start_date is None:
            start_date = self._clock()

        request = JobCreate(
            user_id=owner.user_id,
            session_id=owner.session_id,
            total_videos=len(rows),
            **submission.model_dump(exclude={"start_date"}),
            start_date=start_date,
        )
        job = self.store.create_job(request)

        try:
            self.storage.create_job_dir(owner.user_id, job.job_id, owner.session_id)
        except OSError as e:
            logger.warning("job_dir_create_failed", job_id=job.job_id, error=str(e))
        return job

    # -- queries -----------------------------------------------------------

    def get_job(self, owner: Owner, job_id: str) -> Job:
        """A job the owner may see."""
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if not job.belongs_to(owner.user_id, owner.session_id):
            raise NotAuthorizedError(job_id)
        return job

    def list_jobs(self, owner: Owner) -> list[Job]:
        return self.store.get_jobs_for_owner(owner.user_id, owner.session_id)

    def stats(self, owner: Owner) -> dict:
        """Per-owner job and video counts, plus one row per job."""
        jobs = self.list_jobs(owner)
        counts = self.store.get_queue_stats(jobs)
        rows = []
        for job in jobs:
            summary = summarize(job.progress)
            rows.append(
                {
                    "id": job.job_id,
                    "status": job.status.value,
                    "totalVideos": job.total_videos or 0,
                    "uploadInterval": job.upload_interval.value if job.upload_interval else None,
                    "videosPerInterval": job.videos_per_interval,
                    "createdAt": job.created_at.isoformat(),
                    "updatedAt": job.updated_at.isoformat(),
                    "completed": summary.succeeded,
                    "failed": summary.failed,
                    "pending": summary.pending + summary.deferred,
                }
            )

        return {
            "totalJobs": counts["total"],
            **{status.value: counts[status.value] for status in JobStatus},
            "totalVideos": sum(job.total_videos or 0 for job in jobs),
            "uploadedVideos": sum(row["completed"] for row in rows),
            "failedVideos": sum(row["failed"] for row in rows),
            "jobs": rows,
        }

    def stats_csv(self, owner: Owner) -> str:
        stats = self.stats(owner)
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")

        writer.writerow(["Statistic", "Value"])
        writer.writerow(["Total Jobs", stats["totalJobs"]])
        for status in JobStatus:
            writer.writerow([status.value.capitalize(), stats[status.value]])
        writer.writerow(["Total Videos", stats["totalVideos"]])
        writer.writerow(["Uploaded Videos", stats["uploadedVideos"]])
        writer.writerow(["Failed Videos", stats["failedVideos"]])
        writer.writerow([])
        writer.writerow(
            ["Job ID", "Status", "Total Videos", "Completed", "Failed", "Pending", "Interval", "Created At"]
        )
        for row in stats["jobs"]:
            interval = (
                f"{row['videosPerInterval']} per {row['uploadInterval']}"
                if row["uploadInterval"]
                else ""
            )
            writer.writerow(
                [
                    row["id"],
                    row["status"],
                    row["totalVideos"],
                    row["completed"],
                    row["failed"],
                    row["pending"],
                    interval,
                    row["createdAt"],
                ]
            )
        return buffer.getvalue()

    # -- mutations ---------------------------------------------------------

    def pause(self, owner: Owner, job_id: str) -> Job:
        self.get_job(owner, job_id)
        return self.store.pause_job(job_id)

    def resume(self, owner: Owner, job_id: str) -> Job:
        self.get_job(owner, job_id)
        return self.store.resume_job(job_id)

    def _cleanup(self, job: Job) -> None:
        """Remove a job's working directory. Failures never block the removal."""
        try:
            self.storage.delete_job_dir(job.user_id, job.job_id, job.session_id)
        except OSError as e:
            logger.warning("job_dir_cleanup_failed", job_id=job.job_id, error=str(e))

    def cancel(self, owner: Owner, job_id: str) -> Job:
        """Cancel a pending or paused job; the job is removed."""
        self.get_job(owner, job_id)
        job = self.store.cancel_job(job_id)
        self._cleanup(job)
        return job

    def delete(self, owner: Owner, job_id: str) -> Job:
        """Delete a finished job and its staged files."""
        self.get_job(owner, job_id)
        job = self.store.delete_job(job_id)
        self._cleanup(job)
        return job

    def delete_all_terminal(self, owner: Owner) -> list[Job]:
        """Delete every completed, failed or cancelled job of the owner."""
        removed = self.store.delete_terminal_jobs(owner.user_id, owner.session_id)
        for job in removed:
            self._cleanup(job)
        return removed

    def update_notes(self, owner: Owner, job_id: str, notes: Optional[str]) -> Job:
        self.get_job(owner, job_id)
        return self.store.update_job(job_id, immediate=True, notes=notes or None)

    def retry_failed(self, owner: Owner, job_id: str) -> Job:
        self.get_job(owner, job_id)
        return self.store.retry_failed(job_id)
