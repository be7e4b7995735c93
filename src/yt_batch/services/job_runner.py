"""Background worker - claims pending jobs and uploads their due videos."""

import asyncio
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import structlog

from yt_batch.core.config import Settings
from yt_batch.core.exceptions import CredentialError, YtBatchError
from yt_batch.models.job import Job, JobStatus
from yt_batch.models.manifest import ManifestRow, PrivacyStatus
from yt_batch.services import progress as status
from yt_batch.services.job_store import Clock, JobStore, utc_now
from yt_batch.services.manifest import ManifestSource
from yt_batch.services.progress import ProgressTracker
from yt_batch.services.scheduler import (
    Cadence,
    SchedulePlan,
    align_to,
    parse_schedule_time,
    plan_pass,
    publish_day_reached,
    resolve_timezone,
)
from yt_batch.services.session_store import SessionStore
from yt_batch.services.storage import FileCheck, inspect_source, looks_like_windows_path, resolve_source
from yt_batch.services.youtube import CredentialProvider, VideoUploader

logger = structlog.get_logger()

PRIVACY_VALUES = tuple(p.value for p in PrivacyStatus)


def to_publish_at(moment: datetime) -> str:
    """RFC 3339 UTC timestamp as the upload API expects for ``publishAt``."""
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


class JobRunner:
    """Polls the job table and processes one job at a time.

    Uploads within a job run strictly one after another. After a job pass the
    loop polls again straight away; it only sleeps when nothing is ready.
    """

    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        sessions: SessionStore,
        credentials: CredentialProvider,
        manifests: ManifestSource,
        clock: Clock = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the job runner.

        Args:
            settings: Application settings
            store: Job table
            sessions: Session table, re-read before every check and every job pass
            credentials: Turns a session into an authenticated uploader
            manifests: Reads a job's rows
            clock: Current instant (timezone aware)
            sleep: Awaitable sleep, replaced in tests
        """
        self.settings = settings
        self.store = store
        self.sessions = sessions
        self.credentials = credentials
        self.manifests = manifests
        self.tz = resolve_timezone(settings.schedule.timezone)

        self._clock = clock
        self._sleep = sleep
        self._running = False
        self._poll_task: Optional[asyncio.Task] = None
        self._check_count = 0
        self._current_job: Optional[str] = None

    def now(self) -> datetime:
        return self._clock().astimezone(self.tz)

    async def start(self) -> None:
        """Start the job runner."""
        self._running = True

        logger.info(
            "job_runner_started",
            queue_path=str(self.settings.storage.queue_path),
            sessions_path=str(self.settings.storage.sessions_path),
            sessions=len(self.sessions),
            timezone=str(self.tz),
        )

        if self.settings.worker.recover_stale_on_start:
            recovered = self.store.recover_stale()
            if recovered:
                logger.warning("stale_jobs_recovered", count=len(recovered))

        self._poll_task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        """Stop the job runner."""
        self._running = False

        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass

        self.store.flush()
        logger.info("job_runner_stopped")

    async def _poll_loop(self) -> None:
        """Poll for ready jobs and process them."""
        while self._running:
            try:
                worked = await self.run_once()
                if not worked:
                    await self._sleep(self.settings.worker.poll_interval)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("worker_loop_error", error=str(e), exc_info=True)
                await self._sleep(self.settings.worker.error_backoff)

    def _reload_sessions(self) -> None:
        before = len(self.sessions)
        after = self.sessions.reload()
        if after != before:
            logger.info("sessions_reloaded", before=before, after=after)

    async def run_once(self) -> bool:
        """One check of the queue. Returns True if a job was processed."""
        self._check_count += 1
        self._reload_sessions()
        self.store.flush_if_due()

        if self._check_count % max(self.settings.worker.status_log_every, 1) == 0:
            logger.info("queue_status", **self.store.get_queue_stats())

        job = self.store.get_next_pending(self._clock())
        if job is None:
            return False

        await self.process_job(job)
        return True

    async def process_job(self, job: Job) -> Optional[Job]:
        """Claim a polled job and run one processing pass over it.

        Returns None without doing anything if the job stopped being pending
        between the poll and the claim.
        """
        started = time.monotonic()
        claimed = self.store.mark_processing(job.job_id)
        if claimed is None:
            return None

        job = claimed
        self._current_job = job.job_id
        logger.info(
            "job_claimed",
            job_id=job.job_id,
            user_id=job.user_id,
            session_id=job.session_id[:10] if job.session_id else None,
            total_videos=job.total_videos,
            csv_path=job.csv_path,
            upload_dir=job.upload_dir,
        )

        try:
            return await self._process(job, started)

        except YtBatchError as e:
            logger.error("job_failed", job_id=job.job_id, error=e.message, code=e.code)
            return self.store.mark_failed(job.job_id, e.message)

        except Exception as e:
            logger.error("job_processing_error", job_id=job.job_id, error=str(e), exc_info=True)
            return self.store.mark_failed(job.job_id, str(e) or "Unknown error")

        finally:
            self._current_job = None

    def _uploader_for(self, job: Job) -> VideoUploader:
        self._reload_sessions()
        session = self.sessions.resolve(job.session_id, job.user_id)
        if session is None:
            raise CredentialError(
                f"Session not found or invalid. Job sessionId: {job.session_id[:10] or 'N/A'}..., "
                f"userId: {job.user_id or 'N/A'}"
            )
        if session.session_id != job.session_id:
            logger.info(
                "session_resolved_by_user",
                job_id=job.job_id,
                user_id=job.user_id,
                session_id=session.session_id[:10],
            )
        return self.credentials.uploader_for(session)

    def _save(self, job_id: str, tracker: ProgressTracker) -> None:
        self.store.update_progress(job_id, tracker.entries())
        self.store.flush_if_due()

    async def _process(self, job: Job, started: float) -> Optional[Job]:
        uploader = self._uploader_for(job)
        rows = self.manifests.read_rows(job.csv_path)
        now = self.now()

        tracker = ProgressTracker(job.progress)
        tracker.ensure_length(len(rows))

        cadence = Cadence.from_job(job, default_start=job.created_at)
        plan = plan_pass(cadence, [tracker.status(i) for i in range(len(rows))], now)

        if cadence is not None:
            logger.info(
                "job_schedule",
                job_id=job.job_id,
                cadence=cadence.describe(),
                first_slot=plan.slots[0].isoformat() if plan.slots else None,
                last_slot=plan.slots[-1].isoformat() if plan.slots else None,
                window_start=plan.window[0].isoformat(),
                used=plan.used,
                limit=plan.limit,
                due=len(plan.admitted) + len(plan.overflow),
                not_due=len(plan.not_due),
            )

        for index in plan.not_due:
            tracker.record(index, status.deferred_until(plan.slots[index]))
        self._save(job.job_id, tracker)

        admission = plan.admission()
        for index in admission:
            uploaded = await self._run_task(
                job, index, rows[index], plan.slots[index], uploader, tracker, now
            )
            self._save(job.job_id, tracker)
            if uploaded:
                admission.consume()

        leftover = admission.leftover()
        for index in leftover:
            tracker.record(index, status.INTERVAL_LIMIT_REACHED)
        if leftover:
            logger.info(
                "interval_limit_reached",
                job_id=job.job_id,
                limit=plan.limit,
                deferred=len(leftover),
            )

        return self._finish(job, tracker, cadence, plan, leftover, len(rows), started)

    def _finish(
        self,
        job: Job,
        tracker: ProgressTracker,
        cadence: Optional[Cadence],
        plan: SchedulePlan,
        leftover: list[int],
        row_count: int,
        started: float,
    ) -> Optional[Job]:
        summary = tracker.summary()
        duration = round(time.monotonic() - started, 1)
        fields = {"progress": tracker.entries(), "total_videos": row_count}

        logger.info("job_pass_finished", job_id=job.job_id, duration=duration, **summary.as_dict())

        if summary.pending + summary.deferred > 0 and cadence is not None:
            next_run = self._next_run_at(plan, leftover)
            logger.info(
                "job_waiting_for_schedule",
                job_id=job.job_id,
                next_run_at=next_run.isoformat() if next_run else None,
            )
            return self.store.update_job(
                job.job_id, status=JobStatus.PENDING, next_run_at=next_run, **fields
            )

        if summary.succeeded == 0 and summary.failed > 0:
            logger.warning("job_all_failed", job_id=job.job_id, failed=summary.failed)
            return self.store.update_job(
                job.job_id,
                status=JobStatus.FAILED,
                error=f"All {summary.failed} video(s) failed to upload",
                next_run_at=None,
                **fields,
            )

        logger.info(
            "job_completed",
            job_id=job.job_id,
            succeeded=summary.succeeded,
            failed=summary.failed,
            with_errors=summary.failed > 0,
        )
        return self.store.update_job(
            job.job_id, status=JobStatus.COMPLETED, next_run_at=None, **fields
        )

    @staticmethod
    def _next_run_at(plan: SchedulePlan, leftover: list[int]) -> Optional[datetime]:
        """When the job can next make progress: its next slot, or the next window."""
        candidates = [plan.slots[i] for i in plan.not_due if plan.slots[i] is not None]
        if leftover and plan.window:
            candidates.append(plan.window[1])
        if not candidates:
            return None
        return min(candidates).astimezone(timezone.utc)

    async def _run_task(
        self,
        job: Job,
        index: int,
        row: ManifestRow,
        slot: Optional[datetime],
        uploader: VideoUploader,
        tracker: ProgressTracker,
        now: datetime,
    ) -> bool:
        """Validate and upload one row. Returns True only if the video was uploaded."""
        log = logger.bind(job_id=job.job_id, task=index + 1)

        def fail(reason: str) -> bool:
            tracker.record(index, reason)
            log.warning("task_failed", status=reason)
            return False

        missing = row.missing_fields()
        if missing:
            return fail(status.missing_fields(missing))

        privacy = (row.privacy_status or "").strip().lower() or PrivacyStatus.PUBLIC.value
        if privacy not in PRIVACY_VALUES:
            return fail(status.INVALID_PRIVACY)

        publish_at: Optional[datetime] = slot
        if publish_at is None and privacy == PrivacyStatus.PRIVATE.value and row.schedule_time:
            parsed = parse_schedule_time(row.schedule_time)
            if parsed is None:
                return fail(status.INVALID_SCHEDULE)
            parsed = align_to(parsed, now)
            if not publish_day_reached(parsed, now):
                tracker.record(index, status.deferred_until(parsed))
                log.info("task_scheduled_later", publish_at=parsed.isoformat())
                return False
            publish_at = parsed

        # Scheduled publishing requires the video to start out private
        upload_privacy = PrivacyStatus.PRIVATE.value if publish_at else privacy
        body = {
            "snippet": {
                "title": row.youtube_title.strip(),
                "description": row.youtube_description,
            },
            "status": {"privacyStatus": upload_privacy},
        }
        publish_at_text = to_publish_at(publish_at) if publish_at else None
        if publish_at_text:
            body["status"]["publishAt"] = publish_at_text

        if not row.path or not row.path.strip():
            return fail(status.failed("Missing video path in CSV"))

        tracker.record(index, status.CHECKING_FILE)
        self._save(job.job_id, tracker)

        raw_path = row.path.strip()
        source = inspect_source(resolve_source(raw_path, job.upload_dir))
        if source.check == FileCheck.MISSING:
            if looks_like_windows_path(raw_path):
                return fail(status.failed("Missing file (Windows path) - ensure files were copied to server"))
            return fail(status.failed(f"Missing file - {raw_path}"))
        if source.check == FileCheck.NOT_A_FILE:
            return fail(status.failed("Invalid path (not a file)"))
        if source.check == FileCheck.INACCESSIBLE:
            return fail(status.failed(f"Cannot access file - {source.error or 'Unknown error'}"))

        tracker.record(index, status.UPLOADING)
        self._save(job.job_id, tracker)
        log.info("task_upload_started", file=source.path.name, size=source.size, privacy=upload_privacy)

        upload_started = time.monotonic()
        try:
            video_id = await asyncio.to_thread(uploader.insert_video, source.path, body)
        except YtBatchError as e:
            return fail(status.failed(e.message))
        except Exception as e:
            log.error("task_upload_error", error=str(e), exc_info=True)
            return fail(status.failed(str(e) or "Unknown error"))

        duration = time.monotonic() - upload_started
        upload_speed = source.size / duration if source.size is not None and duration > 0 else None

        if row.thumbnail_path and row.thumbnail_path.strip() and video_id:
            await self._upload_thumbnail(job, index, row.thumbnail_path.strip(), video_id, uploader, tracker)

        final_status = status.uploaded(privacy, publish_at)
        if publish_at and privacy != upload_privacy and video_id:
            try:
                await asyncio.to_thread(uploader.update_privacy, video_id, privacy, publish_at_text)
            except Exception as e:
                log.warning("privacy_update_failed", video_id=video_id, privacy=privacy, error=str(e))
                final_status = status.uploaded_privacy_unchanged(privacy)

        tracker.record(
            index,
            final_status,
            video_id=video_id,
            file_size=source.size,
            duration=round(duration, 3),
            upload_speed=upload_speed,
        )
        log.info(
            "task_uploaded",
            video_id=video_id,
            status=final_status,
            duration=round(duration, 1),
            speed_mbps=round(upload_speed / 1024 / 1024, 2) if upload_speed else None,
        )
        return True

    async def _upload_thumbnail(
        self,
        job: Job,
        index: int,
        thumbnail_path: str,
        video_id: str,
        uploader: VideoUploader,
        tracker: ProgressTracker,
    ) -> None:
        thumbnail = inspect_source(resolve_source(thumbnail_path, job.upload_dir))
        if not thumbnail.ok:
            logger.info("thumbnail_skipped", job_id=job.job_id, path=thumbnail_path, check=thumbnail.check)
            return

        tracker.record(index, status.UPLOADING_THUMBNAIL)
        self._save(job.job_id, tracker)
        try:
            await asyncio.to_thread(uploader.set_thumbnail, video_id, thumbnail.path)
        except Exception as e:
            # The video itself is uploaded; a missing thumbnail does not undo that
            logger.warning("thumbnail_upload_failed", job_id=job.job_id, video_id=video_id, error=str(e))
