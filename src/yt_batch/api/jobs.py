"""Job management API endpoints."""

from typing import Literal

import structlog
from fastapi import APIRouter, Response

from yt_batch.api.deps import JobServiceDep, OwnerDep
from yt_batch.models.job import Job, JobStatus, JobSubmission, NotesUpdate

logger = structlog.get_logger()

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


@router.post("", response_model=Job)
async def submit_job(
    request: JobSubmission,
    service: JobServiceDep,
    owner: OwnerDep,
) -> Job:
    """Queue a new upload job."""
    job = service.submit(owner, request)
    logger.info("job_submitted", job_id=job.job_id, user_id=owner.user_id)
    return job


@router.get("", response_model=list[Job])
async def list_jobs(
    service: JobServiceDep,
    owner: OwnerDep,
    status: JobStatus | None = None,
) -> list[Job]:
    """List the caller's jobs, optionally filtered by status."""
    jobs = service.list_jobs(owner)
    if status:
        jobs = [j for j in jobs if j.status == status]
    return jobs


@router.get("/stats")
async def export_stats(
    service: JobServiceDep,
    owner: OwnerDep,
    format: Literal["json", "csv"] = "json",
):
    """Job and video counts for the caller, as JSON or a CSV download."""
    if format == "csv":
        return Response(
            content=service.stats_csv(owner),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="yt-batch-stats.csv"'},
        )
    return service.stats(owner)


@router.delete("")
async def delete_finished_jobs(
    service: JobServiceDep,
    owner: OwnerDep,
) -> dict:
    """Delete every completed, failed or cancelled job of the caller."""
    removed = service.delete_all_terminal(owner)
    return {"deleted": len(removed), "jobIds": [job.job_id for job in removed]}


@router.get("/{job_id}", response_model=Job)
async def get_job(
    job_id: str,
    service: JobServiceDep,
    owner: OwnerDep,
) -> Job:
    """Get a specific job."""
    return service.get_job(owner, job_id)


@router.post("/{job_id}/pause", response_model=Job)
async def pause_job(job_id: str, service: JobServiceDep, owner: OwnerDep) -> Job:
    return service.pause(owner, job_id)


@router.post("/{job_id}/resume", response_model=Job)
async def resume_job(job_id: str, service: JobServiceDep, owner: OwnerDep) -> Job:
    return service.resume(owner, job_id)


@router.post("/{job_id}/cancel")
async def cancel_job(job_id: str, service: JobServiceDep, owner: OwnerDep) -> dict:
    """Cancel a pending or paused job. The job is removed."""
    service.cancel(owner, job_id)
    return {"success": True, "message": "Job cancelled and deleted"}


@router.post("/{job_id}/retry", response_model=Job)
async def retry_job(job_id: str, service: JobServiceDep, owner: OwnerDep) -> Job:
    """Put failed videos of a job back in the queue."""
    return service.retry_failed(owner, job_id)


@router.put("/{job_id}/notes", response_model=Job)
async def update_notes(
    job_id: str,
    request: NotesUpdate,
    service: JobServiceDep,
    owner: OwnerDep,
) -> Job:
    return service.update_notes(owner, job_id, request.notes)


@router.delete("/{job_id}")
async def delete_job(job_id: str, service: JobServiceDep, owner: OwnerDep) -> dict:
    """Delete a finished job and its staged files."""
    service.delete(owner, job_id)
    return {"success": True, "message": "Job deleted"}
