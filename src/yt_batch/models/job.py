"""Job-related models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for records persisted in the camelCase layout of ``queue.json``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobStatus(str, Enum):
    """Status of a job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"
    CANCELLED = "cancelled"


# Statuses from which a job may be deleted
DELETABLE_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)
# Statuses from which a job may be cancelled (and removed)
CANCELLABLE_STATUSES = (JobStatus.PENDING, JobStatus.PAUSED)


class UploadInterval(str, Enum):
    """How often a batch of videos is released."""

    DAY = "day"
    TWELVE_HOURS = "12hours"
    SIX_HOURS = "6hours"
    HOUR = "hour"
    THIRTY_MINS = "30mins"
    TEN_MINS = "10mins"
    CUSTOM = "custom"


class TaskProgress(CamelModel):
    """Outcome of one manifest row."""

    index: int
    status: str = "Pending"
    video_id: Optional[str] = None
    file_size: Optional[int] = None
    duration: Optional[float] = None  # Upload duration in seconds
    upload_speed: Optional[float] = None  # Bytes per second


class JobCreate(CamelModel):
    """Request to create a new upload job."""

    user_id: Optional[str] = None
    session_id: str = ""
    csv_path: str
    upload_dir: str

    # Cadence
    upload_interval: Optional[UploadInterval] = None
    videos_per_interval: Optional[int] = None
    custom_interval_minutes: Optional[int] = None
    start_date: Optional[datetime] = None
    videos_per_day: int = 0  # Deprecated, use upload_interval + videos_per_interval

    total_videos: Optional[int] = None
    notes: Optional[str] = None


class JobSubmission(CamelModel):
    """What a signed-in user submits; ownership is added by the service."""

    csv_path: str
    upload_dir: str
    upload_interval: Optional[UploadInterval] = None
    videos_per_interval: Optional[int] = None
    custom_interval_minutes: Optional[int] = None
    start_date: Optional[datetime] = None
    videos_per_day: int = 0
    notes: Optional[str] = None


class NotesUpdate(CamelModel):
    notes: Optional[str] = None


class Job(CamelModel):
    """A batch upload request and its per-row progress."""

    job_id: str = Field(alias="id")
    status: JobStatus = JobStatus.PENDING

    # Ownership
    user_id: Optional[str] = None
    session_id: str = ""

    # Source
    csv_path: str
    upload_dir: str

    # Cadence
    upload_interval: Optional[UploadInterval] = None
    videos_per_interval: Optional[int] = None
    custom_interval_minutes: Optional[int] = None
    start_date: Optional[datetime] = None
    videos_per_day: int = 0

    # Progress tracking
    progress: list[TaskProgress] = Field(default_factory=list)
    total_videos: Optional[int] = None
    error: Optional[str] = None
    notes: Optional[str] = None

    # Earliest instant the worker should look at this job again
    next_run_at: Optional[datetime] = None

    # Timestamps
    created_at: datetime
    updated_at: datetime

    def belongs_to(self, user_id: Optional[str], session_id: Optional[str]) -> bool:
        """Match by user (preferred) or, for jobs created without one, by session."""
        if user_id and self.user_id == user_id:
            return True
        return not self.user_id and bool(session_id) and self.session_id == session_id

    def to_record(self) -> dict:
        """Serialize for the persisted job table."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
