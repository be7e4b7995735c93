"""Pydantic models for API requests/responses and persisted records."""

from .job import (
    CANCELLABLE_STATUSES,
    DELETABLE_STATUSES,
    Job,
    JobCreate,
    JobStatus,
    JobSubmission,
    NotesUpdate,
    TaskProgress,
    UploadInterval,
)
from .manifest import ManifestRow, PrivacyStatus
from .session import OAuthTokens, Session

__all__ = [
    "CANCELLABLE_STATUSES",
    "DELETABLE_STATUSES",
    "Job",
    "JobCreate",
    "JobStatus",
    "JobSubmission",
    "NotesUpdate",
    "TaskProgress",
    "UploadInterval",
    "ManifestRow",
    "PrivacyStatus",
    "OAuthTokens",
    "Session",
]
