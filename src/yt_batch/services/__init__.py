"""Upload queue services - job store, scheduler, worker, YouTube access."""

from .backends import JsonFileBackend, MemoryBackend
from .job_store import JobStore
from .session_store import SessionStore
from .manifest import CsvManifestSource
from .storage import UploadStorage
from .youtube import GoogleCredentialProvider, YouTubeUploader
from .job_service import JobService, Owner
from .job_runner import JobRunner

__all__ = [
    "CsvManifestSource",
    "GoogleCredentialProvider",
    "JobRunner",
    "JobService",
    "JobStore",
    "JsonFileBackend",
    "MemoryBackend",
    "Owner",
    "SessionStore",
    "UploadStorage",
    "YouTubeUploader",
]
