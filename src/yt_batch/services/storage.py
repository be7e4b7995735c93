"""Per-job working directories and source file checks."""

import os
import re
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import structlog

logger = structlog.get_logger()

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:")


def safe_owner(user_id: Optional[str], session_id: Optional[str] = None) -> str:
    """Filesystem-safe directory name for a job owner."""
    name = _UNSAFE_CHARS.sub("_", user_id or session_id or "anonymous")
    # "." and ".." are path components, not names
    return name if name.strip(".") else name.replace(".", "_")


def looks_like_windows_path(value: str) -> bool:
    return "\\" in value or bool(_WINDOWS_DRIVE.match(value))


class UploadStorage:
    """Manages the staged media tree under the uploads directory.

    Layout: ``<uploads>/<safe owner>/<job id>/{videos,thumbnails}``.
    """

    def __init__(self, uploads_dir: str = "uploads"):
        """
        Initialize upload storage.

        Args:
            uploads_dir: Root directory for staged job media
        """
        self.root = Path(uploads_dir)

    def job_dir(self, user_id: Optional[str], job_id: str, session_id: Optional[str] = None) -> Path:
        return self.root / safe_owner(user_id, session_id) / job_id

    def create_job_dir(
        self, user_id: Optional[str], job_id: str, session_id: Optional[str] = None
    ) -> Path:
        """
        Create the working directory for a job.

        Args:
            user_id: Owning user (preferred key)
            job_id: Job ID
            session_id: Owning session, used when there is no user

        Returns:
            Path to the job directory
        """
        directory = self.job_dir(user_id, job_id, session_id)
        (directory / "videos").mkdir(parents=True, exist_ok=True)
        (directory / "thumbnails").mkdir(parents=True, exist_ok=True)
        return directory

    def delete_job_dir(
        self, user_id: Optional[str], job_id: str, session_id: Optional[str] = None
    ) -> bool:
        """
        Delete a job's working directory.

        The user-keyed path is tried first, then the session-keyed path used
        by jobs created before sign-in was tied to a user.

        Args:
            user_id: Owning user
            job_id: Job ID
            session_id: Owning session

        Returns:
            True if a directory was removed
        """
        candidates = []
        if user_id:
            candidates.append(self.root / safe_owner(user_id) / job_id)
        if session_id:
            candidates.append(self.root / safe_owner(None, session_id) / job_id)

        for directory in candidates:
            if directory.is_dir():
                shutil.rmtree(directory)
                logger.info("job_dir_deleted", job_id=job_id, path=str(directory))
                return True
        return False


class FileCheck(str, Enum):
    """Result of inspecting a source path named by a manifest row."""

    OK = "ok"
    MISSING = "missing"
    NOT_A_FILE = "not_a_file"
    INACCESSIBLE = "inaccessible"


@dataclass
class SourceFile:
    path: Path
    check: FileCheck
    size: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.check == FileCheck.OK


def resolve_source(value: str, base_dir: Optional[str] = None) -> Path:
    """Absolute paths are used as-is; relative ones are taken from the job's working dir."""
    path = Path(value)
    if path.is_absolute() or not base_dir:
        return path
    return Path(base_dir) / path


def inspect_source(path: Path) -> SourceFile:
    """Existence, type and size of a file about to be uploaded."""
    if not path.exists():
        return SourceFile(path=path, check=FileCheck.MISSING)

    try:
        stat = os.stat(path)
    except OSError as e:
        return SourceFile(path=path, check=FileCheck.INACCESSIBLE, error=e.strerror or str(e))

    if not path.is_file():
        return SourceFile(path=path, check=FileCheck.NOT_A_FILE)
    return SourceFile(path=path, check=FileCheck.OK, size=stat.st_size)
