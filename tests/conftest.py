"""Shared fixtures: in-memory tables, a fixed clock and a fake upload API."""

import csv
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

from yt_batch.core.config import Settings
from yt_batch.core.exceptions import CredentialError, UploadError
from yt_batch.models.session import Session
from yt_batch.services.backends import MemoryBackend
from yt_batch.services.job_runner import JobRunner
from yt_batch.services.job_store import JobStore
from yt_batch.services.manifest import CsvManifestSource
from yt_batch.services.session_store import SessionStore

# Monday noon, so daily slots line up with the release hour
T0 = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)

USER_ID = "creator@example.com"
SESSION_ID = "sess-abcdef1234567890"

MANIFEST_FIELDS = [
    "youtube_title",
    "youtube_description",
    "thumbnail_path",
    "path",
    "scheduleTime",
    "privacyStatus",
]


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeUploader:
    """Records calls instead of talking to YouTube."""

    def __init__(self):
        self.inserted: list[tuple[Path, dict]] = []
        self.thumbnails: list[tuple[str, Path]] = []
        self.privacy_updates: list[tuple[str, str, Optional[str]]] = []
        self.fail_titles: set[str] = set()
        self.fail_privacy_update = False

    def insert_video(self, path: Path, body: dict) -> Optional[str]:
        title = body["snippet"]["title"]
        if title in self.fail_titles:
            raise UploadError("quotaExceeded (HTTP 403)")
        self.inserted.append((path, body))
        return f"vid{len(self.inserted)}"

    def set_thumbnail(self, video_id: str, path: Path) -> None:
        self.thumbnails.append((video_id, path))

    def update_privacy(self, video_id: str, privacy: str, publish_at: Optional[str]) -> None:
        if self.fail_privacy_update:
            raise UploadError("invalidPublishAt (HTTP 400)")
        self.privacy_updates.append((video_id, privacy, publish_at))

    @property
    def titles(self) -> list[str]:
        return [body["snippet"]["title"] for _, body in self.inserted]


class FakeCredentials:
    def __init__(self, uploader: FakeUploader):
        self.uploader = uploader
        self.sessions_used: list[str] = []
        self.error: Optional[str] = None

    def uploader_for(self, session: Session) -> FakeUploader:
        if self.error:
            raise CredentialError(self.error)
        self.sessions_used.append(session.session_id)
        return self.uploader


def session_record(user_id: Optional[str] = USER_ID, refresh_token: Optional[str] = "refresh-1") -> dict:
    tokens = {"access_token": "access-1", "expiry_date": 1709553600000}
    if refresh_token:
        tokens["refresh_token"] = refresh_token
    record = {"authenticated": True, "tokens": tokens}
    if user_id:
        record["userId"] = user_id
    return record


@pytest.fixture
def clock():
    """A clock frozen at ``T0`` that tests can move forward."""
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a temporary data tree, windows in UTC."""
    return Settings(
        storage={"data_dir": str(tmp_path / "data"), "uploads_dir": str(tmp_path / "uploads")},
        schedule={"timezone": "UTC"},
    )


@pytest.fixture
def job_backend():
    return MemoryBackend()


@pytest.fixture
def store(job_backend, clock):
    return JobStore(job_backend, clock=clock, debounce_seconds=1.0)


@pytest.fixture
def session_backend():
    return MemoryBackend({SESSION_ID: session_record()})


@pytest.fixture
def sessions(session_backend):
    return SessionStore(session_backend)


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def credentials(uploader):
    return FakeCredentials(uploader)


@pytest.fixture
def runner(settings, store, sessions, credentials, clock):
    return JobRunner(
        settings=settings,
        store=store,
        sessions=sessions,
        credentials=credentials,
        manifests=CsvManifestSource(),
        clock=clock,
    )


@pytest.fixture
def media_dir(tmp_path):
    directory = tmp_path / "media"
    directory.mkdir()
    return directory


@pytest.fixture
def write_manifest(tmp_path, media_dir):
    """Write a manifest CSV; rows without a ``path`` get a fresh video file."""

    def _write(rows: list[dict], name: str = "metadata.csv", create_files: bool = True) -> Path:
        complete = []
        for i, row in enumerate(rows):
            row = dict(row)
            if "path" not in row:
                video = media_dir / f"video_{i}.mp4"
                if create_files:
                    video.write_bytes(b"\x00" * 2048)
                row["path"] = str(video)
            complete.append(row)

        path = tmp_path / name
        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=MANIFEST_FIELDS)
            writer.writeheader()
            for row in complete:
                writer.writerow({field: row.get(field, "") for field in MANIFEST_FIELDS})
        return path

    return _write


def video_rows(count: int, **extra) -> list[dict]:
    return [
        {"youtube_title": f"Episode {i + 1}", "youtube_description": f"Description {i + 1}", **extra}
        for i in range(count)
    ]
