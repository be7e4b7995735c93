"""Per-task progress: status strings, outcome classes and job-level aggregation.

Task status is persisted as a human-readable string. Consumers (stats export,
dashboard) recognise outcomes by substring, so the strings built here are the
canonical spellings and ``classify`` is the single place that reads them back.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional

import structlog

from yt_batch.models.job import TaskProgress

logger = structlog.get_logger()

PENDING = "Pending"
CHECKING_FILE = "Checking if file exists on server..."
UPLOADING = "Uploading..."
UPLOADING_THUMBNAIL = "Uploading thumbnail..."
INTERVAL_LIMIT_REACHED = "Pending - Interval limit reached, will process in next interval"
INVALID_PRIVACY = "Invalid privacy status"
INVALID_SCHEDULE = "Invalid schedule time"

_SUCCESS_MARKERS = ("Uploaded", "Scheduled", "scheduled", "Already uploaded")
_FAILURE_MARKERS = ("Failed", "Missing", "Invalid", "not found", "Cannot access")
_IN_PROGRESS_MARKERS = ("Uploading", "Checking")


class TaskOutcome(str, Enum):
    """Outcome class of a task status string."""

    PENDING = "pending"
    DEFERRED = "deferred"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskOutcome.SUCCEEDED, TaskOutcome.FAILED)


def classify(status: Optional[str]) -> TaskOutcome:
    """Map a status string onto its outcome class."""
    if not status or status == PENDING:
        return TaskOutcome.PENDING
    # Deferral markers mention "Scheduled", so they are matched before success
    if status.startswith(PENDING):
        return TaskOutcome.DEFERRED
    if any(marker in status for marker in _FAILURE_MARKERS):
        return TaskOutcome.FAILED
    if any(marker in status for marker in _IN_PROGRESS_MARKERS):
        return TaskOutcome.IN_PROGRESS
    if any(marker in status for marker in _SUCCESS_MARKERS):
        return TaskOutcome.SUCCEEDED
    return TaskOutcome.PENDING


def is_terminal(status: Optional[str]) -> bool:
    return classify(status).is_terminal


def deferred_until(when: datetime) -> str:
    return f"Pending - Scheduled for {when:%Y-%m-%d %H:%M}"


def uploaded(privacy: str, scheduled_for: Optional[datetime] = None) -> str:
    if scheduled_for is None:
        return f"Uploaded as {privacy}"
    return f"Uploaded & scheduled as {privacy} for {scheduled_for:%Y-%m-%d}"


def uploaded_privacy_unchanged(privacy: str) -> str:
    """Scheduled upload whose follow-up privacy change was rejected."""
    return f"Uploaded as private (scheduled). Change to {privacy} manually after publish."


def failed(reason: str) -> str:
    return f"Failed: {reason}"


def missing_fields(fields: Iterable[str]) -> str:
    return f"Missing required fields: {', '.join(fields)}"


@dataclass(frozen=True)
class ProgressSummary:
    """Counts of tasks per outcome class."""

    total: int
    succeeded: int
    failed: int
    pending: int
    deferred: int
    in_progress: int

    @property
    def remaining(self) -> int:
        """Tasks that a later pass may still act on."""
        return self.pending + self.deferred + self.in_progress

    @property
    def is_fully_processed(self) -> bool:
        return self.remaining == 0

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "pending": self.pending,
            "deferred": self.deferred,
            "in_progress": self.in_progress,
        }


def summarize(progress: Iterable[TaskProgress]) -> ProgressSummary:
    counts = {outcome: 0 for outcome in TaskOutcome}
    total = 0
    for entry in progress:
        counts[classify(entry.status)] += 1
        total += 1
    return ProgressSummary(
        total=total,
        succeeded=counts[TaskOutcome.SUCCEEDED],
        failed=counts[TaskOutcome.FAILED],
        pending=counts[TaskOutcome.PENDING],
        deferred=counts[TaskOutcome.DEFERRED],
        in_progress=counts[TaskOutcome.IN_PROGRESS],
    )


class ProgressTracker:
    """Index-aligned task progress for one job during a processing pass.

    Statuses only move forward: once a task reaches a terminal outcome,
    further writes to it are ignored.
    """

    def __init__(self, progress: Iterable[TaskProgress] = ()):
        self._entries: list[TaskProgress] = []
        for position, entry in enumerate(progress):
            if entry.index != position:
                entry = entry.model_copy(update={"index": position})
            self._entries.append(entry.model_copy())

    def __len__(self) -> int:
        return len(self._entries)

    def ensure_length(self, count: int) -> None:
        """Append ``Pending`` entries until there is one per manifest row."""
        while len(self._entries) < count:
            self._entries.append(TaskProgress(index=len(self._entries), status=PENDING))

    def status(self, index: int) -> str:
        return self._entries[index].status

    def outcome(self, index: int) -> TaskOutcome:
        return classify(self._entries[index].status)

    def is_terminal(self, index: int) -> bool:
        return self.outcome(index).is_terminal

    def record(
        self,
        index: int,
        status: str,
        *,
        video_id: Optional[str] = None,
        file_size: Optional[int] = None,
        duration: Optional[float] = None,
        upload_speed: Optional[float] = None,
    ) -> bool:
        """Set a task's status (and metrics). Returns False if the task was already final."""
        self.ensure_length(index + 1)
        current = self._entries[index]
        if classify(current.status).is_terminal:
            logger.warning(
                "task_status_regression_ignored",
                index=index,
                current=current.status,
                attempted=status,
            )
            return False

        self._entries[index] = TaskProgress(
            index=index,
            status=status,
            video_id=video_id,
            file_size=file_size,
            duration=duration,
            upload_speed=upload_speed,
        )
        return True

    def reset_failed(self) -> int:
        """Return failed tasks to ``Pending``. Returns how many were reset."""
        reset = 0
        for position, entry in enumerate(self._entries):
            if classify(entry.status) == TaskOutcome.FAILED:
                self._entries[position] = TaskProgress(index=position, status=PENDING)
                reset += 1
        return reset

    def reset_in_progress(self) -> int:
        """Return tasks interrupted mid-upload to ``Pending``."""
        reset = 0
        for position, entry in enumerate(self._entries):
            if classify(entry.status) == TaskOutcome.IN_PROGRESS:
                self._entries[position] = TaskProgress(index=position, status=PENDING)
                reset += 1
        return reset

    def summary(self) -> ProgressSummary:
        return summarize(self._entries)

    def entries(self) -> list[TaskProgress]:
        return [entry.model_copy() for entry in self._entries]
