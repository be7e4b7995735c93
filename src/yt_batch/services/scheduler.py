"""Interval scheduling: which tasks of a job may run now.

Every task gets a scheduled instant from its position in the manifest:
``anchor + (index // videos_per_interval) * window_length``. A task is due once
that instant has passed. How many due tasks may run is capped per *current
window*, and the current window is found differently depending on the interval:

* ``day``, ``12hours``, ``6hours``, ``hour``, ``30mins``, ``10mins`` windows are
  aligned to the wall clock (midnight, top of the hour, ...).
* ``custom`` windows are multiples of the custom length counted from the job's
  own start date.

Only successful uploads whose scheduled instant falls inside the current
window use up its capacity, so a failed task frees its slot for the next one.

Nothing here touches the store or the network; ``now`` is always passed in.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Iterator, Optional, Sequence
from zoneinfo import ZoneInfo

from yt_batch.models.job import Job, UploadInterval
from yt_batch.services.progress import TaskOutcome, classify

INTERVAL_MINUTES = {
    UploadInterval.DAY: 1440,
    UploadInterval.TWELVE_HOURS: 720,
    UploadInterval.SIX_HOURS: 360,
    UploadInterval.HOUR: 60,
    UploadInterval.THIRTY_MINS: 30,
    UploadInterval.TEN_MINS: 10,
}
DEFAULT_INTERVAL_MINUTES = 1440
DAILY_RELEASE_HOUR = 12

# Accepted spellings of a row's explicit scheduleTime
SCHEDULE_TIME_FORMATS = (
    "%Y-%m-%d %H:%M",  # 2023-12-25 14:30
    "%m/%d/%Y %I:%M %p",  # 12/25/2023 02:30 PM
    "%b %d %Y %I:%M %p",  # Dec 25 2023 02:30 PM / Dec 5 2023 2:30 PM
    "%d %b %Y %H:%M",  # 25 Dec 2023 14:30
)


def resolve_timezone(name: Optional[str] = None) -> tzinfo:
    """The zone wall-clock windows are computed in. Host local zone by default."""
    if name:
        if name.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(name)
    return datetime.now().astimezone().tzinfo


def interval_minutes(interval: UploadInterval, custom_minutes: Optional[int] = None) -> int:
    if interval == UploadInterval.CUSTOM:
        return custom_minutes or DEFAULT_INTERVAL_MINUTES
    return INTERVAL_MINUTES.get(interval, DEFAULT_INTERVAL_MINUTES)


def align_to(moment: datetime, reference: datetime) -> datetime:
    """Express ``moment`` in the same clock as ``reference``."""
    if reference.tzinfo is None:
        if moment.tzinfo is None:
            return moment
        return moment.astimezone().replace(tzinfo=None)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=reference.tzinfo)
    return moment.astimezone(reference.tzinfo)


@dataclass(frozen=True)
class Cadence:
    """N videos released per interval, starting from ``start_date``."""

    interval: UploadInterval
    per_interval: int
    start_date: datetime
    custom_minutes: Optional[int] = None

    @classmethod
    def from_job(cls, job: Job, default_start: datetime) -> Optional["Cadence"]:
        """The job's cadence, or None if the job is not interval-scheduled.

        Jobs written before interval scheduling carry only ``videos_per_day``;
        those are treated as a daily cadence.
        """
        interval = job.upload_interval
        if interval is None and job.videos_per_day > 0:
            interval = UploadInterval.DAY
        per_interval = job.videos_per_interval or job.videos_per_day or 0

        if interval is None or per_interval <= 0:
            return None

        return cls(
            interval=interval,
            per_interval=per_interval,
            start_date=job.start_date or default_start,
            custom_minutes=job.custom_interval_minutes,
        )

    @property
    def window_minutes(self) -> int:
        return interval_minutes(self.interval, self.custom_minutes)

    @property
    def window_length(self) -> timedelta:
        return timedelta(minutes=self.window_minutes)

    def describe(self) -> str:
        unit = {
            UploadInterval.DAY: "day",
            UploadInterval.TWELVE_HOURS: "12 hours",
            UploadInterval.SIX_HOURS: "6 hours",
            UploadInterval.HOUR: "hour",
            UploadInterval.THIRTY_MINS: "30 minutes",
            UploadInterval.TEN_MINS: "10 minutes",
        }.get(self.interval, f"{self.window_minutes} minutes")
        return f"{self.per_interval} per {unit}"


def anchor(cadence: Cadence, now: datetime) -> datetime:
    """First release instant: start truncated to the minute, noon for daily jobs."""
    start = align_to(cadence.start_date, now).replace(second=0, microsecond=0)
    if cadence.interval == UploadInterval.DAY:
        start = start.replace(hour=DAILY_RELEASE_HOUR, minute=0)
    return start


def schedule_slots(cadence: Cadence, count: int, now: datetime) -> list[datetime]:
    """Scheduled instant of each task index."""
    first = anchor(cadence, now)
    length = cadence.window_length
    return [first + (i // cadence.per_interval) * length for i in range(count)]


def current_window(cadence: Cadence, now: datetime) -> tuple[datetime, datetime]:
    """[start, end) of the window containing ``now``."""
    interval = cadence.interval

    if interval == UploadInterval.CUSTOM:
        length = cadence.window_length
        origin = align_to(cadence.start_date, now)
        elapsed = (now - origin) // length
        start = origin + elapsed * length
        return start, start + length

    if interval == UploadInterval.TWELVE_HOURS:
        start = now.replace(hour=now.hour // 12 * 12, minute=0, second=0, microsecond=0)
        return start, start + timedelta(hours=12)
    if interval == UploadInterval.SIX_HOURS:
        start = now.replace(hour=now.hour // 6 * 6, minute=0, second=0, microsecond=0)
        return start, start + timedelta(hours=6)
    if interval == UploadInterval.HOUR:
        start = now.replace(minute=0, second=0, microsecond=0)
        return start, start + timedelta(hours=1)
    if interval == UploadInterval.THIRTY_MINS:
        start = now.replace(minute=now.minute // 30 * 30, second=0, microsecond=0)
        return start, start + timedelta(minutes=30)
    if interval == UploadInterval.TEN_MINS:
        start = now.replace(minute=now.minute // 10 * 10, second=0, microsecond=0)
        return start, start + timedelta(minutes=10)

    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


@dataclass
class SchedulePlan:
    """Result of planning one processing pass."""

    slots: list[Optional[datetime]]
    window: Optional[tuple[datetime, datetime]] = None
    limit: Optional[int] = None  # Capacity of the current window, None if unlimited
    used: int = 0  # Successes already counted against the current window
    admitted: list[int] = field(default_factory=list)
    overflow: list[int] = field(default_factory=list)  # Due, but over capacity
    not_due: list[int] = field(default_factory=list)

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(self.limit - self.used, 0)

    def admission(self) -> "Admission":
        return Admission(self.admitted + self.overflow, self.remaining)


def plan_pass(
    cadence: Optional[Cadence],
    statuses: Sequence[str],
    now: datetime,
    count: Optional[int] = None,
) -> SchedulePlan:
    """Decide which task indices this pass may attempt.

    Tasks already in a terminal outcome are never returned.
    """
    count = len(statuses) if count is None else count
    padded = list(statuses[:count]) + ["Pending"] * (count - len(statuses))
    open_tasks = [i for i in range(count) if not classify(padded[i]).is_terminal]

    if cadence is None:
        return SchedulePlan(slots=[None] * count, admitted=open_tasks)

    slots = schedule_slots(cadence, count, now)
    window_start, window_end = current_window(cadence, now)

    used = sum(
        1
        for i in range(count)
        if window_start <= slots[i] < window_end
        and classify(padded[i]) == TaskOutcome.SUCCEEDED
    )
    remaining = max(cadence.per_interval - used, 0)

    due = [i for i in open_tasks if slots[i] <= now]
    not_due = [i for i in open_tasks if slots[i] > now]

    return SchedulePlan(
        slots=list(slots),
        window=(window_start, window_end),
        limit=cadence.per_interval,
        used=used,
        admitted=due[:remaining],
        overflow=due[remaining:],
        not_due=not_due,
    )


class Admission:
    """Hands out due tasks while window capacity remains.

    Capacity is only spent by ``consume()``, which the caller invokes after a
    successful upload; a failed task lets the next due task through.
    """

    def __init__(self, candidates: Sequence[int], remaining: Optional[int]):
        self._queue = deque(candidates)
        self._remaining = remaining

    @property
    def exhausted(self) -> bool:
        return self._remaining is not None and self._remaining <= 0

    def __iter__(self) -> Iterator[int]:
        while self._queue and not self.exhausted:
            yield self._queue.popleft()

    def consume(self) -> None:
        if self._remaining is not None:
            self._remaining -= 1

    def leftover(self) -> list[int]:
        """Due tasks that were not reached this pass."""
        return list(self._queue)


def parse_schedule_time(text: Optional[str]) -> Optional[datetime]:
    """Parse a row's explicit scheduleTime, or None if it matches no known format."""
    if not text or not text.strip():
        return None
    value = text.strip()

    for fmt in SCHEDULE_TIME_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue

    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def publish_day_reached(publish_at: datetime, now: datetime) -> bool:
    """True once the calendar day of ``publish_at`` is today or earlier."""
    publish_day: date = align_to(publish_at, now).date()
    return publish_day <= now.date()
