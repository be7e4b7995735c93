"""Tests for interval scheduling."""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import T0
from yt_batch.models.job import Job, UploadInterval
from yt_batch.services.scheduler import (
    Admission,
    Cadence,
    anchor,
    current_window,
    interval_minutes,
    parse_schedule_time,
    plan_pass,
    publish_day_reached,
    schedule_slots,
)


def make_job(**fields) -> Job:
    return Job(
        job_id="job-1",
        csv_path="/tmp/metadata.csv",
        upload_dir="/tmp",
        created_at=T0,
        updated_at=T0,
        **fields,
    )


def test_interval_lengths():
    """Each interval maps to its window length; custom falls back to a day."""
    assert interval_minutes(UploadInterval.DAY) == 1440
    assert interval_minutes(UploadInterval.TWELVE_HOURS) == 720
    assert interval_minutes(UploadInterval.SIX_HOURS) == 360
    assert interval_minutes(UploadInterval.HOUR) == 60
    assert interval_minutes(UploadInterval.THIRTY_MINS) == 30
    assert interval_minutes(UploadInterval.TEN_MINS) == 10
    assert interval_minutes(UploadInterval.CUSTOM, 45) == 45
    assert interval_minutes(UploadInterval.CUSTOM) == 1440


def test_daily_anchor_is_noon():
    """Daily jobs release at noon on the start date, whatever time they started."""
    cadence = Cadence(UploadInterval.DAY, 2, datetime(2024, 3, 4, 8, 17, 45, tzinfo=timezone.utc))
    assert anchor(cadence, T0) == datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)


def test_other_anchors_truncate_to_minute():
    """Non-daily anchors keep the start time, without seconds."""
    cadence = Cadence(UploadInterval.HOUR, 2, datetime(2024, 3, 4, 8, 17, 45, tzinfo=timezone.utc))
    assert anchor(cadence, T0) == datetime(2024, 3, 4, 8, 17, tzinfo=timezone.utc)


def test_slots_step_per_window():
    """Tasks share a slot within a window and step by one window length."""
    cadence = Cadence(UploadInterval.HOUR, 2, T0)
    slots = schedule_slots(cadence, 5, T0)
    assert slots == [
        T0,
        T0,
        T0 + timedelta(hours=1),
        T0 + timedelta(hours=1),
        T0 + timedelta(hours=2),
    ]


def test_wall_clock_windows():
    """Fixed intervals use calendar boundaries."""
    now = datetime(2024, 3, 4, 14, 47, tzinfo=timezone.utc)

    def window(interval):
        return current_window(Cadence(interval, 1, T0), now)

    assert window(UploadInterval.DAY)[0] == datetime(2024, 3, 4, 0, 0, tzinfo=timezone.utc)
    assert window(UploadInterval.TWELVE_HOURS)[0] == datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)
    assert window(UploadInterval.SIX_HOURS)[0] == datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)
    assert window(UploadInterval.HOUR)[0] == datetime(2024, 3, 4, 14, 0, tzinfo=timezone.utc)
    assert window(UploadInterval.THIRTY_MINS)[0] == datetime(2024, 3, 4, 14, 30, tzinfo=timezone.utc)
    assert window(UploadInterval.TEN_MINS) == (
        datetime(2024, 3, 4, 14, 40, tzinfo=timezone.utc),
        datetime(2024, 3, 4, 14, 50, tzinfo=timezone.utc),
    )


def test_custom_window_counts_from_start():
    """Custom windows are multiples of the custom length from the job start."""
    start = datetime(2024, 3, 4, 9, 5, tzinfo=timezone.utc)
    cadence = Cadence(UploadInterval.CUSTOM, 1, start, custom_minutes=90)
    now = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)

    window_start, window_end = current_window(cadence, now)

    assert window_start == datetime(2024, 3, 4, 10, 35, tzinfo=timezone.utc)
    assert window_end == datetime(2024, 3, 4, 12, 5, tzinfo=timezone.utc)


@pytest.mark.parametrize("interval", list(UploadInterval))
@pytest.mark.parametrize("per_interval", [1, 3])
def test_never_admits_more_than_quota(interval, per_interval):
    """However many tasks are due, one plan admits at most the window quota."""
    start = T0 - timedelta(days=3)
    cadence = Cadence(interval, per_interval, start, custom_minutes=25)
    statuses = ["Pending"] * 40

    plan = plan_pass(cadence, statuses, T0)

    assert len(plan.admitted) <= per_interval

    # Even when every admitted upload succeeds
    admission = plan.admission()
    taken = []
    for index in admission:
        taken.append(index)
        admission.consume()
    assert len(taken) <= per_interval


def test_daily_scenario():
    """10 rows, 3 per day: window 0 first, nothing more the same day, next 3 the day after."""
    cadence = Cadence(UploadInterval.DAY, 3, T0)
    statuses = ["Pending"] * 10

    first = plan_pass(cadence, statuses, T0)
    assert first.admitted == [0, 1, 2]
    assert first.overflow == []
    assert first.not_due == [3, 4, 5, 6, 7, 8, 9]

    for i in first.admitted:
        statuses[i] = "Uploaded & scheduled as public for 2024-03-04"

    again = plan_pass(cadence, statuses, T0)
    assert again.admitted == []
    assert again.used == 3
    assert again.remaining == 0

    next_day = plan_pass(cadence, statuses, T0 + timedelta(days=1))
    assert next_day.admitted == [3, 4, 5]
    assert next_day.used == 0


def test_only_successes_use_quota():
    """A failed task in the window leaves its capacity for others."""
    cadence = Cadence(UploadInterval.DAY, 2, T0)
    statuses = ["Failed: Missing file - /a.mp4", "Pending", "Pending", "Pending"]

    plan = plan_pass(cadence, statuses, T0 + timedelta(days=1))

    # Tasks 0-1 are yesterday's, tasks 2-3 today's; nothing succeeded today
    assert plan.used == 0
    assert plan.admitted == [1, 2]
    assert plan.overflow == [3]


def test_deferred_markers_do_not_count_as_success():
    """A "Pending - Scheduled for" status is not mistaken for a scheduled upload."""
    cadence = Cadence(UploadInterval.DAY, 1, T0)
    statuses = ["Pending - Scheduled for 2024-03-04 12:00", "Pending"]

    plan = plan_pass(cadence, statuses, T0)

    assert plan.used == 0
    assert plan.admitted == [0]


def test_unscheduled_admits_every_open_task():
    statuses = ["Uploaded as public", "Pending", "Failed: boom", "Pending"]
    plan = plan_pass(None, statuses, T0)
    assert plan.admitted == [1, 3]
    assert plan.limit is None


def test_admission_refills_after_failure():
    """A candidate that does not consume lets the next one through."""
    admission = Admission([4, 5, 6, 7], remaining=2)
    taken = []
    for index in admission:
        taken.append(index)
        if index != 4:
            admission.consume()

    assert taken == [4, 5, 6]
    assert admission.leftover() == [7]


def test_cadence_from_legacy_videos_per_day():
    """Jobs carrying only videosPerDay schedule daily."""
    job = make_job(videos_per_day=4, start_date=T0)
    cadence = Cadence.from_job(job, default_start=T0)
    assert cadence.interval == UploadInterval.DAY
    assert cadence.per_interval == 4


def test_cadence_absent_without_interval():
    assert Cadence.from_job(make_job(), default_start=T0) is None
    assert Cadence.from_job(make_job(upload_interval=UploadInterval.HOUR), default_start=T0) is None


def test_cadence_defaults_start_to_given_instant():
    job = make_job(upload_interval=UploadInterval.HOUR, videos_per_interval=2)
    assert Cadence.from_job(job, default_start=T0).start_date == T0


@pytest.mark.parametrize(
    "text,expected",
    [
        ("2023-12-25 14:30", datetime(2023, 12, 25, 14, 30)),
        ("12/25/2023 02:30 PM", datetime(2023, 12, 25, 14, 30)),
        ("Dec 25 2023 02:30 PM", datetime(2023, 12, 25, 14, 30)),
        ("25 Dec 2023 14:30", datetime(2023, 12, 25, 14, 30)),
        ("2023-12-25T14:30:00Z", datetime(2023, 12, 25, 14, 30, tzinfo=timezone.utc)),
    ],
)
def test_parse_schedule_time(text, expected):
    assert parse_schedule_time(text) == expected


def test_parse_schedule_time_rejects_garbage():
    assert parse_schedule_time("next tuesday") is None
    assert parse_schedule_time("   ") is None


def test_publish_day_reached_compares_calendar_days():
    now = datetime(2024, 3, 4, 8, 0, tzinfo=timezone.utc)
    assert publish_day_reached(datetime(2024, 3, 4, 23, 0, tzinfo=timezone.utc), now)
    assert not publish_day_reached(datetime(2024, 3, 5, 0, 30, tzinfo=timezone.utc), now)
