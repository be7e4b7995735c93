"""Tests for the upload worker."""

import asyncio
from datetime import timedelta

from conftest import SESSION_ID, T0, USER_ID, video_rows
from yt_batch.models.job import JobCreate, JobStatus, UploadInterval
from yt_batch.services import progress


def submit(store, csv_path, **fields):
    job = store.create_job(
        JobCreate(
            user_id=USER_ID,
            session_id=SESSION_ID,
            csv_path=str(csv_path),
            upload_dir=str(csv_path.parent),
            **fields,
        )
    )
    return job.job_id


def run_pass(runner, store, job_id):
    return asyncio.run(runner.process_job(store.get_job(job_id)))


def statuses(store, job_id):
    return [p.status for p in store.get_job(job_id).progress]


def test_unscheduled_job_uploads_everything(runner, store, uploader, write_manifest):
    """Without a cadence every row is uploaded in one pass and the job completes."""
    csv_path = write_manifest(video_rows(4))
    job_id = submit(store, csv_path, total_videos=4)

    job = run_pass(runner, store, job_id)

    assert job.status == JobStatus.COMPLETED
    assert statuses(store, job_id) == ["Uploaded as public"] * 4
    assert uploader.titles == ["Episode 1", "Episode 2", "Episode 3", "Episode 4"]
    assert all(body["status"] == {"privacyStatus": "public"} for _, body in uploader.inserted)


def test_upload_metrics_are_recorded(runner, store, write_manifest):
    csv_path = write_manifest(video_rows(1))
    job_id = submit(store, csv_path)

    run_pass(runner, store, job_id)

    entry = store.get_job(job_id).progress[0]
    assert entry.video_id == "vid1"
    assert entry.file_size == 2048
    assert entry.duration is not None


def test_daily_cadence_releases_three_per_day(runner, store, uploader, clock, write_manifest):
    """10 rows at 3 per day: 3 today, none more today, the next 3 tomorrow."""
    csv_path = write_manifest(video_rows(10))
    job_id = submit(
        store,
        csv_path,
        upload_interval=UploadInterval.DAY,
        videos_per_interval=3,
        start_date=T0,
    )

    job = run_pass(runner, store, job_id)

    assert job.status == JobStatus.PENDING
    assert uploader.titles == ["Episode 1", "Episode 2", "Episode 3"]
    current = statuses(store, job_id)
    assert current[:3] == ["Uploaded & scheduled as public for 2024-03-04"] * 3
    assert current[3] == "Pending - Scheduled for 2024-03-05 12:00"
    assert current[9] == "Pending - Scheduled for 2024-03-07 12:00"
    assert job.next_run_at == T0 + timedelta(days=1)

    run_pass(runner, store, job_id)
    assert len(uploader.inserted) == 3

    clock.advance(days=1)
    job = run_pass(runner, store, job_id)

    assert uploader.titles[3:] == ["Episode 4", "Episode 5", "Episode 6"]
    assert job.status == JobStatus.PENDING


def test_waiting_job_is_not_claimed(runner, store, clock, write_manifest):
    csv_path = write_manifest(video_rows(4))
    job_id = submit(
        store, csv_path, upload_interval=UploadInterval.DAY, videos_per_interval=2, start_date=T0
    )

    assert asyncio.run(runner.run_once()) is True
    assert asyncio.run(runner.run_once()) is False

    clock.advance(days=1)
    assert asyncio.run(runner.run_once()) is True
    assert store.get_job(job_id).status == JobStatus.COMPLETED


def test_private_row_with_cadence_is_scheduled(runner, store, uploader, write_manifest):
    """Scheduled uploads start private with publishAt at the computed slot."""
    csv_path = write_manifest(video_rows(1, privacyStatus="private"))
    job_id = submit(
        store, csv_path, upload_interval=UploadInterval.HOUR, videos_per_interval=1, start_date=T0
    )

    job = run_pass(runner, store, job_id)

    _, body = uploader.inserted[0]
    assert body["status"] == {"privacyStatus": "private", "publishAt": "2024-03-04T12:00:00.000Z"}
    assert uploader.privacy_updates == []
    assert job.status == JobStatus.COMPLETED
    assert statuses(store, job_id) == ["Uploaded & scheduled as private for 2024-03-04"]


def test_public_row_with_cadence_is_switched_after_upload(runner, store, uploader, write_manifest):
    csv_path = write_manifest(video_rows(1, privacyStatus="Public"))
    job_id = submit(
        store, csv_path, upload_interval=UploadInterval.HOUR, videos_per_interval=1, start_date=T0
    )

    run_pass(runner, store, job_id)

    _, body = uploader.inserted[0]
    assert body["status"]["privacyStatus"] == "private"
    assert uploader.privacy_updates == [("vid1", "public", "2024-03-04T12:00:00.000Z")]


def test_rejected_privacy_switch_still_counts_as_uploaded(runner, store, uploader, write_manifest):
    uploader.fail_privacy_update = True
    csv_path = write_manifest(video_rows(1, privacyStatus="unlisted"))
    job_id = submit(
        store, csv_path, upload_interval=UploadInterval.HOUR, videos_per_interval=1, start_date=T0
    )

    job = run_pass(runner, store, job_id)

    assert job.status == JobStatus.COMPLETED
    assert statuses(store, job_id) == [
        "Uploaded as private (scheduled). Change to unlisted manually after publish."
    ]


def test_missing_description_fails_job(runner, store, uploader, write_manifest):
    """A job whose only row is invalid ends failed."""
    csv_path = write_manifest([{"youtube_title": "Lonely", "youtube_description": "  "}])
    job_id = submit(store, csv_path)

    job = run_pass(runner, store, job_id)

    assert statuses(store, job_id) == ["Missing required fields: youtube_description"]
    assert job.status == JobStatus.FAILED
    assert job.error == "All 1 video(s) failed to upload"
    assert uploader.inserted == []


def test_task_failures_do_not_stop_the_pass(runner, store, uploader, write_manifest, media_dir):
    rows = video_rows(5)
    rows[0]["privacyStatus"] = "friends-only"
    rows[1]["path"] = str(media_dir / "nowhere.mp4")
    rows[2]["path"] = "C:\\Users\\me\\Videos\\clip.mp4"
    rows[3]["path"] = str(media_dir)
    csv_path = write_manifest(rows)
    job_id = submit(store, csv_path)

    job = run_pass(runner, store, job_id)

    assert statuses(store, job_id) == [
        "Invalid privacy status",
        f"Failed: Missing file - {media_dir / 'nowhere.mp4'}",
        "Failed: Missing file (Windows path) - ensure files were copied to server",
        "Failed: Invalid path (not a file)",
        "Uploaded as public",
    ]
    assert job.status == JobStatus.COMPLETED


def test_missing_path_column(runner, store, write_manifest):
    csv_path = write_manifest([{"youtube_title": "A", "youtube_description": "B", "path": ""}])
    job_id = submit(store, csv_path)

    run_pass(runner, store, job_id)

    assert statuses(store, job_id) == ["Failed: Missing video path in CSV"]


def test_upload_error_is_task_local(runner, store, uploader, write_manifest):
    uploader.fail_titles = {"Episode 1"}
    csv_path = write_manifest(video_rows(2))
    job_id = submit(store, csv_path)

    job = run_pass(runner, store, job_id)

    assert statuses(store, job_id) == ["Failed: quotaExceeded (HTTP 403)", "Uploaded as public"]
    assert job.status == JobStatus.COMPLETED


def test_failed_upload_frees_window_capacity(runner, store, uploader, write_manifest):
    """With 2 per window, a failure lets the third due row through."""
    uploader.fail_titles = {"Episode 1"}
    csv_path = write_manifest(video_rows(4))
    job_id = submit(
        store,
        csv_path,
        upload_interval=UploadInterval.HOUR,
        videos_per_interval=2,
        start_date=T0 - timedelta(hours=1),
    )

    job = run_pass(runner, store, job_id)

    # Rows 0-1 belong to the previous hour, rows 2-3 to this one
    assert uploader.titles == ["Episode 2", "Episode 3"]
    assert statuses(store, job_id)[3] == progress.INTERVAL_LIMIT_REACHED
    assert job.status == JobStatus.PENDING
    assert job.next_run_at == T0 + timedelta(hours=1)


def test_terminal_tasks_are_skipped_on_later_passes(runner, store, uploader, write_manifest):
    rows = video_rows(2)
    rows[1]["youtube_title"] = ""
    csv_path = write_manifest(rows)
    job_id = submit(store, csv_path)

    run_pass(runner, store, job_id)
    before = statuses(store, job_id)
    store.update_job(job_id, status=JobStatus.PENDING)
    run_pass(runner, store, job_id)

    assert statuses(store, job_id) == before
    assert len(uploader.inserted) == 1


def test_finished_job_is_not_reclaimed(runner, store, uploader, write_manifest):
    csv_path = write_manifest(video_rows(1))
    job_id = submit(store, csv_path)
    run_pass(runner, store, job_id)

    assert run_pass(runner, store, job_id) is None
    assert store.get_job(job_id).status == JobStatus.COMPLETED
    assert len(uploader.inserted) == 1


def test_job_cancelled_after_poll_is_not_processed(runner, store, uploader, write_manifest):
    """A cancel that lands between the poll and the claim wins."""
    csv_path = write_manifest(video_rows(2))
    job_id = submit(store, csv_path)
    polled = store.get_next_pending()

    store.cancel_job(job_id)

    assert asyncio.run(runner.process_job(polled)) is None
    assert uploader.inserted == []
    assert store.get_job(job_id) is None


def test_job_paused_after_poll_stays_paused(runner, store, uploader, write_manifest):
    csv_path = write_manifest(video_rows(2))
    job_id = submit(store, csv_path)
    polled = store.get_next_pending()

    store.pause_job(job_id)

    assert asyncio.run(runner.process_job(polled)) is None
    assert uploader.inserted == []
    assert store.get_job(job_id).status == JobStatus.PAUSED


def test_thumbnail_is_set(runner, store, uploader, write_manifest, media_dir):
    thumb = media_dir / "thumb.jpg"
    thumb.write_bytes(b"\xff\xd8\xff")
    csv_path = write_manifest(video_rows(1, thumbnail_path=str(thumb)))
    job_id = submit(store, csv_path)

    run_pass(runner, store, job_id)

    assert uploader.thumbnails == [("vid1", thumb)]
    assert statuses(store, job_id) == ["Uploaded as public"]


def test_explicit_schedule_time_in_future_is_deferred(runner, store, uploader, write_manifest):
    csv_path = write_manifest(
        video_rows(1, privacyStatus="private", scheduleTime="2024-03-10 09:00")
    )
    job_id = submit(store, csv_path)

    job = run_pass(runner, store, job_id)

    assert uploader.inserted == []
    assert statuses(store, job_id) == ["Pending - Scheduled for 2024-03-10 09:00"]
    assert job.status == JobStatus.COMPLETED


def test_explicit_schedule_time_today_is_uploaded(runner, store, uploader, write_manifest):
    csv_path = write_manifest(
        video_rows(1, privacyStatus="private", scheduleTime="2024-03-04 18:30")
    )
    job_id = submit(store, csv_path)

    run_pass(runner, store, job_id)

    _, body = uploader.inserted[0]
    assert body["status"] == {"privacyStatus": "private", "publishAt": "2024-03-04T18:30:00.000Z"}


def test_invalid_schedule_time(runner, store, write_manifest):
    csv_path = write_manifest(video_rows(1, privacyStatus="private", scheduleTime="someday"))
    job_id = submit(store, csv_path)

    run_pass(runner, store, job_id)

    assert statuses(store, job_id) == ["Invalid schedule time"]


def test_missing_session_fails_job(runner, store, session_backend, write_manifest):
    """Credential problems are fatal for the job."""
    session_backend.save({})
    csv_path = write_manifest(video_rows(1))
    job_id = submit(store, csv_path)

    job = run_pass(runner, store, job_id)

    assert job.status == JobStatus.FAILED
    assert job.error.startswith("Session not found or invalid")


def test_credential_error_fails_job(runner, store, credentials, write_manifest):
    credentials.error = "No refresh token is set."
    csv_path = write_manifest(video_rows(1))
    job_id = submit(store, csv_path)

    job = run_pass(runner, store, job_id)

    assert job.status == JobStatus.FAILED
    assert job.error == "No refresh token is set."


def test_session_found_through_user(runner, store, session_backend, credentials, write_manifest):
    """A job from an old session runs with the user's current session."""
    records = session_backend.load()
    session_backend.save({"sess-current": records[SESSION_ID]})
    csv_path = write_manifest(video_rows(1))
    job_id = submit(store, csv_path)

    job = run_pass(runner, store, job_id)

    assert job.status == JobStatus.COMPLETED
    assert credentials.sessions_used == ["sess-current"]


def test_unreadable_manifest_fails_job(runner, store, tmp_path):
    job_id = submit(store, tmp_path / "gone.csv")

    job = run_pass(runner, store, job_id)

    assert job.status == JobStatus.FAILED
    assert "Could not read manifest" in job.error


def test_empty_manifest_completes(runner, store, write_manifest):
    csv_path = write_manifest([])
    job_id = submit(store, csv_path)

    job = run_pass(runner, store, job_id)

    assert job.status == JobStatus.COMPLETED
    assert job.total_videos == 0


def test_start_recovers_stale_jobs(runner, store, write_manifest):
    csv_path = write_manifest(video_rows(1))
    job_id = submit(store, csv_path)
    store.mark_processing(job_id)

    async def start_and_stop():
        await runner.start()
        await runner.stop()

    asyncio.run(start_and_stop())

    assert store.get_job(job_id).status in (JobStatus.PENDING, JobStatus.COMPLETED)
