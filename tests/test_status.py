# tests/test_status.py

import pytest
from sqlalchemy.exc import OperationalError

from conftest import STORY_ID, UID, VIDEO_ID, load_video
from exceptions import CompletionWaitExhausted, JobFailedError, PersistenceError
from models import Story
from polling import wait_for_completion
from schemas import JobKind
from status import SlackNotifier, StatusReporter, format_failure_message


def test_video_status_transitions(reporter, seeded_db):
    assert reporter.mark_processing(JobKind.VIDEO, VIDEO_ID, UID)
    assert load_video(seeded_db).status == "processing"

    assert reporter.mark_completed(JobKind.VIDEO, VIDEO_ID, UID, url="https://cdn/v.mp4", duration_sec=12)
    video = load_video(seeded_db)
    assert video.status == "completed"
    assert video.url == "https://cdn/v.mp4"
    assert video.duration_sec == 12
    assert video.preview_status is None


def test_preview_jobs_write_preview_status(reporter, seeded_db):
    reporter.mark_failed(JobKind.IMAGE_PREVIEW, VIDEO_ID, UID, "Preview error: boom")
    video = load_video(seeded_db)
    assert video.preview_status == "failed"
    assert video.status == "queued"
    assert video.error_msg == "Preview error: boom"


def test_update_requires_matching_uid(reporter, seeded_db):
    assert not reporter.mark_processing(JobKind.VIDEO, VIDEO_ID, "someone-else")
    assert load_video(seeded_db).status == "queued"


def test_write_errors_are_logged_and_swallowed(notifier):
    class BrokenSession:
        def query(self, *args):
            raise OperationalError("UPDATE videos", {}, Exception("database is locked"))

        def rollback(self):
            pass

        def close(self):
            pass

    reporter = StatusReporter(session_factory=BrokenSession, notifier=notifier)
    assert reporter.mark_failed(JobKind.VIDEO, VIDEO_ID, UID, "boom") is False


def test_story_marked_completed(reporter, seeded_db):
    assert reporter.mark_story_completed(STORY_ID, UID)
    db = seeded_db()
    assert db.query(Story).filter(Story.id == STORY_ID).first().status == "completed"
    db.close()


def test_slack_notifier_skips_without_url():
    assert SlackNotifier(webhook_url="").send("hello") is False


def test_failure_message_contains_context():
    message = format_failure_message(VIDEO_ID, None, "My title", "Render failed")
    assert f"*Video ID:* {VIDEO_ID}" in message
    assert "*Story ID:* N/A" in message
    assert "*Error:* Render failed" in message


# --- completion polling ---

def test_wait_returns_url_when_completed(reporter, seeded_db):
    reporter.mark_completed(JobKind.VIDEO, VIDEO_ID, UID, url="https://cdn/v.mp4")
    sleeps = []
    url = wait_for_completion(VIDEO_ID, session_factory=seeded_db, max_attempts=3, interval=10, sleep=sleeps.append)
    assert url == "https://cdn/v.mp4"
    assert sleeps == [10]


def test_wait_raises_when_job_failed(reporter, seeded_db):
    reporter.mark_failed(JobKind.VIDEO, VIDEO_ID, UID, "Render failed: boom")
    with pytest.raises(JobFailedError, match="boom"):
        wait_for_completion(VIDEO_ID, session_factory=seeded_db, max_attempts=3, interval=0, sleep=lambda s: None)


def test_wait_gives_up_after_max_attempts(seeded_db):
    sleeps = []
    with pytest.raises(CompletionWaitExhausted):
        wait_for_completion(VIDEO_ID, session_factory=seeded_db, max_attempts=4, interval=10, sleep=sleeps.append)
    assert len(sleeps) == 4


def test_wait_surfaces_database_errors():
    class BrokenSession:
        def query(self, *args):
            raise OperationalError("SELECT", {}, Exception("no such table"))

        def close(self):
            pass

    with pytest.raises(PersistenceError):
        wait_for_completion(VIDEO_ID, session_factory=BrokenSession, max_attempts=2, interval=0, sleep=lambda s: None)
