# tests/test_tasks.py

from types import SimpleNamespace

import tasks
from admission import RATE_LIMIT_MESSAGE
from conftest import STORY_ID, UID, VIDEO_ID, load_video
from models import Story
from schemas import JobKind, JobOutcome


class RecordingOrchestrator:
    def __init__(self, kind):
        self.kind = kind
        self.requests = []

    def run(self, request):
        self.requests.append(request)
        return JobOutcome(success=True, kind=self.kind, video_id=request.video_id)


def test_poll_picks_the_queued_video(seeded_db, monkeypatch):
    built = []

    def factory(kind):
        built.append(RecordingOrchestrator(kind))
        return built[-1]

    monkeypatch.setattr(tasks, "SessionLocal", seeded_db)
    monkeypatch.setattr(tasks, "build_orchestrator", factory)

    assert tasks.poll_queued_videos() is True
    request = built[0].requests[0]
    assert built[0].kind is JobKind.VIDEO
    assert request.video_id == VIDEO_ID
    assert request.story_id == STORY_ID
    assert request.script_json["beats"][0]["text"] == "Line 0"


def test_poll_fails_video_without_story(seeded_db, reporter, monkeypatch):
    db = seeded_db()
    db.query(Story).delete()
    db.commit()
    db.close()

    monkeypatch.setattr(tasks, "SessionLocal", seeded_db)
    monkeypatch.setattr(tasks, "StatusReporter", lambda: reporter)

    assert tasks.poll_queued_videos() is False
    video = load_video(seeded_db)
    assert video.status == "failed"
    assert video.error_msg == "Story not found"


def test_poll_with_empty_queue(session_factory, monkeypatch):
    monkeypatch.setattr(tasks, "SessionLocal", session_factory)
    assert tasks.poll_queued_videos() is None


def test_busy_worker_leaves_job_queued(seeded_db, monkeypatch):
    monkeypatch.setattr(tasks, "SessionLocal", seeded_db)
    slot = tasks.worker_admission.try_acquire()
    try:
        assert tasks.poll_queued_videos() is False
    finally:
        slot.release()
    assert load_video(seeded_db).status == "queued"


def test_render_and_wait_queues_then_polls(monkeypatch):
    queued = []
    monkeypatch.setattr(tasks, "generate_video_task", SimpleNamespace(delay=queued.append))
    monkeypatch.setattr(tasks, "wait_for_completion", lambda video_id, **options: f"https://cdn/{video_id}.mp4")

    url = tasks.render_and_wait({"video_id": VIDEO_ID, "uid": UID})

    assert queued == [{"video_id": VIDEO_ID, "uid": UID}]
    assert url == f"https://cdn/{VIDEO_ID}.mp4"


def test_busy_worker_fails_dispatched_job(seeded_db, reporter, monkeypatch):
    monkeypatch.setattr(tasks, "StatusReporter", lambda: reporter)
    slot = tasks.worker_admission.try_acquire()
    try:
        assert tasks.generate_video_task({"video_id": VIDEO_ID, "story_id": STORY_ID, "uid": UID}) is False
    finally:
        slot.release()

    video = load_video(seeded_db)
    assert video.status == "failed"
    assert video.error_msg == RATE_LIMIT_MESSAGE


def test_worker_runs_one_job_at_a_time():
    assert tasks.celery.conf.worker_concurrency == 1
