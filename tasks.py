# tasks.py

import logging

from celery import Celery
from sqlalchemy.exc import SQLAlchemyError

from admission import AdmissionController, RATE_LIMIT_MESSAGE
from config import REDIS_URL, WATCH_MODE, POLLING_INTERVAL
from database import SessionLocal
from models import Story, Video
from orchestrator import build_orchestrator
from polling import wait_for_completion
from schemas import JobKind, JobRequest
from status import StatusReporter

celery = Celery('tasks', broker=REDIS_URL, backend=REDIS_URL)
# admission is per process, so a single worker process keeps one render at a time
celery.conf.worker_concurrency = 1
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

worker_admission = AdmissionController()

if WATCH_MODE:
    celery.conf.beat_schedule = {
        "poll-queued-videos": {
            "task": "tasks.poll_queued_videos",
            "schedule": POLLING_INTERVAL,
        },
    }


def _run_admitted(kind: JobKind, request: JobRequest, fail_when_busy: bool) -> bool:
    slot = worker_admission.try_acquire()
    if slot is None:
        if fail_when_busy:
            # nothing would pick this job up again
            logging.warning(f"⚠️ Worker busy, job {request.video_id} rejected")
            StatusReporter().mark_failed(kind, request.video_id, request.uid, RATE_LIMIT_MESSAGE)
        else:
            logging.warning(f"⚠️ Worker busy, job {request.video_id} left for a later poll")
        return False
    with slot:
        outcome = build_orchestrator(kind).run(request)
    return outcome.success


@celery.task
def generate_video_task(payload: dict, kind: str = JobKind.VIDEO.value):
    """
    Background task that runs one orchestration from a webhook-shaped payload.
    """
    request = JobRequest(**payload)
    logging.info(f"📝 Worker received {kind} job {request.video_id}")
    return _run_admitted(JobKind(kind), request, fail_when_busy=True)


@celery.task
def poll_queued_videos():
    """
    Picks the oldest queued video, loads its script from the story and renders it.
    """
    db = SessionLocal()
    try:
        video = (
            db.query(Video)
            .filter(Video.status == "queued")
            .order_by(Video.created_at.asc())
            .first()
        )
        if not video:
            return None

        # re-check in case another worker picked it up
        db.refresh(video)
        if video.status != "queued":
            return None

        story = db.query(Story).filter(Story.id == video.story_id).first()
        if not story:
            logging.error(f"❌ Story {video.story_id} not found for queued video {video.id}")
            StatusReporter().mark_failed(JobKind.VIDEO, video.id, video.uid, "Story not found")
            return False

        request = JobRequest(
            video_id=video.id,
            story_id=video.story_id,
            uid=video.uid,
            title=story.title or "Untitled",
            script_json=story.script_json,
        )
    except SQLAlchemyError as e:
        logging.error(f"❌ Queue polling failed: {e}")
        return None
    finally:
        db.close()

    logging.info(f"📥 Picked queued video {request.video_id}")
    return _run_admitted(JobKind.VIDEO, request, fail_when_busy=False)


def render_and_wait(payload: dict, **wait_options) -> str:
    """
    Queues a video job on the worker and blocks until it completes.
    Raises CompletionWaitExhausted or JobFailedError from the bounded poll.
    """
    generate_video_task.delay(payload)
    return wait_for_completion(payload["video_id"], **wait_options)
