"""
Router for the webhook endpoints.
Handles job submission, health checks and job status lookups.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError as PayloadError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from admission import AdmissionController, RATE_LIMIT_MESSAGE
from config import WATCH_MODE
from database import get_db
from models import Video
from orchestrator import build_orchestrator
from schemas import JobKind, JobRequest, RateLimitResponse, StatusResponse, WebhookRequest, WebhookResponse
from status import StatusReporter


# Create the router
router = APIRouter(tags=["webhook"])

# Shared by every request handled by this process
admission_controller = AdmissionController()

KIND_LABELS = {
    JobKind.VIDEO: "Video generation",
    JobKind.IMAGE_PREVIEW: "Image preview generation",
    JobKind.AUDIO_PREVIEW: "Audio preview generation",
}


def get_admission() -> AdmissionController:
    return admission_controller


def get_orchestrator_factory():
    return build_orchestrator


def get_status_reporter() -> StatusReporter:
    return StatusReporter()


@router.get("/health", response_class=PlainTextResponse)
async def health():
    return "OK"


@router.post("/webhook")
async def webhook(
    request: Request,
    admission: AdmissionController = Depends(get_admission),
    orchestrator_factory=Depends(get_orchestrator_factory),
    reporter: StatusReporter = Depends(get_status_reporter),
):
    """
    Runs a generation job synchronously and reports its outcome.
    Excess requests are rejected with 429 and their job is marked failed.
    """
    if WATCH_MODE:
        return {"success": True, "message": "WATCH mode - webhook ignored"}

    try:
        envelope = WebhookRequest(**(await request.json()))
    except (ValueError, TypeError, PayloadError) as e:
        logging.error(f"Webhook body could not be parsed: {e}")
        return JSONResponse(status_code=400, content={"error": "Invalid JSON"})

    try:
        kind = JobKind(envelope.type)
    except ValueError:
        return {"success": True, "message": "Webhook received but no action needed"}
    if envelope.payload is None:
        return {"success": True, "message": "Webhook received but no action needed"}

    try:
        job = JobRequest(**envelope.payload)
    except PayloadError as e:
        logging.error(f"Invalid {kind.value} payload: {e}")
        return JSONResponse(status_code=400, content={"error": f"Invalid payload: {e.errors()[0]['msg']}"})

    slot = admission.try_acquire()
    if slot is None:
        # a rejected job must not stay queued forever
        await run_in_threadpool(reporter.mark_failed, kind, job.video_id, job.uid, RATE_LIMIT_MESSAGE)
        body = RateLimitResponse(
            error="Rate limit exceeded - too many concurrent requests",
            activeRequests=admission.active,
            maxRequests=admission.capacity,
        )
        return JSONResponse(status_code=429, content=body.model_dump())

    label = KIND_LABELS[kind]
    with slot:
        logging.info(f"✨ {label} request received for {job.video_id}")
        try:
            orchestrator = orchestrator_factory(kind)
        except Exception as e:
            logging.error(f"❌ Could not set up the {kind.value} orchestrator: {e}")
            await run_in_threadpool(reporter.mark_failed, kind, job.video_id, job.uid, f"Processing error: {e}")
            return WebhookResponse(success=False, message=f"{label} failed", video_id=job.video_id,
                                   completed=False, error=str(e)).model_dump(exclude_none=True)
        outcome = await run_in_threadpool(orchestrator.run, job)

    if outcome.success:
        response = WebhookResponse(success=True, message=f"{label} completed",
                                   video_id=job.video_id, completed=True)
    else:
        response = WebhookResponse(success=False, message=f"{label} failed",
                                   video_id=job.video_id, completed=False, error=outcome.error)
    return response.model_dump(exclude_none=True)


@router.get("/task-status/{video_id}", response_model=StatusResponse)
async def get_task_status(video_id: str, db: Session = Depends(get_db)):
    """
    Checks the status of a job by querying the database.
    """
    video = db.query(Video).filter(Video.id == video_id).first()
    if not video:
        raise HTTPException(status_code=404, detail="Job not found.")

    return {
        "video_id": video.id,
        "status": video.status,
        "preview_status": video.preview_status,
        "video_url": video.url,
        "error": video.error_msg,
        "duration_sec": video.duration_sec,
        "resolution": video.resolution,
    }
