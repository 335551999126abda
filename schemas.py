"""
Pydantic models for data validation in the render orchestrator.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class JobKind(str, Enum):
    """Kinds of work accepted by the webhook."""
    VIDEO = "video_generation"
    IMAGE_PREVIEW = "image_preview"
    AUDIO_PREVIEW = "audio-preview"

    @property
    def render_mode(self) -> str:
        return {"video_generation": "movie", "image_preview": "images", "audio-preview": "audio"}[self.value]

    @property
    def storage_subpath(self) -> str:
        # The video artifact lives at videos/<id>.mp4 and has no subpath
        return {"video_generation": "", "image_preview": "preview", "audio-preview": "audio-preview"}[self.value]

    @property
    def status_field(self) -> str:
        return "status" if self is JobKind.VIDEO else "preview_status"


class JobRequest(BaseModel):
    """One generation request. Field names follow the webhook payload."""
    model_config = ConfigDict(frozen=True, extra="ignore")

    video_id: str
    story_id: Optional[str] = None
    uid: Optional[str] = None
    title: Optional[str] = None
    script_json: Optional[Dict[str, Any]] = None


class WebhookRequest(BaseModel):
    """Envelope posted to /webhook."""
    type: str
    payload: Optional[Dict[str, Any]] = None


class WebhookResponse(BaseModel):
    """Response for a handled webhook call."""
    success: bool
    message: str
    video_id: Optional[str] = None
    completed: Optional[bool] = None
    error: Optional[str] = None


class RateLimitResponse(BaseModel):
    """Response when the admission controller rejects a request."""
    error: str
    activeRequests: int
    maxRequests: int


class UploadedFile(BaseModel):
    """One file of an uploaded output tree."""
    path: str
    fileName: str
    url: str
    size: Optional[int] = None


class StatusResponse(BaseModel):
    """Response for checking job status."""
    video_id: str
    status: Optional[str] = None
    preview_status: Optional[str] = None
    video_url: Optional[str] = None
    error: Optional[str] = None
    duration_sec: Optional[int] = None
    resolution: Optional[str] = None


class JobOutcome(BaseModel):
    """Result of one orchestration run. Returned, never raised."""
    success: bool
    kind: JobKind
    video_id: str
    reused: bool = False
    artifact_url: Optional[str] = None
    files: List[UploadedFile] = []
    error: Optional[str] = None
    processing_time: int = 0
