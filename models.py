# models.py

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Integer, JSON, String, Text
from database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class Video(Base):
    """Persisted job state for one video and its previews."""

    __tablename__ = "videos"

    id = Column(String, primary_key=True, index=True)
    story_id = Column(String, index=True, nullable=True)
    uid = Column(String, index=True, nullable=True)
    title = Column(String, nullable=True)
    status = Column(String, default="queued")  # queued, processing, completed, failed
    preview_status = Column(String, nullable=True)  # processing, completed, failed
    url = Column(String, nullable=True)
    error_msg = Column(Text, nullable=True)
    duration_sec = Column(Integer, nullable=True)
    resolution = Column(String, nullable=True)
    size_mb = Column(Float, nullable=True)
    proc_time = Column(Integer, nullable=True)
    preview_data = Column(JSON, nullable=True)
    audio_preview_data = Column(JSON, nullable=True)
    preview_storage_path = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Story(Base):
    """Source script for a video, read by the queue poller."""

    __tablename__ = "stories"

    id = Column(String, primary_key=True, index=True)
    uid = Column(String, index=True, nullable=True)
    title = Column(String, nullable=True)
    script_json = Column(JSON, nullable=True)
    status = Column(String, default="draft")
