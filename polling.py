"""
Bounded wait for a video job triggered indirectly to reach a terminal state.
"""

import time
import logging

from sqlalchemy.exc import SQLAlchemyError

from config import COMPLETION_POLL_ATTEMPTS, COMPLETION_POLL_INTERVAL
from database import SessionLocal
from exceptions import CompletionWaitExhausted, JobFailedError, PersistenceError
from models import Video


def wait_for_completion(video_id: str, session_factory=SessionLocal,
                        max_attempts: int = COMPLETION_POLL_ATTEMPTS,
                        interval: float = COMPLETION_POLL_INTERVAL,
                        sleep=time.sleep) -> str:
    """
    Polls the videos table every `interval` seconds, at most `max_attempts` times.
    Returns the video URL once completed.
    """
    for attempt in range(1, max_attempts + 1):
        sleep(interval)

        db = session_factory()
        try:
            video = db.query(Video).filter(Video.id == video_id).first()
            status, url, error = (video.status, video.url, video.error_msg) if video else (None, None, None)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read status of video {video_id}: {e}") from e
        finally:
            db.close()

        if status == "completed" and url:
            logging.info(f"✅ Video completed: {video_id}")
            return url
        if status == "failed":
            raise JobFailedError(f"Video generation failed: {error or 'unknown error'}")

        logging.info(f"⏳ Waiting for video completion... attempt {attempt}/{max_attempts}")

    raise CompletionWaitExhausted(
        f"Video {video_id} did not complete after {max_attempts} polls ({max_attempts * interval:.0f}s)"
    )
