"""
Status reporting: job lifecycle writes to the videos table and
operator notifications on terminal video failures.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import requests
from sqlalchemy.exc import SQLAlchemyError

from config import APP_ENV, SLACK_WEBHOOK_URL
from database import SessionLocal
from models import Story, Video
from schemas import JobKind


class SlackNotifier:
    """Posts error notifications to a Slack incoming webhook."""

    def __init__(self, webhook_url: str = SLACK_WEBHOOK_URL, timeout: float = 10):
        self.webhook_url = webhook_url
        self.timeout = timeout

    def send(self, message: str) -> bool:
        if not self.webhook_url:
            logging.info("⚠️ SLACK_WEBHOOK_URL is not set, skipping Slack notification")
            return False

        payload = {
            "attachments": [{
                "color": "#dc3545",
                "blocks": [
                    {"type": "section", "text": {"type": "mrkdwn", "text": ":x: *Video Processing Error*"}},
                    {"type": "section", "text": {"type": "mrkdwn", "text": message}},
                    {"type": "context", "elements": [{
                        "type": "mrkdwn",
                        "text": f"Environment: {APP_ENV} | Time: {datetime.now(timezone.utc).isoformat()}",
                    }]},
                ],
            }]
        }
        try:
            response = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            logging.info("✅ Slack error notification sent")
            return True
        except requests.RequestException as e:
            logging.error(f"❌ Failed to send Slack notification: {e}")
            return False


def format_failure_message(video_id: str, story_id: Optional[str], title: Optional[str], error: str) -> str:
    return "\n".join([
        "*An error occurred* :warning:",
        "",
        f"*Video ID:* {video_id or 'N/A'}",
        f"*Story ID:* {story_id or 'N/A'}",
        f"*Title:* {title or 'N/A'}",
        f"*Error:* {error}",
        f"*Timestamp:* {datetime.now(timezone.utc).isoformat()}",
        f"*Environment:* {APP_ENV}",
    ])


class StatusReporter:
    """
    The only writer of job status. Write failures are logged and swallowed:
    the job keeps going and its visible status may be stale.
    """

    def __init__(self, session_factory=SessionLocal, notifier: Optional[SlackNotifier] = None):
        self.session_factory = session_factory
        self.notifier = notifier or SlackNotifier()

    def _update(self, video_id: str, uid: Optional[str], **fields) -> bool:
        db = self.session_factory()
        try:
            query = db.query(Video).filter(Video.id == video_id)
            if uid:
                query = query.filter(Video.uid == uid)
            video = query.first()
            if not video:
                logging.warning(f"⚠️ No video record {video_id} to update with {sorted(fields)}")
                return False
            for name, value in fields.items():
                setattr(video, name, value)
            video.updated_at = datetime.now(timezone.utc)
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logging.error(f"❌ Status update failed for {video_id}: {e}")
            return False
        finally:
            db.close()

    def mark_processing(self, kind: JobKind, video_id: str, uid: Optional[str]) -> bool:
        return self._update(video_id, uid, **{kind.status_field: "processing"})

    def mark_completed(self, kind: JobKind, video_id: str, uid: Optional[str], **fields) -> bool:
        ok = self._update(video_id, uid, **{kind.status_field: "completed"}, **fields)
        if ok:
            logging.info(f"✅ Job {video_id} ({kind.value}) marked completed")
        return ok

    def mark_failed(self, kind: JobKind, video_id: str, uid: Optional[str], message: str) -> bool:
        ok = self._update(video_id, uid, **{kind.status_field: "failed", "error_msg": message})
        if ok:
            logging.info(f"📝 Job {video_id} ({kind.value}) marked failed: {message}")
        return ok

    def mark_story_completed(self, story_id: Optional[str], uid: Optional[str]) -> bool:
        if not story_id:
            return False
        db = self.session_factory()
        try:
            query = db.query(Story).filter(Story.id == story_id)
            if uid:
                query = query.filter(Story.uid == uid)
            story = query.first()
            if not story:
                return False
            story.status = "completed"
            db.commit()
            return True
        except SQLAlchemyError as e:
            db.rollback()
            logging.error(f"❌ Story status update failed for {story_id}: {e}")
            return False
        finally:
            db.close()

    def notify_failure(self, video_id: str, story_id: Optional[str], title: Optional[str], error: str) -> bool:
        return self.notifier.send(format_failure_message(video_id, story_id, title, error))
