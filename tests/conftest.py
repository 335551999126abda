# tests/conftest.py

import os
import sys
import json

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add the parent directory to the Python path so we can import from it
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from database import Base  # noqa: E402
from models import Story, Video  # noqa: E402
from services import RenderSuccess  # noqa: E402
from status import StatusReporter  # noqa: E402

VIDEO_ID = "11111111-2222-4333-8444-555555555555"
STORY_ID = "66666666-7777-4888-9999-000000000000"
UID = "aaaaaaaa-bbbb-4ccc-8ddd-eeeeeeeeeeee"


class FakeStore:
    """In-memory bucket with the same listing semantics as the real store."""

    def __init__(self):
        self.objects = {}
        self.uploads = []
        self.failing_downloads = set()

    def upload(self, remote_path, data, content_type, upsert=False):
        self.uploads.append((remote_path, content_type, upsert))
        self.objects[remote_path] = (data, content_type)

    def download(self, remote_path):
        if remote_path in self.failing_downloads or remote_path not in self.objects:
            raise IOError(f"cannot download {remote_path}")
        return self.objects[remote_path][0]

    def list(self, prefix, search=None, limit=1000):
        prefix = prefix.rstrip("/") + "/"
        items, seen = [], set()
        for key in sorted(self.objects):
            if not key.startswith(prefix):
                continue
            rest = key[len(prefix):]
            name = rest.split("/", 1)[0]
            if name in seen or (search and search not in name):
                continue
            seen.add(name)
            if "/" in rest:
                items.append({"name": name, "metadata": None})
            else:
                items.append({"name": name, "metadata": {"mimetype": self.objects[key][1]}})
        return items[:limit]

    def get_public_url(self, remote_path):
        return f"https://cdn.example.com/{remote_path}"


class FakeNotifier:
    def __init__(self):
        self.messages = []

    def send(self, message):
        self.messages.append(message)
        return True


class FakeRenderer:
    """
    Returns scripted results in order. "ok" produces real output files.
    Records the script sent on every call.
    """

    def __init__(self, results=None, default="ok"):
        self.results = list(results or [])
        self.default = default
        self.calls = []
        self.scripts = []

    def _produce(self, mode, output_dir, output_path):
        if mode == "movie":
            with open(output_path, "wb") as f:
                f.write(b"fake-mp4-data")
            return output_path
        if mode == "images":
            images = os.path.join(output_dir, "images", "script")
            os.makedirs(images, exist_ok=True)
            for n in (1, 2):
                with open(os.path.join(images, f"beat_{n}.png"), "wb") as f:
                    f.write(b"png")
            return output_dir
        audio = os.path.join(output_dir, "audio", "script")
        os.makedirs(audio, exist_ok=True)
        for name in ("script_0.mp3", "script_1.mp3", "script.mp3"):
            with open(os.path.join(audio, name), "wb") as f:
                f.write(b"mp3")
        return output_dir

    def render(self, mode, script_path, output_dir, output_path=None, caption_lang=None, timeout=300):
        with open(script_path, encoding="utf-8") as f:
            self.scripts.append(json.load(f))
        self.calls.append({"mode": mode, "script_path": script_path, "timeout": timeout})
        os.makedirs(output_dir, exist_ok=True)
        result = self.results.pop(0) if self.results else self.default
        if result == "ok":
            return RenderSuccess(artifact_path=self._produce(mode, output_dir, output_path))
        return result


def make_script(prompts=None):
    prompts = prompts or ["a calm beach", "a city at night", "a mountain lake"]
    return {
        "speechParams": {"speakers": {"Narrator": {"voiceId": "alloy"}}},
        "imageParams": {"model": "gpt-image-1"},
        "beats": [
            {"speaker": "Narrator", "text": f"Line {i}", "imagePrompt": prompt}
            for i, prompt in enumerate(prompts)
        ],
    }


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def seeded_db(session_factory):
    db = session_factory()
    db.add(Video(id=VIDEO_ID, story_id=STORY_ID, uid=UID, status="queued"))
    db.add(Story(id=STORY_ID, uid=UID, title="A story", script_json=make_script(), status="processing"))
    db.commit()
    db.close()
    return session_factory


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def reporter(seeded_db, notifier):
    return StatusReporter(session_factory=seeded_db, notifier=notifier)


@pytest.fixture
def store():
    return FakeStore()


def load_video(session_factory, video_id=VIDEO_ID):
    db = session_factory()
    try:
        return db.query(Video).filter(Video.id == video_id).first()
    finally:
        db.close()
