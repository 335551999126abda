# tests/test_uploads.py

import threading

import pytest
import requests

from conftest import FakeStore
from exceptions import StorageApiError, StorageResponseFormatError, UploadExhaustedError, UploadFatalError
from uploads import UploadManager, get_content_type, is_transient_upload_error


class FlakyStore(FakeStore):
    """Raises the queued errors in order before accepting uploads."""

    def __init__(self, errors):
        super().__init__()
        self.errors = list(errors)
        self.attempts = 0

    def upload(self, remote_path, data, content_type, upsert=False):
        self.attempts += 1
        if self.errors:
            raise self.errors.pop(0)
        super().upload(remote_path, data, content_type, upsert)


@pytest.fixture
def artifact(tmp_path):
    path = tmp_path / "output.mp4"
    path.write_bytes(b"video-bytes")
    return str(path)


def _manager(store, delays):
    return UploadManager(store, max_retries=3, base_delay=1.0,
                         slots=threading.BoundedSemaphore(1), sleep=delays.append)


def test_transient_errors_retry_with_growing_backoff(artifact):
    store = FlakyStore([StorageResponseFormatError("text/html"), requests.ConnectionError("reset")])
    delays = []

    url = _manager(store, delays).upload_file(artifact, "videos/abc.mp4", "video/mp4")

    assert url == "https://cdn.example.com/videos/abc.mp4"
    assert store.attempts == 3
    assert delays == [1.0, 2.0]
    assert store.objects["videos/abc.mp4"] == (b"video-bytes", "video/mp4")


def test_retries_stop_at_the_ceiling(artifact):
    store = FlakyStore([TimeoutError("slow")] * 10)
    delays = []

    with pytest.raises(UploadExhaustedError):
        _manager(store, delays).upload_file(artifact, "videos/abc.mp4", "video/mp4")

    # one try plus three retries, never a fifth
    assert store.attempts == 4
    assert delays == [1.0, 2.0, 4.0]
    assert all(later > earlier for earlier, later in zip(delays, delays[1:]))


def test_conflict_is_fatal_and_not_retried(artifact):
    store = FlakyStore([StorageApiError("The resource already exists", status_code=409)])
    delays = []

    with pytest.raises(UploadFatalError):
        _manager(store, delays).upload_file(artifact, "videos/abc.mp4", "video/mp4")

    assert store.attempts == 1
    assert delays == []


def test_missing_local_file_is_fatal(tmp_path):
    with pytest.raises(UploadFatalError):
        _manager(FakeStore(), []).upload_file(str(tmp_path / "nope.mp4"), "videos/x.mp4", "video/mp4")


def test_upload_tree_mirrors_relative_paths(tmp_path):
    output = tmp_path / "output"
    (output / "images" / "script").mkdir(parents=True)
    (output / "images" / "script" / "beat_1.png").write_bytes(b"png")
    (output / "script.json").write_text("{}")
    store = FakeStore()

    files = _manager(store, []).upload_tree(str(output), "videos/v1/preview/output")

    assert [f.path for f in files] == ["script.json", "images/script/beat_1.png"]
    assert files[1].fileName == "beat_1.png"
    assert files[1].url == "https://cdn.example.com/videos/v1/preview/output/images/script/beat_1.png"
    assert ("videos/v1/preview/output/images/script/beat_1.png", "image/png", True) in store.uploads
    assert ("videos/v1/preview/output/script.json", "application/json", True) in store.uploads


def test_upload_tree_aborts_on_first_failure(tmp_path):
    output = tmp_path / "output"
    output.mkdir()
    (output / "a.mp3").write_bytes(b"a")
    (output / "b.mp3").write_bytes(b"b")
    store = FlakyStore([StorageApiError("forbidden", status_code=403)])

    with pytest.raises(UploadFatalError):
        _manager(store, []).upload_tree(str(output), "videos/v1/audio-preview/output")
    assert store.uploads == []


def test_error_classification():
    assert is_transient_upload_error(StorageResponseFormatError("html"))
    assert is_transient_upload_error(requests.Timeout())
    assert is_transient_upload_error(ConnectionResetError())
    assert not is_transient_upload_error(StorageApiError("denied", status_code=403))
    assert not is_transient_upload_error(ValueError("bad"))


def test_content_types():
    assert get_content_type("beat_1.PNG") == "image/png"
    assert get_content_type("script_0.mp3") == "audio/mp3"
    assert get_content_type("notes.bin") == "application/octet-stream"
