"""
Upload manager: pushes finished artifacts to the artifact store with
exponential-backoff retry on transient failures.
"""

import os
import json
import time
import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

import requests

from config import CONCURRENT_UPLOAD_LIMIT, CONTENT_TYPES, UPLOAD_BASE_DELAY, UPLOAD_MAX_RETRIES
from exceptions import StorageResponseFormatError, UploadExhaustedError, UploadFatalError
from schemas import UploadedFile

# Shared by every UploadManager in the process
PRIMARY_UPLOAD_SLOTS = threading.BoundedSemaphore(CONCURRENT_UPLOAD_LIMIT)


def get_content_type(filename: str) -> str:
    ext = os.path.splitext(filename)[1].lower()
    return CONTENT_TYPES.get(ext, "application/octet-stream")


def is_transient_upload_error(error: Exception) -> bool:
    # An unparseable body usually means an HTML error page from a proxy
    if isinstance(error, (StorageResponseFormatError, json.JSONDecodeError)):
        return True
    # Connection reset, DNS failure and timeouts
    return isinstance(error, (requests.ConnectionError, requests.Timeout, ConnectionError, TimeoutError))


@dataclass
class UploadTask:
    local_path: str
    remote_path: str
    content_type: str
    attempt: int = 0
    max_attempts: int = UPLOAD_MAX_RETRIES + 1
    upsert: bool = False


class UploadManager:
    """Uploads single files and whole output trees."""

    def __init__(self, store, max_retries: int = UPLOAD_MAX_RETRIES, base_delay: float = UPLOAD_BASE_DELAY,
                 slots: Optional[threading.BoundedSemaphore] = None, sleep=time.sleep):
        self.store = store
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.sleep = sleep
        self._slots = slots or PRIMARY_UPLOAD_SLOTS

    def _attempt(self, task: UploadTask, data: bytes, limited: bool) -> None:
        if limited:
            # blocks while another primary upload holds the slot
            with self._slots:
                self.store.upload(task.remote_path, data, task.content_type, upsert=task.upsert)
        else:
            self.store.upload(task.remote_path, data, task.content_type, upsert=task.upsert)

    def _run(self, task: UploadTask, limited: bool) -> str:
        if not os.path.exists(task.local_path):
            raise UploadFatalError(f"File to upload does not exist: {task.local_path}")

        with open(task.local_path, "rb") as f:
            data = f.read()
        logging.info(f"📤 Uploading {task.remote_path} ({len(data) / (1024 * 1024):.2f} MB)")

        while True:
            task.attempt += 1
            try:
                self._attempt(task, data, limited)
                break
            except Exception as e:
                if not is_transient_upload_error(e):
                    logging.error(f"❌ Upload failed ({task.remote_path}): {e}")
                    raise UploadFatalError(f"Upload failed: {e}") from e
                if task.attempt >= task.max_attempts:
                    logging.error(f"❌ Upload failed after {task.attempt} attempts ({task.remote_path}): {e}")
                    raise UploadExhaustedError(f"Upload failed after {task.attempt} attempts: {e}") from e
                delay = self.base_delay * (2 ** (task.attempt - 1))
                logging.warning(f"🔁 Transient upload error ({e}). Retry {task.attempt}/{self.max_retries} in {delay:.1f}s")
                self.sleep(delay)

        url = self.store.get_public_url(task.remote_path)
        logging.info(f"✅ Uploaded {task.remote_path}")
        return url

    def upload_file(self, local_path: str, remote_path: str, content_type: str, upsert: bool = False) -> str:
        """Uploads one primary artifact and returns its public URL."""
        task = UploadTask(local_path, remote_path, content_type,
                          max_attempts=self.max_retries + 1, upsert=upsert)
        return self._run(task, limited=True)

    def upload_tree(self, local_dir: str, remote_prefix: str) -> List[UploadedFile]:
        """
        Uploads every file under local_dir to remote_prefix/<relative path>.
        Any single failure aborts the whole tree.
        """
        uploaded = []
        for root, dirs, files in os.walk(local_dir):
            dirs.sort()
            for name in sorted(files):
                local_path = os.path.join(root, name)
                relative = os.path.relpath(local_path, local_dir).replace(os.sep, "/")
                task = UploadTask(local_path, f"{remote_prefix}/{relative}", get_content_type(name),
                                  max_attempts=self.max_retries + 1, upsert=True)
                url = self._run(task, limited=False)
                uploaded.append(UploadedFile(path=relative, fileName=name, url=url,
                                             size=os.path.getsize(local_path)))
        logging.info(f"✅ Uploaded {len(uploaded)} file(s) to {remote_prefix}")
        return uploaded
