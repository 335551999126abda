"""
Artifact reuse: finds artifacts a previous run already stored for a job and
materializes them locally so the job can skip rendering and uploading.
"""

import os
import logging
from collections import deque
from typing import Optional

from schemas import JobKind

VIDEO_FOLDER = "videos"


def video_remote_path(video_id: str) -> str:
    return f"{VIDEO_FOLDER}/{video_id}.mp4"


def preview_remote_prefix(video_id: str, kind: JobKind) -> str:
    return f"{VIDEO_FOLDER}/{video_id}/{kind.storage_subpath}/output"


class ArtifactReuseResolver:
    """Looks up and downloads previously produced artifacts."""

    def __init__(self, store):
        self.store = store

    def find_existing(self, video_id: str, kind: JobKind) -> Optional[str]:
        try:
            if kind is JobKind.VIDEO:
                file_name = f"{video_id}.mp4"
                items = self.store.list(VIDEO_FOLDER, search=file_name)
                if any(item.get("name") == file_name for item in items or []):
                    logging.info(f"♻️ Existing video found: {video_remote_path(video_id)}")
                    return video_remote_path(video_id)
                return None

            prefix = preview_remote_prefix(video_id, kind)
            items = self.store.list(prefix)
            if items:
                logging.info(f"♻️ Existing {kind.value} output found: {prefix} ({len(items)} entries)")
                return prefix
            return None
        except Exception as e:
            # a failed lookup only means nothing is reused
            logging.error(f"❌ Could not check storage for existing {kind.value} output: {e}")
            return None

    def materialize_file(self, remote_path: str, local_path: str) -> bool:
        try:
            data = self.store.download(remote_path)
        except Exception as e:
            logging.error(f"❌ Download failed ({remote_path}): {e}")
            return False
        os.makedirs(os.path.dirname(local_path), exist_ok=True)
        with open(local_path, "wb") as f:
            f.write(data)
        logging.info(f"⬇️ Downloaded {remote_path} ({len(data) / (1024 * 1024):.2f} MB)")
        return True

    def materialize(self, prefix: str, dest_dir: str) -> bool:
        """
        Mirrors the subtree under prefix into dest_dir.
        Entries with a mimetype are files, everything else is a sub-prefix.
        Returns True only if at least one file was written.
        """
        visited = set()
        queue = deque([(prefix.rstrip("/"), dest_dir)])
        downloaded = 0

        while queue:
            storage_path, local_path = queue.popleft()
            if storage_path in visited:
                continue
            visited.add(storage_path)
            os.makedirs(local_path, exist_ok=True)

            try:
                items = self.store.list(storage_path)
            except Exception as e:
                logging.error(f"❌ Listing failed ({storage_path}): {e}")
                continue

            for item in items or []:
                name = item.get("name")
                if not name:
                    continue
                item_storage_path = f"{storage_path}/{name}"
                item_local_path = os.path.join(local_path, name)
                metadata = item.get("metadata") or {}

                if metadata.get("mimetype"):
                    if self.materialize_file(item_storage_path, item_local_path):
                        downloaded += 1
                else:
                    queue.append((item_storage_path, item_local_path))

        logging.info(f"♻️ Materialized {downloaded} file(s) from {prefix}")
        return downloaded > 0
