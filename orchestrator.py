"""
Job orchestrator: runs one video, image-preview or audio-preview job from
status update to cleanup.
"""

import os
import re
import time
import shutil
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import ffmpeg

from config import CREDIT_IMAGE_URL, MAX_RENDER_ATTEMPTS, PREVIEW_RENDER_TIMEOUT, VIDEO_RENDER_TIMEOUT, WORK_ROOT
from exceptions import ReuseUnavailable, ValidationError
from recovery import ModerationRecoveryLoop, write_script
from reuse import ArtifactReuseResolver, preview_remote_prefix, video_remote_path
from schemas import JobKind, JobOutcome, JobRequest, UploadedFile
from services import RendererInvoker, ScriptSanitizer
from status import StatusReporter
from storage import get_storage
from uploads import UploadManager

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

DEFAULT_DURATION = 30
DEFAULT_RESOLUTION = "1920x1080"

FAILURE_PREFIXES = {
    JobKind.VIDEO: "",
    JobKind.IMAGE_PREVIEW: "Preview error: ",
    JobKind.AUDIO_PREVIEW: "Audio preview error: ",
}


def probe_video(path: str, probe=ffmpeg.probe) -> Dict:
    """Reads duration and resolution of a rendered video, with defaults when ffprobe fails."""
    duration = DEFAULT_DURATION
    resolution = DEFAULT_RESOLUTION
    try:
        metadata = probe(path)
        streams = [s for s in metadata.get("streams", []) if s.get("codec_type", "video") == "video"]
        if streams:
            stream = streams[0]
            if stream.get("width") and stream.get("height"):
                resolution = f"{stream['width']}x{stream['height']}"
            if stream.get("duration"):
                duration = round(float(stream["duration"]))
    except ffmpeg.Error as e:
        error_details = e.stderr.decode("utf8") if e.stderr else "Unknown FFmpeg error"
        logging.warning(f"⚠️ Could not read video metadata, using defaults: {error_details}")
    except (OSError, ValueError) as e:
        logging.warning(f"⚠️ Could not read video metadata, using defaults: {e}")
    return {"duration_sec": duration, "resolution": resolution}


def _natural_key(name: str):
    return [int(part) if part.isdigit() else part for part in re.split(r"(\d+)", name)]


class JobOrchestrator:
    """
    Sequences one job: validate, mark processing, sanitize, reuse or render
    (with moderation recovery), upload, persist, and always clean up.
    """

    def __init__(self, kind: JobKind, store, renderer: Optional[RendererInvoker] = None,
                 reporter: Optional[StatusReporter] = None, uploader: Optional[UploadManager] = None,
                 resolver: Optional[ArtifactReuseResolver] = None, work_root: str = WORK_ROOT,
                 max_attempts: int = MAX_RENDER_ATTEMPTS, credit_image_url: str = CREDIT_IMAGE_URL,
                 probe=ffmpeg.probe):
        self.kind = kind
        self.store = store
        self.renderer = renderer or RendererInvoker()
        self.reporter = reporter or StatusReporter()
        self.uploader = uploader or UploadManager(store)
        self.resolver = resolver or ArtifactReuseResolver(store)
        self.work_root = work_root
        self.credit_image_url = credit_image_url
        self.probe = probe
        timeout = VIDEO_RENDER_TIMEOUT if kind is JobKind.VIDEO else PREVIEW_RENDER_TIMEOUT
        self.recovery = ModerationRecoveryLoop(self.renderer, kind.render_mode, timeout, max_attempts=max_attempts)

    # --- steps ---

    def _validate(self, request: JobRequest):
        if not request.video_id or not UUID_RE.match(request.video_id):
            raise ValidationError(f"Invalid video_id format: \"{request.video_id}\" - must be a UUID")
        story_required = self.kind is not JobKind.AUDIO_PREVIEW
        if (story_required or request.story_id) and not UUID_RE.match(request.story_id or ""):
            raise ValidationError(f"Invalid story_id format: \"{request.story_id}\" - must be a UUID")

    def _create_work_dir(self, video_id: str) -> str:
        work_dir = os.path.join(self.work_root, video_id)
        if os.path.exists(work_dir):
            shutil.rmtree(work_dir)
        os.makedirs(work_dir)
        return work_dir

    def _cleanup(self, work_dir: Optional[str]):
        if not work_dir or not os.path.exists(work_dir):
            return
        try:
            shutil.rmtree(work_dir)
            logging.info(f"🧹 Removed working directory {work_dir}")
        except OSError as e:
            logging.error(f"⚠️ Cleanup failed for {work_dir}: {e}")

    def _credit_beat(self, script: dict) -> dict:
        speakers = list(((script.get("speechParams") or {}).get("speakers") or {}).keys())
        speaker = speakers[0] if speakers else ""
        if not speaker and script.get("beats"):
            speaker = script["beats"][0].get("speaker", "")
        return {
            "speaker": speaker,
            "text": "",
            "duration": 1,
            "image": {"type": "image", "source": {"kind": "url", "url": self.credit_image_url}},
        }

    def _prepare_script(self, script_json) -> dict:
        if not script_json or not isinstance(script_json, dict):
            raise ValidationError(f"script_json is missing. A script is required for {self.kind.value}.")

        script, removed = ScriptSanitizer(script_json).run()
        if removed:
            logging.info(f"🗑️ Removed {len(removed)} problematic image prompt(s)")

        if self.kind is JobKind.VIDEO and self.credit_image_url and isinstance(script.get("beats"), list):
            script["beats"].append(self._credit_beat(script))
        elif self.kind is JobKind.IMAGE_PREVIEW:
            # previews always render at low quality
            script.setdefault("imageParams", {})
            script["imageParams"]["quality"] = "low"
        return script

    def _try_reuse(self, video_id: str, local_target: str) -> None:
        existing = self.resolver.find_existing(video_id, self.kind)
        if not existing:
            raise ReuseUnavailable(f"No stored {self.kind.value} output for {video_id}")
        if self.kind is JobKind.VIDEO:
            ok = self.resolver.materialize_file(existing, local_target)
        else:
            ok = self.resolver.materialize(existing, local_target)
        if not ok:
            raise ReuseUnavailable(f"Stored output for {video_id} could not be downloaded")

    def _reuse(self, video_id: str, local_target: str) -> bool:
        try:
            self._try_reuse(video_id, local_target)
            return True
        except ReuseUnavailable as e:
            logging.info(f"🆕 {e}. Rendering.")
            return False

    def _list_local_files(self, local_dir: str, remote_prefix: str) -> List[UploadedFile]:
        files = []
        for root, dirs, names in os.walk(local_dir):
            dirs.sort()
            for name in sorted(names):
                local_path = os.path.join(root, name)
                relative = os.path.relpath(local_path, local_dir).replace(os.sep, "/")
                files.append(UploadedFile(path=relative, fileName=name,
                                          url=self.store.get_public_url(f"{remote_prefix}/{relative}"),
                                          size=os.path.getsize(local_path)))
        return files

    # --- per kind ---

    def _run_video(self, request: JobRequest, script: dict, script_path: str, work_dir: str, start: float) -> JobOutcome:
        caption_lang = (request.script_json.get("captionParams") or {}).get("lang")
        video_path = os.path.join(work_dir, "output.mp4")
        remote_path = video_remote_path(request.video_id)

        reused = self._reuse(request.video_id, video_path)
        if reused:
            video_url = self.store.get_public_url(remote_path)
            logging.info(f"♻️ Reusing stored video for {request.video_id}")
        else:
            outcome = self.recovery.run(script, script_path, work_dir, work_dir,
                                        output_path=video_path, caption_lang=caption_lang)
            video_path = outcome.artifact_path
            video_url = self.uploader.upload_file(video_path, remote_path, "video/mp4")

        size_mb = os.path.getsize(video_path) / (1024 * 1024)
        metadata = probe_video(video_path, self.probe)
        processing_time = round(time.monotonic() - start)
        logging.info(f"📊 Video metadata: {metadata['resolution']}, {metadata['duration_sec']}s, {size_mb:.2f} MB")

        self.reporter.mark_completed(
            self.kind, request.video_id, request.uid,
            url=video_url,
            title=request.title,
            duration_sec=metadata["duration_sec"],
            resolution=metadata["resolution"],
            size_mb=round(size_mb, 2),
            proc_time=processing_time,
            error_msg=None,
        )
        self.reporter.mark_story_completed(request.story_id, request.uid)

        return JobOutcome(success=True, kind=self.kind, video_id=request.video_id, reused=reused,
                          artifact_url=video_url,
                          files=[UploadedFile(path=remote_path, fileName=os.path.basename(remote_path),
                                              url=video_url, size=os.path.getsize(video_path))],
                          processing_time=processing_time)

    def _image_preview_data(self, script: dict, files: List[UploadedFile], prefix: str) -> dict:
        beats = script.get("beats") or []
        images = []
        image_files = [f for f in files if f.path.startswith("images/") and f.path.endswith(".png")]
        for position, item in enumerate(image_files):
            match = re.search(r"beat_(\d+)\.png$", item.path)
            beat_index = int(match.group(1)) - 1 if match else position
            beat = beats[beat_index] if 0 <= beat_index < len(beats) else {}
            source = (beat.get("image") or {}).get("source") or {}
            images.append({
                "beatIndex": beat_index,
                "fileName": item.fileName,
                "url": item.url,
                "prompt": source.get("prompt") or beat.get("imagePrompt") or "",
            })
        return {
            "images": sorted(images, key=lambda image: image["beatIndex"]),
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "outputPath": prefix,
        }

    def _audio_preview_data(self, script: dict, files: List[UploadedFile]) -> dict:
        beats = script.get("beats") or []
        audio_files = sorted(
            (f for f in files if f.path.startswith("audio/") and f.fileName.endswith(".mp3")
             and f.fileName.startswith("script_") and f.fileName != "script.mp3"),
            key=lambda f: _natural_key(f.fileName),
        )
        audio_data = [
            {
                "beatIndex": index,
                "fileName": item.fileName,
                "url": item.url,
                "speakerId": beats[index].get("speaker"),
                "text": beats[index].get("text", ""),
            }
            for index, item in enumerate(audio_files[:len(beats)])
        ]
        return {
            "audioFiles": audio_data,
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "audioCount": len(audio_data),
        }

    def _run_preview(self, request: JobRequest, script: dict, script_path: str, work_dir: str, start: float) -> JobOutcome:
        output_dir = os.path.join(work_dir, "output")
        prefix = preview_remote_prefix(request.video_id, self.kind)

        reused = self._reuse(request.video_id, output_dir)
        if reused:
            files = self._list_local_files(output_dir, prefix)
            logging.info(f"♻️ Reusing {len(files)} stored {self.kind.value} file(s)")
        else:
            self.recovery.run(script, script_path, work_dir, output_dir, reset_output=True)
            files = self.uploader.upload_tree(output_dir, prefix)

        if self.kind is JobKind.IMAGE_PREVIEW:
            fields = {"preview_data": self._image_preview_data(script, files, prefix),
                      "preview_storage_path": prefix}
        else:
            fields = {"audio_preview_data": self._audio_preview_data(script, files)}
        self.reporter.mark_completed(self.kind, request.video_id, request.uid, **fields)

        return JobOutcome(success=True, kind=self.kind, video_id=request.video_id, reused=reused,
                          artifact_url=self.store.get_public_url(prefix), files=files,
                          processing_time=round(time.monotonic() - start))

    # --- entry point ---

    def _fail(self, request: JobRequest, error: Exception, start: float) -> JobOutcome:
        message = str(error)
        logging.error(f"❌ Job {request.video_id} ({self.kind.value}) failed: {message}")
        if request.video_id:
            self.reporter.mark_failed(self.kind, request.video_id, request.uid,
                                      f"{FAILURE_PREFIXES[self.kind]}{message}")
        if self.kind is JobKind.VIDEO:
            self.reporter.notify_failure(request.video_id, request.story_id, request.title, message)
        return JobOutcome(success=False, kind=self.kind, video_id=request.video_id or "", error=message,
                          processing_time=round(time.monotonic() - start))

    def run(self, request: JobRequest) -> JobOutcome:
        start = time.monotonic()
        work_dir = None
        logging.info(f"🚀 Starting {self.kind.value} job {request.video_id} ({request.title or 'untitled'})")
        try:
            self._validate(request)
            work_dir = self._create_work_dir(request.video_id)
            self.reporter.mark_processing(self.kind, request.video_id, request.uid)

            script = self._prepare_script(request.script_json)
            script_path = write_script(script, os.path.join(work_dir, "script.json"))

            if self.kind is JobKind.VIDEO:
                outcome = self._run_video(request, script, script_path, work_dir, start)
            else:
                outcome = self._run_preview(request, script, script_path, work_dir, start)
            logging.info(f"🎉 Job {request.video_id} ({self.kind.value}) completed in {outcome.processing_time}s"
                         f"{' (reused)' if outcome.reused else ''}")
            return outcome
        except Exception as e:
            return self._fail(request, e, start)
        finally:
            self._cleanup(work_dir)


def build_orchestrator(kind: JobKind, store=None) -> JobOrchestrator:
    """Wires an orchestrator against the configured store and database."""
    store = store or get_storage()
    return JobOrchestrator(kind, store)
