"""
Service classes for the render orchestrator.
Contains the ScriptSanitizer, the fallback image helpers and the RendererInvoker.
"""

import os
import re
import copy
import time
import shlex
import shutil
import subprocess
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union

from config import (
    RENDERER_ROOT,
    RENDERER_COMMAND,
    FALLBACK_IMAGE_URL,
    PROBLEMATIC_KEYWORDS,
    MODERATION_MARKERS,
)

AUDIO_EXTENSIONS = (".mp3", ".wav")


def is_problematic_prompt(prompt) -> bool:
    if not prompt or not isinstance(prompt, str):
        return False
    lower_prompt = prompt.lower()
    return any(keyword.lower() in lower_prompt for keyword in PROBLEMATIC_KEYWORDS)


def _beat_prompt(beat: dict) -> Optional[str]:
    image = beat.get("image")
    if isinstance(image, dict) and isinstance(image.get("source"), dict):
        return image["source"].get("prompt")
    return None


def _strip_image(beat: dict) -> None:
    beat.pop("imagePrompt", None)
    beat.pop("imageOptions", None)
    beat.pop("image", None)


class ScriptSanitizer:
    """Removes image prompts that are likely to be blocked by moderation."""

    def __init__(self, script: dict):
        self.script = copy.deepcopy(script or {})
        self.removed_indexes = []

    def _check_beat(self, index: int, beat: dict):
        prompt = beat.get("imagePrompt")
        source_prompt = _beat_prompt(beat)
        for candidate in (prompt, source_prompt):
            if is_problematic_prompt(candidate):
                logging.warning(f"⚠️ Beat {index + 1}: problematic image prompt removed: \"{candidate}\"")
                _strip_image(beat)
                self.removed_indexes.append(index)
                return

    def run(self) -> Tuple[dict, List[int]]:
        beats = self.script.get("beats")
        if isinstance(beats, list):
            for index, beat in enumerate(beats):
                if isinstance(beat, dict):
                    self._check_beat(index, beat)

        if self.removed_indexes:
            logging.warning(f"🔧 SAFETY: removed images from beats {[i + 1 for i in self.removed_indexes]}")
        else:
            logging.info("✅ All image prompts passed the safety check")

        return self.script, self.removed_indexes


def _fallback_image(url: str) -> dict:
    return {"type": "image", "source": {"kind": "url", "url": url}}


def generated_image_indexes(script: dict) -> List[int]:
    """Indexes of beats whose image is generated from a prompt."""
    beats = script.get("beats") or []
    return [
        index for index, beat in enumerate(beats)
        if isinstance(beat, dict) and (beat.get("imagePrompt") or _beat_prompt(beat))
    ]


def replace_images_with_fallback(script: dict, indexes: Iterable[int],
                                 fallback_url: str = FALLBACK_IMAGE_URL) -> dict:
    """Returns a copy of the script with exactly the given beats pointing at the fallback image."""
    processed = copy.deepcopy(script)
    wanted = set(indexes)
    beats = processed.get("beats") or []
    for index, beat in enumerate(beats):
        if index in wanted and isinstance(beat, dict):
            beat.pop("imagePrompt", None)
            beat.pop("imageOptions", None)
            beat["image"] = _fallback_image(fallback_url)
    logging.info(f"🔄 Replaced {len(wanted & set(range(len(beats))))} image(s) with the fallback image")
    return processed


def replace_all_images_with_fallback(script: dict, fallback_url: str = FALLBACK_IMAGE_URL) -> dict:
    return replace_images_with_fallback(script, generated_image_indexes(script), fallback_url)


def parse_failed_image_indexes(output: str) -> List[int]:
    """
    The renderer prints "} image <N>" when an image step starts unwinding and
    a bare "> image" once the failing loop exits. Every "> image" line is paired
    with the nearest "} image <N>" above it.
    """
    failed = set()
    lines = (output or "").split("\n")
    for i, line in enumerate(lines):
        if line.strip() != "> image":
            continue
        for j in range(i - 1, -1, -1):
            match = re.search(r"\} image (\d+)", lines[j].strip())
            if match:
                failed.add(int(match.group(1)))
                break
    return sorted(failed)


@dataclass(frozen=True)
class RenderSuccess:
    artifact_path: str
    output: str = ""
    duration_ms: int = 0


@dataclass(frozen=True)
class ModerationBlocked:
    failed_indexes: Tuple[int, ...]
    output: str = ""
    duration_ms: int = 0


@dataclass(frozen=True)
class RenderFailure:
    message: str
    output: str = ""
    duration_ms: int = 0
    timed_out: bool = False


RenderResult = Union[RenderSuccess, ModerationBlocked, RenderFailure]


class RendererInvoker:
    """Handles the execution of the external renderer CLI."""

    def __init__(self, root: str = RENDERER_ROOT, command: str = RENDERER_COMMAND):
        self.root = os.path.abspath(root)
        self.command = shlex.split(command)

    def _build_command(self, mode: str, script_path: str, output_dir: str) -> List[str]:
        # The renderer refuses absolute paths outside its own tree
        relative_script = os.path.relpath(script_path, self.root)
        relative_output = os.path.relpath(output_dir, self.root)
        return [*self.command, mode, relative_script, "-o", relative_output]

    def _find_movie(self, script_path: str, output_dir: str, output_path: str,
                    caption_lang: Optional[str]) -> str:
        base = os.path.splitext(os.path.basename(script_path))[0]
        candidates = [
            os.path.join(output_dir, f"{base}.mp4"),
            os.path.join(output_dir, "script.mp4"),
            output_path,
        ]
        if caption_lang:
            candidates.insert(0, os.path.join(output_dir, f"{base}__{caption_lang}.mp4"))

        for candidate in candidates:
            if candidate and os.path.exists(candidate):
                if os.path.abspath(candidate) != os.path.abspath(output_path):
                    # copy + remove instead of move, output may sit on another filesystem
                    shutil.copyfile(candidate, output_path)
                    os.remove(candidate)
                return output_path

        logging.error(f"❌ Video file not found. Checked: {candidates}")
        return ""

    @staticmethod
    def _find_dir_with(dirs: List[str], extensions: Tuple[str, ...]) -> str:
        for directory in dirs:
            if os.path.isdir(directory):
                if any(f.lower().endswith(extensions) for f in os.listdir(directory)):
                    return directory
        return ""

    def _find_output(self, mode: str, script_path: str, output_dir: str,
                     output_path: Optional[str], caption_lang: Optional[str]) -> str:
        base = os.path.splitext(os.path.basename(script_path))[0]
        if mode == "movie":
            return self._find_movie(script_path, output_dir, output_path or os.path.join(output_dir, "output.mp4"),
                                    caption_lang)
        if mode == "images":
            found = self._find_dir_with(
                [os.path.join(output_dir, "images", base), os.path.join(output_dir, "images", "script")],
                (".png",),
            )
            return output_dir if found else ""
        if mode == "audio":
            found = self._find_dir_with(
                [os.path.join(output_dir, "audio", base), os.path.join(output_dir, "audio", "script"),
                 os.path.join(output_dir, "audio")],
                AUDIO_EXTENSIONS,
            )
            return output_dir if found else ""
        raise ValueError(f"Unknown render mode: {mode}")

    def render(self, mode: str, script_path: str, output_dir: str, output_path: Optional[str] = None,
               caption_lang: Optional[str] = None, timeout: int = 300) -> RenderResult:
        if not os.path.isdir(self.root):
            logging.error(f"❌ Renderer root not found: {self.root}")
            return RenderFailure(message=f"Renderer not found at {self.root}")

        os.makedirs(output_dir, exist_ok=True)
        command = self._build_command(mode, script_path, output_dir)
        logging.info(f"🎬 Running renderer command: {' '.join(command)}")

        start = time.monotonic()
        try:
            result = subprocess.run(
                command,
                cwd=self.root,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=timeout,
                env=os.environ.copy(),
            )
        except subprocess.TimeoutExpired as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            logging.error(f"❌ Renderer timed out after {timeout} seconds.")
            output = e.output if isinstance(e.output, str) else (e.output or b"").decode("utf-8", "replace")
            return RenderFailure(message=f"Rendering timed out after {timeout} seconds",
                                 output=output, duration_ms=duration_ms, timed_out=True)
        except OSError as e:
            logging.error(f"❌ Could not start the renderer: {e}")
            return RenderFailure(message=f"Could not start the renderer: {e}")

        duration_ms = int((time.monotonic() - start) * 1000)
        output = result.stdout or ""

        if result.returncode != 0 and any(marker in output for marker in MODERATION_MARKERS):
            failed = parse_failed_image_indexes(output)
            logging.warning(f"⚠️ Moderation blocked image generation for beats {[i + 1 for i in failed] or 'unknown'}")
            return ModerationBlocked(failed_indexes=tuple(failed), output=output, duration_ms=duration_ms)

        if result.returncode != 0:
            lines = output.strip().splitlines()
            last_line = lines[-1] if lines else "Unknown renderer error"
            logging.error(f"❌ Rendering failed (exit {result.returncode}). Output:\n{output}")
            return RenderFailure(message=f"Rendering failed: {last_line}", output=output, duration_ms=duration_ms)

        logging.info(f"✅ Rendering completed in {duration_ms // 1000}s")
        artifact = self._find_output(mode, script_path, output_dir, output_path, caption_lang)
        if artifact:
            return RenderSuccess(artifact_path=artifact, output=output, duration_ms=duration_ms)
        return RenderFailure(message="Output not found after a successful render.",
                             output=output, duration_ms=duration_ms)
