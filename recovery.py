"""
Moderation recovery loop.
Re-renders a script after moderation blocks, replacing only the blocked beats'
images with the fallback image, and finally every generated image.
"""

import os
import json
import shutil
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set

from config import MAX_RENDER_ATTEMPTS, FALLBACK_IMAGE_URL
from exceptions import ModerationExhaustedError, RenderError, RenderTimeoutError
from services import (
    ModerationBlocked,
    RenderFailure,
    RenderResult,
    RenderSuccess,
    generated_image_indexes,
    replace_all_images_with_fallback,
    replace_images_with_fallback,
)


class RecoveryState(str, Enum):
    RENDER = "render"
    RECOVER = "recover"
    FINAL = "final"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RenderAttempt:
    attempt_number: int
    script_path: str
    result: RenderResult


@dataclass
class RecoveryOutcome:
    artifact_path: str
    attempts: List[RenderAttempt] = field(default_factory=list)
    replaced_indexes: Set[int] = field(default_factory=set)
    used_final_fallback: bool = False


def write_script(script: dict, path: str) -> str:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(script, f, ensure_ascii=False, indent=2)
    return path


class ModerationRecoveryLoop:
    """
    Drives renderer attempts for one job.

    Attempts 1..max_attempts render the script with the cumulative set of
    blocked beats replaced; each variant is rebuilt from the pristine script so
    earlier replacements are never undone. After that, one last attempt renders
    with every generated image replaced. Non-moderation failures stop the loop.
    """

    def __init__(self, renderer, mode: str, timeout: int, max_attempts: int = MAX_RENDER_ATTEMPTS,
                 fallback_url: str = FALLBACK_IMAGE_URL):
        self.renderer = renderer
        self.mode = mode
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.fallback_url = fallback_url

    def _render(self, script_path: str, output_dir: str, output_path: Optional[str],
                caption_lang: Optional[str], reset_output: bool) -> RenderResult:
        if reset_output and os.path.exists(output_dir):
            # a blocked attempt may leave partial output behind
            shutil.rmtree(output_dir)
        return self.renderer.render(self.mode, script_path, output_dir, output_path=output_path,
                                    caption_lang=caption_lang, timeout=self.timeout)

    @staticmethod
    def _raise_failure(result: RenderFailure, attempt: int):
        if result.timed_out:
            raise RenderTimeoutError(result.message)
        if attempt > 1:
            raise RenderError(f"Render failed after {attempt - 1} retries: {result.message}")
        raise RenderError(result.message)

    def run(self, script: dict, script_path: str, work_dir: str, output_dir: str,
            output_path: Optional[str] = None, caption_lang: Optional[str] = None,
            reset_output: bool = False) -> RecoveryOutcome:
        """
        With reset_output, output_dir is emptied before every attempt so only
        the successful attempt's files remain. output_dir must then be
        separate from work_dir.
        """
        attempts: List[RenderAttempt] = []
        replaced: Set[int] = set()
        state = RecoveryState.RENDER
        current_path = script_path
        last_result: Optional[RenderResult] = None

        while state not in (RecoveryState.DONE, RecoveryState.FAILED):
            if state == RecoveryState.RENDER:
                attempt_number = len(attempts) + 1
                logging.info(f"🎬 Render attempt {attempt_number}/{self.max_attempts} ({os.path.basename(current_path)})")
                last_result = self._render(current_path, output_dir, output_path, caption_lang, reset_output)
                attempts.append(RenderAttempt(attempt_number, current_path, last_result))

                if isinstance(last_result, RenderSuccess):
                    state = RecoveryState.DONE
                elif isinstance(last_result, RenderFailure):
                    self._raise_failure(last_result, attempt_number)
                elif attempt_number >= self.max_attempts:
                    logging.error("❌ Maximum render attempts reached. Replacing every image for a final attempt.")
                    state = RecoveryState.FINAL
                else:
                    state = RecoveryState.RECOVER

            elif state == RecoveryState.RECOVER:
                failed = last_result.failed_indexes
                if failed:
                    replaced.update(failed)
                else:
                    # no parsable index: every generated image is suspect
                    replaced.update(generated_image_indexes(script))
                variant = replace_images_with_fallback(script, replaced, self.fallback_url)
                retry_number = len(attempts)
                current_path = write_script(variant, os.path.join(work_dir, f"script_retry_{retry_number}.json"))
                logging.info(f"🔁 Retry {retry_number}: fallback image for beats {sorted(i + 1 for i in replaced)}")
                state = RecoveryState.RENDER

            elif state == RecoveryState.FINAL:
                final_script = replace_all_images_with_fallback(script, self.fallback_url)
                final_path = write_script(final_script, os.path.join(work_dir, "script_final_fallback.json"))
                last_result = self._render(final_path, output_dir, output_path, caption_lang, reset_output)
                attempts.append(RenderAttempt(len(attempts) + 1, final_path, last_result))
                if isinstance(last_result, RenderSuccess):
                    return RecoveryOutcome(last_result.artifact_path, attempts,
                                           set(generated_image_indexes(script)), used_final_fallback=True)
                state = RecoveryState.FAILED

        if state == RecoveryState.DONE:
            return RecoveryOutcome(last_result.artifact_path, attempts, replaced)

        if isinstance(last_result, RenderFailure):
            raise RenderError(f"Render failed on the final fallback attempt: {last_result.message}")
        raise ModerationExhaustedError(
            f"Render failed: images kept being blocked by moderation after {len(attempts)} attempts"
        )
