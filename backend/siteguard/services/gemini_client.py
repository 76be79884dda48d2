from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from google import genai
from google.genai import types

from siteguard.core.config import Settings, settings as default_settings
from siteguard.core.exceptions import InferenceError, MissingApiKeyError
from siteguard.services.response_parser import strip_code_fence

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are SiteGuard AI, a construction site safety reviewer.
You receive a site video, the Job Safety Analysis (JSA) or hazard context for the work shown, and the operator's instructions.

Reply with exactly one JSON object of this shape and nothing else:
{
  "summary": "short overall summary of the work shown and its safety",
  "safetyScore": <integer 0-100, overall compliance>,
  "violations": [
    {
      "description": "what is unsafe and who is exposed",
      "startTimeSeconds": <number, seconds from the first frame of the file>,
      "endTimeSeconds": <number, seconds from the first frame of the file>,
      "durationSeconds": <number>,
      "severity": "Critical" | "High" | "Medium" | "Low" | "Info",
      "onScreenStartTime": "<burned-in clock text at the start, or null>",
      "onScreenEndTime": "<burned-in clock text at the end, or null>"
    }
  ],
  "positiveObservations": ["good practice observed"]
}

Rules:
1. Times are always measured from the start of the video file, never from an on-screen clock.
2. Fill onScreenStartTime/onScreenEndTime only when a timestamp overlay is clearly legible; otherwise use null. Never guess.
3. Report specific, actionable hazards and tie them to the JSA where one is given.
4. Use empty arrays when there are no violations or no positive observations.
"""

DEFAULT_CONTEXT = "No JSA or hazard context was provided. Apply general construction safety practice."
DEFAULT_INSTRUCTIONS = "Perform a general safety analysis."


@dataclass
class UploadedVideo:
    name: str
    uri: str
    mime_type: str
    display_name: str


def build_prompt(jsa_context: str | None, user_instructions: str | None) -> str:
    return (
        f"JSA/Hazard Context:\n{(jsa_context or '').strip() or DEFAULT_CONTEXT}\n\n"
        f"User Instructions:\n{(user_instructions or '').strip() or DEFAULT_INSTRUCTIONS}\n"
    )


def _state_name(file: Any) -> str:
    state = getattr(file, "state", None)
    return str(getattr(state, "name", state) or "STATE_UNSPECIFIED")


class GeminiVideoAnalyzer:
    """Uploads a video to the Gemini Files API and asks the model for a safety review.

    ``analyze`` returns the model's raw text (code fences removed); turning it
    into an AnalysisResult is the response parser's job.
    """

    def __init__(self, config: Settings | None = None, client: Any | None = None, sleep=asyncio.sleep) -> None:
        self.config = config or default_settings
        self._client = client
        self._sleep = sleep

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self.config.gemini_configured:
                raise MissingApiKeyError()
            self._client = genai.Client(api_key=self.config.gemini_api_key)
        return self._client

    async def upload(self, path: str | Path, mime_type: str = "video/mp4", display_name: str | None = None) -> UploadedVideo:
        """Upload ``path`` and poll until Gemini has finished processing it."""
        path = Path(path)
        client = self.client
        try:
            uploaded = await client.aio.files.upload(
                file=str(path),
                config={"mime_type": mime_type, "display_name": display_name or path.name},
            )
        except Exception as exc:
            logger.error("Gemini upload failed for %s: %s", path.name, exc)
            raise InferenceError(f"Error uploading video to Gemini: {exc}") from exc

        if not uploaded.name:
            raise InferenceError("Gemini upload response did not include a file name.")

        interval = self.config.gemini_poll_interval_sec
        attempts = self.config.gemini_max_poll_attempts
        state = _state_name(uploaded)
        for attempt in range(1, attempts + 1):
            await self._sleep(interval)
            try:
                current = await client.aio.files.get(name=uploaded.name)
            except Exception as exc:
                raise InferenceError(f"Error polling Gemini file {uploaded.name}: {exc}") from exc

            state = _state_name(current)
            logger.debug("Gemini file %s state %s (attempt %d/%d)", uploaded.name, state, attempt, attempts)
            if state == types.FileState.ACTIVE.name:
                if not current.uri:
                    raise InferenceError("Gemini file is ACTIVE but has no URI.")
                return UploadedVideo(
                    name=uploaded.name,
                    uri=current.uri,
                    mime_type=current.mime_type or mime_type,
                    display_name=current.display_name or display_name or path.name,
                )
            if state == types.FileState.FAILED.name:
                detail = getattr(current, "error", None) or "no details provided"
                logger.error("Gemini failed to process %s: %s", uploaded.name, detail)
                raise InferenceError(f"Gemini file processing failed: {detail}")

        raise InferenceError(f"Gemini file did not become ACTIVE after {attempts} attempts. Last state: {state}.")

    async def analyze(
        self,
        video: UploadedVideo,
        jsa_context: str | None = None,
        user_instructions: str | None = None,
    ) -> str:
        client = self.client
        contents = [
            types.Part.from_uri(file_uri=video.uri, mime_type=video.mime_type),
            build_prompt(jsa_context, user_instructions),
        ]
        config = types.GenerateContentConfig(
            system_instruction=SYSTEM_PROMPT,
            response_mime_type="application/json",
        )
        try:
            response = await client.aio.models.generate_content(
                model=self.config.gemini_model,
                contents=contents,
                config=config,
            )
        except Exception as exc:
            logger.error("Gemini analysis failed for %s: %s", video.name, exc)
            raise InferenceError(f"Error analyzing video with Gemini: {exc}") from exc

        text = response.text or ""
        logger.info("Gemini returned %d characters for %s", len(text), video.name)
        return strip_code_fence(text)

