from __future__ import annotations

import asyncio
import json
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

import httpx
from loguru import logger
from pydantic import ValidationError

from .errors import (
    InvalidAudio,
    NoSpeechDetected,
    NoTodosExtracted,
    UpstreamAuthFailed,
    UpstreamFailure,
    UpstreamQuotaExceeded,
    UpstreamRateLimited,
    VoiceNotConfigured,
)
from .repositories import utc_now
from .schemas import ExtractedTodo, ProcessingMetadata, VoiceProcessResponse
from .settings import Settings

EXTRACTION_PROMPT = """You are a todo extraction assistant. Read the speech transcription below and turn it into actionable todo items.

RULES:
1. Split compound requests into separate, actionable todos.
2. Every todo gets a clear, concise title of at most 100 characters.
3. Add a description when the speaker gave extra context.
4. Use priority 9 unless the speaker states a different priority (scale 1-10).
5. When a deadline is mentioned, convert it to an absolute ISO date ("tomorrow", "next week" are relative to the current date below).
6. Suggest tags for the content category (work, personal, urgent, shopping, ...).
7. Prefer several specific todos over one vague todo.
8. Ignore filler words.
9. transcription_segment must quote the exact words of the transcription that produced the todo.

Current date: {today}

TRANSCRIPTION:
"{transcript}"

Answer with a JSON object of the form
{{"todos": [{{"title": str, "description": str | null, "priority": int, "due_date": str | null, "tags": [str], "transcription_segment": str}}]}}"""


# PUBLIC_INTERFACE
def upload_filename(content_type: str) -> str:
    """Pick a file name whose extension the transcription endpoint recognizes for `content_type`."""
    ct = (content_type or "").lower()
    if "webm" in ct:
        return "recording.webm"
    if "mp4" in ct or "m4a" in ct:
        return "recording.m4a"
    if "wav" in ct:
        return "recording.wav"
    if "mpeg" in ct or "mp3" in ct:
        return "recording.mp3"
    return "recording.webm"


def _raise_for_upstream(response: httpx.Response, step: str) -> None:
    if response.is_success:
        return
    body = response.text.lower()
    logger.error(f"[voice] {step} failed status={response.status_code} body={response.text[:500]!r}")
    if response.status_code == 401 or "api key" in body:
        raise UpstreamAuthFailed()
    if "quota" in body:
        raise UpstreamQuotaExceeded()
    if response.status_code == 429 or "rate limit" in body:
        raise UpstreamRateLimited()
    raise UpstreamFailure(f"{step} failed with status {response.status_code}")


# PUBLIC_INTERFACE
class VoicePipeline:
    """
    Speech-to-todos over an OpenAI-compatible API.

    Two calls per recording: the audio is transcribed, then a chat model is
    asked for a JSON list of todos. Extracted todos are returned to the caller
    and never stored here.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.openai.com/v1",
        transcription_model: str = "whisper-1",
        transcription_language: str = "en",
        extraction_model: str = "gpt-4o-mini",
        timeout_seconds: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], datetime]] = None,
        retry_delay: float = 1.0,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.transcription_model = transcription_model
        self.transcription_language = transcription_language
        self.extraction_model = extraction_model
        self.timeout = httpx.Timeout(connect=10.0, read=timeout_seconds, write=30.0, pool=30.0)
        self._transport = transport
        self._clock = clock or utc_now
        self._retry_delay = retry_delay

    @classmethod
    def from_settings(cls, settings: Settings) -> "VoicePipeline":
        return cls(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            transcription_model=settings.transcription_model,
            transcription_language=settings.transcription_language,
            extraction_model=settings.extraction_model,
            timeout_seconds=settings.voice_timeout_seconds,
        )

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )

    async def _post(self, step: str, path: str, **kwargs: Any) -> httpx.Response:
        # One retry for slow or unreachable upstreams.
        async with self._client() as client:
            try:
                return await client.post(path, **kwargs)
            except (httpx.ReadTimeout, httpx.ConnectError) as e:
                logger.warning(f"[voice] {step} timeout/connect error, retrying once: {e}")
                await asyncio.sleep(self._retry_delay)
                try:
                    return await client.post(path, **kwargs)
                except httpx.HTTPError as e2:
                    logger.error(f"[voice] {step} failed after retry: {e2}")
                    raise UpstreamFailure(f"{step} failed: {e2}") from e2
            except httpx.HTTPError as e:
                logger.error(f"[voice] {step} error: {e}")
                raise UpstreamFailure(f"{step} failed: {e}") from e

    async def transcribe(self, audio: bytes, content_type: str) -> str:
        """Return the transcript text, raising NoSpeechDetected when it is blank."""
        filename = upload_filename(content_type)
        logger.debug(
            f"[voice] transcribing file={filename} type={content_type} size={len(audio)} model={self.transcription_model}"
        )
        response = await self._post(
            "transcription",
            "/audio/transcriptions",
            data={"model": self.transcription_model, "language": self.transcription_language},
            files={"file": (filename, audio, content_type)},
        )
        _raise_for_upstream(response, "transcription")
        try:
            text = (response.json().get("text") or "").strip()
        except (AttributeError, TypeError, ValueError) as e:
            logger.error(f"[voice] transcription returned malformed output: {response.text[:500]!r}")
            raise UpstreamFailure(f"transcription returned malformed output: {e}") from e
        if not text:
            raise NoSpeechDetected()
        return text

    async def extract_todos(self, transcript: str, today: date) -> List[ExtractedTodo]:
        """
        Ask the chat model for todos found in `transcript`.

        Items that do not validate (for example a missing title) are skipped;
        an empty result raises NoTodosExtracted.
        """
        payload = {
            "model": self.extraction_model,
            "messages": [
                {"role": "system", "content": "You extract structured todo items from speech transcriptions."},
                {
                    "role": "user",
                    "content": EXTRACTION_PROMPT.format(today=today.isoformat(), transcript=transcript),
                },
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.2,
        }
        response = await self._post("extraction", "/chat/completions", json=payload)
        _raise_for_upstream(response, "extraction")

        try:
            content = response.json()["choices"][0]["message"]["content"] or ""
            raw: Dict[str, Any] = json.loads(content)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise UpstreamFailure(f"extraction returned malformed output: {e}") from e

        items = raw.get("todos") if isinstance(raw, dict) else None
        todos: List[ExtractedTodo] = []
        for item in items or []:
            try:
                todos.append(ExtractedTodo.model_validate(item))
            except ValidationError as e:
                logger.warning(f"[voice] skipping invalid extracted todo {item!r}: {e.error_count()} error(s)")
        if not todos:
            raise NoTodosExtracted()
        return todos

    async def process(self, audio: bytes, content_type: Optional[str]) -> VoiceProcessResponse:
        """Transcribe one recording and extract todos from it."""
        if not self.configured:
            raise VoiceNotConfigured()
        if not audio:
            raise InvalidAudio()
        ct = content_type or ""
        if not ct.startswith("audio/"):
            raise InvalidAudio(f"Invalid file format. Expected audio file, got: {ct or 'unknown'}")

        transcript = await self.transcribe(audio, ct)
        now = self._clock()
        todos = await self.extract_todos(transcript, now.date())
        logger.info(f"[voice] extracted {len(todos)} todo(s) from {len(transcript)} chars of transcription")
        return VoiceProcessResponse(
            success=True,
            todos=todos,
            transcription=transcript,
            processing_metadata=ProcessingMetadata(
                timestamp=now,
                transcription_length=len(transcript),
                todos_count=len(todos),
                model_used=self.extraction_model,
                whisper_model=self.transcription_model,
            ),
        )
