from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, UploadFile

from ..auth import get_current_user
from ..dependencies import get_voice_pipeline
from ..schemas import VoiceProcessResponse
from ..voice import VoicePipeline

router = APIRouter(
    prefix="/api/v1/voice",
    tags=["voice"],
)


# PUBLIC_INTERFACE
@router.post(
    "/process",
    response_model=VoiceProcessResponse,
    summary="Extract Todos from Recording",
    description=(
        "Upload an audio recording (multipart field 'audio'). The recording is transcribed and "
        "todos are extracted from the transcript. Nothing is stored; submit accepted todos to "
        "POST /api/v1/todos/bulk."
    ),
    responses={
        400: {"description": "Missing/invalid audio, no speech or no todos found"},
        429: {"description": "Upstream quota or rate limit reached"},
        500: {"description": "Voice processing not configured or upstream failure"},
    },
)
async def process_recording(
    audio: Optional[UploadFile] = File(None, description="Recorded audio file"),
    pipeline: VoicePipeline = Depends(get_voice_pipeline),
    user_id: str = Depends(get_current_user),
) -> VoiceProcessResponse:
    data = await audio.read() if audio is not None else b""
    content_type = audio.content_type if audio is not None else None
    return await pipeline.process(data, content_type)
