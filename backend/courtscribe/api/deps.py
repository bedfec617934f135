"""FastAPI dependencies for the services kept on app.state.

Typed on HTTPConnection so WebSocket routes can use them too.
"""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.requests import HTTPConnection

from courtscribe.core.stt.openai import OpenAITranscriber
from courtscribe.core.transcription.coordinator import LiveSessionCoordinator
from courtscribe.core.transcripts.service import TranscriptService


def get_live_coordinator(connection: HTTPConnection) -> LiveSessionCoordinator:
    return connection.app.state.live_coordinator


def get_transcript_service(connection: HTTPConnection) -> TranscriptService:
    return connection.app.state.transcript_service


def get_transcriber(connection: HTTPConnection) -> OpenAITranscriber:
    transcriber = getattr(connection.app.state, "transcriber", None)
    if transcriber is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Batch transcription is not configured",
        )
    return transcriber


LiveCoordinator = Annotated[LiveSessionCoordinator, Depends(get_live_coordinator)]
Transcripts = Annotated[TranscriptService, Depends(get_transcript_service)]
Transcriber = Annotated[OpenAITranscriber, Depends(get_transcriber)]
