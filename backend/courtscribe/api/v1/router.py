"""Main API router aggregator."""

from fastapi import APIRouter

from courtscribe.api.v1 import live, transcripts
from courtscribe.core.events.sse import router as events_router

api_router = APIRouter()

api_router.include_router(live.router, prefix="/transcription/live", tags=["live-transcription"])
api_router.include_router(transcripts.router, prefix="/transcripts", tags=["transcripts"])
api_router.include_router(events_router, prefix="/events", tags=["events"])
