"""Notification feed: GET /api/events (poll) and GET /api/events/stream (SSE)."""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from trajectory_fhe.models import Notification
from trajectory_fhe.service import TrajectoryService, get_service

logger = logging.getLogger(__name__)

router = APIRouter()

POLL_INTERVAL = 0.5  # seconds


def _sse_line(data: dict) -> str:
    return f"data: {json.dumps(data)}\n\n"


@router.get("/api/events", response_model=list[Notification])
def poll_events(
    since: int = Query(default=0, ge=0),
    service: TrajectoryService = Depends(get_service),
):
    return service.bus.replay(since)


@router.get("/api/events/stream")
async def stream_events(
    request: Request,
    since: int = Query(default=0, ge=0),
    service: TrajectoryService = Depends(get_service),
):
    """SSE stream of notifications with sequence id > ``since``."""

    async def event_generator():
        last_seq = since
        try:
            while True:
                if await request.is_disconnected():
                    break
                for note in service.bus.replay(last_seq):
                    last_seq = note.sequence_id
                    yield _sse_line(note.model_dump(mode="json"))
                await asyncio.sleep(POLL_INTERVAL)
        except asyncio.CancelledError:
            logger.info("Event stream client went away at seq %d", last_seq)
            raise

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )
