"""Server-sent event streams for the tasks file and per-task agent logs."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from agentboard.routers.api import get_board_config
from agentboard.snapshots import read_log_text, read_tasks_file
from agentboard.streaming.encoder import SSE_HEADERS, SSE_MEDIA_TYPE, encode_text_event
from agentboard.streaming.session import StreamSession
from agentboard.streaming.watch_registry import FileWatchRegistry

stream_router = APIRouter(prefix="/api", tags=["stream"])


def get_watch_registry(request: Request) -> FileWatchRegistry:
    registry = getattr(request.app.state, "watch_registry", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="File watch registry not initialized")
    return registry


def _event_stream(session: StreamSession) -> StreamingResponse:
    return StreamingResponse(session.events(), media_type=SSE_MEDIA_TYPE, headers=dict(SSE_HEADERS))


@stream_router.get("/stream")
async def stream_tasks(request: Request):
    """Push the validated tasks file on open and after every change."""
    config = get_board_config(request)
    session = StreamSession(
        get_watch_registry(request),
        config.tasks_path,
        read_tasks_file,
        name="tasks",
        keepalive_seconds=config.keepalive_seconds,
    )
    return _event_stream(session)


@stream_router.get("/logs/{task_id}/stream")
async def stream_task_log(request: Request, task_id: int):
    """Push `{content: <log text>}` on open and after every change.

    A log that does not exist yet streams as empty content until it appears.
    """
    config = get_board_config(request)
    session = StreamSession(
        get_watch_registry(request),
        config.log_path(task_id),
        read_log_text,
        name="log",
        encoder=encode_text_event,
        keepalive_seconds=config.keepalive_seconds,
    )
    return _event_stream(session)
