from __future__ import annotations

from functools import partial

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse

from servicequeue.dependencies.queue import NotifierDep, SettingsDep
from servicequeue.response.streaming import LiveStreamer, StreamFormat

router = APIRouter(prefix="/stream", tags=["stream"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get(
    "/{service_id}",
    response_class=StreamingResponse,
    summary="Live current/next/waiting updates for one service",
)
async def stream_service(
    service_id: int,
    notifier: NotifierDep,
    settings: SettingsDep,
    stream_format: StreamFormat = Query(StreamFormat.SSE, alias="format"),
) -> StreamingResponse:
    streamer = LiveStreamer(keepalive_seconds=settings.stream_keepalive_seconds, stream_format=stream_format)

    frames = streamer.iter_frames(notifier.registry, service_id, partial(notifier.current_state, service_id))
    return StreamingResponse(frames, media_type=streamer.media_type, headers=STREAM_HEADERS)
