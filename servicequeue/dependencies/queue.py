from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from servicequeue.core.config import Settings, get_settings
from servicequeue.queue.engine import QueueEngine
from servicequeue.queue.notifier import LiveStateNotifier


async def get_queue_engine(request: Request) -> QueueEngine:
    engine = getattr(request.app.state, "queue_engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Queue engine is not configured")
    return engine


async def get_notifier(request: Request) -> LiveStateNotifier:
    notifier = getattr(request.app.state, "notifier", None)
    if notifier is None:
        raise HTTPException(status_code=503, detail="Live updates are not configured")
    return notifier


async def get_app_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    return settings if isinstance(settings, Settings) else get_settings()


QueueEngineDep = Annotated[QueueEngine, Depends(get_queue_engine)]
NotifierDep = Annotated[LiveStateNotifier, Depends(get_notifier)]
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
