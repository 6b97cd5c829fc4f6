"""Application lifespan management."""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend.web.services.session_reaper import session_reaper_loop

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the session reaper; dispose every agent session on shutdown."""
    settings = app.state.settings
    app.state.reaper_task = None
    if settings.reaper_interval_sec > 0:
        app.state.reaper_task = asyncio.create_task(session_reaper_loop(app, settings.reaper_interval_sec))

    try:
        yield
    finally:
        task = app.state.reaper_task
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        try:
            await app.state.bridge.close()
        except Exception as e:
            logger.error("agent cleanup error: %s", e)
