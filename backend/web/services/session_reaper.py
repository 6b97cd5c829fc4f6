"""Background reaper for agent sessions of deleted sprites."""

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)


async def reap_once(app: Any) -> list[str]:
    sprites = await app.state.store.list()
    orphans = await app.state.bridge.reconcile(s.id for s in sprites)
    if orphans:
        logger.info("reaped agent sessions sprites=%s", ",".join(orphans))
    return orphans


async def session_reaper_loop(app: Any, interval_sec: float) -> None:
    while True:
        await asyncio.sleep(interval_sec)
        try:
            await reap_once(app)
        except Exception:
            logger.exception("session reaper pass failed")
