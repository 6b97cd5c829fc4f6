"""
Agent bridge: connects WebSocket clients to agent sessions.

One agent session per sprite id, created lazily on first connect and kept
across transport disconnects so a reconnecting browser resumes the same
conversation. Each session has a single subscriber slot; a new transport
replaces the previous one instead of stacking listeners.

Everything here runs on the server's event loop, so the maps need no locks.
Session creation is memoised per sprite id: concurrent connects for an
unseen id share one in-flight creation.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from backend.web.core.config import PROMPT_LOG_CHARS
from backend.web.models.requests import ClientMessage
from backend.web.models.sprite import SpriteInfo
from backend.web.services.agent_session import AgentEvent, AgentSession, AgentSessionFactory, Unsubscribe

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """Outbound half of a client connection. `send` never blocks or raises."""

    def send(self, event: AgentEvent) -> None: ...


def error_event(message: str) -> AgentEvent:
    return {"type": "error", "message": message}


class EventSlot:
    """Forwards agent events to at most one transport at a time."""

    def __init__(self, session: AgentSession):
        self._session = session
        self._unsubscribe: Unsubscribe | None = None
        self.transport: Transport | None = None

    def attach(self, transport: Transport) -> None:
        self.detach()
        self.transport = transport
        self._unsubscribe = self._session.subscribe(transport.send)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = None
        self.transport = None


@dataclass
class AgentHandle:
    sprite_id: str
    session: AgentSession
    slot: EventSlot = field(init=False)

    def __post_init__(self) -> None:
        self.slot = EventSlot(self.session)


class SessionBridge:
    def __init__(self, factory: AgentSessionFactory):
        self._factory = factory
        self._handles: dict[str, AgentHandle] = {}
        self._pending: dict[str, asyncio.Task[AgentHandle]] = {}
        self._prompts: set[asyncio.Task] = set()

    def active_ids(self) -> list[str]:
        return list(self._handles)

    def get(self, sprite_id: str) -> AgentHandle | None:
        return self._handles.get(sprite_id)

    async def get_or_create(self, sprite: SpriteInfo) -> AgentHandle:
        handle = self._handles.get(sprite.id)
        if handle is not None:
            return handle

        task = self._pending.get(sprite.id)
        if task is None:
            task = asyncio.create_task(self._create(sprite))
            self._pending[sprite.id] = task
            task.add_done_callback(lambda t, sid=sprite.id: self._forget_pending(sid, t))
        # Shield: one caller going away must not cancel creation for the others
        return await asyncio.shield(task)

    async def _create(self, sprite: SpriteInfo) -> AgentHandle:
        logger.info("agent session create sprite=%s cwd=%s", sprite.id, sprite.cwd)
        session = await self._factory(sprite.cwd)
        handle = AgentHandle(sprite.id, session)
        self._handles[sprite.id] = handle
        return handle

    def _forget_pending(self, sprite_id: str, task: asyncio.Task) -> None:
        if self._pending.get(sprite_id) is task:
            del self._pending[sprite_id]

    # ==================== Transport lifecycle ====================

    async def connect(self, transport: Transport, sprite: SpriteInfo) -> bool:
        try:
            handle = await self.get_or_create(sprite)
        except Exception as e:
            logger.warning("agent session create failed sprite=%s err=%s", sprite.id, e)
            transport.send(error_event(str(e)))
            return False

        transport.send({"type": "connected", "spriteId": sprite.id})
        handle.slot.attach(transport)
        logger.info("agent connected sprite=%s", sprite.id)
        return True

    def on_transport_close(self, sprite_id: str, transport: Transport | None = None) -> bool:
        """Stop forwarding events; the agent session itself stays alive.

        Returns False when a newer transport owns the slot.
        """
        handle = self._handles.get(sprite_id)
        if handle is None:
            return True
        if transport is not None and handle.slot.transport is not transport:
            return False
        handle.slot.detach()
        logger.info("agent detached sprite=%s", sprite_id)
        return True

    # ==================== Inbound messages ====================

    async def handle_message(self, sprite_id: str, message: ClientMessage, transport: Transport) -> None:
        handle = self._handles.get(sprite_id)
        if handle is None:
            transport.send(error_event("No active session"))
            return

        if message.type == "prompt":
            text = message.text
            if not text:
                return
            logger.info("agent prompt sprite=%s text=%s", sprite_id, text[:PROMPT_LOG_CHARS])
            task = asyncio.create_task(self._run_prompt(handle, text, transport))
            self._prompts.add(task)
            task.add_done_callback(self._prompts.discard)
        elif message.type == "abort":
            logger.info("agent abort sprite=%s", sprite_id)
            try:
                await handle.session.abort()
            except Exception as e:
                logger.warning("agent abort failed sprite=%s err=%s", sprite_id, e)
                transport.send(error_event(str(e)))

    async def _run_prompt(self, handle: AgentHandle, text: str, transport: Transport) -> None:
        try:
            await handle.session.prompt(text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("agent prompt failed sprite=%s err=%s", handle.sprite_id, e)
            transport.send(error_event(str(e)))

    # ==================== Teardown ====================

    async def dispose(self, sprite_id: str) -> bool:
        """Full teardown; only for deliberate sprite deletion."""
        pending = self._pending.get(sprite_id)
        if pending is not None:
            await asyncio.gather(pending, return_exceptions=True)

        handle = self._handles.pop(sprite_id, None)
        if handle is None:
            return False
        handle.slot.detach()
        try:
            await handle.session.dispose()
        except Exception:
            logger.exception("agent dispose failed sprite=%s", sprite_id)
        logger.info("agent disposed sprite=%s", sprite_id)
        return True

    async def reconcile(self, known_ids: Iterable[str]) -> list[str]:
        """Dispose sessions whose sprite is no longer in the registry."""
        known = set(known_ids)
        orphans = [sprite_id for sprite_id in self._handles if sprite_id not in known]
        for sprite_id in orphans:
            await self.dispose(sprite_id)
        return orphans

    async def close(self) -> None:
        for task in list(self._prompts):
            task.cancel()
        await asyncio.gather(*self._prompts, return_exceptions=True)
        for sprite_id in list(self._handles):
            await self.dispose(sprite_id)
