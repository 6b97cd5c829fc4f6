"""
Agent session capability used by the session bridge.

The bridge only needs prompt/abort/dispose/subscribe. The default
implementation runs the pi agent in RPC mode: one JSON object per line,
commands on stdin, events and command responses on stdout.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol

logger = logging.getLogger(__name__)

AgentEvent = dict[str, Any]
EventHandler = Callable[[AgentEvent], None]
Unsubscribe = Callable[[], None]

# Event that ends one prompt's run
RUN_END_EVENT = "agent_end"

STOP_TIMEOUT_SEC = 5.0


class AgentSession(Protocol):
    async def prompt(self, text: str) -> None: ...

    async def abort(self) -> None: ...

    async def dispose(self) -> None: ...

    def subscribe(self, handler: EventHandler) -> Unsubscribe: ...


AgentSessionFactory = Callable[[str], Awaitable[AgentSession]]


class AgentProcessError(RuntimeError):
    pass


class RpcAgentSession:
    """pi agent subprocess speaking JSON lines over stdio."""

    def __init__(self, command: Sequence[str], cwd: str):
        self.command = list(command)
        self.cwd = cwd
        self._proc: asyncio.subprocess.Process | None = None
        self._reader: asyncio.Task | None = None
        self._handlers: list[EventHandler] = []
        self._responses: dict[str, asyncio.Future] = {}
        self._run_waiters: list[asyncio.Future] = []
        self._write_lock = asyncio.Lock()

    async def start(self) -> RpcAgentSession:
        self._proc = await asyncio.create_subprocess_exec(
            *self.command,
            cwd=self.cwd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
            limit=16 * 1024 * 1024,
        )
        self._reader = asyncio.create_task(self._read_loop())
        logger.info("agent process started pid=%s cwd=%s", self._proc.pid, self.cwd)
        return self

    # ==================== Capability ====================

    def subscribe(self, handler: EventHandler) -> Unsubscribe:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._handlers.remove(handler)

        return unsubscribe

    async def prompt(self, text: str) -> None:
        """Resolves when the agent finishes the run started by this prompt."""
        loop = asyncio.get_running_loop()
        done = loop.create_future()
        self._run_waiters.append(done)
        try:
            await self._command({"type": "prompt", "message": text})
        except BaseException:
            with contextlib.suppress(ValueError):
                self._run_waiters.remove(done)
            raise
        await done

    async def abort(self) -> None:
        await self._command({"type": "abort"})

    async def dispose(self) -> None:
        proc = self._proc
        if proc is None:
            return
        self._proc = None
        if proc.stdin is not None:
            proc.stdin.close()
        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), STOP_TIMEOUT_SEC)
            except TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
        if self._reader is not None:
            self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)
        self._fail_pending(AgentProcessError("agent session disposed"))
        self._handlers.clear()

    # ==================== Wire ====================

    async def _command(self, command: dict[str, Any]) -> dict[str, Any]:
        proc = self._proc
        reader = self._reader
        if proc is None or proc.stdin is None or proc.returncode is not None or reader is None or reader.done():
            raise AgentProcessError("agent process is not running")
        command_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._responses[command_id] = future
        line = json.dumps({**command, "id": command_id}) + "\n"
        try:
            async with self._write_lock:
                try:
                    proc.stdin.write(line.encode())
                    await proc.stdin.drain()
                except (BrokenPipeError, ConnectionResetError) as e:
                    raise AgentProcessError("agent process is not running") from e
            response = await future
        finally:
            self._responses.pop(command_id, None)
        if not response.get("success", True):
            raise AgentProcessError(response.get("error") or f"{command['type']} rejected")
        return response

    async def _read_loop(self) -> None:
        proc = self._proc
        assert proc is not None and proc.stdout is not None
        try:
            while True:
                line = await proc.stdout.readline()
                if not line:
                    break
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("agent emitted non-JSON line: %r", line[:200])
                    continue
                if isinstance(event, dict):
                    self._dispatch(event)
        finally:
            self._fail_pending(AgentProcessError("agent process exited"))

    def _dispatch(self, event: AgentEvent) -> None:
        if event.get("type") == "response":
            future = self._responses.get(event.get("id", ""))
            if future is not None and not future.done():
                future.set_result(event)
            return

        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("agent event handler failed")

        if event.get("type") == RUN_END_EVENT:
            waiters, self._run_waiters = self._run_waiters, []
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_result(None)

    def _fail_pending(self, exc: Exception) -> None:
        for future in [*self._responses.values(), *self._run_waiters]:
            if not future.done():
                future.set_exception(exc)
        self._run_waiters = []


def rpc_session_factory(command: Sequence[str]) -> AgentSessionFactory:
    async def create(cwd: str) -> AgentSession:
        return await RpcAgentSession(command, cwd).start()

    return create
