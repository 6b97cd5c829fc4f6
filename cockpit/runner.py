"""
External command runner.

Every step of the CLI goes through ProcessRunner. Output is either inherited
by the terminal (interactive steps) or captured in memory (probing steps),
chosen per call. A non-zero exit is reported, not raised; only `require_ok`
turns it into an exception.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
from dataclasses import dataclass
from typing import Literal, Mapping, Sequence

from cockpit.errors import CommandError

logger = logging.getLogger(__name__)

Stdio = Literal["pipe", "inherit", "ignore"]

# Grace period between SIGTERM and SIGKILL when a step is cancelled
TERMINATE_GRACE_SEC = 5.0


@dataclass
class RunResult:
    code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.code == 0

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


def format_command(cmd: str, args: Sequence[str]) -> str:
    parts = [cmd, *args]
    return " ".join(f'"{p}"' if any(c.isspace() for c in p) else p for p in parts)


def _stream(stdio: Stdio) -> int | None:
    if stdio == "pipe":
        return asyncio.subprocess.PIPE
    if stdio == "ignore":
        return asyncio.subprocess.DEVNULL
    return None


class ProcessRunner:
    """Spawns external commands on the running event loop."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run
        self._attached: set[asyncio.subprocess.Process] = set()

    async def run(
        self,
        cmd: str,
        args: Sequence[str] = (),
        *,
        stdio: Stdio = "inherit",
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        input_text: str | None = None,
        dry_run: bool | None = None,
    ) -> RunResult:
        printable = format_command(cmd, args)
        if self.dry_run if dry_run is None else dry_run:
            logger.info("[dry-run] %s", printable)
            return RunResult(0)

        logger.debug("run %s", printable)
        proc = await asyncio.create_subprocess_exec(
            cmd,
            *args,
            stdin=asyncio.subprocess.PIPE if input_text is not None else None,
            stdout=_stream(stdio),
            stderr=_stream(stdio),
            cwd=cwd,
            env=dict(env) if env is not None else None,
        )
        if stdio == "inherit":
            self._attached.add(proc)
        try:
            stdout, stderr = await proc.communicate(
                input_text.encode() if input_text is not None else None
            )
        except asyncio.CancelledError:
            await self._terminate(proc)
            raise
        finally:
            self._attached.discard(proc)

        return RunResult(
            proc.returncode or 0,
            (stdout or b"").decode(errors="replace"),
            (stderr or b"").decode(errors="replace"),
        )

    async def require_ok(
        self,
        cmd: str,
        args: Sequence[str] = (),
        *,
        allow_failure: bool = False,
        **kwargs,
    ) -> RunResult:
        result = await self.run(cmd, args, **kwargs)
        if not allow_failure and result.code != 0:
            raise CommandError(f"{cmd} {' '.join(args)}", result.code, result.output)
        return result

    def forward_signal(self, signum: int) -> None:
        """Send `signum` to every child currently attached to the terminal."""
        for proc in list(self._attached):
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.send_signal(signum)

    async def _terminate(self, proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            proc.send_signal(signal.SIGTERM)
        try:
            await asyncio.wait_for(proc.wait(), TERMINATE_GRACE_SEC)
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()


def child_env(**overrides: str) -> dict[str, str]:
    env = dict(os.environ)
    env.update(overrides)
    return env
