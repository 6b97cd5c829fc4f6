"""
Sprite CLI façade.

Wraps the external `sprite` binary with the verbs the pipeline needs. Every
command is scoped with `-o <org>` (optional) and `-s <name>`.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from cockpit.config import DEFAULT_REMOTE_HOME
from cockpit.errors import ProvisionError
from cockpit.runner import ProcessRunner, RunResult
from cockpit.scripts import extract_script, home_probe_script

logger = logging.getLogger(__name__)

# Printed by `sprite create` even when creation succeeded
BENIGN_CREATE_NOISE = ("Connecting to console", "sprite not found")

NOT_FOUND_SIGNALS = ("not found", "no such sprite")

SHELL = "/bin/sh"


class ProbeState(StrEnum):
    PRESENT = "present"
    ABSENT = "absent"
    UNKNOWN = "unknown"


@dataclass
class ProbeResult:
    state: ProbeState
    detail: str = ""


def filter_create_output(output: str) -> str:
    lines = [
        line
        for line in output.splitlines()
        if line.strip() and not any(noise in line for noise in BENIGN_CREATE_NOISE)
    ]
    return "\n".join(lines)


def classify_probe(result: RunResult) -> ProbeResult:
    if result.code == 0:
        return ProbeResult(ProbeState.PRESENT)
    detail = result.output.strip()
    lowered = detail.lower()
    if any(signal in lowered for signal in NOT_FOUND_SIGNALS):
        return ProbeResult(ProbeState.ABSENT, detail)
    return ProbeResult(ProbeState.UNKNOWN, detail or f"exit code {result.code}")


class SpriteClient:
    def __init__(self, runner: ProcessRunner, binary: str = "sprite", org: str | None = None):
        self.runner = runner
        self.binary = binary
        self.org = org

    def base_args(self) -> list[str]:
        return ["-o", self.org] if self.org else []

    def scoped_args(self, name: str) -> list[str]:
        return [*self.base_args(), "-s", name]

    # ==================== Auth ====================

    async def ensure_auth(self) -> None:
        probe = await self.runner.run(self.binary, [*self.base_args(), "org", "list"], stdio="ignore")
        if probe.code == 0:
            return
        logger.info("sprite auth probe failed (exit %s); logging in", probe.code)
        await self.runner.require_ok(self.binary, [*self.base_args(), "login"], stdio="inherit")

    # ==================== Lifecycle ====================

    async def create(self, name: str) -> str:
        """Create the sprite; returns provider output with benign noise removed."""
        result = await self.runner.run(
            self.binary,
            [*self.base_args(), "create", "-skip-console", name],
            stdio="pipe",
        )
        if result.code != 0:
            raise ProvisionError(f"sprite create failed ({result.code})\n{result.output.strip()}".rstrip())
        return filter_create_output(result.output)

    async def destroy(self, name: str, force: bool = True) -> RunResult:
        """Best-effort destroy: failures are logged and returned, never raised."""
        args = [*self.scoped_args(name), "destroy"]
        if force:
            args.append("-force")
        try:
            result = await self.runner.run(self.binary, args, stdio="inherit")
        except OSError as e:
            logger.warning("sprite destroy failed sprite=%s err=%s", name, e)
            return RunResult(1, "", str(e))
        if result.code != 0:
            logger.warning("sprite destroy exited %s sprite=%s", result.code, name)
        return result

    async def probe(self, name: str) -> ProbeResult:
        result = await self.runner.run(
            self.binary,
            [*self.scoped_args(name), "exec", SHELL, "-c", "true"],
            stdio="pipe",
        )
        return classify_probe(result)

    # ==================== Execution ====================

    def exec_args(
        self,
        name: str,
        script: str,
        *,
        tty: bool = False,
        workdir: str | None = None,
        files: Sequence[tuple[str, str]] = (),
    ) -> list[str]:
        args = [*self.scoped_args(name), "exec"]
        if tty:
            args.append("-tty")
        if workdir:
            args.extend(["-dir", workdir])
        for local, remote in files:
            args.extend(["-file", f"{local}:{remote}"])
        args.extend([SHELL, "-c", script])
        return args

    async def exec(
        self,
        name: str,
        script: str,
        *,
        tty: bool = False,
        workdir: str | None = None,
        files: Sequence[tuple[str, str]] = (),
        capture: bool = False,
        check: bool = True,
    ) -> RunResult:
        args = self.exec_args(name, script, tty=tty, workdir=workdir, files=files)
        return await self.runner.require_ok(
            self.binary,
            args,
            stdio="pipe" if capture else "inherit",
            allow_failure=not check,
        )

    async def remote_home(self, name: str) -> str:
        result = await self.exec(name, home_probe_script(), capture=True, check=False)
        return result.stdout.strip() or DEFAULT_REMOTE_HOME

    async def upload_and_extract(self, name: str, tarball: str, remote_tmp: str) -> None:
        await self.exec(name, extract_script(remote_tmp), files=[(tarball, remote_tmp)])
