"""
Provisioning pipeline: turn a fresh sprite into a ready pi environment.

Stages run strictly in order (see cockpit.lifecycle). Each stage is raced
against a CancelToken so a SIGINT/SIGTERM translated by the entry point
stops the current subprocess, after which `cleanup` runs exactly once.

Cleanup policy:
- sprite bound to this tmux window and READY reached: left running for
  `cockpit attach` / `cockpit destroy`
- anything else (QA run, no tmux, failed before READY): destroyed
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import posixpath
import signal
import tempfile
from collections.abc import Callable, Coroutine, Sequence
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import Any, TypeVar

from rich.console import Console

from cockpit.binding import TmuxWindowBinding
from cockpit.client import SpriteClient
from cockpit.config import (
    AGENT_BINARY,
    AGENT_CONFIG_EXCLUDES,
    AGENT_PACKAGE,
    LOCAL_AGENT_DIR,
    MIN_NODE_MAJOR,
    REMOTE_WORKSPACE,
    CockpitConfig,
)
from cockpit.errors import CommandError, PipelineInterrupted, ProvisionError
from cockpit.lifecycle import ProvisionStage, assert_stage_transition
from cockpit.naming import sprite_name
from cockpit.runner import ProcessRunner, child_env
from cockpit.scripts import (
    BRANCH_FALLBACK_MARKER,
    bootstrap_script,
    clone_script,
    qa_help_script,
    qa_turn_script,
    sanity_script,
    shell_script,
    ssh_install_script,
)
from cockpit.ssh_keys import KEY_NAME, ManagedKey, SshKeyManager, repo_needs_ssh

logger = logging.getLogger(__name__)

T = TypeVar("T")

REMOTE_SSH_KEY = f"~/.ssh/{KEY_NAME}"
REMOTE_CONFIG_TARBALL = "/tmp/host-pi.tar.gz"


class RunMode(StrEnum):
    INTERACTIVE = "interactive"
    QA = "qa"
    QA_TURN = "qa_turn"


@dataclass
class ProvisionState:
    name: str
    repo_url: str
    branch: str
    org: str | None = None
    remote_home: str = ""
    remote_workdir: str = ""
    stage: ProvisionStage = ProvisionStage.NEW
    created: bool = False
    ssh_key_uploaded: bool = False
    ready: bool = False
    bound: bool = False
    branch_fallback: bool = False
    cleaned: bool = False


class CancelToken:
    """One-shot cancellation signal shared by the entry point and the pipeline."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.signum: int | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, signum: int = signal.SIGINT) -> bool:
        if self._event.is_set():
            return False
        self.signum = int(signum)
        self._event.set()
        return True

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise PipelineInterrupted(self.signum or signal.SIGINT)

    async def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Await `coro` unless the token fires first; then cancel it and raise."""
        if self.cancelled:
            coro.close()
            self.raise_if_cancelled()
        task = asyncio.ensure_future(coro)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise
        if task.done():
            waiter.cancel()
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise PipelineInterrupted(self.signum or signal.SIGINT)


def exit_code_for(exc: BaseException | None) -> int:
    if exc is None:
        return 0
    if isinstance(exc, PipelineInterrupted):
        return exc.exit_code
    return 1


def install_signal_handlers(
    token: CancelToken,
    runner: ProcessRunner,
    loop: asyncio.AbstractEventLoop | None = None,
) -> Callable[[], None]:
    """Route SIGINT/SIGTERM into `token`. Only the first signal is acted on."""
    loop = loop or asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)

    def _handle(signum: int) -> None:
        if token.cancelled:
            return
        logger.info("received signal %s; cleaning up", signal.Signals(signum).name)
        runner.forward_signal(signum)
        token.cancel(signum)

    for signum in signals:
        loop.add_signal_handler(signum, _handle, signum)

    def remove() -> None:
        for signum in signals:
            loop.remove_signal_handler(signum)

    return remove


async def tar_directory(runner: ProcessRunner, src: Path, excludes: Sequence[str] = ()) -> str:
    fd, tarball = tempfile.mkstemp(prefix="cockpit-", suffix=".tar.gz")
    os.close(fd)
    exclude_args = [arg for pattern in excludes for arg in ("--exclude", pattern)]
    try:
        await runner.require_ok(
            "tar",
            [*exclude_args, "-czf", tarball, "--format", "ustar", "-C", str(src.parent), src.name],
            stdio="pipe",
            env=child_env(COPYFILE_DISABLE="1"),
        )
    except BaseException:
        Path(tarball).unlink(missing_ok=True)
        raise
    return tarball


def remote_workdir(home: str) -> str:
    return posixpath.join(home, REMOTE_WORKSPACE)


async def attach_shell(client: SpriteClient, name: str, workdir: str) -> None:
    """Interactive TTY shell at `workdir` with the agent on PATH; waits for exit."""
    result = await client.exec(name, shell_script(), tty=True, workdir=workdir, check=False)
    if result.code != 0:
        raise ProvisionError(f"shell exited with code {result.code}")


class ProvisioningPipeline:
    def __init__(
        self,
        client: SpriteClient,
        binding: TmuxWindowBinding,
        config: CockpitConfig,
        *,
        runner: ProcessRunner,
        token: CancelToken | None = None,
        console: Console | None = None,
        mode: RunMode = RunMode.INTERACTIVE,
        ssh_keys: SshKeyManager | None = None,
        local_config_dir: Path | None = None,
    ):
        self.client = client
        self.binding = binding
        self.config = config
        self.runner = runner
        self.token = token or CancelToken()
        self.console = console or Console()
        self.mode = mode
        self.ssh_keys = ssh_keys or SshKeyManager(runner, config.ssh_dir)
        self.local_config_dir = local_config_dir or LOCAL_AGENT_DIR
        self.state: ProvisionState | None = None
        self._key: ManagedKey | None = None

    # ==================== Driver ====================

    async def run(self, repo_url: str, name: str | None = None) -> ProvisionState:
        state = self.state = ProvisionState(
            name=name or sprite_name(),
            repo_url=repo_url,
            branch=self.config.branch,
            org=self.config.org,
        )
        try:
            if repo_needs_ssh(repo_url):
                # Preflight: nothing exists yet, so a missing key costs nothing
                self._key = await self.token.run(self.ssh_keys.verify())

            self._advance(ProvisionStage.AUTH_CHECK)
            await self.token.run(self.client.ensure_auth())

            await self._create()
            if self._key is not None:
                await self._upload_ssh_key(self._key)
            await self._bootstrap()
            await self._clone()
            await self._sync_config()
            await self._sanity_check()
            await self._mark_ready()

            if self.mode == RunMode.QA_TURN:
                self._advance(ProvisionStage.QA_TURN_EXIT)
                await self.token.run(self.client.exec(state.name, qa_turn_script(state.remote_workdir, AGENT_BINARY)))
                self.console.print("QA OK: pi ran one turn and wrote answer.txt.")
            elif self.mode == RunMode.QA:
                self._advance(ProvisionStage.QA_EXIT)
                await self.token.run(self.client.exec(state.name, qa_help_script(state.remote_workdir, AGENT_BINARY)))
                self.console.print("QA OK: pi installed and repo cloned.")
            else:
                self._advance(ProvisionStage.ATTACH)
                await self.token.run(attach_shell(self.client, state.name, state.remote_workdir))
        except PipelineInterrupted:
            self._advance(ProvisionStage.INTERRUPTED)
            raise
        except Exception:
            self._advance(ProvisionStage.FAILED)
            raise
        finally:
            await self.cleanup()
        return state

    def _advance(self, target: ProvisionStage) -> None:
        state = self.state
        assert_stage_transition(state.stage, target, reason=state.name)
        logger.debug("provision stage sprite=%s %s -> %s", state.name, state.stage, target)
        state.stage = target

    # ==================== Stages ====================

    async def _create(self) -> None:
        state = self.state
        self._advance(ProvisionStage.CREATE)
        self.console.print(f"Creating Sprite: {state.name}")
        try:
            output = await self.token.run(self.client.create(state.name))
        except PipelineInterrupted:
            # The provider may have finished creating before we stopped waiting
            state.created = True
            raise
        state.created = True
        if output:
            self.console.print(output, markup=False)

        state.remote_home = await self.token.run(self.client.remote_home(state.name))
        state.remote_workdir = remote_workdir(state.remote_home)

    async def _upload_ssh_key(self, key: ManagedKey) -> None:
        state = self.state
        self._advance(ProvisionStage.SSH_KEY_UPLOAD)
        files = [
            (str(key.private_path), f"/tmp/{KEY_NAME}"),
            (str(key.public_path), f"/tmp/{KEY_NAME}.pub"),
        ]
        await self.token.run(self.client.exec(state.name, ssh_install_script("/tmp", KEY_NAME), files=files))
        state.ssh_key_uploaded = True

    async def _bootstrap(self) -> None:
        state = self.state
        self._advance(ProvisionStage.BOOTSTRAP)
        self.console.print("Bootstrapping pi...")
        script = bootstrap_script(MIN_NODE_MAJOR, AGENT_PACKAGE, AGENT_BINARY)
        try:
            result = await self.token.run(self.client.exec(state.name, script, capture=True))
        except CommandError as e:
            raise ProvisionError(f"Bootstrap failed in Sprite {state.name}:\n{e.output.strip()}") from e
        self._echo(result.output)

    async def _clone(self) -> None:
        state = self.state
        self._advance(ProvisionStage.CLONE)
        script = clone_script(
            state.repo_url,
            state.branch,
            state.remote_workdir,
            ssh_key=REMOTE_SSH_KEY if state.ssh_key_uploaded else None,
        )
        try:
            result = await self.token.run(self.client.exec(state.name, script, capture=True))
        except CommandError as e:
            raise ProvisionError(f"Clone of {state.repo_url} failed:\n{e.output.strip()}") from e
        self._echo(result.stdout)
        if BRANCH_FALLBACK_MARKER in result.stderr:
            state.branch_fallback = True
            logger.warning("branch %r not found; cloned default branch sprite=%s", state.branch, state.name)
            self.console.print(
                f"[yellow]Warning:[/yellow] branch '{state.branch}' could not be cloned; using the default branch."
            )

    async def _sync_config(self) -> None:
        state = self.state
        self._advance(ProvisionStage.CONFIG_SYNC)
        src = self.local_config_dir
        if not src.is_dir():
            self.console.print(f"Note: {src} not found; skipping pi config sync.")
            return

        tarball: str | None = None
        try:
            tarball = await self.token.run(tar_directory(self.runner, src, AGENT_CONFIG_EXCLUDES))
            await self.token.run(self.client.upload_and_extract(state.name, tarball, REMOTE_CONFIG_TARBALL))
        except CommandError as e:
            logger.warning("pi config sync failed sprite=%s err=%s", state.name, e)
            self.console.print(f"[yellow]Warning:[/yellow] could not sync {src}; continuing without it.")
        finally:
            if tarball:
                Path(tarball).unlink(missing_ok=True)

    async def _sanity_check(self) -> None:
        state = self.state
        self._advance(ProvisionStage.SANITY_CHECK)
        try:
            result = await self.token.run(
                self.client.exec(state.name, sanity_script(state.remote_workdir, AGENT_BINARY), capture=True)
            )
        except CommandError as e:
            raise ProvisionError(f"Sanity check failed in Sprite {state.name}:\n{e.output.strip()}") from e
        self._echo(result.output)

    async def _mark_ready(self) -> None:
        state = self.state
        self._advance(ProvisionStage.READY)
        state.ready = True
        # Bind only now: earlier, `cockpit attach` could reach a half-built sprite
        if self.mode == RunMode.INTERACTIVE and self.binding.available:
            state.bound = await self.binding.set(state.name)
            if state.bound:
                self.console.print(f'Bound Sprite "{state.name}" to this tmux window.')
            else:
                self.console.print(
                    f"[yellow]Warning:[/yellow] could not bind Sprite \"{state.name}\" to this tmux window; "
                    "it will be destroyed on exit."
                )

    # ==================== Cleanup ====================

    async def cleanup(self) -> None:
        state = self.state
        if state is None or state.cleaned:
            return
        state.cleaned = True
        try:
            if state.created and not (state.bound and state.ready):
                self.console.print(f"Destroying Sprite: {state.name}")
                await self.client.destroy(state.name, force=True)
                if state.bound:
                    with contextlib.suppress(OSError):
                        await self.binding.clear()
                    state.bound = False
            elif state.bound:
                self.console.print(
                    f'Sprite "{state.name}" stays bound to this window. '
                    "Use `cockpit attach` to reconnect or `cockpit destroy` to remove it."
                )
        finally:
            self._advance(ProvisionStage.CLEANED)

    def _echo(self, text: str) -> None:
        text = text.strip()
        if text:
            self.console.print(text, markup=False, highlight=False)
