"""
tmux window → sprite binding.

The binding is stored as a tmux window option, so every pane of the window
sees it and a new pane can `cockpit attach` without naming the sprite.
Outside tmux every operation is a no-op.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Awaitable, Callable, Mapping

from cockpit.client import ProbeState, SpriteClient
from cockpit.config import TMUX_OPTION
from cockpit.errors import BindingError, StaleBindingError
from cockpit.runner import ProcessRunner

logger = logging.getLogger(__name__)


class TmuxWindowBinding:
    def __init__(
        self,
        runner: ProcessRunner,
        env: Mapping[str, str] | None = None,
        option: str = TMUX_OPTION,
    ):
        self.runner = runner
        self.env = os.environ if env is None else env
        self.option = option

    @property
    def available(self) -> bool:
        return bool(self.env.get("TMUX"))

    async def get(self) -> str | None:
        if not self.available:
            return None
        # Window option rather than tmux environment: works on older tmux
        res = await self.runner.run("tmux", ["show-option", "-wqv", self.option], stdio="pipe", dry_run=False)
        if res.code != 0:
            return None
        return res.stdout.strip() or None

    async def set(self, name: str) -> bool:
        """Returns whether tmux accepted the binding."""
        if not self.available:
            return False
        res = await self.runner.run("tmux", ["set-option", "-w", self.option, name], stdio="pipe", dry_run=False)
        if res.code != 0:
            logger.warning("tmux bind failed sprite=%s err=%s", name, res.output.strip())
            return False
        logger.debug("bound tmux window sprite=%s", name)
        return True

    async def clear(self) -> None:
        if not self.available:
            return
        await self.runner.run("tmux", ["set-option", "-wu", self.option], stdio="pipe", dry_run=False)
        logger.debug("cleared tmux window binding")


def _require_tmux(binding: TmuxWindowBinding, command: str) -> None:
    if not binding.available:
        raise BindingError(f"cockpit {command} requires tmux. Run inside a tmux session.")


async def attach_bound(
    binding: TmuxWindowBinding,
    client: SpriteClient,
    attach: Callable[[str], Awaitable[None]],
) -> str:
    """Attach to the window's sprite; clears the binding if the sprite is gone."""
    _require_tmux(binding, "attach")
    name = await binding.get()
    if not name:
        raise BindingError("No Sprite for this tmux window. Run `cockpit` first to create one.")

    probe = await client.probe(name)
    if probe.state == ProbeState.ABSENT:
        await binding.clear()
        logger.info("stale binding cleared sprite=%s", name)
        raise StaleBindingError(
            f'Sprite "{name}" no longer exists; unbound it from this tmux window.\n'
            "Run `cockpit` to create a new one."
        )
    if probe.state == ProbeState.UNKNOWN:
        # Possibly transient; keep the binding
        raise BindingError(f'Could not confirm Sprite "{name}" exists:\n{probe.detail}')

    await attach(name)
    return name


async def destroy_bound(binding: TmuxWindowBinding, client: SpriteClient) -> str:
    _require_tmux(binding, "destroy")
    name = await binding.get()
    if not name:
        raise BindingError("No Sprite for this tmux window.")
    await client.destroy(name, force=True)
    await binding.clear()
    return name
