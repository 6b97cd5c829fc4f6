#!/usr/bin/env python3
"""
cockpit - run pi inside a Fly Sprite

Usage:
  cockpit              Create a new Sprite and attach (claims the tmux window)
  cockpit attach       Attach to this tmux window's Sprite
  cockpit destroy      Destroy this tmux window's Sprite
  cockpit setup-ssh    Create the managed SSH key used for git@ / ssh:// repos
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Awaitable, Callable, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Prompt

from cockpit.binding import TmuxWindowBinding, attach_bound, destroy_bound
from cockpit.client import SpriteClient
from cockpit.config import CockpitConfig
from cockpit.errors import BindingError, CockpitError
from cockpit.pipeline import (
    CancelToken,
    ProvisioningPipeline,
    RunMode,
    attach_shell,
    exit_code_for,
    install_signal_handlers,
    remote_workdir,
)
from cockpit.runner import ProcessRunner
from cockpit.ssh_keys import SshKeyManager

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)

EPILOG = """\
Env:
  COCKPIT_REPO_URL     Repo URL to clone (default: current dir origin remote)
  COCKPIT_BRANCH       Branch to checkout (default: master)
  COCKPIT_SPRITE_ORG   Fly org name (optional)
  SPRITE_BIN           sprite CLI binary (default: sprite)

tmux integration:
  In tmux, `cockpit` binds the Sprite to the current window.
  New panes can auto-attach via a shell hook, e.g. for fish:

    if set -q TMUX
        set -l sprite (tmux show-option -wqv @cockpit_sprite 2>/dev/null)
        if test -n "$sprite"
            cockpit attach
        end
    end
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cockpit",
        description="Run pi inside a Fly Sprite",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--dry-run", action="store_true", help="Print commands without running them")
    parser.add_argument("--qa", action="store_true", help="Provision + sanity-check, then exit")
    parser.add_argument("--qa-turn", action="store_true", help="Run 1 pi turn (costs tokens), then exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("create", help="Create a new Sprite and attach (default)")
    sub.add_parser("attach", help="Attach to this tmux window's Sprite")
    sub.add_parser("destroy", help="Destroy this tmux window's Sprite")
    setup = sub.add_parser("setup-ssh", help="Create the managed SSH key")
    setup.add_argument("--force", action="store_true", help="Replace an existing key")
    return parser


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False, show_time=False)],
    )


async def detect_repo_url(runner: ProcessRunner) -> str | None:
    try:
        inside = await runner.run("git", ["rev-parse", "--is-inside-work-tree"], stdio="pipe", dry_run=False)
    except OSError:
        return None
    if inside.code != 0:
        return None
    url = await runner.run("git", ["remote", "get-url", "origin"], stdio="pipe", dry_run=False)
    if url.code != 0:
        return None
    return url.stdout.strip() or None


def prompt_repo_url() -> str:
    try:
        value = Prompt.ask("Repo URL to clone in the Sprite", console=console).strip()
    except EOFError:
        raise CockpitError("Missing repo URL") from None
    if not value:
        raise CockpitError("Missing repo URL")
    return value


def _mode(config: CockpitConfig) -> RunMode:
    if not config.scripted:
        return RunMode.INTERACTIVE
    return RunMode.QA_TURN if config.qa_turn else RunMode.QA


async def _refuse_bound_window(binding: TmuxWindowBinding) -> None:
    existing = await binding.get()
    if existing:
        raise BindingError(
            f'This tmux window already has Sprite "{existing}".\n'
            "Use `cockpit attach` to connect, or `cockpit destroy` first."
        )


async def create_preflight(config: CockpitConfig, runner: ProcessRunner) -> str | None:
    """Checks the window is free and returns the configured or detected repo URL.

    Runs before signal handlers are installed, so an interactive prompt for a
    missing URL can happen outside the event loop.
    """
    await _refuse_bound_window(TmuxWindowBinding(runner))
    return config.repo_url or await detect_repo_url(runner)


async def cmd_create(config: CockpitConfig, runner: ProcessRunner, token: CancelToken) -> None:
    if not config.repo_url:
        raise CockpitError("Missing repo URL")
    client = SpriteClient(runner, config.sprite_bin, config.org)
    binding = TmuxWindowBinding(runner)
    await _refuse_bound_window(binding)

    pipeline = ProvisioningPipeline(
        client,
        binding,
        config,
        runner=runner,
        token=token,
        console=console,
        mode=_mode(config),
    )
    await pipeline.run(config.repo_url)


async def cmd_attach(config: CockpitConfig, runner: ProcessRunner, token: CancelToken) -> None:
    client = SpriteClient(runner, config.sprite_bin, config.org)
    binding = TmuxWindowBinding(runner)

    async def _attach(name: str) -> None:
        console.print(f"Attaching to Sprite: {name}")
        home = await client.remote_home(name)
        await token.run(attach_shell(client, name, remote_workdir(home)))

    await attach_bound(binding, client, _attach)


async def cmd_destroy(config: CockpitConfig, runner: ProcessRunner, token: CancelToken) -> None:
    client = SpriteClient(runner, config.sprite_bin, config.org)
    name = await destroy_bound(TmuxWindowBinding(runner), client)
    console.print(f'Sprite "{name}" destroyed and tmux window unbound.')


async def cmd_setup_ssh(config: CockpitConfig, runner: ProcessRunner, force: bool) -> None:
    key = await SshKeyManager(runner, config.ssh_dir).generate(overwrite=force)
    console.print(f"Managed SSH key written to {key.private_path}")
    console.print("Add this public key to your git host:")
    console.print(key.public_key, markup=False, highlight=False, soft_wrap=True)


async def _run_with_signals(
    runner: ProcessRunner,
    command: Callable[[CancelToken], Awaitable[None]],
) -> None:
    token = CancelToken()
    remove = install_signal_handlers(token, runner)
    try:
        await command(token)
    finally:
        remove()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = CockpitConfig.from_env(os.environ, dry_run=args.dry_run, qa=args.qa, qa_turn=args.qa_turn)
    except ValueError as e:
        err_console.print(f"Invalid configuration: {e}", markup=False)
        return 1

    runner = ProcessRunner(dry_run=config.dry_run)
    command = args.command or "create"

    if command == "setup-ssh":
        handler = lambda token: cmd_setup_ssh(config, runner, args.force)  # noqa: E731
    else:
        handler = {
            "create": lambda token: cmd_create(config, runner, token),
            "attach": lambda token: cmd_attach(config, runner, token),
            "destroy": lambda token: cmd_destroy(config, runner, token),
        }[command]

    try:
        if command == "create":
            repo_url = asyncio.run(create_preflight(config, runner)) or prompt_repo_url()
            config = config.model_copy(update={"repo_url": repo_url})
        asyncio.run(_run_with_signals(runner, handler))
    except KeyboardInterrupt:
        return 130
    except CockpitError as e:
        code = exit_code_for(e)
        if code == 1:
            err_console.print(str(e), markup=False, highlight=False)
        return code
    except OSError as e:
        err_console.print(str(e), markup=False, highlight=False)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
