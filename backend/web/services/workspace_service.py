"""Workspace management for local sprites.

A local sprite's cwd is a checkout under the workspace root. SSH-style
repository URLs are rewritten to HTTPS, since the server has no SSH key.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path

from backend.web.core.config import WORKSPACE_ENV_KEYS
from cockpit.runner import ProcessRunner

logger = logging.getLogger(__name__)

_SCP_LIKE = re.compile(r"^git@([^:]+):(.+)$")


class CloneError(RuntimeError):
    pass


def to_https(repo: str) -> str:
    """git@github.com:user/repo.git -> https://github.com/user/repo.git"""
    match = _SCP_LIKE.match(repo)
    if not match:
        return repo
    host, path = match.groups()
    path = path.removesuffix(".git")
    return f"https://{host}/{path}.git"


def repo_dir_name(repo: str) -> str:
    name = to_https(repo).rstrip("/").rsplit("/", 1)[-1].removesuffix(".git")
    return name or "repo"


def workspace_root(env: Mapping[str, str] | None = None) -> Path:
    env = os.environ if env is None else env
    for key in WORKSPACE_ENV_KEYS:
        if env.get(key):
            return Path(env[key]).expanduser()
    if env.get("HOME"):
        return Path(env["HOME"]) / "workspace"
    return Path.cwd()


async def clone_repo(runner: ProcessRunner, repo: str, branch: str | None, dest: Path) -> Path:
    """Clone `repo` into `dest`; an existing checkout is updated with `git pull`."""
    https_repo = to_https(repo)
    dest.parent.mkdir(parents=True, exist_ok=True)
    args = ["clone"]
    if branch:
        args.extend(["--branch", branch])
    args.extend(["--", https_repo, str(dest)])

    logger.info("git clone repo=%s branch=%s cwd=%s", https_repo, branch or "default", dest)
    result = await runner.run("git", args, stdio="pipe")
    if result.code == 0:
        return dest

    if "already exists" in result.stderr:
        logger.info("git pull cwd=%s", dest)
        pull = await runner.run("git", ["-C", str(dest), "pull", "--ff-only"], stdio="pipe")
        if pull.code != 0:
            logger.warning("git pull failed cwd=%s err=%s", dest, pull.stderr.strip())
        return dest

    logger.error("git clone failed repo=%s err=%s", https_repo, result.stderr.strip())
    raise CloneError(f"Git clone failed: {result.stderr.strip()}")
