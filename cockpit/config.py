"""CLI configuration.

Priority: command-line flags > COCKPIT_* environment variables > defaults.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

TMUX_OPTION = "@cockpit_sprite"

AGENT_PACKAGE = "@mariozechner/pi-coding-agent"
AGENT_BINARY = "pi"
MIN_NODE_MAJOR = 20

DEFAULT_REMOTE_HOME = "/home/sprite"
REMOTE_WORKSPACE = "workspace"

# Local agent config synced into the sprite; host binaries are left behind
LOCAL_AGENT_DIR = Path.home() / ".pi"
AGENT_CONFIG_EXCLUDES = (".pi/agent/bin",)

_TRUE = {"1", "true", "yes", "on"}


def _flag(env: Mapping[str, str], key: str) -> bool:
    return env.get(key, "").strip().lower() in _TRUE


def _text(env: Mapping[str, str], key: str) -> str | None:
    value = env.get(key, "").strip()
    return value or None


class CockpitConfig(BaseModel):
    repo_url: str | None = None
    branch: str = "master"
    org: str | None = None
    sprite_bin: str = "sprite"
    dry_run: bool = False
    qa: bool = False
    qa_turn: bool = False
    home: Path = Field(default_factory=lambda: Path.home() / ".cockpit")

    @field_validator("branch", "sprite_bin")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @property
    def ssh_dir(self) -> Path:
        return self.home / "ssh"

    @property
    def scripted(self) -> bool:
        return self.qa or self.qa_turn

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides) -> CockpitConfig:
        env = os.environ if env is None else env
        data: dict = {
            "repo_url": _text(env, "COCKPIT_REPO_URL"),
            "branch": _text(env, "COCKPIT_BRANCH") or "master",
            "org": _text(env, "COCKPIT_SPRITE_ORG"),
            "sprite_bin": _text(env, "SPRITE_BIN") or "sprite",
            "dry_run": _flag(env, "COCKPIT_DRY_RUN"),
            "qa": _flag(env, "COCKPIT_QA"),
            "qa_turn": _flag(env, "COCKPIT_QA_TURN"),
        }
        home = _text(env, "COCKPIT_HOME")
        if home:
            data["home"] = Path(home).expanduser()
        # Flags can only switch a mode on, never off
        for key in ("dry_run", "qa", "qa_turn"):
            if overrides.pop(key, False):
                data[key] = True
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**data)
