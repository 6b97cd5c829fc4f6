"""Configuration constants for the cockpit web backend."""

import os
import shlex
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000

# Sprite registry file inside --data-dir
SPRITES_FILE = "sprites.json"

# Agent session command for local sprites (JSON-lines RPC over stdio)
DEFAULT_AGENT_COMMAND = "pi --mode rpc --no-session"

# Session reaper
SESSION_REAPER_INTERVAL_SEC = 60

# Log lines for prompts carry only a prefix of the text
PROMPT_LOG_CHARS = 80

WORKSPACE_ENV_KEYS = ("PI_WORKSPACE_DIR", "SPRITE_WORKSPACE_DIR", "SPRITE_WORKSPACE")


class WebSettings(BaseModel):
    host: str = DEFAULT_HOST
    port: int = Field(default=DEFAULT_PORT, ge=1, le=65535)
    data_dir: Path | None = None
    agent_command: list[str] = Field(
        default_factory=lambda: shlex.split(os.environ.get("COCKPIT_AGENT_COMMAND") or DEFAULT_AGENT_COMMAND)
    )
    reaper_interval_sec: float = SESSION_REAPER_INTERVAL_SEC
