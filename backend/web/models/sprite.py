"""Sprite registry record."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class SpriteStatus(StrEnum):
    IDLE = "idle"
    WORKING = "working"
    OFFLINE = "offline"


class SpriteInfo(BaseModel):
    id: str
    name: str
    cwd: str
    repo: str | None = None
    branch: str | None = None
    # Where a remote sprite serves its own UI; None for local sprites
    url: str | None = None
    status: SpriteStatus = SpriteStatus.IDLE
    last_activity: datetime = Field(default_factory=lambda: datetime.now(UTC))
