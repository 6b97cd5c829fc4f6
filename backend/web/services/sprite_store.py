"""
Sprite registry.

In production sprites are Fly.io VMs; for local development an agent runs
in-process against a directory on this machine. Either way the registry
only tracks metadata.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from backend.web.core.config import SPRITES_FILE
from backend.web.models.sprite import SpriteInfo, SpriteStatus

logger = logging.getLogger(__name__)


class SpriteStore(Protocol):
    async def list(self) -> list[SpriteInfo]: ...

    async def get(self, sprite_id: str) -> SpriteInfo | None: ...

    async def create(
        self,
        name: str,
        cwd: str,
        repo: str | None = None,
        branch: str | None = None,
        url: str | None = None,
    ) -> SpriteInfo: ...

    async def delete(self, sprite_id: str) -> None: ...

    async def update_status(self, sprite_id: str, status: SpriteStatus) -> None: ...


def _new_id() -> str:
    return uuid.uuid4().hex[:8]


class MemorySpriteStore:
    """In-memory store for development and tests."""

    def __init__(self) -> None:
        self._sprites: dict[str, SpriteInfo] = {}

    async def list(self) -> list[SpriteInfo]:
        # Most recent activity first
        return sorted(self._sprites.values(), key=lambda s: s.last_activity, reverse=True)

    async def get(self, sprite_id: str) -> SpriteInfo | None:
        return self._sprites.get(sprite_id)

    async def create(
        self,
        name: str,
        cwd: str,
        repo: str | None = None,
        branch: str | None = None,
        url: str | None = None,
    ) -> SpriteInfo:
        sprite_id = _new_id()
        while sprite_id in self._sprites:
            sprite_id = _new_id()
        sprite = SpriteInfo(id=sprite_id, name=name, cwd=cwd, repo=repo, branch=branch, url=url)
        self._sprites[sprite_id] = sprite
        self._changed()
        return sprite

    async def delete(self, sprite_id: str) -> None:
        if self._sprites.pop(sprite_id, None) is not None:
            self._changed()

    async def update_status(self, sprite_id: str, status: SpriteStatus) -> None:
        sprite = self._sprites.get(sprite_id)
        if sprite is None:
            return
        sprite.status = status
        sprite.last_activity = datetime.now(UTC)
        self._changed()

    def _changed(self) -> None:
        pass


class FileSpriteStore(MemorySpriteStore):
    """Persists the registry to a JSON file: {"sprites": [...]}."""

    def __init__(self, file_path: Path) -> None:
        super().__init__()
        self.file_path = Path(file_path)
        self._loaded = False

    def _load(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self.file_path.exists():
            return
        try:
            data = json.loads(self.file_path.read_text())
            sprites = [SpriteInfo.model_validate(item) for item in data.get("sprites", [])]
        except (OSError, ValueError, AttributeError, ValidationError) as e:
            logger.warning("sprite registry unreadable, starting empty path=%s err=%s", self.file_path, e)
            return
        self._sprites = {s.id: s for s in sprites}

    def _changed(self) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        data = {"sprites": [s.model_dump(mode="json") for s in self._sprites.values()]}
        tmp = self.file_path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2))
        tmp.replace(self.file_path)

    async def list(self) -> list[SpriteInfo]:
        self._load()
        return await super().list()

    async def get(self, sprite_id: str) -> SpriteInfo | None:
        self._load()
        return await super().get(sprite_id)

    async def create(self, *args, **kwargs) -> SpriteInfo:
        self._load()
        return await super().create(*args, **kwargs)

    async def delete(self, sprite_id: str) -> None:
        self._load()
        await super().delete(sprite_id)

    async def update_status(self, sprite_id: str, status: SpriteStatus) -> None:
        self._load()
        await super().update_status(sprite_id, status)


def create_sprite_store(data_dir: Path | None = None) -> SpriteStore:
    if data_dir:
        return FileSpriteStore(Path(data_dir) / SPRITES_FILE)
    return MemorySpriteStore()
