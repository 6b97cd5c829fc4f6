"""Sprite registry endpoints."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Request

from backend.web.core.dependencies import get_bridge, get_sprite_or_404, get_store
from backend.web.models.requests import CreateSpriteRequest, StatusUpdateRequest
from backend.web.models.sprite import SpriteInfo
from backend.web.services.agent_bridge import SessionBridge
from backend.web.services.sprite_store import SpriteStore
from backend.web.services.workspace_service import CloneError, clone_repo, repo_dir_name, workspace_root

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sprites", tags=["sprites"])

StoreDep = Annotated[SpriteStore, Depends(get_store)]
BridgeDep = Annotated[SessionBridge, Depends(get_bridge)]


@router.get("")
async def list_sprites(store: StoreDep) -> list[SpriteInfo]:
    return await store.list()


@router.get("/{sprite_id}")
async def get_sprite(sprite: Annotated[SpriteInfo, Depends(get_sprite_or_404)]) -> SpriteInfo:
    return sprite


@router.post("")
async def create_sprite(payload: CreateSpriteRequest, request: Request, store: StoreDep) -> SpriteInfo:
    """Register a sprite; a repo without an explicit cwd is cloned into the workspace root."""
    cwd = payload.cwd
    if payload.repo and not cwd:
        dest = workspace_root() / repo_dir_name(payload.repo)
        try:
            await clone_repo(request.app.state.runner, payload.repo, payload.branch, dest)
        except CloneError as e:
            raise HTTPException(400, str(e)) from e
        cwd = str(dest)
    if not cwd:
        raise HTTPException(400, "Either cwd or repo is required")

    sprite = await store.create(payload.name, cwd, repo=payload.repo, branch=payload.branch, url=payload.url)
    logger.info("sprite created id=%s name=%s cwd=%s", sprite.id, sprite.name, sprite.cwd)
    return sprite


@router.delete("/{sprite_id}")
async def delete_sprite(sprite_id: str, store: StoreDep, bridge: BridgeDep) -> dict[str, Any]:
    await store.delete(sprite_id)
    disposed = await bridge.dispose(sprite_id)
    logger.info("sprite deleted id=%s session_disposed=%s", sprite_id, disposed)
    return {"success": True}


@router.patch("/{sprite_id}/status")
async def update_sprite_status(sprite_id: str, payload: StatusUpdateRequest, store: StoreDep) -> dict[str, Any]:
    await store.update_status(sprite_id, payload.status)
    return {"success": True}
