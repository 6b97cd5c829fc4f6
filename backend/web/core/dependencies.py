"""FastAPI dependencies resolving per-app components from app.state."""

from fastapi import HTTPException, Request

from backend.web.models.sprite import SpriteInfo
from backend.web.services.agent_bridge import SessionBridge
from backend.web.services.sprite_store import SpriteStore


def get_store(request: Request) -> SpriteStore:
    return request.app.state.store


def get_bridge(request: Request) -> SessionBridge:
    return request.app.state.bridge


async def get_sprite_or_404(sprite_id: str, request: Request) -> SpriteInfo:
    sprite = await get_store(request).get(sprite_id)
    if sprite is None:
        raise HTTPException(status_code=404, detail="Sprite not found")
    return sprite
