"""Pydantic request models for the cockpit web API and WebSocket protocol."""

from __future__ import annotations

import json
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from backend.web.models.sprite import SpriteStatus


class CreateSpriteRequest(BaseModel):
    name: str = Field(min_length=1)
    cwd: str | None = None
    repo: str | None = None
    branch: str | None = None
    url: str | None = None


class StatusUpdateRequest(BaseModel):
    status: SpriteStatus


class PromptPayload(BaseModel):
    text: str | None = None


class ClientMessage(BaseModel):
    type: Literal["prompt", "abort"]
    payload: PromptPayload | None = None

    @property
    def text(self) -> str:
        return (self.payload.text if self.payload else None) or ""


def decode_ws_message(message: str | bytes | bytearray | None) -> str | None:
    if isinstance(message, str):
        return message
    if isinstance(message, (bytes, bytearray)):
        try:
            return bytes(message).decode("utf-8")
        except UnicodeDecodeError:
            return None
    return None


def parse_client_message(message: str | bytes | bytearray | None) -> ClientMessage:
    """Parse one inbound frame; raises ValueError with a client-facing reason."""
    raw = decode_ws_message(message)
    if raw is None:
        raise ValueError("Invalid WebSocket message")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid message: {e}") from e
    try:
        return ClientMessage.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid message: {e.errors()[0]['msg']}") from e
