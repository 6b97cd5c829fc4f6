"""Cockpit Web Backend - FastAPI Application.

Dashboard API for managing coding agent sprites. Each sprite is either a
local agent session (runs in-process, bridged over WebSocket) or a remote
sprite serving its own UI at `url`.
"""

import argparse
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.web.core.config import DEFAULT_HOST, DEFAULT_PORT, WebSettings
from backend.web.core.lifespan import lifespan
from backend.web.routers import agent_ws, sprites
from backend.web.services.agent_bridge import SessionBridge
from backend.web.services.agent_session import AgentSessionFactory, rpc_session_factory
from backend.web.services.sprite_store import SpriteStore, create_sprite_store
from cockpit.runner import ProcessRunner

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"


def create_app(
    settings: WebSettings | None = None,
    *,
    agent_factory: AgentSessionFactory | None = None,
    store: SpriteStore | None = None,
) -> FastAPI:
    """Build an independent app: its own registry, bridge and runner."""
    settings = settings or WebSettings()
    app = FastAPI(title="Cockpit Web Backend", lifespan=lifespan)

    app.state.settings = settings
    app.state.store = store or create_sprite_store(settings.data_dir)
    app.state.bridge = SessionBridge(agent_factory or rpc_session_factory(settings.agent_command))
    app.state.runner = ProcessRunner()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sprites.router)
    app.include_router(agent_ws.router)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "sessions": len(app.state.bridge.active_ids())}

    return app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cockpit-web",
        description="Cockpit Web - dashboard for managing coding agent sprites",
    )
    parser.add_argument("-p", "--port", type=int, default=DEFAULT_PORT, help=f"Port to listen on (default: {DEFAULT_PORT})")
    parser.add_argument("--host", default=DEFAULT_HOST, help=f"Host to bind to (default: {DEFAULT_HOST})")
    parser.add_argument("-d", "--data-dir", type=Path, help="Directory for persistent data (sprites.json)")
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    settings = WebSettings(host=args.host, port=args.port, data_dir=args.data_dir)
    app = create_app(settings)
    logging.getLogger(__name__).info("Cockpit dashboard running at http://%s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
