"""ASGI application: Socket.IO relay in front of a thin FastAPI shim over the store."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import socketio
from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import configure_logging, load_config
from .errors import PersistenceError
from .realtime import create_socketio_server
from .registry import ConnectionRegistry
from .relay import RelayCore
from .store import MessageStore, SqlMessageStore, mask_url

logger = logging.getLogger("chat_relay.server")


def _make_store(cfg: Dict[str, Any]) -> SqlMessageStore:
    db_cfg = cfg.get("database", {})
    url = str(db_cfg.get("url") or "sqlite:///chat_relay.db")
    logger.info("Database connection: %s", mask_url(url))
    store = SqlMessageStore(url, echo=bool(db_cfg.get("echo", False)))
    try:
        store.init_schema()
    except PersistenceError as e:
        # Keep serving; writes will surface their own errors to clients.
        logger.error("Database initialization error: %s", e)
    return store


# -----------------------------
# App factory
# -----------------------------
def create_app(
    config_path: Optional[str] = None,
    store: Optional[MessageStore] = None,
) -> socketio.ASGIApp:
    """Build the full ASGI app.

    Requests under ``/socket.io/`` go to the Socket.IO server; everything
    else (``/health``, ``/api/messages``) and the lifespan go to FastAPI,
    reachable as ``.other_asgi_app``. A store passed in is left open on
    shutdown; one created here from config is disposed.
    """
    cfg = load_config(config_path)
    configure_logging(cfg)

    server_cfg = cfg.get("server", {})
    cors_origins = server_cfg.get("cors_origins", ["*"])
    history_limit = int(server_cfg.get("history_limit", 50))

    owns_store = store is None
    if store is None:
        store = _make_store(cfg)
    registry = ConnectionRegistry()
    relay = RelayCore(store, registry)
    sio = create_socketio_server(relay, cors_origins)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_store:
            store.close()
        logger.info("Chat relay stopped")

    app = FastAPI(title="Chat Relay", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )
    app.state.store = store
    app.state.registry = registry
    app.state.relay = relay
    app.state.sio = sio

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "status": "OK",
            "message": "WebSocket server is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/api/messages")
    async def list_messages(limit: int = Query(default=history_limit, ge=1, le=500)):
        try:
            messages = await relay.recent_messages(limit)
        except PersistenceError as e:
            logger.error("Error fetching messages: %s", e)
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": "Failed to fetch messages"},
            )
        return {"success": True, "messages": [m.to_wire() for m in messages]}

    @app.delete("/api/messages")
    async def delete_messages():
        try:
            await relay.clear_all()
        except PersistenceError as e:
            logger.error("Error deleting messages: %s", e)
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": "Failed to delete messages"},
            )
        return {"success": True, "message": "All messages deleted"}

    return socketio.ASGIApp(sio, other_asgi_app=app)
