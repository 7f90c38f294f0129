"""Socket.IO server bridging client sessions to the relay core.

Clients use ``socket.io-client`` against the server root with the default
``/socket.io/`` path, e.g. ``io("http://<host>:3000")``. Every inbound event
name in the relay's dispatch table is registered as a Socket.IO event.

Handlers run inline (``async_handlers=False``), so one client's events are
processed in the order they arrive while other clients keep flowing.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Union

import socketio

from .registry import Connection
from .relay import RelayCore

logger = logging.getLogger("chat_relay.realtime")


def _cors_origins(origins: Optional[List[str]]) -> Union[str, List[str]]:
    if not origins or "*" in origins:
        return "*"
    return list(origins)


def create_socketio_server(
    relay: RelayCore,
    cors_origins: Optional[List[str]] = None,
) -> socketio.AsyncServer:
    sio = socketio.AsyncServer(
        async_mode="asgi",
        cors_allowed_origins=_cors_origins(cors_origins),
        # connect ack goes out before the handler so user_count reaches the new client
        always_connect=True,
        async_handlers=False,
        logger=False,
        engineio_logger=False,
    )

    def _sender(sid: str):
        async def send(event: str, data: Optional[Dict[str, Any]] = None) -> None:
            await sio.emit(event, data, to=sid)

        return send

    @sio.event
    async def connect(sid: str, environ: Dict[str, Any], auth: Any = None):
        await relay.connect(Connection(send=_sender(sid), id=sid))

    @sio.event
    async def disconnect(sid: str, reason: Any = None):
        conn = relay.registry.get(sid)
        if conn is not None:
            await relay.disconnect(conn)

    def _bind(event: str):
        async def handler(sid: str, data: Any = None, *extra: Any):
            conn = relay.registry.get(sid)
            if conn is None:
                logger.warning("Dropping %s from unregistered session %s", event, sid)
                return
            await relay.dispatch(conn, event, data)

        return handler

    for event in relay.handlers:
        sio.on(event, handler=_bind(event))

    return sio
