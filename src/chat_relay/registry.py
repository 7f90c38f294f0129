"""Process-wide registry of live connections and the presence count."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .models import USER_COUNT

logger = logging.getLogger("chat_relay.registry")

SendFn = Callable[[str, Optional[Dict[str, Any]]], Awaitable[None]]


@dataclass(eq=False)
class Connection:
    """One client session. ``send(event, data)`` emits a single event to it."""

    send: SendFn
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    username: Optional[str] = None


class ConnectionRegistry:
    """Tracks active connections and broadcasts ``user_count`` on every change.

    All mutation happens on the event loop thread, so no locking is needed.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    def get(self, conn_id: str) -> Optional[Connection]:
        return self._connections.get(conn_id)

    def __contains__(self, conn: Connection) -> bool:
        return conn.id in self._connections

    async def on_connect(self, conn: Connection) -> int:
        """Register ``conn`` and tell everyone (``conn`` included) the new count."""
        if conn.id not in self._connections:
            self._connections[conn.id] = conn
            self._count += 1
        logger.info("Client connected: %s (Total: %d)", conn.id, self._count)
        await self.broadcast(USER_COUNT, {"count": self._count})
        return self._count

    async def on_disconnect(self, conn: Connection) -> int:
        """Drop ``conn`` and tell the remaining connections the new count.

        Unknown connections leave the count alone and nothing is sent.
        """
        if self._connections.pop(conn.id, None) is None:
            return self._count
        self._count -= 1
        logger.info("Client disconnected: %s (Total: %d)", conn.id, self._count)
        await self.broadcast(USER_COUNT, {"count": self._count})
        return self._count

    # --------- fan-out ----------
    async def send(self, conn: Connection, event: str, data: Optional[Dict[str, Any]] = None) -> bool:
        """Emit one event to one connection. A dead socket never raises here."""
        try:
            await conn.send(event, data)
        except Exception as e:
            logger.warning("Failed to send %s to %s: %s", event, conn.id, e)
            return False
        return True

    async def broadcast(
        self,
        event: str,
        data: Optional[Dict[str, Any]] = None,
        *,
        exclude: Optional[Connection] = None,
    ) -> int:
        """Send to every active connection except ``exclude``; returns deliveries made."""
        delivered = 0
        for conn in self.connections():
            if exclude is not None and conn.id == exclude.id:
                continue
            if await self.send(conn, event, data):
                delivered += 1
        return delivered
