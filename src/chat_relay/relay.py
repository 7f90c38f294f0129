"""Relay core: validates inbound events and fans results out to connections.

Each inbound event kind maps to a handler in :data:`HANDLERS`. A handler
never touches the transport; it returns a list of :class:`Delivery` values
describing what to send and to whom. :class:`RelayCore` turns those into
actual sends through the :class:`~chat_relay.registry.ConnectionRegistry`.

Only store I/O suspends a handler. While one connection waits on a write,
events from other connections keep flowing, so two near-simultaneous
messages may be broadcast in a different order than they were sent. The
store's id/timestamp order is the authoritative one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool

from .errors import PersistenceError, ValidationError
from .models import (
    ERROR,
    MESSAGES_CLEARED,
    NEW_MESSAGE,
    SEND_MESSAGE,
    STOP_TYPING,
    TYPING,
    USER_STOP_TYPING,
    USER_TYPING,
    Message,
    MessageOut,
    parse_send_message,
)
from .registry import Connection, ConnectionRegistry
from .store import MessageStore

logger = logging.getLogger("chat_relay.relay")


class Audience(str, Enum):
    ALL = "all"          # every active connection, sender included
    OTHERS = "others"    # everyone but the sender
    SENDER = "sender"    # the originating connection only


@dataclass(frozen=True)
class Delivery:
    event: str
    data: Optional[Dict[str, Any]] = None
    audience: Audience = Audience.ALL


Handler = Callable[[MessageStore, Any], Awaitable[List[Delivery]]]


def _username(data: Any) -> Any:
    return data.get("username") if isinstance(data, dict) else None


def error_notice(message: str) -> Delivery:
    return Delivery(ERROR, {"message": message}, Audience.SENDER)


# -----------------------------
# Handlers
# -----------------------------
async def submit_message(store: MessageStore, data: Any) -> List[Delivery]:
    """Persist a message, then echo the stored record to everyone."""
    payload = parse_send_message(data)
    record: Message = await run_in_threadpool(store.append_message, payload.username, payload.content)
    logger.info("Message %s from %s", record.id, record.username)
    return [Delivery(NEW_MESSAGE, MessageOut.from_record(record).to_wire(), Audience.ALL)]


async def begin_typing(store: MessageStore, data: Any) -> List[Delivery]:
    return [Delivery(USER_TYPING, {"username": _username(data)}, Audience.OTHERS)]


async def end_typing(store: MessageStore, data: Any) -> List[Delivery]:
    return [Delivery(USER_STOP_TYPING, {"username": _username(data)}, Audience.OTHERS)]


HANDLERS: Dict[str, Handler] = {
    SEND_MESSAGE: submit_message,
    TYPING: begin_typing,
    STOP_TYPING: end_typing,
}


# -----------------------------
# RelayCore
# -----------------------------
class RelayCore:
    """Routes events between connections and the message store."""

    def __init__(
        self,
        store: MessageStore,
        registry: ConnectionRegistry,
        handlers: Optional[Dict[str, Handler]] = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.handlers = dict(HANDLERS if handlers is None else handlers)

    async def connect(self, conn: Connection) -> int:
        return await self.registry.on_connect(conn)

    async def disconnect(self, conn: Connection) -> int:
        return await self.registry.on_disconnect(conn)

    async def handle(self, event: str, data: Any) -> List[Delivery]:
        """Run the handler for ``event`` and map failures to a sender-only error.

        Unknown events are ignored.
        """
        handler = self.handlers.get(event)
        if handler is None:
            logger.warning("Ignoring unknown event %r", event)
            return []
        try:
            return await handler(self.store, data)
        except ValidationError as e:
            logger.warning("Rejected %s: %s", event, e)
            return [error_notice(str(e))]
        except PersistenceError as e:
            logger.error("Error saving message: %s", e)
            return [error_notice("Failed to send message")]
        except Exception:
            logger.exception("Handler for %s failed", event)
            return [error_notice(f"Failed to process {event}")]

    async def dispatch(self, sender: Connection, event: str, data: Any) -> List[Delivery]:
        """Handle one inbound event from ``sender`` and deliver the outcome."""
        name = _username(data)
        if isinstance(name, str) and name:
            sender.username = name
        deliveries = await self.handle(event, data)
        await self.deliver(sender, deliveries)
        return deliveries

    async def deliver(self, sender: Connection, deliveries: List[Delivery]) -> None:
        for d in deliveries:
            if d.audience is Audience.SENDER:
                await self.registry.send(sender, d.event, d.data)
            elif d.audience is Audience.OTHERS:
                await self.registry.broadcast(d.event, d.data, exclude=sender)
            else:
                await self.registry.broadcast(d.event, d.data)

    # --------- administrative ----------
    async def clear_all(self) -> None:
        """Delete every stored message, then tell all clients to drop history.

        A store failure propagates to the caller and nothing is broadcast.
        """
        await run_in_threadpool(self.store.delete_all_messages)
        logger.info("All messages deleted")
        await self.registry.broadcast(MESSAGES_CLEARED)

    async def recent_messages(self, limit: int) -> List[MessageOut]:
        records = await run_in_threadpool(self.store.list_recent_messages, limit)
        return [MessageOut.from_record(r) for r in records]
