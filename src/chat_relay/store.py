"""Relational message store backed by SQLModel (SQLite or PostgreSQL)."""
from __future__ import annotations

import logging
import re
from typing import List, Protocol

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select

from .errors import PersistenceError
from .models import Message

logger = logging.getLogger("chat_relay.store")


def mask_url(url: str) -> str:
    """Hide the password part of a database URL for logging."""
    return re.sub(r":[^:@/]+@", ":****@", url)


class MessageStore(Protocol):
    """Persistence collaborator used by the relay and the HTTP routes.

    Methods are synchronous; callers on the event loop run them in a worker
    thread so a slow write never stalls other connections.
    """

    def append_message(self, username: str, content: str) -> Message:
        ...

    def list_recent_messages(self, limit: int) -> List[Message]:
        ...

    def delete_all_messages(self) -> None:
        ...


class SqlMessageStore:
    """``MessageStore`` over a SQLAlchemy engine.

    Every SQLAlchemy failure is re-raised as :class:`PersistenceError` so the
    relay only has to know about one error type.
    """

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self.url = url
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.engine = create_engine(url, echo=echo, connect_args=connect_args)

    # --------- lifecycle ----------
    def init_schema(self) -> None:
        """Create the ``messages`` table if it doesn't exist."""
        try:
            SQLModel.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to initialize schema: {e}") from e
        logger.info("Database initialized (%s)", mask_url(self.url))

    def close(self) -> None:
        self.engine.dispose()

    # --------- core API ----------
    def append_message(self, username: str, content: str) -> Message:
        msg = Message(username=username, content=content)
        try:
            with Session(self.engine) as session:
                session.add(msg)
                session.commit()
                session.refresh(msg)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to append message: {e}") from e
        return msg

    def list_recent_messages(self, limit: int) -> List[Message]:
        """Return up to ``limit`` messages, newest first."""
        stmt = (
            select(Message)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(max(0, limit))
        )
        try:
            with Session(self.engine) as session:
                return list(session.exec(stmt).all())
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list messages: {e}") from e

    def delete_all_messages(self) -> None:
        try:
            with Session(self.engine) as session:
                session.exec(delete(Message))
                session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete messages: {e}") from e
