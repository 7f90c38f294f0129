"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import contextlib
import itertools
import os
import socket
import sys
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import pytest
import uvicorn

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from chat_relay.errors import PersistenceError  # noqa: E402
from chat_relay.models import Message  # noqa: E402
from chat_relay.registry import Connection  # noqa: E402
from chat_relay.store import SqlMessageStore  # noqa: E402


class MemoryStore:
    """In-process MessageStore used where a real database adds nothing."""

    def __init__(self) -> None:
        self.rows: List[Message] = []
        self._ids = itertools.count(1)

    def append_message(self, username: str, content: str) -> Message:
        msg = Message(
            id=next(self._ids),
            username=username,
            content=content,
            created_at=datetime.now(timezone.utc),
        )
        self.rows.append(msg)
        return msg

    def list_recent_messages(self, limit: int) -> List[Message]:
        return list(reversed(self.rows))[:limit]

    def delete_all_messages(self) -> None:
        self.rows.clear()


class FailingStore(MemoryStore):
    """Every operation fails as if the database were unreachable."""

    def append_message(self, username: str, content: str) -> Message:
        raise PersistenceError("database is down")

    def list_recent_messages(self, limit: int) -> List[Message]:
        raise PersistenceError("database is down")

    def delete_all_messages(self) -> None:
        raise PersistenceError("database is down")


class Recorder:
    """Collects (event, data) pairs sent to a Connection."""

    def __init__(self) -> None:
        self.frames: List[Tuple[str, Any]] = []

    async def __call__(self, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.frames.append((event, data))

    def events(self) -> List[str]:
        return [event for event, _ in self.frames]

    def of(self, event: str) -> List[Any]:
        return [data for name, data in self.frames if name == event]


class ClosableStore(MemoryStore):
    """Records whether the app tried to close it."""

    def __init__(self) -> None:
        super().__init__()
        self.closed = False

    def close(self) -> None:
        self.closed = True


@contextlib.contextmanager
def serve(app) -> Iterator[str]:
    """Run ``app`` under uvicorn in a background thread and yield its base URL."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()

    server = uvicorn.Server(uvicorn.Config(app, host="127.0.0.1", port=port, log_level="warning"))
    thread = threading.Thread(target=server.run, daemon=True)
    thread.start()
    deadline = time.monotonic() + 10
    while not server.started:
        if not thread.is_alive() or time.monotonic() > deadline:
            raise RuntimeError("uvicorn did not start")
        time.sleep(0.02)
    try:
        yield f"http://127.0.0.1:{port}"
    finally:
        server.should_exit = True
        thread.join(timeout=10)


def make_connection(name: str | None = None) -> Connection:
    return Connection(send=Recorder(), username=name)


@pytest.fixture(scope="function")
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture(scope="function")
def failing_store() -> FailingStore:
    return FailingStore()


@pytest.fixture(scope="function")
def sql_store(tmp_path: Path):
    """SQLite-backed store in a temporary directory."""
    store = SqlMessageStore(f"sqlite:///{tmp_path / 'chat.db'}")
    store.init_schema()
    yield store
    store.close()


@pytest.fixture(scope="function")
def config_file(tmp_path: Path) -> Path:
    """Minimal config pointing the store at a temporary SQLite file."""
    path = tmp_path / "config.yaml"
    path.write_text(
        "server:\n"
        "  history_limit: 50\n"
        "database:\n"
        f"  url: sqlite:///{(tmp_path / 'app.db').as_posix()}\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture(scope="function", autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    for var in ["CHAT_RELAY_CONFIG", "DATABASE_URL"]:
        monkeypatch.delenv(var, raising=False)
    for var in [k for k in os.environ if k.startswith("CHAT_RELAY__")]:
        monkeypatch.delenv(var, raising=False)
    yield
