"""Database table and wire payload models for the chat relay."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from sqlmodel import Field, SQLModel

from .errors import ValidationError


# -----------------------------
# Event names (wire contract)
# -----------------------------
SEND_MESSAGE = "send_message"
TYPING = "typing"
STOP_TYPING = "stop_typing"

NEW_MESSAGE = "new_message"
USER_COUNT = "user_count"
USER_TYPING = "user_typing"
USER_STOP_TYPING = "user_stop_typing"
MESSAGES_CLEARED = "messages_cleared"
ERROR = "error"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------
# Persistence
# -----------------------------
class Message(SQLModel, table=True):
    """A chat message row. Rows are never updated, only bulk deleted."""

    __tablename__ = "messages"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(max_length=100)
    content: str
    created_at: datetime = Field(default_factory=_utcnow, index=True)


# -----------------------------
# Wire payloads
# -----------------------------
class SendMessagePayload(BaseModel):
    username: Optional[str] = None
    content: Optional[str] = None


class MessageOut(BaseModel):
    """Materialized message as broadcast in ``new_message`` and listed over HTTP."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    content: str
    created_at: datetime

    @classmethod
    def from_record(cls, record: Message) -> "MessageOut":
        return cls.model_validate(record)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


def parse_send_message(data: Any) -> SendMessagePayload:
    """Validate a ``send_message`` payload. Both fields must be non-empty strings."""
    if not isinstance(data, dict):
        raise ValidationError("Username and content are required")
    try:
        payload = SendMessagePayload.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError("Username and content are required") from e
    if not payload.username or not payload.content:
        raise ValidationError("Username and content are required")
    return payload
