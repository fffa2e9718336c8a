"""Pydantic data model shared by the gateway and the client-side store.

Messages are mutable only in ``content`` (streaming append) and
``tool_calls`` (appended as they complete). Store code never mutates in
place: it produces updated copies with ``model_copy``.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
SYSTEM_ROLE = "system"
TOOL_ROLE = "tool"
Role = Literal["user", "assistant", "system", "tool"]

TITLE_MAX_CHARS = 30


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ToolInvocation(BaseModel):
    """A tool call emitted by the model; ``result`` stays None until executed."""
    model_config = ConfigDict(frozen=True)

    id: str
    tool_name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: Any = None


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    id: str = Field(default_factory=_new_id)
    tool_calls: tuple[ToolInvocation, ...] = ()
    created_at: datetime = Field(default_factory=_now)


class Conversation(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    model_id: str
    id: str = Field(default_factory=_new_id)
    messages: tuple[ChatMessage, ...] = ()
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


def derive_title(text: str) -> str:
    """Conversation title: the first 30 characters, with "..." if cut."""
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + "..."
    return text
