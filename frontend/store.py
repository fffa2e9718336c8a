"""Client-side conversation store.

``ChatStore`` wraps an immutable ``ChatState``. Every mutation is a pure
transform of the prior state followed by a single assignment, so
mutations issued one after another (two quick sends, stream chunks
arriving between reruns) apply in call order without locking.

Only the snapshot (encrypted keys, provider, model) is durable; the
transcripts live for the browser session unless the backend persists them.
"""

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

import structlog
from pydantic import BaseModel, ConfigDict, Field

from backend.core.models import ChatMessage, Conversation, ToolInvocation, derive_title
from backend.core.providers import DEFAULT_MODEL, DEFAULT_PROVIDER

logger = structlog.get_logger(__name__)

DEFAULT_STORAGE_PATH = "~/.aurora-chat/chat-storage.json"


class ChatState(BaseModel):
    model_config = ConfigDict(frozen=True)

    conversations: tuple[Conversation, ...] = ()
    current_conversation_id: str | None = None
    current_provider: str = DEFAULT_PROVIDER.value
    current_model: str = DEFAULT_MODEL
    api_keys: dict[str, str] = Field(default_factory=dict)


class Snapshot(BaseModel):
    """The persisted subset of ChatState."""
    api_keys: dict[str, str] = Field(default_factory=dict)
    current_provider: str = DEFAULT_PROVIDER.value
    current_model: str = DEFAULT_MODEL


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ChatStore:
    """Explicit state container passed to whoever reads or mutates it."""

    def __init__(self, state: ChatState | None = None):
        self.state = state or ChatState()

    # -- internals -----------------------------------------------------

    def _apply(self, **changes: Any) -> ChatState:
        self.state = self.state.model_copy(update=changes)
        return self.state

    def _map_conversation(self, conversation_id: str, fn: Callable[[Conversation], Conversation]) -> None:
        updated = tuple(fn(c) if c.id == conversation_id else c for c in self.state.conversations)
        self._apply(conversations=updated)

    def _map_message(
        self,
        conversation_id: str,
        message_id: str,
        fn: Callable[[ChatMessage], ChatMessage],
    ) -> None:
        def update(conversation: Conversation) -> Conversation:
            messages = tuple(fn(m) if m.id == message_id else m for m in conversation.messages)
            return conversation.model_copy(update={"messages": messages})

        self._map_conversation(conversation_id, update)

    # -- conversations -------------------------------------------------

    def set_current_conversation(self, conversation_id: str | None) -> None:
        self._apply(current_conversation_id=conversation_id)

    def add_conversation(self, conversation: Conversation) -> None:
        """Prepend a conversation and make it the active one."""
        self._apply(
            conversations=(conversation,) + self.state.conversations,
            current_conversation_id=conversation.id,
        )

    def start_conversation(self, first_text: str, model_id: str | None = None) -> Conversation:
        conversation = Conversation(
            title=derive_title(first_text),
            model_id=model_id or self.state.current_model,
        )
        self.add_conversation(conversation)
        logger.debug("store.conversation_started", conversation_id=conversation.id)
        return conversation

    def delete_conversation(self, conversation_id: str) -> None:
        current = self.state.current_conversation_id
        self._apply(
            conversations=tuple(c for c in self.state.conversations if c.id != conversation_id),
            current_conversation_id=None if current == conversation_id else current,
        )

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        for conversation in self.state.conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    def active_conversation(self) -> Conversation | None:
        if self.state.current_conversation_id is None:
            return None
        return self.get_conversation(self.state.current_conversation_id)

    # -- messages ------------------------------------------------------

    def add_message(self, conversation_id: str, message: ChatMessage) -> None:
        """Append a message and refresh the conversation's updated_at."""
        self._map_conversation(
            conversation_id,
            lambda c: c.model_copy(update={"messages": c.messages + (message,), "updated_at": _now()}),
        )

    def update_message(self, conversation_id: str, message_id: str, content: str) -> None:
        """Replace a message's content by id."""
        self._map_message(conversation_id, message_id, lambda m: m.model_copy(update={"content": content}))

    def append_to_message(self, conversation_id: str, message_id: str, delta: str) -> None:
        self._map_message(
            conversation_id,
            message_id,
            lambda m: m.model_copy(update={"content": m.content + delta}),
        )

    def add_tool_invocation(self, conversation_id: str, message_id: str, invocation: ToolInvocation) -> None:
        self._map_message(
            conversation_id,
            message_id,
            lambda m: m.model_copy(update={"tool_calls": m.tool_calls + (invocation,)}),
        )

    def set_tool_result(self, conversation_id: str, message_id: str, tool_call_id: str, result: Any) -> None:
        def attach(message: ChatMessage) -> ChatMessage:
            calls = tuple(
                t.model_copy(update={"result": result}) if t.id == tool_call_id else t
                for t in message.tool_calls
            )
            return message.model_copy(update={"tool_calls": calls})

        self._map_message(conversation_id, message_id, attach)

    # -- settings ------------------------------------------------------

    def set_provider(self, provider: str) -> None:
        self._apply(current_provider=provider)

    def set_model(self, model_id: str) -> None:
        self._apply(current_model=model_id)

    def set_api_key(self, provider: str, encrypted_key: str) -> None:
        """Store an already-encrypted key; plaintext never reaches the store."""
        self._apply(api_keys={**self.state.api_keys, provider: encrypted_key})

    def remove_api_key(self, provider: str) -> None:
        self._apply(api_keys={k: v for k, v in self.state.api_keys.items() if k != provider})

    # -- persistence boundary -------------------------------------------

    def snapshot(self) -> Snapshot:
        return Snapshot(
            api_keys=dict(self.state.api_keys),
            current_provider=self.state.current_provider,
            current_model=self.state.current_model,
        )

    @classmethod
    def restore(cls, snapshot: Snapshot) -> "ChatStore":
        return cls(ChatState(
            api_keys=dict(snapshot.api_keys),
            current_provider=snapshot.current_provider,
            current_model=snapshot.current_model,
        ))


class SnapshotFile:
    """JSON file holding the store snapshot. A missing or corrupt file yields defaults."""

    def __init__(self, path: str | None = None):
        raw = path or os.environ.get("CHAT_STORAGE_PATH", DEFAULT_STORAGE_PATH)
        self.path = Path(raw).expanduser()

    def load(self) -> Snapshot:
        try:
            return Snapshot.model_validate(json.loads(self.path.read_text(encoding="utf-8")))
        except FileNotFoundError:
            return Snapshot()
        except (OSError, ValueError) as e:
            logger.warning("store.snapshot_unreadable", path=str(self.path), error=str(e))
            return Snapshot()

    def save(self, snapshot: Snapshot) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
