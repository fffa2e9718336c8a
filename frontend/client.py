"""Per-turn chat session against the gateway's streaming endpoint.

A ``ChatTurn`` is built fresh for every send from the store's current
provider/model/key, so a key rotated in the sidebar is picked up by the
very next message.
"""

import json
import os
from typing import Any, Iterable, Iterator

import requests
import structlog

from backend.core.models import ASSISTANT_ROLE, USER_ROLE, ChatMessage, Conversation, ToolInvocation
from backend.core.providers import ProviderId
from frontend.store import ChatStore

logger = structlog.get_logger(__name__)

DEFAULT_API_URL = "http://localhost:8000"
DONE_MARKER = "[DONE]"


class ChatClientError(Exception):
    """The request was refused locally or by the gateway."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def to_ui_message(message: ChatMessage) -> dict[str, Any]:
    """Wire form of a stored message; completed tool calls travel as typed parts."""
    if message.role != ASSISTANT_ROLE or not message.tool_calls:
        return {"id": message.id, "role": message.role, "content": message.content}

    parts: list[dict[str, Any]] = [
        {
            "type": f"tool-{call.tool_name}",
            "toolCallId": call.id,
            "state": "output-available",
            "input": call.arguments,
            "output": call.result,
        }
        for call in message.tool_calls
        if call.result is not None
    ]
    if message.content:
        parts.append({"type": "text", "text": message.content})
    return {"id": message.id, "role": message.role, "parts": parts}


def iter_stream_events(lines: Iterable[bytes | str]) -> Iterator[dict[str, Any]]:
    """Parse SSE ``data:`` lines into event dicts, stopping at the terminator."""
    for line in lines:
        if not line:
            continue
        decoded = line.decode("utf-8") if isinstance(line, bytes) else line
        if not decoded.startswith("data:"):
            continue
        raw = decoded[len("data:"):].strip()
        if raw == DONE_MARKER:
            return
        try:
            event = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("client.bad_frame", frame=raw[:80])
            continue
        if isinstance(event, dict):
            yield event


class StreamAssembler:
    """Applies stream events to one assistant message in arrival order."""

    def __init__(self, store: ChatStore, conversation_id: str, message_id: str):
        self.store = store
        self.conversation_id = conversation_id
        self.message_id = message_id
        self.error: str | None = None
        self.finish_reason: str | None = None

    def apply(self, event: dict[str, Any]) -> None:
        kind = event.get("type")
        if kind == "text-delta":
            self.store.append_to_message(self.conversation_id, self.message_id, event.get("delta", ""))
        elif kind == "tool-call":
            self.store.add_tool_invocation(self.conversation_id, self.message_id, ToolInvocation(
                id=event["toolCallId"],
                tool_name=event["toolName"],
                arguments=event.get("input") or {},
            ))
        elif kind == "tool-result":
            self.store.set_tool_result(
                self.conversation_id, self.message_id, event["toolCallId"], event.get("output"),
            )
        elif kind == "error":
            self.error = event.get("errorText") or "Unknown error"
        elif kind == "finish":
            self.finish_reason = event.get("finishReason")


class ChatTurn:
    """One send: the provider, model and encrypted key it was started with."""

    def __init__(
        self,
        provider: str,
        model: str,
        encrypted_api_key: str | None = None,
        api_url: str | None = None,
        timeout: float = 60,
    ):
        self.provider = provider
        self.model = model
        self.encrypted_api_key = encrypted_api_key
        self.api_url = (api_url or os.environ.get("API_URL", DEFAULT_API_URL)).rstrip("/")
        self.timeout = timeout
        self._response: requests.Response | None = None

    @classmethod
    def from_store(cls, store: ChatStore, api_url: str | None = None) -> "ChatTurn":
        state = store.state
        return cls(
            provider=state.current_provider,
            model=state.current_model,
            encrypted_api_key=state.api_keys.get(state.current_provider),
            api_url=api_url,
        )

    def check_credentials(self) -> None:
        """Google may fall back to the server key; every other provider needs one."""
        if not self.encrypted_api_key and self.provider != ProviderId.GOOGLE.value:
            raise ChatClientError(f"请先配置 {self.provider} 的 API Key")

    def request_body(self, conversation: Conversation) -> dict[str, Any]:
        body: dict[str, Any] = {
            "messages": [to_ui_message(m) for m in conversation.messages],
            "model": self.model,
            "provider": self.provider,
            "conversationId": conversation.id,
        }
        if self.encrypted_api_key:
            body["encryptedApiKey"] = self.encrypted_api_key
        return body

    def open(self, body: dict[str, Any]) -> requests.Response:
        """POST the request and return the streaming response.

        Raises:
            ChatClientError: If the gateway answers with anything but 200.
        """
        resp = requests.post(f"{self.api_url}/api/chat", json=body, timeout=self.timeout, stream=True)
        if resp.status_code != 200:
            message = _error_message(resp)
            resp.close()
            raise ChatClientError(message, status_code=resp.status_code)
        self._response = resp
        return resp

    def stop(self) -> None:
        """Abort the stream; the gateway sees the disconnect and stops generating."""
        if self._response is not None:
            self._response.close()
            self._response = None


def _error_message(resp: requests.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return f"Server error ({resp.status_code})"
    error = payload.get("error") or f"Server error ({resp.status_code})"
    details = payload.get("details")
    return f"{error}: {details}" if details else error


def send(turn: ChatTurn, store: ChatStore, text: str) -> Iterator[dict[str, Any]]:
    """Append the user message, stream the reply into the store, yield each event.

    Raises:
        ChatClientError: On a missing key, a non-200 answer, or an in-band
            error event.
    """
    turn.check_credentials()

    conversation = store.active_conversation() or store.start_conversation(text, turn.model)
    store.add_message(conversation.id, ChatMessage(role=USER_ROLE, content=text))
    body = turn.request_body(store.get_conversation(conversation.id))

    resp = turn.open(body)
    assistant = ChatMessage(role=ASSISTANT_ROLE)
    store.add_message(conversation.id, assistant)
    assembler = StreamAssembler(store, conversation.id, assistant.id)

    try:
        for event in iter_stream_events(resp.iter_lines()):
            assembler.apply(event)
            yield event
    finally:
        turn.stop()

    if assembler.error:
        raise ChatClientError(assembler.error)
