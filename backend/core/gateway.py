"""Streaming gateway: key resolution, message conversion and the generation loop.

Per request the state machine is

    Received -> Validated -> KeyResolved -> ModelBuilt -> Generating
        -> {StreamingToClient, ToolCallRequested} -> Completed | Failed

with Aborted as a normal terminal state when the client stops reading.
Validation and model building live in the route; everything from
Generating onwards is a ChatSession.
"""

import asyncio
import json
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Iterable, Sequence

import structlog
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.tools import BaseTool

from backend.agent.tools import execute_tool
from backend.api.schemas import UIMessage
from backend.core.errors import CredentialError, UpstreamError, ValidationError
from backend.core.model_factory import ModelHandle
from backend.core.models import ASSISTANT_ROLE, SYSTEM_ROLE, TOOL_ROLE, USER_ROLE, ChatMessage, ToolInvocation
from backend.core.providers import ProviderId
from backend.core.settings import DEFAULT_MAX_STEPS, Settings
from backend.core.vault import Vault

logger = structlog.get_logger(__name__)

DONE_FRAME = "data: [DONE]\n\n"


@dataclass(frozen=True)
class StreamEvent:
    """One self-describing chunk of the response stream."""
    type: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, **self.data}

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_dict(), ensure_ascii=False, default=str)}\n\n"


class GenerationStatus(str, Enum):
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


def resolve_api_key(
    provider: str,
    encrypted_api_key: str | None,
    settings: Settings,
    vault: Vault,
) -> str:
    """Decrypt the user's key, falling back to the server key for Google only.

    Raises:
        CredentialError: If no usable key results.
    """
    api_key = vault.decrypt(encrypted_api_key) if encrypted_api_key else ""
    if encrypted_api_key and not api_key:
        logger.warning("gateway.key_undecryptable", provider=provider)

    if not api_key and provider == ProviderId.GOOGLE.value and settings.default_google_key:
        logger.info("gateway.default_key_used", provider=provider)
        api_key = settings.default_google_key

    if not api_key:
        raise CredentialError(provider)
    return api_key


def content_text(content: Any) -> str:
    """Text carried by a message content, whether a string or a list of blocks."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text") or "")
        return "".join(parts)
    return ""


def _tool_part_name(part: dict[str, Any]) -> str | None:
    kind = part.get("type", "")
    if kind == "dynamic-tool":
        return part.get("toolName")
    if kind.startswith("tool-"):
        return kind[len("tool-"):]
    return None


def _assistant_messages(parts: list[dict[str, Any]]) -> list[BaseMessage]:
    """Split an assistant UI message into AI / Tool messages, one segment per step."""
    converted: list[BaseMessage] = []
    text: list[str] = []
    calls: list[dict[str, Any]] = []
    results: list[ToolMessage] = []

    def flush():
        if text or calls:
            converted.append(AIMessage(content="".join(text), tool_calls=list(calls)))
            converted.extend(results)
        text.clear()
        calls.clear()
        results.clear()

    for part in parts:
        if part.get("type") == "text":
            if calls:
                flush()
            text.append(part.get("text") or "")
            continue

        name = _tool_part_name(part)
        if name is None or part.get("state") != "output-available":
            continue
        call_id = part.get("toolCallId") or f"call_{uuid.uuid4().hex[:12]}"
        calls.append({"name": name, "args": part.get("input") or {}, "id": call_id})
        results.append(ToolMessage(
            content=json.dumps(part.get("output"), ensure_ascii=False, default=str),
            tool_call_id=call_id,
            name=name,
        ))

    flush()
    return converted


def to_langchain_messages(ui_messages: Sequence[UIMessage]) -> list[BaseMessage]:
    """Convert browser-side messages to the provider-neutral LangChain format.

    Raises:
        ValidationError: If nothing usable remains after conversion.
    """
    converted: list[BaseMessage] = []
    for msg in ui_messages:
        parts = msg.parts or []
        if msg.role == ASSISTANT_ROLE and parts:
            converted.extend(_assistant_messages(parts))
            continue

        text = msg.content if msg.content is not None else content_text(parts)
        if not text:
            continue
        if msg.role == USER_ROLE:
            converted.append(HumanMessage(content=text))
        elif msg.role == ASSISTANT_ROLE:
            converted.append(AIMessage(content=text))
        elif msg.role == SYSTEM_ROLE:
            converted.append(SystemMessage(content=text))
        elif msg.role == TOOL_ROLE:
            logger.debug("gateway.tool_message_dropped", message_id=msg.id)

    if not converted:
        raise ValidationError("no message carries any content")
    return converted


class ChatSession:
    """One assistant turn: streams the model, runs tool calls, records the result.

    Built fresh per request so a rotated key or switched model never
    reuses a stale client.
    """

    def __init__(
        self,
        handle: ModelHandle,
        tools: Iterable[BaseTool] = (),
        max_steps: int = DEFAULT_MAX_STEPS,
    ):
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self.handle = handle
        self.tools = tuple(tools)
        self.max_steps = max_steps

        self.message_id = f"msg_{uuid.uuid4().hex}"
        self.status = GenerationStatus.PENDING
        self.finish_reason: str | None = None
        self.steps = 0
        self._text: list[str] = []
        self._tool_calls: list[ToolInvocation] = []

    @property
    def text(self) -> str:
        return "".join(self._text)

    @property
    def message(self) -> ChatMessage:
        """The assistant message assembled so far."""
        return ChatMessage(
            id=self.message_id,
            role=ASSISTANT_ROLE,
            content=self.text,
            tool_calls=tuple(self._tool_calls),
        )

    def _runnable(self):
        if self.tools:
            return self.handle.chat_model.bind_tools(list(self.tools))
        return self.handle.chat_model

    async def stream(self, messages: Sequence[BaseMessage]) -> AsyncIterator[StreamEvent]:
        """Generate the assistant turn, yielding events in production order.

        The first event is produced only once the upstream has answered, so
        a caller can await it to detect failures before committing to a
        streamed response.

        Raises:
            UpstreamError: If the provider rejects the call or fails mid-stream.
        """
        history = list(messages)
        model = self._runnable()
        self.status = GenerationStatus.GENERATING
        started = False

        try:
            for step in range(1, self.max_steps + 1):
                self.steps = step
                merged = None
                try:
                    async with aclosing(model.astream(history)) as upstream:
                        async for chunk in upstream:
                            if not started:
                                started = True
                                yield StreamEvent("start", {"messageId": self.message_id})
                            merged = chunk if merged is None else merged + chunk
                            delta = content_text(chunk.content)
                            if delta:
                                self._text.append(delta)
                                yield StreamEvent("text-delta", {"delta": delta})
                except Exception as e:
                    logger.error(
                        "gateway.upstream_failed",
                        provider=self.handle.provider.value,
                        model=self.handle.model_id,
                        step=step,
                        error=str(e),
                    )
                    raise UpstreamError(str(e)) from e

                if not started:
                    started = True
                    yield StreamEvent("start", {"messageId": self.message_id})

                calls = [
                    {**call, "id": call.get("id") or f"call_{uuid.uuid4().hex[:12]}"}
                    for call in (merged.tool_calls if merged is not None else [])
                ]
                if merged is not None and getattr(merged, "invalid_tool_calls", None):
                    logger.warning("gateway.invalid_tool_calls", count=len(merged.invalid_tool_calls), step=step)

                history.append(AIMessage(
                    content=merged.content if merged is not None else "",
                    tool_calls=calls,
                ))

                if not calls:
                    self.finish_reason = "stop"
                    yield StreamEvent("finish-step", {"step": step})
                    break

                for call in calls:
                    async for event in self._run_tool_call(call, history):
                        yield event
                yield StreamEvent("finish-step", {"step": step})
            else:
                self.finish_reason = "max-steps"
                logger.warning("gateway.max_steps_reached", max_steps=self.max_steps)

            self.status = GenerationStatus.COMPLETED
            logger.info(
                "gateway.completed",
                steps=self.steps,
                finish_reason=self.finish_reason,
                tool_calls=len(self._tool_calls),
            )
            yield StreamEvent("finish", {"finishReason": self.finish_reason})

        except (GeneratorExit, asyncio.CancelledError):
            if self.status is not GenerationStatus.COMPLETED:
                self.status = GenerationStatus.ABORTED
                logger.info("gateway.aborted", steps=self.steps, chars=len(self.text))
            raise
        except Exception:
            self.status = GenerationStatus.FAILED
            raise

    async def _run_tool_call(self, call: dict[str, Any], history: list[BaseMessage]) -> AsyncIterator[StreamEvent]:
        call_id = call["id"]
        name = call["name"]
        args = call.get("args") or {}

        logger.info("gateway.tool_call", tool=name, tool_call_id=call_id)
        yield StreamEvent("tool-call", {"toolCallId": call_id, "toolName": name, "input": args})

        result, is_error = await execute_tool(name, args)

        # Attach before any continuation text is relayed.
        self._tool_calls.append(ToolInvocation(id=call_id, tool_name=name, arguments=args, result=result))
        history.append(ToolMessage(
            content=json.dumps(result, ensure_ascii=False, default=str),
            tool_call_id=call_id,
            name=name,
        ))
        yield StreamEvent("tool-result", {
            "toolCallId": call_id,
            "toolName": name,
            "output": result,
            "isError": is_error,
        })
