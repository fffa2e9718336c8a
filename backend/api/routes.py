"""FastAPI endpoints for the chat gateway.

POST /api/chat - stream one assistant turn from the selected provider
GET /api/providers - provider/model catalog for the model selector
GET /api/history/{conversation_id} - persisted transcript, when enabled
GET /health - component health check
"""

import asyncio
import json
import time
import uuid

import structlog
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import ValidationError as SchemaError
from starlette.concurrency import run_in_threadpool

from backend.agent.tools import get_tools
from backend.api.schemas import (
    ChatRequest,
    HistoryResponse,
    ProviderInfo,
    ProvidersResponse,
    UIMessage,
)
from backend.core import database, vault
from backend.core.errors import ChatError, UpstreamError, ValidationError
from backend.core.gateway import (
    DONE_FRAME,
    ChatSession,
    GenerationStatus,
    StreamEvent,
    content_text,
    resolve_api_key,
    to_langchain_messages,
)
from backend.core.model_factory import build
from backend.core.models import USER_ROLE, ChatMessage
from backend.core.providers import DEFAULT_MODEL, DEFAULT_PROVIDER, PROVIDERS

logger = structlog.get_logger(__name__)

router = APIRouter()

REQUIRED_FIELDS = ("messages", "model", "provider")

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "x-vercel-ai-ui-message-stream": "v1",
}


async def _parse_chat_request(req: Request) -> ChatRequest:
    """Validate the body before anything else runs.

    Raises:
        ValidationError: On a non-JSON body, a missing/empty required
            field, or a field of the wrong shape.
    """
    try:
        body = await req.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"invalid JSON body: {e}") from e

    if not isinstance(body, dict) or any(not body.get(f) for f in REQUIRED_FIELDS):
        raise ValidationError("messages, model and provider are required")

    try:
        return ChatRequest.model_validate(body)
    except SchemaError as e:
        raise ValidationError(str(e)) from e


def _last_user_message(messages: list[UIMessage]) -> ChatMessage | None:
    for msg in reversed(messages):
        if msg.role != USER_ROLE:
            continue
        text = msg.content if msg.content is not None else content_text(msg.parts or [])
        if msg.id:
            return ChatMessage(id=msg.id, role=USER_ROLE, content=text)
        return ChatMessage(role=USER_ROLE, content=text)
    return None


@router.post("/api/chat")
async def chat(req: Request):
    """Validate -> resolve key -> build model -> stream the assistant turn."""
    start = time.monotonic()
    settings = req.app.state.settings

    request = await _parse_chat_request(req)
    log = logger.bind(
        request_id=uuid.uuid4().hex[:12],
        provider=request.provider,
        model=request.model,
    )
    log.info(
        "chat.request",
        messages=len(request.messages),
        conversation_id=request.conversation_id,
        has_key=bool(request.encrypted_api_key),
    )

    try:
        api_key = resolve_api_key(request.provider, request.encrypted_api_key, settings, vault.get_vault())
        handle = build(
            request.provider,
            request.model,
            api_key,
            req.app.state.proxy_transport,
            timeout=settings.llm_timeout,
            max_retries=settings.llm_max_retries,
        )
        messages = to_langchain_messages(request.messages)
        tools = get_tools() if settings.tools_enabled else ()
        session = ChatSession(handle, tools=tools, max_steps=settings.max_steps)

        events = session.stream(messages)
        # Wait for the upstream to answer before committing to a 200.
        try:
            first = await anext(events)
        except StopAsyncIteration:
            first = None
    except ChatError as e:
        log.warning("chat.rejected", status=e.status_code, error=e.message or e.error)
        raise
    except Exception as e:
        log.error("chat.failed", error=str(e))
        raise UpstreamError(str(e)) from e

    persist = None
    if request.conversation_id and database.is_initialized():
        persist = (request.conversation_id, request.model, _last_user_message(request.messages))

    return StreamingResponse(
        _relay(session, events, first, log, persist, start),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )


async def _relay(session: ChatSession, events, first: StreamEvent | None, log, persist, start: float):
    """Flush events in production order, then the terminator.

    Failures after the first byte can no longer change the status code, so
    they become an in-band ``error`` event.
    """
    try:
        if first is not None:
            yield first.to_sse()
        async for event in events:
            yield event.to_sse()
    except asyncio.CancelledError:
        raise
    except ChatError as e:
        log.error("chat.stream_failed", error=e.message or e.error)
        yield StreamEvent("error", {"errorText": e.message or e.error}).to_sse()
    except Exception as e:
        log.error("chat.stream_failed", error=str(e))
        yield StreamEvent("error", {"errorText": str(e)}).to_sse()
    finally:
        await events.aclose()
        if session.status is not GenerationStatus.COMPLETED:
            log.info("chat.stream_closed", status=session.status.value)

    if session.status is GenerationStatus.COMPLETED and persist is not None:
        conversation_id, model_id, user_message = persist
        if user_message is not None:
            try:
                await run_in_threadpool(database.save_turn, conversation_id, model_id, user_message, session.message)
            except Exception as e:
                log.error("chat.persist_failed", conversation_id=conversation_id, error=str(e))

    latency_ms = int((time.monotonic() - start) * 1000)
    log.info(
        "chat.response",
        latency_ms=latency_ms,
        status=session.status.value,
        steps=session.steps,
        finish_reason=session.finish_reason,
    )
    yield DONE_FRAME


@router.get("/api/providers", response_model=ProvidersResponse)
def providers():
    """Provider catalog, in registry order."""
    return ProvidersResponse(
        providers=[
            ProviderInfo(
                id=pid.value,
                name=config.display_name,
                models=list(config.supported_models),
                base_url=config.base_url,
            )
            for pid, config in PROVIDERS.items()
        ],
        default_provider=DEFAULT_PROVIDER.value,
        default_model=DEFAULT_MODEL,
    )


@router.get("/api/history/{conversation_id}", response_model=HistoryResponse)
def history(conversation_id: str):
    """Fetch the persisted transcript of one conversation."""
    if not database.is_initialized():
        raise HTTPException(status_code=404, detail="Conversation persistence is disabled")

    found = database.get_conversation(conversation_id)
    if found is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    title, messages = found
    return HistoryResponse(conversation_id=conversation_id, title=title, messages=messages)


@router.get("/health")
def health(req: Request):
    """Check health of all backend components."""
    settings = req.app.state.settings
    components = {
        "google_default_key": "ok" if settings.default_google_key else "absent",
        "proxy": "configured" if req.app.state.proxy_transport is not None else "direct",
    }

    if not database.is_initialized():
        components["database"] = "disabled"
    else:
        try:
            with database.get_session():
                pass
            components["database"] = "ok"
        except Exception:
            components["database"] = "error"

    degraded = [k for k, v in components.items() if v == "error"]
    status = "degraded" if degraded else "healthy"
    return {"status": status, "components": components}


@router.get("/")
@router.head("/")
def root_health():
    """Basic root health check for deployment platforms."""
    return {"status": "ok", "service": "chat-gateway"}
