"""Pydantic models for the API layer.

Defines request/response schemas for all endpoints. Field aliases keep
the camelCase names the browser client sends.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from backend.core.models import ChatMessage, Role


class UIMessage(BaseModel):
    """One message as the browser holds it: plain ``content`` or typed ``parts``."""
    model_config = ConfigDict(extra="allow")

    role: Role
    id: str | None = None
    content: str | None = None
    parts: list[dict[str, Any]] | None = None


class ChatRequest(BaseModel):
    """Body of POST /api/chat."""
    model_config = ConfigDict(populate_by_name=True)

    messages: list[UIMessage] = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    provider: str = Field(..., min_length=1)
    encrypted_api_key: str | None = Field(default=None, alias="encryptedApiKey")
    conversation_id: str | None = Field(default=None, alias="conversationId")


class ProviderInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    models: list[str]
    base_url: str | None = Field(default=None, alias="baseUrl")


class ProvidersResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    providers: list[ProviderInfo]
    default_provider: str = Field(alias="defaultProvider")
    default_model: str = Field(alias="defaultModel")


class HistoryResponse(BaseModel):
    """Persisted transcript of one conversation."""
    conversation_id: str
    title: str
    messages: list[ChatMessage]
