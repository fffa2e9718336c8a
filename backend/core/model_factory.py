"""Builds a ready-to-use LangChain chat model for a provider/model/key triple.

DeepSeek and Qwen speak the OpenAI dialect, so they share the OpenAI
binding with a base URL override taken from the provider registry. No
network call happens here; the first request is made when generation
starts.
"""

from dataclasses import dataclass
from typing import Callable

import httpx
import structlog
from langchain_core.language_models.chat_models import BaseChatModel

from backend.core.errors import MissingCredential
from backend.core.providers import PROVIDERS, ProviderConfig, ProviderId, parse_provider
from backend.core.settings import Settings

logger = structlog.get_logger(__name__)

ANTHROPIC_MAX_TOKENS = 4096


class ProxyTransport:
    """Process-wide HTTP transport that routes upstream calls through a proxy.

    The httpx clients are created on first use and shared read-only by
    every request.
    """

    def __init__(self, url: str, timeout: float = 60):
        self.url = url
        self.timeout = timeout
        self._async_client: httpx.AsyncClient | None = None
        self._sync_client: httpx.Client | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProxyTransport | None":
        """Return a transport only when an outbound proxy is configured."""
        if not settings.https_proxy:
            return None
        return cls(settings.https_proxy, timeout=settings.llm_timeout)

    @property
    def async_client(self) -> httpx.AsyncClient:
        if self._async_client is None:
            self._async_client = httpx.AsyncClient(proxy=self.url, timeout=self.timeout)
        return self._async_client

    @property
    def sync_client(self) -> httpx.Client:
        if self._sync_client is None:
            self._sync_client = httpx.Client(proxy=self.url, timeout=self.timeout)
        return self._sync_client

    async def aclose(self) -> None:
        if self._async_client is not None:
            await self._async_client.aclose()
            self._async_client = None
        if self._sync_client is not None:
            self._sync_client.close()
            self._sync_client = None


@dataclass(frozen=True)
class ModelHandle:
    """A constructed chat model plus the routing facts it was built with."""
    provider: ProviderId
    model_id: str
    base_url: str | None
    chat_model: BaseChatModel


Builder = Callable[[ProviderConfig, str, str, "ProxyTransport | None", float, int], BaseChatModel]


def _build_openai_dialect(config, model_id, api_key, transport, timeout, max_retries):
    from langchain_openai import ChatOpenAI

    kwargs = {}
    if config.base_url:
        kwargs["base_url"] = config.base_url
    if transport is not None:
        kwargs["http_client"] = transport.sync_client
        kwargs["http_async_client"] = transport.async_client

    return ChatOpenAI(
        model=model_id,
        api_key=api_key,
        timeout=timeout,
        max_retries=max_retries,
        **kwargs,
    )


def _build_anthropic(config, model_id, api_key, transport, timeout, max_retries):
    from langchain_anthropic import ChatAnthropic

    kwargs = {}
    if transport is not None:
        kwargs["anthropic_proxy"] = transport.url

    return ChatAnthropic(
        model=model_id,
        api_key=api_key,
        max_tokens=ANTHROPIC_MAX_TOKENS,
        timeout=timeout,
        max_retries=max_retries,
        **kwargs,
    )


def _build_google(config, model_id, api_key, transport, timeout, max_retries):
    from langchain_google_genai import ChatGoogleGenerativeAI

    # The Gemini binding takes no transport override; it honours HTTPS_PROXY itself.
    return ChatGoogleGenerativeAI(
        model=model_id,
        google_api_key=api_key,
        timeout=timeout,
        max_retries=max_retries,
    )


_BUILDERS: dict[ProviderId, Builder] = {
    ProviderId.OPENAI: _build_openai_dialect,
    ProviderId.ANTHROPIC: _build_anthropic,
    ProviderId.GOOGLE: _build_google,
    ProviderId.DEEPSEEK: _build_openai_dialect,
    ProviderId.QWEN: _build_openai_dialect,
}

if set(_BUILDERS) != set(ProviderId):
    raise RuntimeError("every ProviderId needs a model builder")


def build(
    provider_id: str | ProviderId,
    model_id: str,
    api_key: str,
    proxy_transport: ProxyTransport | None = None,
    *,
    timeout: float = 60,
    max_retries: int = 2,
) -> ModelHandle:
    """Construct the chat model for one request.

    The model id is passed through uninterpreted; checking it against the
    registry is left to callers (see providers.is_supported_model).

    Args:
        provider_id: One of the ProviderId tags.
        model_id: Upstream model identifier.
        api_key: Resolved plaintext key for this request only.
        proxy_transport: Optional shared proxy transport.
        timeout: Upstream request timeout in seconds.
        max_retries: SDK-level retries on transient transport failures.

    Returns:
        ModelHandle wrapping the LangChain chat model.

    Raises:
        UnknownProviderError: If provider_id is not a known tag.
        MissingCredential: If api_key is empty.
    """
    provider = parse_provider(provider_id)
    if not api_key:
        raise MissingCredential(provider.value)

    config = PROVIDERS[provider]
    chat_model = _BUILDERS[provider](config, model_id, api_key, proxy_transport, timeout, max_retries)

    logger.debug(
        "model_factory.built",
        provider=provider.value,
        model=model_id,
        base_url=config.base_url,
        proxied=proxy_transport is not None,
    )
    return ModelHandle(
        provider=provider,
        model_id=model_id,
        base_url=config.base_url,
        chat_model=chat_model,
    )
