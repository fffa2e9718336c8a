"""Static catalog of supported LLM providers.

The registry is fixed at import time. Adding a provider means adding a
ProviderId member, a ProviderConfig entry here and a builder in
model_factory; both tables are checked for completeness on import.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from backend.core.errors import UnknownProviderError


class ProviderId(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"
    DEEPSEEK = "deepseek"
    QWEN = "qwen"


@dataclass(frozen=True)
class ProviderConfig:
    """Display name, model list and optional endpoint override for a provider."""
    display_name: str
    supported_models: tuple[str, ...]
    base_url: str | None = None

    def __post_init__(self):
        if not self.supported_models:
            raise ValueError(f"{self.display_name} must list at least one model")


DEEPSEEK_BASE_URL = "https://api.deepseek.com"
QWEN_BASE_URL = "https://dashscope.aliyuncs.com/compatible-mode/v1"

PROVIDERS: Mapping[ProviderId, ProviderConfig] = MappingProxyType({
    ProviderId.GOOGLE: ProviderConfig(
        display_name="Google Gemini",
        supported_models=(
            "gemini-2.5-flash",
            "gemini-2.0-flash",
            "gemini-2.5-pro",
            "gemini-3-pro-preview",
        ),
    ),
    ProviderId.OPENAI: ProviderConfig(
        display_name="OpenAI",
        supported_models=("gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"),
    ),
    ProviderId.ANTHROPIC: ProviderConfig(
        display_name="Anthropic",
        supported_models=(
            "claude-sonnet-4-20250514",
            "claude-3-5-sonnet-20241022",
            "claude-3-opus-20240229",
            "claude-3-haiku-20240307",
        ),
    ),
    ProviderId.DEEPSEEK: ProviderConfig(
        display_name="DeepSeek",
        supported_models=("deepseek-chat", "deepseek-coder"),
        base_url=DEEPSEEK_BASE_URL,
    ),
    ProviderId.QWEN: ProviderConfig(
        display_name="Qwen",
        supported_models=("qwen-turbo", "qwen-plus", "qwen-max"),
        base_url=QWEN_BASE_URL,
    ),
})

if set(PROVIDERS) != set(ProviderId):
    raise RuntimeError("every ProviderId needs a ProviderConfig")

DEFAULT_PROVIDER = ProviderId.GOOGLE
DEFAULT_MODEL = "gemini-2.5-flash"


def parse_provider(value: str | ProviderId) -> ProviderId:
    """Turn a wire tag into a ProviderId.

    Raises:
        UnknownProviderError: If the tag is not one of the five known providers.
    """
    try:
        return ProviderId(value)
    except ValueError:
        raise UnknownProviderError(value)


def lookup(provider_id: str | ProviderId) -> ProviderConfig:
    return PROVIDERS[parse_provider(provider_id)]


def is_supported_model(provider_id: str | ProviderId, model_id: str) -> bool:
    """Strict model check for callers that want it; the factory does not apply it."""
    return model_id in lookup(provider_id).supported_models
