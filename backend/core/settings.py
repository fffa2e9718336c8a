"""Process configuration, read once from the environment at startup."""

import os
from dataclasses import dataclass, field

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_VAULT_SECRET = "client-secret"
DEFAULT_MAX_STEPS = 5


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("settings.invalid_int", name=name, value=raw, default=default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Gateway configuration.

    Attributes:
        default_google_key: Server-side Gemini key used when the user supplied none.
        https_proxy: Outbound proxy URL, only set where direct upstream access fails.
        vault_secret: Passphrase shared with the client for API-key encryption.
        max_steps: Upper bound on model calls in one tool-calling generation.
        tools_enabled: Whether the tool registry is attached to generations.
        llm_timeout: Upstream request timeout in seconds.
        llm_max_retries: Transport-level retries performed by the provider SDK.
        database_url: SQLAlchemy URL; persistence is off when empty.
        cors_origins: Allowed browser origins.
    """
    default_google_key: str = ""
    https_proxy: str = ""
    vault_secret: str = DEFAULT_VAULT_SECRET
    max_steps: int = DEFAULT_MAX_STEPS
    tools_enabled: bool = True
    llm_timeout: int = 60
    llm_max_retries: int = 2
    database_url: str = ""
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    @classmethod
    def from_env(cls) -> "Settings":
        origins = os.environ.get("CORS_ORIGINS", "*")
        max_steps = _env_int("CHAT_MAX_STEPS", DEFAULT_MAX_STEPS)
        if max_steps < 1:
            logger.warning("settings.invalid_max_steps", value=max_steps, default=DEFAULT_MAX_STEPS)
            max_steps = DEFAULT_MAX_STEPS

        return cls(
            default_google_key=os.environ.get("GEMINI_API_KEY", ""),
            https_proxy=os.environ.get("HTTPS_PROXY", "") or os.environ.get("https_proxy", ""),
            vault_secret=os.environ.get("VAULT_SECRET", "") or DEFAULT_VAULT_SECRET,
            max_steps=max_steps,
            tools_enabled=_env_bool("CHAT_TOOLS_ENABLED", True),
            llm_timeout=_env_int("LLM_TIMEOUT", 60),
            llm_max_retries=_env_int("LLM_MAX_RETRIES", 2),
            database_url=os.environ.get("DATABASE_URL", ""),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()] or ["*"],
        )
