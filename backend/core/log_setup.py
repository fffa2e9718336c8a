"""structlog configuration with API-key redaction.

Provider keys travel through request bodies and client constructors, so
every event passes through ``redact_secrets`` before it is rendered.
"""

import logging
import re
import sys

import structlog

REDACTED = "[REDACTED]"

_SECRET_KEYS = re.compile(r"(api[_-]?key|apikey|secret|token|password|authorization)", re.IGNORECASE)

# Raw provider keys embedded in free text (error messages, reprs)
_KEY_PATTERNS = [
    re.compile(r"\bsk-[A-Za-z0-9_\-]{8,}"),
    re.compile(r"\bAIza[0-9A-Za-z_\-]{20,}"),
    re.compile(r"U2FsdGVkX1[A-Za-z0-9+/=]{8,}"),
]


def scrub(text: str) -> str:
    """Replace anything that looks like a provider key inside ``text``."""
    for pattern in _KEY_PATTERNS:
        text = pattern.sub(REDACTED, text)
    return text


def redact_secrets(logger, method_name, event_dict):
    """structlog processor: blank secret-named fields, scrub key-shaped strings."""
    for key, value in list(event_dict.items()):
        if key != "event" and _SECRET_KEYS.search(key):
            event_dict[key] = REDACTED
        elif isinstance(value, str):
            event_dict[key] = scrub(value)
    return event_dict


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Wire structlog once at startup.

    Args:
        level: Minimum level name (DEBUG, INFO, ...).
        json_output: Render JSON lines instead of the console renderer.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )
