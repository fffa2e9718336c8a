"""Error taxonomy for the chat gateway.

Each error carries the HTTP status it surfaces as and renders to the JSON
payload the browser client expects (an ``error`` field, plus ``details``
where the raw message is worth exposing).
"""

from typing import Any


class ChatError(Exception):
    """Base class for all errors the gateway turns into HTTP responses."""

    status_code = 500
    error = "Failed to process chat request"

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error}
        if self.message:
            payload["details"] = self.message
        return payload


class ValidationError(ChatError):
    """Malformed or incomplete inbound request. Never retried."""

    status_code = 400
    error = "Missing required parameters"

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.error}


class CredentialError(ChatError):
    """No usable API key after decrypt + fallback resolution."""

    status_code = 401

    def __init__(self, provider: str) -> None:
        super().__init__(f"请配置 {provider} 的 API Key")
        self.provider = provider

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.message}


# The model factory refuses to build a client without a key.
MissingCredential = CredentialError


class UnknownProviderError(ChatError):
    """A provider tag outside the registry reached a lookup."""

    def __init__(self, provider: Any) -> None:
        super().__init__(f"Unknown provider: {provider}")
        self.provider = provider


class UpstreamError(ChatError):
    """The third-party model API rejected the request or failed mid-stream."""


class ToolExecutionError(Exception):
    """A tool raised or produced unusable output. Contained per invocation."""

    def __init__(self, tool_name: str, message: str) -> None:
        super().__init__(f"{tool_name}: {message}")
        self.tool_name = tool_name
        self.message = message


class DecryptionError(Exception):
    """Ciphertext could not be read. Always recovered to an empty key."""
