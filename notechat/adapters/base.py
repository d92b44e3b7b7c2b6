"""
ProviderAdapter Protocol - the contract every LLM backend implements.

This is the WHAT (interface), not the HOW (implementation).
See streaming.py for the shared HTTP plumbing and ollama.py,
anthropic.py, openai_compat.py, gemini.py for the vendors.
"""

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Protocol

from notechat.adapters.schema import GenerationOptions, Message

if TYPE_CHECKING:
    from notechat.adapters.streaming import StreamHandle


class RequestError(Exception):
    """Non-success HTTP status or transport failure talking to a provider."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        provider: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider


def parse_error_body(status_code: int, body: bytes) -> str:
    """Extract a user-friendly error message from a provider error body.

    Anthropic, OpenAI, Groq and Gemini all return
    {"error": {"message": "..."}}; Ollama returns {"error": "..."}.
    """
    text = body.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return f"HTTP {status_code}: {text[:200]}"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return error["message"]
        if isinstance(error, str) and error:
            return error
    return f"HTTP {status_code}: {text[:200]}"


@dataclass
class StreamCallbacks:
    """
    Caller-supplied continuation for one streaming call.

    Exactly one of on_complete / on_error fires, exactly once.
    Cancellation is delivered as on_complete with the partial text.
    """
    on_token: Callable[[str], None]
    on_complete: Callable[[str], None]
    on_error: Callable[[Exception], None]


class ProviderAdapter(Protocol):
    """
    Contract for LLM backends.

    Design rationale:
    - Configuration gaps are not errors: is_available() reports them
    - Model lists are best-effort: list_models() always has an answer
    - Streaming returns a cancellation handle synchronously
    """

    id: str
    name: str

    async def is_available(self) -> bool:
        """True iff there is enough configuration to attempt a call. Never raises."""
        ...

    async def list_models(self) -> list[str]:
        """
        Return model identifiers for this provider.

        Never empty: falls back to the default model or a static list
        when the backend cannot be queried.
        """
        ...

    async def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        options: Optional[GenerationOptions] = None,
    ) -> str:
        """
        Single non-streaming completion.

        Raises:
            RequestError on non-success status or transport failure
        """
        ...

    def stream_chat(
        self,
        messages: list[Message],
        model: Optional[str],
        callbacks: StreamCallbacks,
        options: Optional[GenerationOptions] = None,
    ) -> "StreamHandle":
        """
        Start a streaming chat completion on the running event loop.

        Returns immediately; tokens and the terminal callback are
        delivered from a background task.
        """
        ...

    def stream_generate(
        self,
        prompt: str,
        model: Optional[str],
        callbacks: StreamCallbacks,
        options: Optional[GenerationOptions] = None,
    ) -> "StreamHandle":
        """Streaming completion for a single prompt."""
        ...
