"""
AnthropicAdapter - Claude Messages API implementation of ProviderAdapter.

Wire format: SSE. Text arrives as delta.text on content_block_delta events;
a message_stop event ends the stream. The system prompt is a top-level
field, never a message.
"""

from typing import Any, Optional

import httpx

from notechat.adapters.http_adapter import HTTPAdapter
from notechat.adapters.schema import GenerationOptions, Message
from notechat.adapters.streaming import RequestSpec, StreamFormat, dig
from notechat.config import ANTHROPIC_API_VERSION

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1"
ANTHROPIC_DEFAULT_MAX_TOKENS = 4096

KNOWN_MODELS: list[str] = [
    "claude-3-opus-20240229",
    "claude-3-sonnet-20240229",
    "claude-3-haiku-20240307",
    "claude-2.1",
    "claude-2.0",
    "claude-instant-1.2",
]


def _token(record: dict) -> Optional[str]:
    if record.get("type") == "content_block_delta":
        return dig(record, "delta", "text")
    return None


def _error(record: dict) -> Optional[str]:
    if record.get("type") == "error":
        return dig(record, "error", "message") or "unknown error"
    return None


STREAM_FORMAT = StreamFormat(
    framing="sse",
    extract_token=_token,
    is_terminal=lambda record: isinstance(record, dict) and record.get("type") == "message_stop",
    extract_error=_error,
)


class AnthropicAdapter(HTTPAdapter):
    """Anthropic implementation of ProviderAdapter."""

    id = "anthropic"
    name = "Anthropic"
    stream_format = STREAM_FORMAT
    fallback_models = KNOWN_MODELS

    def __init__(
        self,
        api_key: str = "",
        default_model: str = "claude-3-haiku-20240307",
        base_url: str = ANTHROPIC_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            api_key=api_key,
            default_model=default_model or "claude-3-haiku-20240307",
            base_url=base_url or ANTHROPIC_BASE_URL,
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_API_VERSION,
        }

    def _body(
        self, messages: list[Message], model: str, options: GenerationOptions
    ) -> dict:
        # Anthropic requires the system prompt extracted from the messages list
        system = options.system_prompt or next(
            (m.content for m in messages if m.role == "system"), None
        )
        body: dict = {
            "model": model,
            "max_tokens": options.max_tokens or ANTHROPIC_DEFAULT_MAX_TOKENS,
        }
        if system:
            body["system"] = system
        body["messages"] = [m.to_wire() for m in messages if m.role != "system"]
        if options.temperature is not None:
            body["temperature"] = options.temperature
        return body

    def _chat_request(
        self, messages: list[Message], model: str, options: GenerationOptions
    ) -> RequestSpec:
        body = self._body(messages, model, options)
        body["stream"] = True
        return RequestSpec(url=f"{self._base_url}/messages", headers=self._headers(), body=body)

    def _generate_request(
        self, prompt: str, model: str, options: GenerationOptions
    ) -> RequestSpec:
        body = self._body([Message(role="user", content=prompt)], model, options)
        return RequestSpec(url=f"{self._base_url}/messages", headers=self._headers(), body=body)

    def _parse_generation(self, data: Any) -> str:
        return dig(data, "content", 0, "text") or ""

    def _models_request(self) -> RequestSpec:
        return RequestSpec(url=f"{self._base_url}/models", headers=self._headers(), method="GET")

    def _parse_models(self, data: Any) -> list[str]:
        return [m["id"] for m in data.get("data", [])]
