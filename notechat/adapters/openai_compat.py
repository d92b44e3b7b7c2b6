"""
OpenAI-compatible chat completions adapters (OpenAI, Groq).

Wire format: SSE. Text arrives as choices[0].delta.content; the
"data: [DONE]" sentinel ends the stream. Bearer-token auth.
"""

from typing import Any, Optional

import httpx

from notechat.adapters.decoder import DONE
from notechat.adapters.http_adapter import HTTPAdapter
from notechat.adapters.schema import GenerationOptions, Message
from notechat.adapters.streaming import RequestSpec, StreamFormat, dig
from notechat.config import DEFAULT_TEMPERATURE

OPENAI_BASE_URL = "https://api.openai.com/v1"
GROQ_BASE_URL = "https://api.groq.com/openai/v1"


def _error(record: dict) -> Optional[str]:
    error = record.get("error")
    if isinstance(error, dict):
        return error.get("message") or "unknown error"
    if isinstance(error, str) and error:
        return error
    return None


STREAM_FORMAT = StreamFormat(
    framing="sse",
    extract_token=lambda record: dig(record, "choices", 0, "delta", "content"),
    is_terminal=lambda record: record == DONE,
    extract_error=_error,
)


class OpenAICompatibleAdapter(HTTPAdapter):
    """
    Shared implementation for /chat/completions style APIs.

    Subclasses set id/name, their endpoint, and default max_tokens.
    """

    stream_format = STREAM_FORMAT
    default_base_url: str = OPENAI_BASE_URL
    default_max_tokens: Optional[int] = None

    def __init__(
        self,
        api_key: str = "",
        default_model: str = "",
        base_url: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            api_key=api_key,
            default_model=default_model,
            base_url=base_url or self.default_base_url,
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    def _body(self, messages: list[Message], model: str, options: GenerationOptions) -> dict:
        wire = [m.to_wire() for m in messages]
        # Add system prompt if provided and not already present
        if options.system_prompt and not any(m.role == "system" for m in messages):
            wire.insert(0, {"role": "system", "content": options.system_prompt})
        body: dict = {
            "model": model,
            "messages": wire,
            "temperature": DEFAULT_TEMPERATURE if options.temperature is None else options.temperature,
        }
        max_tokens = options.max_tokens or self.default_max_tokens
        if max_tokens:
            body["max_tokens"] = max_tokens
        return body

    def _chat_request(
        self, messages: list[Message], model: str, options: GenerationOptions
    ) -> RequestSpec:
        body = self._body(messages, model, options)
        body["stream"] = True
        return RequestSpec(
            url=f"{self._base_url}/chat/completions", headers=self._headers(), body=body
        )

    def _generate_request(
        self, prompt: str, model: str, options: GenerationOptions
    ) -> RequestSpec:
        body = self._body([Message(role="user", content=prompt)], model, options)
        return RequestSpec(
            url=f"{self._base_url}/chat/completions", headers=self._headers(), body=body
        )

    def _parse_generation(self, data: Any) -> str:
        return dig(data, "choices", 0, "message", "content") or ""

    def _models_request(self) -> RequestSpec:
        return RequestSpec(url=f"{self._base_url}/models", headers=self._headers(), method="GET")

    def _parse_models(self, data: Any) -> list[str]:
        return [m["id"] for m in data.get("data", [])]


class OpenAIAdapter(OpenAICompatibleAdapter):
    """OpenAI GPT models. Base URL is configurable for compatible gateways."""

    id = "openai"
    name = "OpenAI"
    default_base_url = OPENAI_BASE_URL

    def __init__(
        self,
        api_key: str = "",
        default_model: str = "gpt-3.5-turbo",
        base_url: str = OPENAI_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, default_model or "gpt-3.5-turbo", base_url, transport)

    def _parse_models(self, data: Any) -> list[str]:
        return [m for m in super()._parse_models(data) if "gpt" in m]


class GroqAdapter(OpenAICompatibleAdapter):
    """Groq hosted inference."""

    id = "groq"
    name = "Groq"
    default_base_url = GROQ_BASE_URL
    default_max_tokens = 4096
    fallback_models = [
        "llama2-70b-4096",
        "mixtral-8x7b-32768",
        "gemma-7b-it",
    ]

    def __init__(
        self,
        api_key: str = "",
        default_model: str = "llama2-70b-4096",
        base_url: str = GROQ_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(api_key, default_model or "llama2-70b-4096", base_url, transport)
