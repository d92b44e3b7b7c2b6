"""
GeminiAdapter - Google Generative Language API implementation of ProviderAdapter.

Wire format: SSE (alt=sse) with candidates[0].content.parts[0].text per
event. There is no terminal sentinel; the stream ends with the body.
The API key travels as the "key" query parameter.
"""

from typing import Any, Optional

import httpx

from notechat.adapters.http_adapter import HTTPAdapter
from notechat.adapters.schema import GenerationOptions, Message
from notechat.adapters.streaming import RequestSpec, StreamFormat, dig
from notechat.config import DEFAULT_TEMPERATURE

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_DEFAULT_MAX_TOKENS = 2048

KNOWN_MODELS: list[str] = [
    "gemini-pro",
    "gemini-1.5-pro",
    "gemini-1.5-flash",
]

SAFETY_SETTINGS: list[dict] = [
    {"category": category, "threshold": "BLOCK_NONE"}
    for category in (
        "HARM_CATEGORY_HARASSMENT",
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
    )
]


def _error(record: dict) -> Optional[str]:
    if isinstance(record.get("error"), dict):
        return dig(record, "error", "message") or "unknown error"
    return None


STREAM_FORMAT = StreamFormat(
    framing="sse",
    extract_token=lambda record: dig(record, "candidates", 0, "content", "parts", 0, "text"),
    extract_error=_error,
)


def build_contents(messages: list[Message], system_prompt: Optional[str]) -> list[dict]:
    """
    Convert chat messages to Gemini contents.

    Gemini has no system role here: system text is folded into the parts of
    the first user turn (or a leading user turn if there is none).
    """
    system_parts = [m.content for m in messages if m.role == "system"]
    if system_prompt:
        system_parts.insert(0, system_prompt)

    contents = [
        {
            "role": "model" if m.role == "assistant" else "user",
            "parts": [{"text": m.content}],
        }
        for m in messages
        if m.role != "system"
    ]
    if system_parts:
        folded = [{"text": text} for text in system_parts]
        for content in contents:
            if content["role"] == "user":
                content["parts"] = folded + content["parts"]
                break
        else:
            contents.insert(0, {"role": "user", "parts": folded})
    return contents


class GeminiAdapter(HTTPAdapter):
    """Google Gemini implementation of ProviderAdapter."""

    id = "gemini"
    name = "Google Gemini"
    stream_format = STREAM_FORMAT
    fallback_models = KNOWN_MODELS

    def __init__(
        self,
        api_key: str = "",
        default_model: str = "gemini-1.5-pro",
        base_url: str = GEMINI_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            api_key=api_key,
            default_model=default_model or "gemini-1.5-pro",
            base_url=base_url or GEMINI_BASE_URL,
            transport=transport,
        )

    def _body(self, messages: list[Message], options: GenerationOptions) -> dict:
        return {
            "contents": build_contents(messages, options.system_prompt),
            "generationConfig": {
                "temperature": DEFAULT_TEMPERATURE if options.temperature is None else options.temperature,
                "maxOutputTokens": options.max_tokens or GEMINI_DEFAULT_MAX_TOKENS,
            },
            "safetySettings": SAFETY_SETTINGS,
        }

    def _chat_request(
        self, messages: list[Message], model: str, options: GenerationOptions
    ) -> RequestSpec:
        return RequestSpec(
            url=f"{self._base_url}/models/{model}:streamGenerateContent",
            headers={"Content-Type": "application/json"},
            params={"alt": "sse", "key": self._api_key},
            body=self._body(messages, options),
        )

    def _generate_request(
        self, prompt: str, model: str, options: GenerationOptions
    ) -> RequestSpec:
        return RequestSpec(
            url=f"{self._base_url}/models/{model}:generateContent",
            headers={"Content-Type": "application/json"},
            params={"key": self._api_key},
            body=self._body([Message(role="user", content=prompt)], options),
        )

    def _parse_generation(self, data: Any) -> str:
        return dig(data, "candidates", 0, "content", "parts", 0, "text") or ""

    def _models_request(self) -> RequestSpec:
        return RequestSpec(
            url=f"{self._base_url}/models", params={"key": self._api_key}, method="GET"
        )

    def _parse_models(self, data: Any) -> list[str]:
        # {"models": [{"name": "models/gemini-1.5-pro", "supportedGenerationMethods": [...]}]}
        return [
            m["name"].removeprefix("models/")
            for m in data.get("models", [])
            if "generateContent" in m.get("supportedGenerationMethods", [])
        ]
