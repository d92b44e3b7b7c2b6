"""
OllamaAdapter - local Ollama server implementation of ProviderAdapter.

Wire format: newline-delimited JSON, one object per line. Chat lines carry
the delta in message.content, /api/generate lines in response; the last
line has "done": true.
"""

import logging
from typing import Any, Optional

import httpx

from notechat.adapters.base import StreamCallbacks
from notechat.adapters.http_adapter import HTTPAdapter
from notechat.adapters.schema import GenerationOptions, Message
from notechat.adapters.streaming import RequestSpec, StreamFormat, StreamHandle, dig, start_stream
from notechat.config import DEFAULT_TEMPERATURE, MODEL_LIST_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

OLLAMA_BASE_URL = "http://localhost:11434"


def _is_done(record: Any) -> bool:
    return isinstance(record, dict) and bool(record.get("done"))


def _error(record: dict) -> Optional[str]:
    error = record.get("error")
    return error if isinstance(error, str) and error else None


CHAT_FORMAT = StreamFormat(
    framing="ndjson",
    extract_token=lambda record: dig(record, "message", "content"),
    is_terminal=_is_done,
    extract_error=_error,
)

GENERATE_FORMAT = StreamFormat(
    framing="ndjson",
    extract_token=lambda record: record.get("response"),
    is_terminal=_is_done,
    extract_error=_error,
)


def _ollama_options(options: GenerationOptions) -> dict:
    temperature = options.temperature
    result: dict = {"temperature": DEFAULT_TEMPERATURE if temperature is None else temperature}
    if options.max_tokens is not None:
        result["num_predict"] = options.max_tokens
    return result


def _with_system(prompt: str, options: GenerationOptions) -> str:
    if options.system_prompt:
        return f"{options.system_prompt}\n\n{prompt}"
    return prompt


class OllamaAdapter(HTTPAdapter):
    """
    Ollama implementation of ProviderAdapter.

    No credentials: availability means the server answers /api/tags.
    """

    id = "ollama"
    name = "Ollama"
    stream_format = CHAT_FORMAT

    def __init__(
        self,
        base_url: str = OLLAMA_BASE_URL,
        default_model: str = "llama2",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            base_url=base_url or OLLAMA_BASE_URL,
            default_model=default_model or "llama2",
            transport=transport,
        )

    def _configured(self) -> bool:
        return bool(self._base_url)

    async def is_available(self) -> bool:
        try:
            async with httpx.AsyncClient(
                timeout=MODEL_LIST_TIMEOUT_SECONDS, transport=self._transport
            ) as client:
                response = await client.get(f"{self._base_url}/api/tags")
                return response.status_code == 200
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("Ollama not reachable at %s: %s", self._base_url, e)
            return False

    def stream_generate(
        self,
        prompt: str,
        model: Optional[str],
        callbacks: StreamCallbacks,
        options: Optional[GenerationOptions] = None,
    ) -> StreamHandle:
        request = self._generate_request(
            prompt, model or self._default_model, options or GenerationOptions()
        )
        request.body["stream"] = True
        return start_stream(
            request, GENERATE_FORMAT, callbacks,
            transport=self._transport, provider=self.id,
        )

    def _chat_request(
        self, messages: list[Message], model: str, options: GenerationOptions
    ) -> RequestSpec:
        wire = [m.to_wire() for m in messages]
        if options.system_prompt:
            wire.insert(0, {"role": "system", "content": options.system_prompt})
        return RequestSpec(
            url=f"{self._base_url}/api/chat",
            body={
                "model": model,
                "messages": wire,
                "stream": True,
                "options": _ollama_options(options),
            },
        )

    def _generate_request(
        self, prompt: str, model: str, options: GenerationOptions
    ) -> RequestSpec:
        return RequestSpec(
            url=f"{self._base_url}/api/generate",
            body={
                "model": model,
                "prompt": _with_system(prompt, options),
                "stream": False,
                "options": _ollama_options(options),
            },
        )

    def _parse_generation(self, data: Any) -> str:
        return dig(data, "response") or ""

    def _models_request(self) -> RequestSpec:
        return RequestSpec(url=f"{self._base_url}/api/tags", method="GET")

    def _parse_models(self, data: Any) -> list[str]:
        # Ollama returns {"models": [{"name": "llama2:latest", ...}, ...]}
        return [m["name"] for m in data.get("models", [])]
