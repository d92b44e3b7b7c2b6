"""
HTTPAdapter - common implementation of the ProviderAdapter protocol.

Vendors subclass it and supply only request shaping (_chat_request,
_generate_request, _models_request), response reading (_parse_generation,
_parse_models) and a StreamFormat. Everything that talks to the network
lives here or in streaming.py.
"""

import logging
from typing import Any, Optional

import httpx

from notechat.adapters.base import RequestError, StreamCallbacks, parse_error_body
from notechat.adapters.schema import GenerationOptions, Message
from notechat.adapters.streaming import StreamFormat, StreamHandle, RequestSpec, start_stream
from notechat.config import MODEL_LIST_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)


class HTTPAdapter:
    """
    Base class for all provider adapters.

    Configuration setters may be called between calls; every call
    snapshots what it needs into a RequestSpec before it starts.
    """

    id: str = ""
    name: str = ""
    stream_format: StreamFormat
    # Shown when the model list cannot be fetched; empty means [default_model]
    fallback_models: list[str] = []

    def __init__(
        self,
        api_key: str = "",
        default_model: str = "",
        base_url: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._api_key = api_key
        self._default_model = default_model
        self._base_url = base_url.rstrip("/")
        self._transport = transport

    @property
    def default_model(self) -> str:
        return self._default_model

    @property
    def base_url(self) -> str:
        return self._base_url

    def set_api_key(self, key: str) -> None:
        self._api_key = key

    def set_default_model(self, model: str) -> None:
        self._default_model = model

    def set_base_url(self, url: str) -> None:
        self._base_url = url.rstrip("/")

    # ─────────────────────────────────────────────────────────────────
    # PROTOCOL
    # ─────────────────────────────────────────────────────────────────

    async def is_available(self) -> bool:
        return self._configured()

    async def list_models(self) -> list[str]:
        models: list[str] = []
        if self._configured():
            try:
                models = await self._fetch_models()
            except (RequestError, AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning("%s: model listing failed, using fallback: %s", self.id, e)
        return models or self._fallback()

    async def generate(
        self,
        prompt: str,
        model: Optional[str] = None,
        options: Optional[GenerationOptions] = None,
    ) -> str:
        request = self._generate_request(
            prompt, model or self._default_model, options or GenerationOptions()
        )
        data = await self._send(request, timeout=None)
        return self._parse_generation(data)

    def stream_chat(
        self,
        messages: list[Message],
        model: Optional[str],
        callbacks: StreamCallbacks,
        options: Optional[GenerationOptions] = None,
    ) -> StreamHandle:
        request = self._chat_request(
            list(messages), model or self._default_model, options or GenerationOptions()
        )
        logger.info("%s: streaming chat with %s", self.id, request.body.get("model", model))
        return start_stream(
            request, self.stream_format, callbacks,
            transport=self._transport, provider=self.id,
        )

    def stream_generate(
        self,
        prompt: str,
        model: Optional[str],
        callbacks: StreamCallbacks,
        options: Optional[GenerationOptions] = None,
    ) -> StreamHandle:
        return self.stream_chat(
            [Message(role="user", content=prompt)], model, callbacks, options
        )

    # ─────────────────────────────────────────────────────────────────
    # VENDOR HOOKS
    # ─────────────────────────────────────────────────────────────────

    def _chat_request(
        self, messages: list[Message], model: str, options: GenerationOptions
    ) -> RequestSpec:
        raise NotImplementedError

    def _generate_request(
        self, prompt: str, model: str, options: GenerationOptions
    ) -> RequestSpec:
        raise NotImplementedError

    def _parse_generation(self, data: Any) -> str:
        raise NotImplementedError

    def _models_request(self) -> RequestSpec:
        raise NotImplementedError

    def _parse_models(self, data: Any) -> list[str]:
        raise NotImplementedError

    # ─────────────────────────────────────────────────────────────────
    # HELPERS
    # ─────────────────────────────────────────────────────────────────

    def _configured(self) -> bool:
        """Credentials present. Hosted vendors need nothing else to try a call."""
        return bool(self._api_key)

    def _fallback(self) -> list[str]:
        return list(self.fallback_models) or [self._default_model]

    async def _fetch_models(self) -> list[str]:
        data = await self._send(self._models_request(), timeout=MODEL_LIST_TIMEOUT_SECONDS)
        return self._parse_models(data)

    async def _send(self, request: RequestSpec, timeout: Optional[float]) -> Any:
        """Issue a non-streaming request and return the decoded JSON body."""
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                response = await client.request(
                    request.method,
                    request.url,
                    headers=request.headers,
                    params=request.params,
                    json=request.body if request.method != "GET" else None,
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise RequestError(f"{self.id} transport error: {e}", provider=self.id) from e

        if response.status_code >= 400:
            msg = parse_error_body(response.status_code, response.content)
            raise RequestError(
                f"{self.id} error ({response.status_code}): {msg}",
                status_code=response.status_code,
                provider=self.id,
            )
        try:
            return response.json()
        except ValueError as e:
            raise RequestError(
                f"{self.id} returned invalid JSON", status_code=response.status_code,
                provider=self.id,
            ) from e
