"""
Provider Registry - holds the adapter instances for one configuration.

Usage:
    registry = ProviderRegistry(settings.providers, active_provider="openai")
    adapter = registry.active_provider()
    handle = adapter.stream_chat(messages, model, callbacks)

Ollama is always present. A hosted vendor only exists in the registry when
its API key is non-empty. Configuration changes rebuild the registry
wholesale; there is no partial update.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from notechat.adapters import (
    AnthropicAdapter,
    GeminiAdapter,
    GroqAdapter,
    OllamaAdapter,
    OpenAIAdapter,
    ProviderAdapter,
)
from notechat.config import DEFAULT_PROVIDER_ID, PROVIDER_NAMES, ProviderConfig

logger = logging.getLogger(__name__)

HOSTED_ADAPTERS = {
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
    "groq": GroqAdapter,
    "gemini": GeminiAdapter,
}


@dataclass(frozen=True)
class ProviderInfo:
    """Selection-UI metadata: static enablement paired with credentials."""
    id: str
    name: str
    available: bool


def build_adapters(
    config: ProviderConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict[str, ProviderAdapter]:
    """Instantiate adapters for a configuration snapshot."""
    adapters: dict[str, ProviderAdapter] = {
        "ollama": OllamaAdapter(
            base_url=config.ollama.base_url or "",
            default_model=config.ollama.default_model,
            transport=transport,
        )
    }
    for provider_id, adapter_cls in HOSTED_ADAPTERS.items():
        settings = config.get(provider_id)
        if not settings.api_key:
            continue
        adapters[provider_id] = adapter_cls(
            api_key=settings.api_key,
            default_model=settings.default_model,
            base_url=settings.base_url or "",
            transport=transport,
        )
    logger.debug("Registry built with providers: %s", ", ".join(adapters))
    return adapters


class ProviderRegistry:
    """
    Maps provider id -> adapter and tracks which one is active.

    set_active_provider() only records the choice; the active_provider_id
    property resolves it, falling back to Ollama when the choice is unset
    or names a provider this configuration did not instantiate.
    """

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        active_provider: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = config or ProviderConfig()
        self._transport = transport
        self._selected = active_provider
        self._adapters = build_adapters(self._config, transport)

    @property
    def config(self) -> ProviderConfig:
        return self._config

    def update_config(self, config: ProviderConfig) -> None:
        """Replace the configuration and rebuild every adapter."""
        self._config = config
        self._adapters = build_adapters(config, self._transport)

    def get(self, provider_id: str) -> Optional[ProviderAdapter]:
        return self._adapters.get(provider_id)

    def adapters(self) -> list[ProviderAdapter]:
        return list(self._adapters.values())

    def provider_ids(self) -> list[str]:
        return list(self._adapters)

    @property
    def active_provider_id(self) -> str:
        if self._selected in self._adapters:
            return self._selected
        return DEFAULT_PROVIDER_ID

    def set_active_provider(self, provider_id: str) -> None:
        self._selected = provider_id

    def active_provider(self) -> ProviderAdapter:
        return self._adapters[self.active_provider_id]

    def provider_info(self) -> list[ProviderInfo]:
        """Availability for every known provider, instantiated or not."""
        info = []
        for provider_id, name in PROVIDER_NAMES.items():
            settings = self._config.get(provider_id)
            if provider_id == "ollama":
                available = settings.enabled
            else:
                available = settings.enabled and bool(settings.api_key)
            info.append(ProviderInfo(id=provider_id, name=name, available=available))
        return info

    async def available_adapters(self) -> list[ProviderAdapter]:
        """Adapters whose is_available() reports true (checked concurrently)."""
        adapters = self.adapters()
        results = await asyncio.gather(*(a.is_available() for a in adapters))
        return [a for a, ok in zip(adapters, results) if ok]
