"""
Adapters for LLM backends.

Provider-agnostic architecture: Protocol defines WHAT, implementations define HOW.
"""

from .base import ProviderAdapter, RequestError, StreamCallbacks
from .anthropic import AnthropicAdapter
from .gemini import GeminiAdapter
from .ollama import OllamaAdapter
from .openai_compat import GroqAdapter, OpenAIAdapter
from .streaming import StreamHandle, StreamState

__all__ = [
    "ProviderAdapter",
    "RequestError",
    "StreamCallbacks",
    "StreamHandle",
    "StreamState",
    "AnthropicAdapter",
    "GeminiAdapter",
    "GroqAdapter",
    "OllamaAdapter",
    "OpenAIAdapter",
]
