"""Shared test fixtures for notechat tests."""

import asyncio
import json
from typing import AsyncIterator, Iterable, Optional

import httpx
import pytest


# ─────────────────────────────────────────────────────────────────────
# MOCK DATA
# ─────────────────────────────────────────────────────────────────────

OLLAMA_URL = "http://localhost:11434"
OPENAI_URL = "https://api.openai.com/v1"
ANTHROPIC_URL = "https://api.anthropic.com/v1"
GROQ_URL = "https://api.groq.com/openai/v1"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta"

MOCK_OLLAMA_TAGS = {
    "models": [
        {"name": "llama2:latest", "size": 3826793677},
        {"name": "mistral:7b", "size": 4109865159},
    ]
}

MOCK_OPENAI_MODELS = {
    "object": "list",
    "data": [
        {"id": "gpt-4o", "object": "model"},
        {"id": "gpt-3.5-turbo", "object": "model"},
        {"id": "whisper-1", "object": "model"},
        {"id": "text-embedding-3-small", "object": "model"},
    ],
}

MOCK_ANTHROPIC_MODELS = {
    "data": [
        {"id": "claude-3-5-sonnet-20241022", "type": "model"},
        {"id": "claude-3-haiku-20240307", "type": "model"},
    ]
}

MOCK_GEMINI_MODELS = {
    "models": [
        {
            "name": "models/gemini-1.5-pro",
            "supportedGenerationMethods": ["generateContent", "countTokens"],
        },
        {
            "name": "models/gemini-1.5-flash",
            "supportedGenerationMethods": ["generateContent"],
        },
        {
            "name": "models/text-embedding-004",
            "supportedGenerationMethods": ["embedContent"],
        },
    ]
}

OLLAMA_CHAT_LINES = [
    '{"model":"llama2","message":{"role":"assistant","content":"Hel"},"done":false}',
    '{"model":"llama2","message":{"role":"assistant","content":"lo"},"done":false}',
    '{"model":"llama2","message":{"role":"assistant","content":""},"done":true}',
]

OPENAI_STREAMING_CHUNKS = [
    'data: {"id":"chatcmpl-1","choices":[{"index":0,"delta":{"role":"assistant","content":""}}]}',
    'data: {"id":"chatcmpl-1","choices":[{"index":0,"delta":{"content":"Hi"}}]}',
    'data: {"id":"chatcmpl-1","choices":[{"index":0,"delta":{},"finish_reason":"stop"}]}',
    "data: [DONE]",
]

ANTHROPIC_STREAMING_EVENTS = [
    'event: message_start\ndata: {"type":"message_start","message":{"id":"msg_1","role":"assistant"}}',
    'event: content_block_start\ndata: {"type":"content_block_start","index":0,"content_block":{"type":"text","text":""}}',
    "event: ping\ndata: {\"type\":\"ping\"}",
    'event: content_block_delta\ndata: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Bon"}}',
    'event: content_block_delta\ndata: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"jour"}}',
    'event: content_block_stop\ndata: {"type":"content_block_stop","index":0}',
    'event: message_delta\ndata: {"type":"message_delta","delta":{"stop_reason":"end_turn"}}',
    'event: message_stop\ndata: {"type":"message_stop"}',
]


def sse_body(events: Iterable[str]) -> str:
    """Join SSE events with the blank-line separator."""
    return "".join(f"{event}\n\n" for event in events)


def ndjson_body(lines: Iterable[str]) -> str:
    return "".join(f"{line}\n" for line in lines)


def gemini_event(text: str) -> str:
    payload = {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}
    return f"data: {json.dumps(payload)}"


# ─────────────────────────────────────────────────────────────────────
# CHUNKED / STALLED TRANSPORTS
# ─────────────────────────────────────────────────────────────────────


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in the given chunks, optionally stalling after them."""

    def __init__(self, chunks: Iterable[bytes], stall: Optional[asyncio.Event] = None):
        self.chunks = list(chunks)
        self.stall = stall
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            yield chunk
            await asyncio.sleep(0)
        if self.stall is not None:
            await self.stall.wait()

    async def aclose(self) -> None:
        self.closed = True


def chunked_transport(
    chunks: Iterable[bytes],
    status_code: int = 200,
    stall: Optional[asyncio.Event] = None,
    requests: Optional[list] = None,
) -> httpx.MockTransport:
    """MockTransport answering every request with a chunked body."""
    chunk_list = list(chunks)

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status_code, stream=ChunkedStream(chunk_list, stall))

    return httpx.MockTransport(handler)


class Recorder:
    """Collects callback invocations for one streaming call."""

    def __init__(self):
        self.tokens: list[str] = []
        self.completed: list[str] = []
        self.errors: list[Exception] = []

    def callbacks(self):
        from notechat.adapters import StreamCallbacks

        return StreamCallbacks(
            on_token=self.tokens.append,
            on_complete=self.completed.append,
            on_error=self.errors.append,
        )

    @property
    def terminal_count(self) -> int:
        return len(self.completed) + len(self.errors)


# ─────────────────────────────────────────────────────────────────────
# FIXTURES
# ─────────────────────────────────────────────────────────────────────


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def sample_messages():
    """Return a short conversation."""
    from notechat.adapters.schema import Message

    return [
        Message(role="user", content="What is the capital of France?"),
        Message(role="assistant", content="The capital of France is Paris."),
        Message(role="user", content="And Germany?"),
    ]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove provider environment variables so tests see only their own config."""
    from notechat.config import PROVIDER_ENV_VARS

    for var in list(PROVIDER_ENV_VARS) + [
        "NOTECHAT_PROVIDER", "NOTECHAT_HISTORY_DIR", "NOTECHAT_CONFIG",
    ]:
        monkeypatch.delenv(var, raising=False)
    return monkeypatch
