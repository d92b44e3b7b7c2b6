"""
Shared streaming plumbing for every provider adapter.

A vendor describes itself with two small values:

- RequestSpec: where to send, with what headers/params/body
- StreamFormat:  how its stream is framed and where the text lives

iter_deltas() turns that description into a lazy sequence of text deltas;
StreamHandle drives the sequence on a background task and maps it onto the
on_token / on_complete / on_error callbacks with cancellation.
"""

import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, Callable, Optional

import httpx

from notechat.adapters.base import RequestError, StreamCallbacks, parse_error_body
from notechat.adapters.decoder import Framing, StreamDecoder

logger = logging.getLogger(__name__)


def dig(record: Any, *path: Any) -> Any:
    """Walk nested dicts/lists, returning None on the first missing step."""
    current = record
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def _never(record: Any) -> bool:
    return False


def _no_error(record: dict) -> Optional[str]:
    return None


@dataclass(frozen=True)
class StreamFormat:
    """How one vendor frames its stream and where tokens live in a record."""
    framing: Framing
    extract_token: Callable[[dict], Optional[str]]
    is_terminal: Callable[[Any], bool] = _never
    extract_error: Callable[[dict], Optional[str]] = _no_error


@dataclass
class RequestSpec:
    """Snapshot of one HTTP request, taken when the call starts."""
    url: str
    body: dict = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    method: str = "POST"


async def iter_deltas(
    request: RequestSpec,
    fmt: StreamFormat,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    provider: Optional[str] = None,
) -> AsyncGenerator[str, None]:
    """
    Stream text deltas for one request.

    Ends at the vendor's terminal marker or when the body ends.
    Raises RequestError on non-success status, transport failure, or an
    error envelope inside the stream. No timeout: callers race and cancel.
    """
    decoder = StreamDecoder(fmt.framing)
    logger.debug("Opening %s stream: %s", provider, request.url)

    try:
        async with httpx.AsyncClient(timeout=None, transport=transport) as client:
            async with client.stream(
                request.method,
                request.url,
                headers=request.headers,
                params=request.params,
                json=request.body,
            ) as response:
                if response.status_code >= 400:
                    # Read the error body for streaming responses
                    error_body = await response.aread()
                    msg = parse_error_body(response.status_code, error_body)
                    raise RequestError(
                        f"{provider} error ({response.status_code}): {msg}",
                        status_code=response.status_code,
                        provider=provider,
                    )

                async for chunk in response.aiter_bytes():
                    for record in decoder.feed(chunk):
                        token, terminal = _read(fmt, record, provider)
                        if token:
                            yield token
                        if terminal:
                            return

                for record in decoder.flush():
                    token, terminal = _read(fmt, record, provider)
                    if token:
                        yield token
                    if terminal:
                        return
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise RequestError(f"{provider} transport error: {e}", provider=provider) from e


def _read(fmt: StreamFormat, record: Any, provider: Optional[str]) -> tuple[Optional[str], bool]:
    token = None
    if isinstance(record, dict):
        message = fmt.extract_error(record)
        if message:
            raise RequestError(f"{provider} stream error: {message}", provider=provider)
        token = fmt.extract_token(record)
        if token is not None and not isinstance(token, str):
            logger.debug("Skipping non-text %s delta: %r", provider, token)
            token = None
    return token, fmt.is_terminal(record)


# ─────────────────────────────────────────────────────────────────────
# CANCELLATION HANDLE
# ─────────────────────────────────────────────────────────────────────

class StreamState(str, Enum):
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = (StreamState.COMPLETED, StreamState.CANCELLED, StreamState.FAILED)


class StreamHandle:
    """
    Cancellation handle for one streaming call.

    Owns the accumulated text and the single terminal delivery. Cancelling
    tears down the HTTP transfer and completes with whatever arrived so far.
    """

    def __init__(self, callbacks: StreamCallbacks, loop: asyncio.AbstractEventLoop):
        self._callbacks = callbacks
        self._parts: list[str] = []
        self._task: Optional[asyncio.Task] = None
        self._finished: asyncio.Future = loop.create_future()
        self.state = StreamState.REQUESTING
        self.error: Optional[Exception] = None

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def cancel(self) -> None:
        """Abort the call. No-op once a terminal callback has fired."""
        if self.done or self._task is None:
            return
        self._task.cancel()

    async def wait(self) -> str:
        """Wait for the terminal callback; returns the accumulated text."""
        await asyncio.shield(self._finished)
        return self.text

    async def _run(self, deltas: AsyncGenerator[str, None]) -> None:
        try:
            async with aclosing(deltas):
                async for delta in deltas:
                    self.state = StreamState.STREAMING
                    self._parts.append(delta)
                    self._callbacks.on_token(delta)
        except Exception as e:
            self._fail(e)
            return
        self._complete(StreamState.COMPLETED)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.debug("Stream cancelled after %d chars", len(self.text))
            self._complete(StreamState.CANCELLED)
        elif task.exception() is not None:
            logger.error("Stream callback raised", exc_info=task.exception())

    def _complete(self, state: StreamState) -> None:
        if self.done:
            return
        text = self.text
        self.state = state
        try:
            self._callbacks.on_complete(text)
        finally:
            self._resolve()

    def _fail(self, error: Exception) -> None:
        if self.done:
            return
        self.state = StreamState.FAILED
        self.error = error
        logger.warning("Stream failed: %s", error)
        try:
            self._callbacks.on_error(error)
        finally:
            self._resolve()

    def _resolve(self) -> None:
        if not self._finished.done():
            self._finished.set_result(None)


def start_stream(
    request: RequestSpec,
    fmt: StreamFormat,
    callbacks: StreamCallbacks,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    provider: Optional[str] = None,
) -> StreamHandle:
    """
    Schedule a streaming call on the running loop and return its handle.

    Raises RuntimeError when called outside a running event loop.
    """
    loop = asyncio.get_running_loop()
    handle = StreamHandle(callbacks, loop)
    deltas = iter_deltas(request, fmt, transport=transport, provider=provider)
    handle._task = loop.create_task(handle._run(deltas))
    handle._task.add_done_callback(handle._on_task_done)
    return handle
