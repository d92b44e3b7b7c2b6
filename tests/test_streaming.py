"""Tests for notechat.adapters.streaming - delta iteration and the stream lifecycle."""

import asyncio

import httpx
import pytest

from notechat.adapters.base import RequestError
from notechat.adapters.ollama import CHAT_FORMAT
from notechat.adapters.streaming import (
    RequestSpec,
    StreamState,
    dig,
    iter_deltas,
    start_stream,
)
from tests.conftest import OLLAMA_CHAT_LINES, chunked_transport, ndjson_body

URL = "http://localhost:11434/api/chat"


def chat_line(content: str, done: bool = False) -> bytes:
    done_text = "true" if done else "false"
    return (
        f'{{"message":{{"role":"assistant","content":"{content}"}},"done":{done_text}}}\n'
    ).encode()


async def until(predicate, attempts: int = 200) -> None:
    """Yield to the loop until predicate() holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


class TestDig:

    def test_nested_path(self):
        record = {"choices": [{"delta": {"content": "Hi"}}]}
        assert dig(record, "choices", 0, "delta", "content") == "Hi"

    def test_missing_key(self):
        assert dig({"choices": []}, "choices", 0, "delta") is None

    def test_wrong_type(self):
        assert dig({"choices": "oops"}, "choices", 0) is None
        assert dig(["a"], "key") is None


class TestIterDeltas:

    @pytest.mark.asyncio
    async def test_yields_tokens_until_terminal(self):
        transport = chunked_transport([ndjson_body(OLLAMA_CHAT_LINES).encode()])

        deltas = [
            d async for d in iter_deltas(
                RequestSpec(url=URL), CHAT_FORMAT, transport=transport, provider="ollama"
            )
        ]

        assert deltas == ["Hel", "lo"]

    @pytest.mark.asyncio
    async def test_records_after_terminal_ignored(self):
        body = chat_line("a") + chat_line("", done=True) + chat_line("late")
        transport = chunked_transport([body])

        deltas = [
            d async for d in iter_deltas(RequestSpec(url=URL), CHAT_FORMAT, transport=transport)
        ]

        assert deltas == ["a"]

    @pytest.mark.asyncio
    async def test_error_status_raises_request_error(self):
        transport = chunked_transport([b'{"error":"model not found"}'], status_code=404)

        with pytest.raises(RequestError) as exc_info:
            async for _ in iter_deltas(
                RequestSpec(url=URL), CHAT_FORMAT, transport=transport, provider="ollama"
            ):
                pass

        assert exc_info.value.status_code == 404
        assert "model not found" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_error_record_in_stream_raises(self):
        body = chat_line("par") + b'{"error":"out of memory"}\n'
        transport = chunked_transport([body])

        received = []
        with pytest.raises(RequestError, match="out of memory"):
            async for delta in iter_deltas(RequestSpec(url=URL), CHAT_FORMAT, transport=transport):
                received.append(delta)

        assert received == ["par"]

    @pytest.mark.asyncio
    async def test_transport_failure_becomes_request_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        with pytest.raises(RequestError, match="connection refused"):
            async for _ in iter_deltas(
                RequestSpec(url=URL), CHAT_FORMAT, transport=httpx.MockTransport(handler)
            ):
                pass

    @pytest.mark.asyncio
    async def test_request_body_and_headers_sent(self):
        requests = []
        transport = chunked_transport([chat_line("", done=True)], requests=requests)
        spec = RequestSpec(
            url=URL, body={"model": "llama2"}, headers={"X-Test": "1"}, params={"q": "v"}
        )

        async for _ in iter_deltas(spec, CHAT_FORMAT, transport=transport):
            pass

        assert requests[0].headers["X-Test"] == "1"
        assert requests[0].url.params["q"] == "v"
        assert b'"model":"llama2"' in requests[0].content.replace(b" ", b"")


class TestStreamLifecycle:

    @pytest.mark.asyncio
    async def test_tokens_then_single_complete(self, recorder):
        transport = chunked_transport([ndjson_body(OLLAMA_CHAT_LINES).encode()])

        handle = start_stream(RequestSpec(url=URL), CHAT_FORMAT, recorder.callbacks(), transport=transport)
        text = await handle.wait()

        assert recorder.tokens == ["Hel", "lo"]
        assert recorder.completed == ["Hello"]
        assert recorder.errors == []
        assert text == "Hello"
        assert handle.state == StreamState.COMPLETED
        assert handle.done is True

    @pytest.mark.asyncio
    async def test_complete_text_equals_concatenated_tokens(self, recorder):
        words = ["The", " quick", " brown", " fox"]
        body = b"".join(chat_line(w) for w in words) + chat_line("", done=True)
        # Deliver in awkward 5-byte slices
        chunks = [body[i:i + 5] for i in range(0, len(body), 5)]
        transport = chunked_transport(chunks)

        handle = start_stream(RequestSpec(url=URL), CHAT_FORMAT, recorder.callbacks(), transport=transport)
        await handle.wait()

        assert recorder.tokens == words
        assert recorder.completed == ["".join(recorder.tokens)]

    @pytest.mark.asyncio
    async def test_body_end_without_terminal_completes(self, recorder):
        transport = chunked_transport([chat_line("only")])

        handle = start_stream(RequestSpec(url=URL), CHAT_FORMAT, recorder.callbacks(), transport=transport)
        await handle.wait()

        assert recorder.completed == ["only"]

    @pytest.mark.asyncio
    async def test_error_status_delivers_on_error_only(self, recorder):
        transport = chunked_transport(
            [b'{"error":{"message":"invalid x-api-key"}}'], status_code=401
        )

        handle = start_stream(
            RequestSpec(url=URL), CHAT_FORMAT, recorder.callbacks(),
            transport=transport, provider="anthropic",
        )
        await handle.wait()

        assert recorder.completed == []
        assert len(recorder.errors) == 1
        error = recorder.errors[0]
        assert isinstance(error, RequestError)
        assert error.status_code == 401
        assert "invalid x-api-key" in str(error)
        assert handle.state == StreamState.FAILED
        assert handle.error is error

    @pytest.mark.asyncio
    async def test_cancel_before_any_token(self, recorder):
        stall = asyncio.Event()
        transport = chunked_transport([], stall=stall)

        handle = start_stream(RequestSpec(url=URL), CHAT_FORMAT, recorder.callbacks(), transport=transport)
        handle.cancel()
        text = await handle.wait()

        assert text == ""
        assert recorder.tokens == []
        assert recorder.completed == [""]
        assert recorder.errors == []
        assert handle.state == StreamState.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_after_tokens_completes_with_partial(self, recorder):
        stall = asyncio.Event()
        transport = chunked_transport([chat_line("Hel"), chat_line("lo")], stall=stall)

        handle = start_stream(RequestSpec(url=URL), CHAT_FORMAT, recorder.callbacks(), transport=transport)
        await until(lambda: len(recorder.tokens) == 2)
        assert handle.state == StreamState.STREAMING

        handle.cancel()
        await handle.wait()

        assert recorder.completed == ["Hello"]
        assert recorder.errors == []
        assert handle.state == StreamState.CANCELLED

    @pytest.mark.asyncio
    async def test_no_tokens_after_cancel(self, recorder):
        stall = asyncio.Event()
        transport = chunked_transport([chat_line("a")], stall=stall)

        handle = start_stream(RequestSpec(url=URL), CHAT_FORMAT, recorder.callbacks(), transport=transport)
        await until(lambda: recorder.tokens == ["a"])
        handle.cancel()
        stall.set()
        await handle.wait()
        for _ in range(10):
            await asyncio.sleep(0)

        assert recorder.tokens == ["a"]
        assert recorder.terminal_count == 1

    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, recorder):
        stall = asyncio.Event()
        transport = chunked_transport([chat_line("x")], stall=stall)

        handle = start_stream(RequestSpec(url=URL), CHAT_FORMAT, recorder.callbacks(), transport=transport)
        await until(lambda: recorder.tokens == ["x"])
        handle.cancel()
        handle.cancel()
        await handle.wait()
        handle.cancel()

        assert recorder.completed == ["x"]
        assert recorder.terminal_count == 1

    @pytest.mark.asyncio
    async def test_cancel_after_completion_is_noop(self, recorder):
        transport = chunked_transport([ndjson_body(OLLAMA_CHAT_LINES).encode()])

        handle = start_stream(RequestSpec(url=URL), CHAT_FORMAT, recorder.callbacks(), transport=transport)
        await handle.wait()
        handle.cancel()
        await asyncio.sleep(0)

        assert recorder.completed == ["Hello"]
        assert handle.state == StreamState.COMPLETED

    @pytest.mark.asyncio
    async def test_callback_exception_ends_with_on_error(self):
        from notechat.adapters import StreamCallbacks

        completed, errors = [], []

        def explode(token):
            raise RuntimeError("display failed")

        transport = chunked_transport([ndjson_body(OLLAMA_CHAT_LINES).encode()])
        handle = start_stream(
            RequestSpec(url=URL), CHAT_FORMAT,
            StreamCallbacks(on_token=explode, on_complete=completed.append, on_error=errors.append),
            transport=transport,
        )
        await handle.wait()

        assert completed == []
        assert len(errors) == 1
        assert str(errors[0]) == "display failed"

    @pytest.mark.asyncio
    async def test_handle_returned_before_any_callback(self, recorder):
        transport = chunked_transport([ndjson_body(OLLAMA_CHAT_LINES).encode()])

        handle = start_stream(RequestSpec(url=URL), CHAT_FORMAT, recorder.callbacks(), transport=transport)

        assert handle.state == StreamState.REQUESTING
        assert recorder.tokens == []
        await handle.wait()

    @pytest.mark.asyncio
    async def test_concurrent_streams_are_independent(self):
        from tests.conftest import Recorder

        first, second = Recorder(), Recorder()
        t1 = chunked_transport([chat_line("one"), chat_line("", done=True)])
        t2 = chunked_transport([chat_line("two"), chat_line("", done=True)])

        h1 = start_stream(RequestSpec(url=URL), CHAT_FORMAT, first.callbacks(), transport=t1)
        h2 = start_stream(RequestSpec(url=URL), CHAT_FORMAT, second.callbacks(), transport=t2)
        await asyncio.gather(h1.wait(), h2.wait())

        assert first.completed == ["one"]
        assert second.completed == ["two"]


def test_start_stream_requires_running_loop(recorder):
    with pytest.raises(RuntimeError):
        start_stream(RequestSpec(url=URL), CHAT_FORMAT, recorder.callbacks())
