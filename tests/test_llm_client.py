import json

import httpx
import pytest
from anthropic import AsyncAnthropic

from almanac_wiki.core.errors import GenerationError
from almanac_wiki.llm.client import (
    AnthropicStreamingClient,
    LLMError,
    TextDelta,
    UsageDelta,
    estimate_cost,
)


MESSAGE_START = {
    "type": "message_start",
    "message": {
        "id": "msg_test",
        "type": "message",
        "role": "assistant",
        "model": "test-model",
        "content": [],
        "stop_reason": None,
        "stop_sequence": None,
        "usage": {"input_tokens": 42, "output_tokens": 1},
    },
}
BLOCK_START = {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}}
BLOCK_STOP = {"type": "content_block_stop", "index": 0}
MESSAGE_DELTA = {
    "type": "message_delta",
    "delta": {"stop_reason": "end_turn", "stop_sequence": None},
    "usage": {"output_tokens": 17},
}
MESSAGE_STOP = {"type": "message_stop"}


def text_delta(text):
    return {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": text}}


def sse(*events):
    frames = [f"event: {event['type']}\ndata: {json.dumps(event)}\n\n" for event in events]
    return "".join(frames).encode()


def stream_response(*events):
    return httpx.Response(200, content=sse(*events), headers={"content-type": "text/event-stream"})


def make_client(handler, api_key="test-key"):
    sdk = AsyncAnthropic(
        api_key=api_key,
        base_url="https://llm.test",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return AnthropicStreamingClient(model="test-model", timeout=5.0, client=sdk)


async def collect(client, **kwargs):
    return [e async for e in client.stream("system", "user", **kwargs)]


async def test_streams_text_and_usage():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return stream_response(
            MESSAGE_START,
            BLOCK_START,
            text_delta("Hello"),
            text_delta(" world"),
            BLOCK_STOP,
            MESSAGE_DELTA,
            MESSAGE_STOP,
        )

    events = await collect(make_client(handler), temperature=0.3, max_tokens=100)

    assert events == [
        UsageDelta(input_tokens=42, output_tokens=1),
        TextDelta("Hello"),
        TextDelta(" world"),
        UsageDelta(output_tokens=17),
    ]
    assert seen["url"] == "https://llm.test/v1/messages"
    assert seen["headers"]["x-api-key"] == "test-key"
    assert seen["body"]["model"] == "test-model"
    assert seen["body"]["stream"] is True
    assert seen["body"]["temperature"] == 0.3
    assert seen["body"]["max_tokens"] == 100
    assert seen["body"]["system"] == "system"
    assert seen["body"]["messages"] == [{"role": "user", "content": "user"}]


async def test_ignores_non_text_deltas():
    def handler(request):
        return stream_response(
            MESSAGE_START,
            BLOCK_START,
            text_delta(""),
            BLOCK_STOP,
            MESSAGE_STOP,
        )

    assert await collect(make_client(handler)) == [UsageDelta(input_tokens=42, output_tokens=1)]


@pytest.mark.parametrize("status", [400, 401, 429, 500, 529])
async def test_http_failure_raises(status):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(status, json={"type": "error", "error": {"type": "overloaded_error", "message": "busy"}})

    with pytest.raises(LLMError) as exc_info:
        await collect(make_client(handler))

    assert str(status) in str(exc_info.value)
    assert isinstance(exc_info.value, GenerationError)
    assert len(calls) == 1


async def test_error_event_mid_stream_raises():
    def handler(request):
        return stream_response(
            MESSAGE_START,
            BLOCK_START,
            text_delta("Partial"),
            {"type": "error", "error": {"type": "overloaded_error", "message": "Overloaded"}},
        )

    received = []
    with pytest.raises(LLMError, match="overloaded_error"):
        async for event in make_client(handler).stream("system", "user"):
            received.append(event)

    assert received == [UsageDelta(input_tokens=42, output_tokens=1), TextDelta("Partial")]


async def test_transport_error_is_wrapped():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(LLMError, match="APIConnectionError"):
        await collect(make_client(handler))


async def test_missing_api_key(monkeypatch):
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.delenv("ANTHROPIC_AUTH_TOKEN", raising=False)
    calls = []

    client = make_client(lambda request: calls.append(request), api_key=None)

    with pytest.raises(LLMError, match="not configured"):
        await collect(client)
    assert calls == []


def test_estimate_cost():
    assert estimate_cost(1_000_000, 0, 3.0, 15.0) == pytest.approx(3.0)
    assert estimate_cost(1200, 800, 3.0, 15.0) == pytest.approx(0.0036 + 0.012)
    assert estimate_cost(0, 0, 3.0, 15.0) == 0.0
