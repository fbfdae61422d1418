import json

import httpx
import pytest

from almanac_wiki.core.errors import RetrievalError
from almanac_wiki.core.retry import RetryPolicy
from almanac_wiki.embeddings.embedder import Embedder, EmbeddingError


URL = "https://embed.test/v1/embeddings"
NO_WAIT = RetryPolicy(max_attempts=3, base_delay=0.0, jitter=0.0)


def vector(seed: float, dims: int = 3):
    return [seed] * dims


def make_embedder(handler, dimensions=3, policy=NO_WAIT):
    return Embedder(
        api_key="test-key",
        model="test-embedding",
        base_url=URL,
        dimensions=dimensions,
        timeout=5.0,
        retry_policy=policy,
        transport=httpx.MockTransport(handler),
    )


def echo_handler(requests):
    """Answers every request with one vector per input, newest index first."""

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append(body)
        data = [
            {"index": i, "embedding": vector(float(len(text)))}
            for i, text in enumerate(body["input"])
        ]
        return httpx.Response(200, json={"data": list(reversed(data))})

    return handler


async def test_embeds_in_input_order():
    requests = []
    embedder = make_embedder(echo_handler(requests))

    vectors = await embedder.embed(["a", "bbb", "cc"])

    assert vectors == [vector(1.0), vector(3.0), vector(2.0)]
    assert requests[0]["model"] == "test-embedding"
    assert requests[0]["dimensions"] == 3


async def test_batches_requests():
    requests = []
    embedder = make_embedder(echo_handler(requests))

    vectors = await embedder.embed([f"text-{i}" for i in range(5)], batch_size=2)

    assert len(vectors) == 5
    assert [len(r["input"]) for r in requests] == [2, 2, 1]


async def test_embed_query_and_empty_input():
    embedder = make_embedder(echo_handler([]))

    assert await embedder.embed_query("abcd") == vector(4.0)
    assert await embedder.embed([]) == []


async def test_dimension_mismatch_is_rejected():
    def handler(request):
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.1, 0.2]}]})

    with pytest.raises(EmbeddingError, match="dimensions"):
        await make_embedder(handler).embed(["text"])


@pytest.mark.parametrize(
    "payload",
    [
        {"results": []},
        {"data": "nope"},
        {"data": [{"index": 0}]},
        {"data": [{"index": 0, "embedding": ["x", "y", "z"]}]},
    ],
)
async def test_malformed_responses(payload):
    def handler(request):
        return httpx.Response(200, json=payload)

    with pytest.raises(EmbeddingError):
        await make_embedder(handler).embed(["text"])


async def test_rate_limit_is_retried():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(429, json={"error": "slow down"})
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": vector(0.5)}]})

    assert await make_embedder(handler).embed(["text"]) == [vector(0.5)]
    assert len(calls) == 3


async def test_retries_exhausted():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503)

    with pytest.raises(EmbeddingError) as exc_info:
        await make_embedder(handler).embed(["text"])

    assert exc_info.value.retryable is True
    assert len(calls) == 3


async def test_client_error_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400, json={"error": "bad input"})

    with pytest.raises(EmbeddingError) as exc_info:
        await make_embedder(handler).embed(["text"])

    assert exc_info.value.retryable is False
    assert isinstance(exc_info.value, RetrievalError)
    assert len(calls) == 1


async def test_transport_errors_are_retryable():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json={"data": [{"index": 0, "embedding": vector(1.0)}]})

    assert await make_embedder(handler).embed(["text"]) == [vector(1.0)]
    assert len(calls) == 2
