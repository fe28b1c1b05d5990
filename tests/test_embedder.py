import json
import math

import httpx
import pytest

from knowledge_index.core.errors import ProviderError, ValidationError
from knowledge_index.embeddings.embedder import (
    MalformedResponseError,
    OpenAIProviderClient,
    RetryingBatchEmbedder,
    is_transient,
)

PROVIDER_URL = "https://provider.test/v1/embeddings"


def http_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", PROVIDER_URL)
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class ScriptedProvider:
    """
    Raises the queued errors in order, then answers with one vector per
    input derived from the text ("text-3" -> [3.0, 1.0]).
    """

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = []

    async def embed(self, model, inputs):
        self.calls.append(list(inputs))
        if self.errors:
            raise self.errors.pop(0)
        return [[float(t.split("-")[1]), 1.0] for t in inputs]


class AlwaysFailingProvider:
    def __init__(self, error):
        self.error = error
        self.calls = 0

    async def embed(self, model, inputs):
        self.calls += 1
        raise self.error


class FixedProvider:
    def __init__(self, vectors):
        self.vectors = vectors
        self.calls = 0

    async def embed(self, model, inputs):
        self.calls += 1
        return self.vectors


@pytest.fixture
def delays():
    return []


@pytest.fixture
def fake_sleep(delays):
    async def _sleep(delay):
        delays.append(delay)
    return _sleep


def make_embedder(provider, fake_sleep, **kwargs):
    kwargs.setdefault("max_batch_size", 128)
    kwargs.setdefault("max_retries", 3)
    kwargs.setdefault("base_delay", 0.1)
    return RetryingBatchEmbedder(
        provider=provider,
        model="test-model",
        sleep=fake_sleep,
        **kwargs,
    )


# ---------------------------------------------------------------------
# Batching and ordering
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_embed_many_preserves_order_across_batches(fake_sleep):
    provider = ScriptedProvider()
    embedder = make_embedder(provider, fake_sleep, max_batch_size=2)
    texts = [f"text-{i}" for i in range(5)]

    vectors = await embedder.embed_many(texts)

    assert vectors == [[float(i), 1.0] for i in range(5)]
    assert provider.calls == [["text-0", "text-1"], ["text-2", "text-3"], ["text-4"]]


@pytest.mark.asyncio
async def test_embed_many_single_call_when_within_batch_size(fake_sleep):
    provider = ScriptedProvider()
    embedder = make_embedder(provider, fake_sleep, max_batch_size=10)

    await embedder.embed_many(["text-1", "text-2", "text-3"])

    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_embed_one_trims_input(fake_sleep):
    provider = ScriptedProvider()
    embedder = make_embedder(provider, fake_sleep)

    vector = await embedder.embed_one("  text-7 \n")

    assert vector == [7.0, 1.0]
    assert provider.calls == [["text-7"]]


# ---------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_blank_text_rejected_before_provider_call(fake_sleep):
    provider = ScriptedProvider()
    embedder = make_embedder(provider, fake_sleep)

    with pytest.raises(ValidationError) as excinfo:
        await embedder.embed_many(["text-0", "   "])

    assert "index 1" in str(excinfo.value)
    assert provider.calls == []


@pytest.mark.asyncio
async def test_empty_input_list_rejected(fake_sleep):
    embedder = make_embedder(ScriptedProvider(), fake_sleep)

    with pytest.raises(ValidationError):
        await embedder.embed_many([])


@pytest.mark.asyncio
async def test_embed_one_rejects_whitespace(fake_sleep):
    embedder = make_embedder(ScriptedProvider(), fake_sleep)

    with pytest.raises(ValidationError):
        await embedder.embed_one(" \t ")


# ---------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------

def test_transient_classification():
    assert is_transient(http_error(429))
    assert is_transient(http_error(500))
    assert is_transient(http_error(503))
    assert is_transient(httpx.ReadTimeout("timed out"))
    assert is_transient(httpx.ConnectError("refused"))
    assert not is_transient(http_error(400))
    assert not is_transient(http_error(401))
    assert not is_transient(ValueError("bad"))


@pytest.mark.asyncio
async def test_rate_limited_forever_gives_up_after_all_attempts(fake_sleep, delays):
    provider = AlwaysFailingProvider(http_error(429))
    embedder = make_embedder(provider, fake_sleep, max_retries=3, base_delay=0.1)

    with pytest.raises(ProviderError) as excinfo:
        await embedder.embed_many(["text-1"])

    err = excinfo.value
    assert provider.calls == 4
    assert err.attempts == 4
    assert err.retryable is True
    assert "attempts=4" in str(err)
    assert "429" in err.cause
    assert delays == pytest.approx([0.1, 0.2, 0.4])


@pytest.mark.asyncio
async def test_transient_failure_then_success(fake_sleep, delays):
    provider = ScriptedProvider(http_error(503), httpx.ReadTimeout("timed out"))
    embedder = make_embedder(provider, fake_sleep)

    vectors = await embedder.embed_many(["text-2"])

    assert vectors == [[2.0, 1.0]]
    assert len(provider.calls) == 3
    assert len(delays) == 2


@pytest.mark.asyncio
async def test_client_error_is_not_retried(fake_sleep, delays):
    provider = AlwaysFailingProvider(http_error(400))
    embedder = make_embedder(provider, fake_sleep)

    with pytest.raises(ProviderError) as excinfo:
        await embedder.embed_many(["text-1"])

    assert provider.calls == 1
    assert excinfo.value.attempts == 1
    assert excinfo.value.retryable is False
    assert delays == []


@pytest.mark.asyncio
async def test_zero_retries_means_one_attempt(fake_sleep):
    provider = AlwaysFailingProvider(http_error(500))
    embedder = make_embedder(provider, fake_sleep, max_retries=0)

    with pytest.raises(ProviderError) as excinfo:
        await embedder.embed_many(["text-1"])

    assert provider.calls == 1
    assert excinfo.value.attempts == 1


@pytest.mark.asyncio
async def test_failure_in_later_batch_fails_whole_call(fake_sleep):
    class SecondBatchFails(ScriptedProvider):
        async def embed(self, model, inputs):
            if len(self.calls) == 1:
                self.calls.append(list(inputs))
                raise http_error(400)
            return await super().embed(model, inputs)

    provider = SecondBatchFails()
    embedder = make_embedder(provider, fake_sleep, max_batch_size=1)

    with pytest.raises(ProviderError):
        await embedder.embed_many(["text-1", "text-2", "text-3"])

    assert len(provider.calls) == 2


# ---------------------------------------------------------------------
# Response validation
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_length_mismatch_is_non_retryable(fake_sleep, delays):
    provider = FixedProvider([[1.0, 0.0]])
    embedder = make_embedder(provider, fake_sleep)

    with pytest.raises(ProviderError) as excinfo:
        await embedder.embed_many(["text-1", "text-2"])

    assert excinfo.value.retryable is False
    assert "length mismatch" in str(excinfo.value)
    assert provider.calls == 1
    assert delays == []


@pytest.mark.asyncio
async def test_non_finite_vector_rejected(fake_sleep):
    embedder = make_embedder(FixedProvider([[1.0, math.nan]]), fake_sleep)

    with pytest.raises(ProviderError):
        await embedder.embed_many(["text-1"])


@pytest.mark.asyncio
async def test_out_of_range_integer_vector_rejected(fake_sleep):
    embedder = make_embedder(FixedProvider([[10**400, 0]]), fake_sleep)

    with pytest.raises(ProviderError) as excinfo:
        await embedder.embed_many(["text-1"])

    assert excinfo.value.retryable is False


@pytest.mark.asyncio
async def test_empty_vector_rejected(fake_sleep):
    embedder = make_embedder(FixedProvider([[]]), fake_sleep)

    with pytest.raises(ProviderError):
        await embedder.embed_many(["text-1"])


# ---------------------------------------------------------------------
# OpenAI-compatible client
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_openai_client_sends_request_and_orders_by_index():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "data": [
                    {"index": 1, "embedding": [0.0, 1.0]},
                    {"index": 0, "embedding": [1.0, 0.0]},
                ]
            },
        )

    client = OpenAIProviderClient(
        api_key="sk-test",
        base_url=PROVIDER_URL,
        timeout=5.0,
        transport=httpx.MockTransport(handler),
    )

    vectors = await client.embed("test-model", ["first", "second"])

    assert vectors == [[1.0, 0.0], [0.0, 1.0]]
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"] == {"model": "test-model", "input": ["first", "second"]}


@pytest.mark.asyncio
async def test_openai_client_missing_data_is_malformed():
    client = OpenAIProviderClient(
        api_key="sk-test",
        base_url=PROVIDER_URL,
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"oops": []})),
    )

    with pytest.raises(MalformedResponseError):
        await client.embed("test-model", ["x"])


@pytest.mark.asyncio
async def test_server_errors_retried_end_to_end(fake_sleep):
    responses = iter([
        httpx.Response(503, json={"error": "busy"}),
        httpx.Response(200, json={"data": [{"index": 0, "embedding": [0.5, 0.5]}]}),
    ])
    client = OpenAIProviderClient(
        api_key="sk-test",
        base_url=PROVIDER_URL,
        transport=httpx.MockTransport(lambda request: next(responses)),
    )
    embedder = make_embedder(client, fake_sleep, max_retries=1)

    assert await embedder.embed_one("hello") == [0.5, 0.5]
