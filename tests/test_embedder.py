import asyncio
import json
import time
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest
from tenacity import wait_none

from carefinder.cache import MemoryCache
from carefinder.embedder import Embedder, EmbeddingConfig, embedding_cache_key
from carefinder.errors import (
    EmbeddingGenerationError,
    ProviderAuthError,
    ProviderServerError,
    RateLimitExceededError,
    ValidationError,
)
from carefinder.limiter import LimiterSettings, RateLimiter
from carefinder.llm.openai import OpenAIEmbeddingProvider
from carefinder.llm.retry import with_retry
from tests.conftest import TEST_EMBEDDING_DIM, TEST_MODEL, FakeProvider, mock_embedding


class TestValidation:
    @pytest.mark.asyncio
    async def test_empty_string(self, embedder):
        with pytest.raises(ValidationError):
            await embedder.embed("")

    @pytest.mark.asyncio
    async def test_empty_list(self, embedder):
        with pytest.raises(ValidationError):
            await embedder.embed([])

    @pytest.mark.asyncio
    async def test_too_long(self, embedder):
        with pytest.raises(ValidationError) as exc_info:
            await embedder.embed("x" * 5001)
        assert exc_info.value.extra["maxLength"] == 5000

    @pytest.mark.asyncio
    async def test_batch_too_large(self, embedder):
        with pytest.raises(ValidationError):
            await embedder.embed(["t"] * 51)

    @pytest.mark.asyncio
    async def test_non_string_item(self, embedder):
        with pytest.raises(ValidationError):
            await embedder.embed(["ok", 3])

    @pytest.mark.asyncio
    async def test_no_provider_call_on_invalid_input(self, embedder, provider):
        with pytest.raises(ValidationError):
            await embedder.embed("")
        assert provider.calls == []


class TestEmbeddingCache:
    @pytest.mark.asyncio
    async def test_second_call_hits_cache(self, embedder, provider):
        first = await embedder.embed("우울증 상담")
        second = await embedder.embed("우울증 상담")
        assert first.cache_hit is False
        assert second.cache_hit is True
        assert second.vectors == first.vectors
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_use_cache_false_always_calls_provider(self, embedder, provider):
        await embedder.embed("text", use_cache=False)
        await embedder.embed("text", use_cache=False)
        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_batches_are_not_cached(self, embedder, provider, cache):
        await embedder.embed(["a", "b"])
        await embedder.embed(["a", "b"])
        assert len(provider.calls) == 2
        assert await cache.get(embedding_cache_key("a", TEST_MODEL)) is None

    @pytest.mark.asyncio
    async def test_cache_record_shape(self, embedder, cache):
        await embedder.embed("불안")
        raw = await cache.get(embedding_cache_key("불안", TEST_MODEL))
        record = json.loads(raw)
        assert set(record) == {"textHash", "model", "embedding", "tokenCount", "createdAt"}
        assert len(record["embedding"]) == TEST_EMBEDDING_DIM

    def test_cache_key_format(self):
        key = embedding_cache_key("hello", "text-embedding-3-large")
        prefix, model, digest = key.split(":")
        assert prefix == "embedding"
        assert model == "text-embedding-3-large"
        assert len(digest) == 16

    @pytest.mark.asyncio
    async def test_cache_failure_falls_through(self, provider, limiter):
        broken = MemoryCache()
        broken.get = AsyncMock(side_effect=RuntimeError("cache down"))
        broken.set = AsyncMock(side_effect=RuntimeError("cache down"))
        embedder = Embedder(EmbeddingConfig(model=TEST_MODEL, dim=TEST_EMBEDDING_DIM), provider, limiter, cache=broken)

        result = await embedder.embed("text")
        assert result.vectors == [mock_embedding("text")]
        assert result.cache_hit is False

    @pytest.mark.asyncio
    async def test_malformed_entry_is_a_miss(self, embedder, cache, provider):
        await cache.set(embedding_cache_key("text", TEST_MODEL), "{not json", ttl=60)
        result = await embedder.embed("text")
        assert result.cache_hit is False
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_invalidate_and_clear(self, embedder, cache):
        await embedder.embed("one")
        await embedder.embed("two")
        assert await embedder.invalidate("one") is True
        assert await embedder.clear_cache() == 1


class TestProviderFailures:
    @pytest.mark.asyncio
    async def test_rate_limit_surfaces_unchanged(self, limiter, cache):
        provider = FakeProvider(error=RateLimitExceededError("slow down"))
        embedder = Embedder(EmbeddingConfig(model=TEST_MODEL, dim=TEST_EMBEDDING_DIM), provider, limiter, cache=cache)
        with pytest.raises(RateLimitExceededError) as exc_info:
            await embedder.embed("text")
        assert exc_info.value.retry_after == 60

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, limiter, cache):
        provider = FakeProvider(error=ConnectionError("reset"))
        embedder = Embedder(EmbeddingConfig(model=TEST_MODEL, dim=TEST_EMBEDDING_DIM), provider, limiter, cache=cache)
        with pytest.raises(EmbeddingGenerationError) as exc_info:
            await embedder.embed("x" * 300)
        assert len(exc_info.value.text) <= 103
        assert isinstance(exc_info.value.cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_timeout_wrapped(self, limiter, cache):
        class SlowProvider(FakeProvider):
            async def _embedding(self, texts, model):
                await asyncio.sleep(1)
                return await super()._embedding(texts, model)

        embedder = Embedder(
            EmbeddingConfig(model=TEST_MODEL, dim=TEST_EMBEDDING_DIM),
            SlowProvider(),
            limiter,
            cache=cache,
            timeout=0.05,
        )
        with pytest.raises(EmbeddingGenerationError):
            await embedder.embed("text")

    @pytest.mark.asyncio
    async def test_timeout_covers_limiter_wait(self, provider, cache):
        depleted = RateLimiter(
            "llm",
            LimiterSettings(
                min_time=0.0, max_concurrent=1, reservoir=1, refresh_amount=1, refresh_interval=5.0, high_water=10
            ),
        )
        embedder = Embedder(
            EmbeddingConfig(model=TEST_MODEL, dim=TEST_EMBEDDING_DIM),
            provider,
            depleted,
            cache=cache,
            timeout=0.2,
        )
        await embedder.embed("first")

        start = time.monotonic()
        with pytest.raises(EmbeddingGenerationError) as exc_info:
            await embedder.embed("second")
        assert time.monotonic() - start < 1.0
        assert isinstance(exc_info.value.cause, TimeoutError)
        assert len(provider.calls) == 1
        assert depleted.queued == 0


class TestEmbedMany:
    @pytest.mark.asyncio
    async def test_chunks_in_order(self, embedder, provider):
        texts = [f"text {i}" for i in range(7)]
        result = await embedder.embed_many(texts, batch_size=3)
        assert result.total_texts == 7
        assert [len(c) for c in provider.calls] == [3, 3, 1]
        assert result.vectors == [mock_embedding(t) for t in texts]

    @pytest.mark.asyncio
    async def test_invalid_batch_size(self, embedder):
        with pytest.raises(ValidationError):
            await embedder.embed_many(["a"], batch_size=0)

    @pytest.mark.asyncio
    async def test_failing_chunk_aborts_the_rest(self, limiter, cache):
        class SecondChunkFails(FakeProvider):
            async def _embedding(self, texts, model):
                if len(self.calls) == 1:
                    self.calls.append(list(texts))
                    raise ConnectionError("reset")
                return await super()._embedding(texts, model)

        provider = SecondChunkFails()
        embedder = Embedder(EmbeddingConfig(model=TEST_MODEL, dim=TEST_EMBEDDING_DIM), provider, limiter, cache=cache)
        with pytest.raises(EmbeddingGenerationError):
            await embedder.embed_many([f"text {i}" for i in range(7)], batch_size=3)
        assert provider.calls == [["text 0", "text 1", "text 2"], ["text 3", "text 4", "text 5"]]


class TestHealth:
    @pytest.mark.asyncio
    async def test_healthy(self, embedder):
        health = await embedder.health()
        assert health == {"status": "healthy", "model": TEST_MODEL, "cache": "ready"}

    @pytest.mark.asyncio
    async def test_no_api_key(self, embedder):
        health = await embedder.health(api_key_configured=False)
        assert health["status"] == "unavailable"


def _status_error(status: int) -> openai.APIStatusError:
    request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
    response = httpx.Response(status, request=request, json={"error": {"message": "x"}})
    return openai.APIStatusError("x", response=response, body=None)


class TestOpenAIProvider:
    def _client(self, result=None, error=None) -> MagicMock:
        client = MagicMock()
        client.embeddings.create = AsyncMock(return_value=result, side_effect=error)
        client.close = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_maps_response_in_index_order(self):
        data = [MagicMock(index=1, embedding=[0.0, 1.0]), MagicMock(index=0, embedding=[1.0, 0.0])]
        result = MagicMock(data=data, model="text-embedding-3-small", usage=MagicMock(total_tokens=5))
        provider = OpenAIEmbeddingProvider(client=self._client(result=result))

        response = await provider.embedding(["a", "b"], model="text-embedding-3-small")
        assert response.vectors == [[1.0, 0.0], [0.0, 1.0]]
        assert response.token_count == 5

    @pytest.mark.asyncio
    async def test_429_becomes_rate_limit_error(self):
        provider = OpenAIEmbeddingProvider(client=self._client(error=_status_error(429)))
        with pytest.raises(RateLimitExceededError) as exc_info:
            await provider.embedding(["a"], model="m")
        assert exc_info.value.retry_after == 60

    @pytest.mark.asyncio
    async def test_401_becomes_auth_error(self):
        client = self._client(error=_status_error(401))
        provider = OpenAIEmbeddingProvider(client=client)
        with pytest.raises(ProviderAuthError):
            await provider.embedding(["a"], model="m")
        # Auth failures are not retried
        assert client.embeddings.create.await_count == 1

    @pytest.mark.asyncio
    async def test_5xx_retried_then_server_error(self, monkeypatch):
        monkeypatch.setattr(with_retry.retry, "wait", wait_none())
        client = self._client(error=_status_error(503))
        provider = OpenAIEmbeddingProvider(client=client)
        with pytest.raises(ProviderServerError):
            await provider.embedding(["a"], model="m")
        assert client.embeddings.create.await_count == 3

    @pytest.mark.asyncio
    async def test_other_status_wrapped_by_embedder(self, limiter, cache):
        client = self._client(error=_status_error(400))
        embedder = Embedder(
            EmbeddingConfig(model=TEST_MODEL, dim=TEST_EMBEDDING_DIM),
            OpenAIEmbeddingProvider(client=client),
            limiter,
            cache=cache,
        )
        with pytest.raises(EmbeddingGenerationError) as exc_info:
            await embedder.embed("text")
        assert isinstance(exc_info.value.cause, openai.APIStatusError)
        assert client.embeddings.create.await_count == 1
