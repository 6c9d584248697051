import asyncio
import json
from dataclasses import dataclass
from datetime import UTC, datetime

from carefinder.cache import CacheStore
from carefinder.constants import (
    EMBEDDING_CACHE_PREFIX,
    EMBEDDING_CACHE_TTL,
    EMBEDDING_MAX_BATCH,
    EMBEDDING_MAX_CHARS,
    EMBEDDING_TIMEOUT,
    TEXT_HASH_CHARS,
)
from carefinder.errors import CarefinderError, EmbeddingGenerationError, ValidationError
from carefinder.limiter import RateLimiter
from carefinder.llm.base import EmbeddingProvider, EmbeddingResponse
from carefinder.logging import get_logger
from carefinder.utils import short_hash

_logger = get_logger(__name__)


@dataclass
class EmbeddingConfig:
    model: str
    dim: int


@dataclass(frozen=True)
class EmbeddingResult:
    vectors: list[list[float]]
    model: str
    token_count: int
    cache_hit: bool = False


@dataclass(frozen=True)
class BatchEmbeddingResult:
    vectors: list[list[float]]
    total_texts: int
    total_tokens: int
    model: str


def embedding_cache_key(text: str, model: str) -> str:
    return f"{EMBEDDING_CACHE_PREFIX}{model}:{short_hash(text, TEXT_HASH_CHARS)}"


def _validate_texts(text: str | list[str]) -> list[str]:
    if isinstance(text, str):
        texts = [text]
    elif isinstance(text, list):
        texts = text
    else:
        raise ValidationError("text must be a string or a list of strings", field="text")

    if not texts:
        raise ValidationError("text is required", field="text")
    if len(texts) > EMBEDDING_MAX_BATCH:
        raise ValidationError(
            f"batch size must be at most {EMBEDDING_MAX_BATCH}",
            field="text",
            details={"currentSize": len(texts), "maxSize": EMBEDDING_MAX_BATCH},
        )
    for t in texts:
        if not isinstance(t, str):
            raise ValidationError("every text must be a string", field="text")
        if not t:
            raise ValidationError("empty strings are not allowed", field="text")
        if len(t) > EMBEDDING_MAX_CHARS:
            raise ValidationError(
                f"text length must be at most {EMBEDDING_MAX_CHARS} characters",
                field="text",
                details={"currentLength": len(t), "maxLength": EMBEDDING_MAX_CHARS},
            )
    return texts


class Embedder:
    """Turns text into embedding vectors.

    Single-text requests go through the shared cache first; a hit returns
    without touching the rate limiter. Misses and batches are dispatched
    through ``limiter``; ``timeout`` bounds each call including its wait in
    the limiter queue.
    """

    def __init__(
        self,
        config: EmbeddingConfig,
        provider: EmbeddingProvider,
        limiter: RateLimiter,
        cache: CacheStore | None = None,
        timeout: float = EMBEDDING_TIMEOUT,
        cache_ttl: float = EMBEDDING_CACHE_TTL,
    ):
        self.config = config
        self.provider = provider
        self.limiter = limiter
        self.cache = cache
        self.timeout = timeout
        self.cache_ttl = cache_ttl

    async def _read_cache(self, text: str) -> EmbeddingResult | None:
        key = embedding_cache_key(text, self.config.model)
        try:
            cached = await self.cache.get(key)
        except Exception as e:
            _logger.warning("Embedding cache read failed, calling provider: %s", e)
            return None
        if cached is None:
            return None
        try:
            data = json.loads(cached)
            return EmbeddingResult(
                vectors=[data["embedding"]],
                model=data["model"],
                token_count=data["tokenCount"],
                cache_hit=True,
            )
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            _logger.warning("Discarding malformed embedding cache entry %s: %s", key, e)
            return None

    async def _write_cache(self, text: str, response: EmbeddingResponse) -> None:
        key = embedding_cache_key(text, self.config.model)
        record = {
            "textHash": short_hash(text, TEXT_HASH_CHARS),
            "model": response.model,
            "embedding": response.vectors[0],
            "tokenCount": response.token_count,
            "createdAt": datetime.now(UTC).isoformat(),
        }
        try:
            await self.cache.set(key, json.dumps(record), self.cache_ttl)
        except Exception as e:
            _logger.warning("Embedding cache write failed: %s", e)

    async def _call_provider(self, texts: list[str]) -> EmbeddingResponse:
        # The deadline covers time spent queued in the limiter as well as the call itself
        async with asyncio.timeout(self.timeout):
            return await self.limiter.schedule(self.provider.embedding, texts=texts, model=self.config.model)

    async def embed(self, text: str | list[str], use_cache: bool = True) -> EmbeddingResult:
        texts = _validate_texts(text)
        cacheable = use_cache and self.cache is not None and len(texts) == 1

        if cacheable:
            hit = await self._read_cache(texts[0])
            if hit is not None:
                _logger.debug("Embedding cache hit (model=%s)", self.config.model)
                return hit

        try:
            response = await self._call_provider(texts)
        except CarefinderError:
            raise
        except Exception as e:
            _logger.error("Embedding generation failed for %d text(s): %s", len(texts), e)
            raise EmbeddingGenerationError("Embedding generation failed", text=texts[0], cause=e) from e

        if cacheable and response.vectors:
            await self._write_cache(texts[0], response)

        _logger.info(
            "Generated %d embedding(s) with %s (%d tokens)",
            len(response.vectors),
            response.model,
            response.token_count,
        )
        return EmbeddingResult(
            vectors=response.vectors,
            model=response.model,
            token_count=response.token_count,
            cache_hit=False,
        )

    async def embed_one(self, text: str, use_cache: bool = True) -> list[float]:
        return (await self.embed(text, use_cache=use_cache)).vectors[0]

    async def embed_many(
        self,
        texts: list[str],
        batch_size: int = EMBEDDING_MAX_BATCH,
        use_cache: bool = True,
    ) -> BatchEmbeddingResult:
        """Embed any number of texts in sequential chunks.

        A failing chunk aborts the rest; nothing is returned for the chunks
        that already succeeded.
        """
        if not isinstance(texts, list) or not texts:
            raise ValidationError("texts must be a non-empty list", field="texts")
        if not 1 <= batch_size <= EMBEDDING_MAX_BATCH:
            raise ValidationError(f"batch_size must be 1-{EMBEDDING_MAX_BATCH}", field="batch_size")

        vectors: list[list[float]] = []
        total_tokens = 0
        batches = (len(texts) + batch_size - 1) // batch_size
        for i, start in enumerate(range(0, len(texts), batch_size), start=1):
            batch = texts[start : start + batch_size]
            _logger.debug("Embedding batch %d/%d (%d texts)", i, batches, len(batch))
            result = await self.embed(batch, use_cache=use_cache)
            vectors.extend(result.vectors)
            total_tokens += result.token_count

        _logger.info("Batch embedding done: %d texts, %d tokens, %d batches", len(texts), total_tokens, batches)
        return BatchEmbeddingResult(
            vectors=vectors,
            total_texts=len(texts),
            total_tokens=total_tokens,
            model=self.config.model,
        )

    async def invalidate(self, text: str, model: str | None = None) -> bool:
        if self.cache is None:
            return False
        key = embedding_cache_key(text, model or self.config.model)
        try:
            return await self.cache.delete(key)
        except Exception as e:
            _logger.warning("Embedding cache delete failed for %s: %s", key, e)
            return False

    async def clear_cache(self) -> int:
        if self.cache is None:
            return 0
        try:
            deleted = await self.cache.delete_prefix(EMBEDDING_CACHE_PREFIX)
        except Exception as e:
            _logger.error("Embedding cache clear failed: %s", e)
            return 0
        _logger.info("Cleared %d embedding cache entries", deleted)
        return deleted

    async def health(self, api_key_configured: bool = True) -> dict:
        if not api_key_configured:
            return {"status": "unavailable", "reason": "OPENAI_API_KEY is not set"}
        cache_ok = await self.cache.ping() if self.cache is not None else False
        return {
            "status": "healthy",
            "model": self.config.model,
            "cache": "ready" if cache_ok else "unavailable",
        }

    async def close(self) -> None:
        await self.provider.close()
