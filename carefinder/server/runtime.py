import asyncio
from dataclasses import asdict

from carefinder.cache import CacheStore, SqliteCache
from carefinder.config import Config, get_config
from carefinder.embedder import Embedder
from carefinder.indexing import CenterIndexer
from carefinder.limiter import RateLimiter
from carefinder.llm import EmbeddingProvider, OpenAIEmbeddingProvider
from carefinder.logging import get_logger
from carefinder.recommend import AssessmentLookup, HttpAssessmentLookup, HttpRuleScorer, HybridRecommender, RuleScorer
from carefinder.search import SemanticSearchService
from carefinder.vector import QdrantVectorStore, VectorStore

_logger = get_logger(__name__)


class Runtime:
    """Owns every long-lived client: limiters, cache, embedder, vector index
    and the recommender built on top of them.

    Collaborators can be injected; anything not injected is built from config.
    """

    def __init__(
        self,
        config: Config | None = None,
        rule_scorer: RuleScorer | None = None,
        assessments: AssessmentLookup | None = None,
        provider: EmbeddingProvider | None = None,
        cache: CacheStore | None = None,
        store: VectorStore | None = None,
    ):
        self.config = config or get_config()

        self.llm_limiter = RateLimiter("llm", self.config.llm_limiter)
        self.vector_limiter = RateLimiter("vector", self.config.vector_limiter)

        self.cache = cache or SqliteCache(self.config.cache_path)

        if provider is None and self.config.openai_api_key:
            provider = OpenAIEmbeddingProvider(api_key=self.config.openai_api_key)
        self.provider = provider
        self.embedder: Embedder | None = None
        if provider is not None:
            self.embedder = Embedder(
                self.config.embedding,
                provider,
                self.llm_limiter,
                cache=self.cache,
                timeout=self.config.embedding_timeout,
            )

        self.store = store or QdrantVectorStore(
            url=self.config.qdrant_url,
            limiter=self.vector_limiter,
            dim=self.config.embedding.dim,
            collection=self.config.collection_name,
            api_key=self.config.qdrant_api_key,
            search_limit=self.config.search_limit,
        )

        self.semantic: SemanticSearchService | None = None
        if self.embedder is not None:
            self.semantic = SemanticSearchService(self.embedder, self.store)
        else:
            _logger.warning("OPENAI_API_KEY not set, semantic search disabled (rule-based only)")

        self.rule_scorer = rule_scorer or HttpRuleScorer(self.config.rule_scorer_url)
        if assessments is None and self.config.assessment_url:
            assessments = HttpAssessmentLookup(self.config.assessment_url)
        self.assessments = assessments

        self.recommender = HybridRecommender(
            rule_scorer=self.rule_scorer,
            semantic=self.semantic,
            cache=self.cache,
            assessments=self.assessments,
            default_weights=self.config.default_weights,
        )
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._connected:
            return
        if isinstance(self.cache, SqliteCache):
            await self.cache.connect()
        self._connected = True

    def indexer(self) -> CenterIndexer:
        if self.embedder is None:
            raise RuntimeError("OPENAI_API_KEY is required for indexing")
        return CenterIndexer(self.embedder, self.store)

    def limiter_status(self) -> dict:
        return {
            "llm": asdict(self.llm_limiter.status()),
            "vector": asdict(self.vector_limiter.status()),
        }

    async def health(self) -> dict:
        if self.embedder is not None:
            embedding = await self.embedder.health(api_key_configured=True)
        else:
            embedding = {"status": "unavailable", "reason": "OPENAI_API_KEY is not set"}
        vector_db = await self.store.health_check()
        cache_ok = await self.cache.ping()

        healthy = embedding["status"] == "healthy" and vector_db["status"] == "healthy"
        return {
            "status": "healthy" if healthy else "unhealthy",
            "components": {
                "embedding": embedding,
                "vectorDB": vector_db,
                "cache": {"status": "healthy" if cache_ok else "unhealthy"},
            },
            "limiters": self.limiter_status(),
        }

    async def clear_caches(self) -> dict:
        results = await self.recommender.clear_cache()
        embeddings = await self.embedder.clear_cache() if self.embedder else 0
        return {"recommendations": results, "embeddings": embeddings}

    async def close(self) -> None:
        self.llm_limiter.close()
        self.vector_limiter.close()
        if self.embedder is not None:
            await self.embedder.close()
        await self.store.close()
        await self.rule_scorer.close()
        if self.assessments is not None:
            await self.assessments.close()
        await self.cache.close()
        self._connected = False


_runtime: Runtime | None = None
_runtime_lock = asyncio.Lock()


async def get_runtime_async() -> Runtime:
    global _runtime
    async with _runtime_lock:
        if _runtime is None:
            _runtime = Runtime()
            await _runtime.connect()
    return _runtime


def get_runtime() -> Runtime:
    if _runtime is None:
        raise RuntimeError("Runtime not initialized. Call get_runtime_async() first.")
    return _runtime


def set_runtime(runtime: Runtime) -> None:
    global _runtime
    _runtime = runtime


async def reset_runtime() -> None:
    global _runtime
    if _runtime is not None:
        await _runtime.close()
        _runtime = None
