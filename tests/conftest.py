import hashlib
from collections.abc import AsyncGenerator

import numpy as np
import pytest
import pytest_asyncio

from carefinder.cache import MemoryCache
from carefinder.embedder import Embedder, EmbeddingConfig
from carefinder.limiter import LimiterSettings, RateLimiter
from carefinder.llm.base import EmbeddingProvider, EmbeddingResponse
from carefinder.recommend.collaborators import RuleScorer
from carefinder.recommend.models import RuleCandidate
from carefinder.similarity import cosine_similarity
from carefinder.vector.store import VectorStore
from carefinder.vector.types import BatchUpsertResult, CollectionInfo, VectorHit, VectorPoint

TEST_EMBEDDING_DIM = 64
TEST_MODEL = "text-embedding-3-small"

FAST_LIMITER = LimiterSettings(
    min_time=0.0,
    max_concurrent=5,
    reservoir=1000,
    refresh_amount=1000,
    refresh_interval=60.0,
    high_water=100,
)


def mock_embedding(text: str, dim: int = TEST_EMBEDDING_DIM) -> list[float]:
    h = hashlib.md5(text.encode()).hexdigest()
    # MD5 is 32 chars, repeat to get dim
    arr = np.array([int(c, 16) / 15.0 for c in h] * (dim // 32))
    norm = np.linalg.norm(arr)
    return (arr / norm if norm > 0 else arr).tolist()


class FakeProvider(EmbeddingProvider):
    name = "fake"

    def __init__(self, dim: int = TEST_EMBEDDING_DIM, error: Exception | None = None):
        self.dim = dim
        self.error = error
        self.calls: list[list[str]] = []

    async def _embedding(self, texts: list[str], model: str) -> EmbeddingResponse:
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return EmbeddingResponse(
            vectors=[mock_embedding(t, self.dim) for t in texts],
            model=model,
            token_count=sum(len(t.split()) for t in texts),
        )

    async def close(self) -> None:
        return None


class FakeVectorStore(VectorStore):
    """In-memory stand-in for the vector index; scores hits by cosine similarity."""

    def __init__(self, dim: int = TEST_EMBEDDING_DIM, search_limit: int = 100):
        self.dim = dim
        self.search_limit = search_limit
        self.points: dict[str, VectorPoint] = {}
        self.search_error: Exception | None = None
        self.searches: list[dict] = []

    async def upsert(self, id, vector, payload=None) -> bool:
        self.points[str(id)] = VectorPoint(id=str(id), vector=vector, payload=dict(payload or {}))
        return True

    async def batch_upsert(self, points, batch_size=100) -> BatchUpsertResult:
        for p in points:
            await self.upsert(p.id, p.vector, p.payload)
        return BatchUpsertResult(total=len(points), success=len(points), failed=0)

    async def search(self, vector, top_k=20, threshold=0.5, filter=None) -> list[VectorHit]:
        self.searches.append({"top_k": top_k, "threshold": threshold, "filter": filter})
        if self.search_error is not None:
            raise self.search_error
        hits = [
            VectorHit(id=p.id, score=cosine_similarity(vector, p.vector), payload=p.payload)
            for p in self.points.values()
        ]
        hits = [h for h in hits if h.score >= threshold]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:top_k]

    async def delete(self, id) -> bool:
        self.points.pop(str(id), None)
        return True

    async def batch_delete(self, ids) -> bool:
        for id in ids:
            self.points.pop(str(id), None)
        return True

    async def get(self, id) -> VectorPoint | None:
        return self.points.get(str(id))

    async def get_info(self) -> CollectionInfo:
        return CollectionInfo(
            name="test", vector_size=self.dim, distance="Cosine", points_count=len(self.points), status="green"
        )

    async def health_check(self) -> dict:
        return {"status": "healthy", "collection": {"name": "test", "pointsCount": len(self.points)}}


class FakeRuleScorer(RuleScorer):
    def __init__(self, candidates: list[RuleCandidate] | None = None, error: Exception | None = None):
        self.candidates = candidates or []
        self.error = error
        self.calls: list[dict] = []

    async def get_recommendations(self, latitude, longitude, max_distance, limit) -> list[RuleCandidate]:
        self.calls.append({"latitude": latitude, "longitude": longitude, "max_distance": max_distance, "limit": limit})
        if self.error is not None:
            raise self.error
        return list(self.candidates)[:limit]


def candidate(center_id, total_score: float, name: str | None = None, reasons: list[str] | None = None) -> RuleCandidate:
    return RuleCandidate(
        center_id=center_id,
        center_name=name or f"센터 {center_id}",
        total_score=total_score,
        score_breakdown={"distance": total_score},
        reasons=reasons if reasons is not None else ["📍 가까운 거리"],
        center_metadata={"distance": 1.2},
    )


@pytest.fixture
def limiter() -> RateLimiter:
    return RateLimiter("test", FAST_LIMITER)


@pytest.fixture
def cache() -> MemoryCache:
    return MemoryCache()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest_asyncio.fixture
async def embedder(provider: FakeProvider, limiter: RateLimiter, cache: MemoryCache) -> AsyncGenerator[Embedder]:
    embedder = Embedder(EmbeddingConfig(model=TEST_MODEL, dim=TEST_EMBEDDING_DIM), provider, limiter, cache=cache)
    yield embedder
    await embedder.close()


@pytest.fixture
def vector_store() -> FakeVectorStore:
    return FakeVectorStore()
