from dataclasses import dataclass, field

from carefinder.constants import SEMANTIC_THRESHOLD, SEMANTIC_TOP_K
from carefinder.embedder import Embedder
from carefinder.errors import SemanticSearchError
from carefinder.logging import get_logger
from carefinder.search.keywords import DOMAIN_TERMS, expand_query, extract_matched_keywords
from carefinder.utils import ms_now, truncate
from carefinder.vector.store import VectorStore

_logger = get_logger(__name__)


@dataclass(frozen=True)
class SemanticHit:
    center_id: str
    similarity_score: float
    center_name: str | None = None
    matched_keywords: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SemanticSearchResult:
    hits: list[SemanticHit]
    query_time: int
    cache_hit: bool

    @property
    def total(self) -> int:
        return len(self.hits)


@dataclass(frozen=True)
class BatchSearchOutcome:
    query: str
    success: bool
    result: SemanticSearchResult | None = None
    error: str | None = None


def rerank_hits(hits: list[SemanticHit]) -> list[SemanticHit]:
    return sorted(hits, key=lambda h: h.similarity_score, reverse=True)


class SemanticSearchService:
    """Free-text query -> centers whose descriptions are closest in embedding space."""

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        domain_terms: tuple[str, ...] = DOMAIN_TERMS,
        expand: bool = False,
    ):
        self.embedder = embedder
        self.store = store
        self.domain_terms = domain_terms
        self.expand = expand

    async def search(
        self,
        query: str,
        top_k: int = SEMANTIC_TOP_K,
        threshold: float = SEMANTIC_THRESHOLD,
        filter: dict | None = None,
    ) -> SemanticSearchResult:
        start = ms_now()
        embed_text = expand_query(query) if self.expand else query
        query_vector: list[float] | None = None

        try:
            embedding = await self.embedder.embed(embed_text)
            query_vector = embedding.vectors[0]
            vector_hits = await self.store.search(query_vector, top_k=top_k, threshold=threshold, filter=filter)
        except SemanticSearchError:
            raise
        except Exception as e:
            _logger.error("Semantic search failed for %r: %s", truncate(query, 50), e)
            raise SemanticSearchError("Semantic search failed", query_vector=query_vector, cause=e) from e

        hits = [
            SemanticHit(
                center_id=hit.id,
                similarity_score=hit.score,
                center_name=hit.payload.get("name"),
                matched_keywords=extract_matched_keywords(query, hit.payload, self.domain_terms),
            )
            for hit in vector_hits
        ]
        elapsed = ms_now() - start
        _logger.info(
            "Semantic search: %d hits (top_k=%d, threshold=%s, cache_hit=%s) in %dms",
            len(hits),
            top_k,
            threshold,
            embedding.cache_hit,
            elapsed,
        )
        return SemanticSearchResult(hits=hits, query_time=elapsed, cache_hit=embedding.cache_hit)

    async def batch_search(
        self,
        queries: list[str],
        top_k: int = SEMANTIC_TOP_K,
        threshold: float = SEMANTIC_THRESHOLD,
        filter: dict | None = None,
    ) -> list[BatchSearchOutcome]:
        """Run each query independently; one failure does not stop the others."""
        if not isinstance(queries, list) or not queries:
            raise ValueError("queries must be a non-empty list")

        outcomes: list[BatchSearchOutcome] = []
        for query in queries:
            try:
                result = await self.search(query, top_k=top_k, threshold=threshold, filter=filter)
                outcomes.append(BatchSearchOutcome(query=query, success=True, result=result))
            except Exception as e:
                _logger.error("Batch search query %r failed: %s", truncate(query, 50), e)
                outcomes.append(BatchSearchOutcome(query=query, success=False, error=str(e)))

        ok = sum(1 for o in outcomes if o.success)
        _logger.info("Batch semantic search: %d ok, %d failed", ok, len(outcomes) - ok)
        return outcomes
