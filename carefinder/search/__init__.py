from carefinder.search.keywords import DOMAIN_TERMS, SYNONYMS, expand_query, extract_matched_keywords
from carefinder.search.semantic import (
    BatchSearchOutcome,
    SemanticHit,
    SemanticSearchResult,
    SemanticSearchService,
    rerank_hits,
)

__all__ = [
    "BatchSearchOutcome",
    "DOMAIN_TERMS",
    "SYNONYMS",
    "SemanticHit",
    "SemanticSearchResult",
    "SemanticSearchService",
    "expand_query",
    "extract_matched_keywords",
    "rerank_hits",
]
