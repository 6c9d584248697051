import asyncio
from dataclasses import dataclass, field
from enum import StrEnum

from carefinder.cache import CacheStore
from carefinder.constants import (
    ALGORITHM_FALLBACK,
    ALGORITHM_HYBRID,
    CANDIDATE_OVERFETCH_FACTOR,
    DEFAULT_EMBEDDING_WEIGHT,
    DEFAULT_RULE_WEIGHT,
    RESULT_CACHE_PREFIX,
    RESULT_CACHE_TTL,
    SEMANTIC_THRESHOLD,
    STRONG_MATCH_KEYWORDS,
    STRONG_MATCH_THRESHOLD,
    WEIGHT_SUM_TOLERANCE,
)
from carefinder.errors import RecommendationError
from carefinder.logging import get_logger
from carefinder.recommend.cache_key import result_cache_key
from carefinder.recommend.collaborators import AssessmentLookup, RuleScorer
from carefinder.recommend.models import (
    HybridRequest,
    HybridResult,
    HybridScores,
    RecommendationMetadata,
    RecommendationResponse,
    RuleCandidate,
    Weights,
)
from carefinder.search.semantic import SemanticHit, SemanticSearchService
from carefinder.utils import ms_now, round_half_up

_logger = get_logger(__name__)


class Phase(StrEnum):
    COMPUTING_RULE = "computing_rule"
    COMPUTING_SEMANTIC = "computing_semantic"
    MERGING = "merging"
    FALLBACK = "fallback"
    DONE = "done"


@dataclass
class SemanticOutcome:
    hits: list[SemanticHit] = field(default_factory=list)
    fallback_reason: str | None = None

    @property
    def fallback(self) -> bool:
        return self.fallback_reason is not None


def validate_weights(weights: Weights) -> None:
    if abs(weights.embedding + weights.rule - 1.0) >= WEIGHT_SUM_TOLERANCE:
        raise RecommendationError(
            f"Weights must sum to 1.0 (embedding: {weights.embedding}, rule: {weights.rule})",
            algorithm="hybrid",
            embedding_weight=weights.embedding,
            rule_weight=weights.rule,
        )


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def _strong_match_reason(hit: SemanticHit) -> str:
    keywords = hit.matched_keywords[:STRONG_MATCH_KEYWORDS]
    if keywords:
        return f"💡 {', '.join(keywords)}에 특화"
    return "💡 요청 내용과 높은 유사도"


def merge_results(
    candidates: list[RuleCandidate],
    hits: list[SemanticHit],
    embedding_weight: float,
    rule_weight: float,
    limit: int,
) -> list[HybridResult]:
    """Score every rule candidate against its semantic hit (if any), best first.

    Centers found only by semantic search are ignored; the rule scorer owns
    the candidate set. Ties keep the scorer's order.
    """
    by_center = {str(hit.center_id): hit for hit in hits}
    merged: list[HybridResult] = []

    for candidate in candidates:
        hit = by_center.get(str(candidate.center_id))
        rule_score = _clamp01(candidate.total_score / 100)
        embedding_score = _clamp01(hit.similarity_score) if hit else 0.0
        hybrid_score = round_half_up(100 * (embedding_score * embedding_weight + rule_score * rule_weight))

        reasons = list(candidate.reasons)
        if hit and embedding_score > STRONG_MATCH_THRESHOLD:
            reasons.append(_strong_match_reason(hit))

        merged.append(
            HybridResult(
                center_id=candidate.center_id,
                center_name=candidate.center_name,
                total_score=hybrid_score,
                scores=HybridScores(
                    total=hybrid_score,
                    rule_based_score=candidate.total_score,
                    embedding_score=round_half_up(embedding_score * 100),
                    breakdown=candidate.score_breakdown,
                ),
                reasons=reasons,
                matched_keywords=list(hit.matched_keywords) if hit else [],
                center_metadata=candidate.center_metadata,
                algorithm=ALGORITHM_HYBRID,
            )
        )

    merged.sort(key=lambda r: r.total_score, reverse=True)
    return merged[:limit]


def _fallback_result(c: RuleCandidate) -> HybridResult:
    # Rounded on the 0-100 scale so x.5 totals round up
    total = round_half_up(min(max(c.total_score, 0.0), 100.0))
    return HybridResult(
        center_id=c.center_id,
        center_name=c.center_name,
        total_score=total,
        scores=HybridScores(
            total=total,
            rule_based_score=c.total_score,
            embedding_score=0,
            breakdown=c.score_breakdown,
        ),
        reasons=list(c.reasons),
        matched_keywords=[],
        center_metadata=c.center_metadata,
        algorithm=ALGORITHM_FALLBACK,
    )


def fallback_results(candidates: list[RuleCandidate], limit: int) -> list[HybridResult]:
    results = [_fallback_result(c) for c in candidates]
    results.sort(key=lambda r: r.total_score, reverse=True)
    return results[:limit]


class HybridRecommender:
    """Rule-based scores blended with semantic similarity.

    The rule branch is mandatory; its failure fails the request. The semantic
    branch is optional: a missing query, a missing service, or any error in
    it switches the response to rule-based fallback instead.
    """

    def __init__(
        self,
        rule_scorer: RuleScorer,
        semantic: SemanticSearchService | None = None,
        cache: CacheStore | None = None,
        assessments: AssessmentLookup | None = None,
        default_weights: Weights | None = None,
        cache_ttl: float = RESULT_CACHE_TTL,
        semantic_threshold: float = SEMANTIC_THRESHOLD,
    ):
        self.rule_scorer = rule_scorer
        self.semantic = semantic
        self.cache = cache
        self.assessments = assessments
        self.default_weights = default_weights or Weights(embedding=DEFAULT_EMBEDDING_WEIGHT, rule=DEFAULT_RULE_WEIGHT)
        self.cache_ttl = cache_ttl
        self.semantic_threshold = semantic_threshold
        validate_weights(self.default_weights)

    async def recommend(self, request: HybridRequest) -> RecommendationResponse:
        start = ms_now()
        weights = request.weights or self.default_weights
        validate_weights(weights)

        _logger.info(
            "Hybrid recommendation request (lat=%.4f, lng=%.4f, dist=%s, query_len=%s, weights=%s/%s)",
            request.latitude,
            request.longitude,
            request.max_distance,
            len(request.user_query) if request.user_query is not None else None,
            weights.embedding,
            weights.rule,
        )

        key = result_cache_key(request, weights)
        cached = await self._read_cache(key)
        if cached is not None:
            return cached

        try:
            response = await self._compute(request, weights, start)
        except RecommendationError:
            raise
        except Exception as e:
            _logger.error("Hybrid recommendation failed: %s", e)
            raise RecommendationError("Hybrid recommendation failed", algorithm="hybrid", cause=e) from e

        await self._write_cache(key, response)
        return response

    async def _compute(self, request: HybridRequest, weights: Weights, start: int) -> RecommendationResponse:
        _logger.debug("Phase %s + %s", Phase.COMPUTING_RULE, Phase.COMPUTING_SEMANTIC)
        # Join, not race: both branches settle before merging
        rule_result, semantic = await asyncio.gather(
            self._rule_branch(request),
            self._semantic_branch(request),
            return_exceptions=True,
        )
        if isinstance(rule_result, BaseException):
            if isinstance(rule_result, asyncio.CancelledError):
                raise rule_result
            _logger.error("Rule-based branch failed: %s", rule_result)
            raise RecommendationError(
                "Rule-based recommendation failed",
                algorithm="rule_based",
                cause=rule_result,
            ) from rule_result
        if isinstance(semantic, BaseException):
            raise semantic

        if semantic.fallback:
            _logger.debug("Phase %s: %s", Phase.FALLBACK, semantic.fallback_reason)
            results = fallback_results(rule_result, request.limit)
            algorithm = ALGORITHM_FALLBACK
        else:
            _logger.debug("Phase %s", Phase.MERGING)
            results = merge_results(rule_result, semantic.hits, weights.embedding, weights.rule, request.limit)
            algorithm = ALGORITHM_HYBRID

        query_time = ms_now() - start
        response = RecommendationResponse(
            recommendations=results,
            metadata=RecommendationMetadata(
                total_count=len(results),
                query_time=query_time,
                cache_hit=False,
                algorithm=algorithm,
                weights=weights,
                fallback_mode=semantic.fallback,
                fallback_reason=semantic.fallback_reason,
            ),
        )
        _logger.debug("Phase %s", Phase.DONE)
        _logger.info(
            "Hybrid recommendation done: %d results, %s, %dms",
            len(results),
            algorithm,
            query_time,
        )
        return response

    async def _rule_branch(self, request: HybridRequest) -> list[RuleCandidate]:
        candidates = await self.rule_scorer.get_recommendations(
            latitude=request.latitude,
            longitude=request.longitude,
            max_distance=request.max_distance,
            limit=request.limit * CANDIDATE_OVERFETCH_FACTOR,
        )
        _logger.debug("Rule-based branch: %d candidates", len(candidates))
        return candidates

    async def _semantic_branch(self, request: HybridRequest) -> SemanticOutcome:
        query = request.user_query
        if query is None or not query.strip():
            _logger.warning("No user query, skipping semantic search")
            return SemanticOutcome(fallback_reason="No user query provided")
        if self.semantic is None:
            _logger.warning("Semantic search not configured, skipping")
            return SemanticOutcome(fallback_reason="Semantic search is not configured")

        query_text = await self._with_assessment(query, request.assessment_id)
        top_k = min(request.limit * CANDIDATE_OVERFETCH_FACTOR, self.semantic.store.search_limit)
        try:
            result = await self.semantic.search(query_text, top_k=top_k, threshold=self.semantic_threshold)
        except Exception as e:
            _logger.warning("Semantic search failed, serving rule-based results only: %s", e)
            return SemanticOutcome(fallback_reason=str(e) or type(e).__name__)
        return SemanticOutcome(hits=result.hits)

    async def _with_assessment(self, query: str, assessment_id: int | None) -> str:
        if assessment_id is None or self.assessments is None:
            return query
        try:
            summary = await self.assessments.fetch_assessment_summary(assessment_id)
        except Exception as e:
            _logger.warning("Assessment %s lookup failed, using query alone: %s", assessment_id, e)
            return query
        if not summary:
            return query
        return f"{query}\n\n{summary}"

    async def _read_cache(self, key: str) -> RecommendationResponse | None:
        if self.cache is None:
            return None
        try:
            cached = await self.cache.get(key)
            if cached is None:
                return None
            response = RecommendationResponse.model_validate_json(cached)
        except Exception as e:
            _logger.warning("Result cache read failed, computing: %s", e)
            return None
        response.metadata.cache_hit = True
        _logger.info("Result cache hit %s", key)
        return response

    async def _write_cache(self, key: str, response: RecommendationResponse) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set(key, response.model_dump_json(by_alias=True), self.cache_ttl)
        except Exception as e:
            _logger.warning("Result cache write failed: %s", e)

    async def clear_cache(self) -> int:
        if self.cache is None:
            return 0
        try:
            deleted = await self.cache.delete_prefix(RESULT_CACHE_PREFIX)
        except Exception as e:
            _logger.error("Result cache clear failed: %s", e)
            return 0
        _logger.info("Cleared %d cached recommendation responses", deleted)
        return deleted
