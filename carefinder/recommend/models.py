from pydantic import BaseModel, ConfigDict, Field, PositiveInt
from pydantic.alias_generators import to_camel

from carefinder.constants import ALGORITHM_FALLBACK, ALGORITHM_HYBRID, DEFAULT_LIMIT, DEFAULT_MAX_DISTANCE, MAX_LIMIT


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Weights(CamelModel):
    embedding: float = Field(..., ge=0, le=1)
    rule: float = Field(..., ge=0, le=1)


class HybridRequest(CamelModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    # Empty or whitespace-only queries are accepted and served rule-based only
    user_query: str | None = Field(default=None, max_length=5000)
    max_distance: float = Field(default=DEFAULT_MAX_DISTANCE, ge=1, le=50)
    assessment_id: PositiveInt | None = None
    weights: Weights | None = None
    limit: int = Field(default=DEFAULT_LIMIT, ge=1, le=MAX_LIMIT)


class RuleCandidate(CamelModel):
    """One center scored by the external rule-based scorer (total on 0-100)."""

    model_config = ConfigDict(frozen=True)

    center_id: int | str
    center_name: str
    total_score: float
    score_breakdown: dict[str, float] = Field(default_factory=dict)
    reasons: list[str] = Field(default_factory=list)
    center_metadata: dict = Field(default_factory=dict)


class HybridScores(CamelModel):
    total: int
    rule_based_score: float
    embedding_score: int
    breakdown: dict[str, float] = Field(default_factory=dict)


class HybridResult(CamelModel):
    center_id: int | str
    center_name: str
    total_score: int
    scores: HybridScores
    reasons: list[str] = Field(default_factory=list)
    matched_keywords: list[str] = Field(default_factory=list)
    center_metadata: dict = Field(default_factory=dict)
    algorithm: str = ALGORITHM_HYBRID


class RecommendationMetadata(CamelModel):
    total_count: int
    query_time: int
    cache_hit: bool = False
    algorithm: str = ALGORITHM_HYBRID
    weights: Weights
    fallback_mode: bool = False
    fallback_reason: str | None = None

    @property
    def is_fallback(self) -> bool:
        return self.algorithm == ALGORITHM_FALLBACK


class RecommendationResponse(CamelModel):
    recommendations: list[HybridResult]
    metadata: RecommendationMetadata
