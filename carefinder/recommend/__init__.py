from carefinder.recommend.collaborators import (
    AssessmentLookup,
    HttpAssessmentLookup,
    HttpRuleScorer,
    RuleScorer,
    format_assessment_summary,
)
from carefinder.recommend.hybrid import HybridRecommender, fallback_results, merge_results, validate_weights
from carefinder.recommend.models import (
    HybridRequest,
    HybridResult,
    HybridScores,
    RecommendationMetadata,
    RecommendationResponse,
    RuleCandidate,
    Weights,
)

__all__ = [
    "AssessmentLookup",
    "HttpAssessmentLookup",
    "HttpRuleScorer",
    "HybridRecommender",
    "HybridRequest",
    "HybridResult",
    "HybridScores",
    "RecommendationMetadata",
    "RecommendationResponse",
    "RuleCandidate",
    "RuleScorer",
    "Weights",
    "fallback_results",
    "format_assessment_summary",
    "merge_results",
    "validate_weights",
]
