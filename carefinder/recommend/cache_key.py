import json

from carefinder.constants import RESULT_CACHE_PREFIX
from carefinder.recommend.models import HybridRequest, Weights
from carefinder.utils import short_hash


def normalized_key_fields(request: HybridRequest, weights: Weights) -> dict:
    return {
        "lat": f"{request.latitude:.4f}",
        "lng": f"{request.longitude:.4f}",
        "dist": float(request.max_distance),
        "query": request.user_query,
        "assessment": request.assessment_id,
        "weights": {"embedding": float(weights.embedding), "rule": float(weights.rule)},
        "limit": request.limit,
    }


def result_cache_key(request: HybridRequest, weights: Weights) -> str:
    """Same normalized inputs -> same key; any differing field -> different key."""
    canonical = json.dumps(normalized_key_fields(request, weights), sort_keys=True, ensure_ascii=False)
    return f"{RESULT_CACHE_PREFIX}{short_hash(canonical)}"
