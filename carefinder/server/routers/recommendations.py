from fastapi import APIRouter
from fastapi.responses import JSONResponse

from carefinder.logging import get_logger
from carefinder.recommend.models import HybridRequest
from carefinder.server.runtime import get_runtime

_logger = get_logger(__name__)

router = APIRouter(prefix="/recommendations/hybrid", tags=["recommendations"])


@router.post("")
async def recommend_hybrid(request: HybridRequest):
    runtime = get_runtime()
    response = await runtime.recommender.recommend(request)
    return {"success": True, "data": response.dump()}


@router.get("/health")
async def hybrid_health():
    runtime = get_runtime()
    health = await runtime.health()
    status_code = 200 if health["status"] == "healthy" else 503
    return JSONResponse(status_code=status_code, content={"success": status_code == 200, "data": health})


@router.get("/weights")
async def default_weights():
    runtime = get_runtime()
    weights = runtime.recommender.default_weights
    return {
        "success": True,
        "data": {
            "defaultWeights": weights.dump(),
            "description": {
                "embedding": "Semantic similarity between the request text and center descriptions",
                "rule": "Rule-based score (distance, operating hours, specialty, programs)",
            },
            "constraints": {"sum": 1.0, "min": 0.0, "max": 1.0},
        },
    }


@router.delete("/cache")
async def clear_cache():
    runtime = get_runtime()
    deleted = await runtime.recommender.clear_cache()
    _logger.info("Recommendation cache cleared via API (%d entries)", deleted)
    return {"success": True, "data": {"deleted": deleted}}
