"""HTTP tests for the recommendation endpoints"""
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from carefinder.cache import MemoryCache
from carefinder.config import Config
from carefinder.server.app import app
from carefinder.server.runtime import Runtime, reset_runtime, set_runtime
from tests.conftest import FakeProvider, FakeRuleScorer, FakeVectorStore, candidate, mock_embedding


@pytest_asyncio.fixture
async def test_runtime(tmp_path: Path, monkeypatch) -> AsyncGenerator[Runtime]:
    """Runtime wired to in-memory fakes for every external service"""
    await reset_runtime()
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    store = FakeVectorStore()
    query = "우울증 상담이 필요해요"
    await store.upsert(1, mock_embedding(query), {"name": "센터 1", "description": "우울증 상담"})

    runtime = Runtime(
        config=Config(cache_path=tmp_path / "cache.db"),
        rule_scorer=FakeRuleScorer([candidate(1, 60), candidate(2, 80), candidate(3, 40)]),
        provider=FakeProvider(),
        cache=MemoryCache(),
        store=store,
    )
    await runtime.connect()
    set_runtime(runtime)

    yield runtime

    await reset_runtime()


@pytest_asyncio.fixture
async def test_client(test_runtime: Runtime) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


def body(**overrides) -> dict:
    data = {"latitude": 37.5665, "longitude": 126.978, "userQuery": "우울증 상담이 필요해요"}
    data.update(overrides)
    return data


class TestHybridEndpoint:
    @pytest.mark.asyncio
    async def test_hybrid_recommendations(self, test_client: AsyncClient):
        response = await test_client.post("/recommendations/hybrid", json=body())
        assert response.status_code == 200
        payload = response.json()
        assert payload["success"] is True

        data = payload["data"]
        meta = data["metadata"]
        assert meta["algorithm"] == "hybrid_v1"
        assert meta["fallbackMode"] is False
        assert meta["cacheHit"] is False
        assert meta["weights"] == {"embedding": 0.3, "rule": 0.7}
        assert meta["totalCount"] == 3

        top = data["recommendations"][0]
        # similarity 1.0*0.3 + 0.6*0.7 = 0.72
        assert top["centerId"] == 1
        assert top["totalScore"] == 72
        assert top["scores"]["embeddingScore"] == 100
        assert top["matchedKeywords"] == ["우울증", "상담"]
        scores = [r["totalScore"] for r in data["recommendations"]]
        assert scores == sorted(scores, reverse=True)

    @pytest.mark.asyncio
    async def test_second_request_hits_cache(self, test_client: AsyncClient):
        first = (await test_client.post("/recommendations/hybrid", json=body())).json()["data"]
        second = (await test_client.post("/recommendations/hybrid", json=body())).json()["data"]
        assert second["metadata"]["cacheHit"] is True
        assert second["recommendations"] == first["recommendations"]

    @pytest.mark.asyncio
    async def test_blank_query_falls_back(self, test_client: AsyncClient):
        response = await test_client.post("/recommendations/hybrid", json=body(userQuery="   "))
        assert response.status_code == 200
        meta = response.json()["data"]["metadata"]
        assert meta["fallbackMode"] is True
        assert meta["algorithm"] == "rule_based_fallback"
        assert meta["fallbackReason"] == "No user query provided"

    @pytest.mark.asyncio
    async def test_bad_weights_rejected(self, test_client: AsyncClient):
        response = await test_client.post(
            "/recommendations/hybrid", json=body(weights={"embedding": 0.5, "rule": 0.6})
        )
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "RECOMMENDATION_ERROR"
        assert error["weights"] == {"embedding": 0.5, "rule": 0.6}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"latitude": 91},
            {"longitude": -181},
            {"maxDistance": 0.5},
            {"limit": 51},
            {"assessmentId": 0},
            {"userQuery": "x" * 5001},
            {"weights": {"embedding": 1.5, "rule": -0.5}},
        ],
    )
    async def test_invalid_input(self, test_client: AsyncClient, overrides):
        response = await test_client.post("/recommendations/hybrid", json=body(**overrides))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_INPUT"

    @pytest.mark.asyncio
    async def test_missing_coordinates(self, test_client: AsyncClient):
        response = await test_client.post("/recommendations/hybrid", json={"userQuery": "불안"})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_rule_scorer_failure(self, test_client: AsyncClient, test_runtime: Runtime):
        test_runtime.rule_scorer.error = ConnectionError("down")
        response = await test_client.post("/recommendations/hybrid", json=body(userQuery="새 질문"))
        assert response.status_code == 500
        error = response.json()["error"]
        assert error["code"] == "RECOMMENDATION_ERROR"
        assert error["algorithm"] == "rule_based"


class TestSupportEndpoints:
    @pytest.mark.asyncio
    async def test_health(self, test_client: AsyncClient):
        response = await test_client.get("/recommendations/hybrid/health")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "healthy"
        assert set(data["limiters"]) == {"llm", "vector"}
        assert data["components"]["embedding"]["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_health_unhealthy(self, test_client: AsyncClient, test_runtime: Runtime):
        async def down():
            return {"status": "unhealthy", "error": "connection refused"}

        test_runtime.store.health_check = down
        response = await test_client.get("/recommendations/hybrid/health")
        assert response.status_code == 503
        assert response.json()["data"]["components"]["vectorDB"]["status"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_weights(self, test_client: AsyncClient):
        response = await test_client.get("/recommendations/hybrid/weights")
        assert response.status_code == 200
        assert response.json()["data"]["defaultWeights"] == {"embedding": 0.3, "rule": 0.7}

    @pytest.mark.asyncio
    async def test_clear_cache(self, test_client: AsyncClient):
        await test_client.post("/recommendations/hybrid", json=body())
        response = await test_client.delete("/recommendations/hybrid/cache")
        assert response.status_code == 200
        assert response.json()["data"]["deleted"] == 1

        again = (await test_client.post("/recommendations/hybrid", json=body())).json()["data"]
        assert again["metadata"]["cacheHit"] is False

    @pytest.mark.asyncio
    async def test_root_health(self, test_client: AsyncClient):
        response = await test_client.get("/health")
        assert response.json() == {"status": "ok"}
