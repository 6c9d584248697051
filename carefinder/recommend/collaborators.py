"""Services the recommender depends on but does not own.

The rule-based scorer (distance, operating hours, specialty and program
sub-scores) and the self-assessment store live outside this package. The
recommender only relies on the contracts below; in particular it assumes the
scorer's ``total_score`` is on a 0-100 scale and divides by 100 without
knowing how the total was formed.
"""

from abc import ABC, abstractmethod

import httpx

from carefinder.recommend.models import RuleCandidate


SEVERITY_LABELS = {
    "LOW": "낮은 수준",
    "MID": "중간 수준",
    "HIGH": "높은 수준",
}


class RuleScorer(ABC):
    @abstractmethod
    async def get_recommendations(
        self,
        latitude: float,
        longitude: float,
        max_distance: float,
        limit: int,
    ) -> list[RuleCandidate]: ...

    async def close(self) -> None:
        return None


class AssessmentLookup(ABC):
    @abstractmethod
    async def fetch_assessment_summary(self, assessment_id: int) -> str | None: ...

    async def close(self) -> None:
        return None


def format_assessment_summary(total_score: float | int | None, severity_code: str | None, answers: str | None) -> str:
    severity = SEVERITY_LABELS.get(severity_code or "", "알 수 없음")
    return (
        "자가진단 결과:\n"
        f"- 총점: {total_score}점\n"
        f"- 심각도: {severity}\n"
        "\n"
        "응답 내용:\n"
        f"{answers or '응답 정보 없음'}"
    )


def _unwrap(data):
    # Accept both bare payloads and the {"success": ..., "data": ...} envelope
    if isinstance(data, dict) and "data" in data:
        return data["data"]
    return data


class HttpRuleScorer(RuleScorer):
    def __init__(self, base_url: str, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None):
        self._client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    async def get_recommendations(
        self,
        latitude: float,
        longitude: float,
        max_distance: float,
        limit: int,
    ) -> list[RuleCandidate]:
        response = await self._client.post(
            "/recommendations",
            json={"latitude": latitude, "longitude": longitude, "maxDistance": max_distance, "limit": limit},
        )
        response.raise_for_status()
        data = _unwrap(response.json())
        rows = data.get("recommendations", []) if isinstance(data, dict) else data
        return [RuleCandidate.model_validate(row) for row in rows]

    async def close(self) -> None:
        await self._client.aclose()


class HttpAssessmentLookup(AssessmentLookup):
    def __init__(self, base_url: str, timeout: float = 5.0, transport: httpx.AsyncBaseTransport | None = None):
        self._client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    async def fetch_assessment_summary(self, assessment_id: int) -> str | None:
        response = await self._client.get(f"/assessments/{assessment_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        data = _unwrap(response.json())
        if not data:
            return None
        return format_assessment_summary(data.get("totalScore"), data.get("severityCode"), data.get("answersJson"))

    async def close(self) -> None:
        await self._client.aclose()
