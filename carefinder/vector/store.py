import asyncio
from abc import ABC, abstractmethod
from datetime import UTC, datetime

import httpx

from carefinder.constants import DEFAULT_COLLECTION, VECTOR_DISTANCE, VECTOR_SEARCH_LIMIT, VECTOR_UPSERT_BATCH
from carefinder.errors import SemanticSearchError, ValidationError, VectorDBError
from carefinder.limiter import RateLimiter
from carefinder.logging import get_logger
from carefinder.vector.types import BatchUpsertResult, CollectionInfo, VectorHit, VectorPoint

_logger = get_logger(__name__)


class VectorStore(ABC):
    dim: int
    search_limit: int

    @abstractmethod
    async def upsert(self, id: str | int, vector: list[float], payload: dict | None = None) -> bool: ...

    @abstractmethod
    async def batch_upsert(self, points: list[VectorPoint], batch_size: int = VECTOR_UPSERT_BATCH) -> BatchUpsertResult: ...

    @abstractmethod
    async def search(
        self,
        vector: list[float],
        top_k: int = 20,
        threshold: float = 0.5,
        filter: dict | None = None,
    ) -> list[VectorHit]: ...

    @abstractmethod
    async def delete(self, id: str | int) -> bool: ...

    @abstractmethod
    async def batch_delete(self, ids: list[str | int]) -> bool: ...

    @abstractmethod
    async def get(self, id: str | int) -> VectorPoint | None: ...

    @abstractmethod
    async def get_info(self) -> CollectionInfo: ...

    @abstractmethod
    async def health_check(self) -> dict: ...

    async def close(self) -> None:
        return None


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _wire_id(id: str | int) -> int | str:
    # Qdrant accepts unsigned integers or UUIDs as point ids
    text = str(id)
    return int(text) if text.isdigit() else text


class QdrantVectorStore(VectorStore):
    """Center vectors in a Qdrant collection, over its REST API.

    All network calls are dispatched through ``limiter``.
    """

    def __init__(
        self,
        url: str,
        limiter: RateLimiter,
        dim: int,
        collection: str = DEFAULT_COLLECTION,
        api_key: str | None = None,
        search_limit: int = VECTOR_SEARCH_LIMIT,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = url.rstrip("/")
        self.limiter = limiter
        self.dim = dim
        self.collection = collection
        self.search_limit = search_limit
        self.timeout = timeout
        headers = {"api-key": api_key} if api_key else {}
        self._client = httpx.AsyncClient(base_url=self.url, headers=headers, timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        response = await self._client.request(method, path, **kwargs)
        response.raise_for_status()
        return response.json()

    async def _limited(self, method: str, path: str, **kwargs) -> dict:
        # Time queued in the limiter counts against the request timeout
        async with asyncio.timeout(self.timeout):
            return await self.limiter.schedule(self._request, method, path, **kwargs)

    def _points_path(self, suffix: str = "") -> str:
        return f"/collections/{self.collection}/points{suffix}"

    def _validate_id(self, id: str | int | None) -> None:
        if id is None or str(id) == "":
            raise ValidationError("id is required", field="id")

    def _validate_vector(self, vector: list[float], field: str = "vector") -> None:
        if not isinstance(vector, list) or len(vector) != self.dim:
            actual = len(vector) if isinstance(vector, list) else None
            raise ValidationError(
                f"vector dimension must be {self.dim} (got {actual})",
                field=field,
                details={"expected": self.dim, "actual": actual},
            )

    def _wire_point(self, id: str | int, vector: list[float], payload: dict | None) -> dict:
        return {
            "id": _wire_id(id),
            "vector": vector,
            "payload": {**(payload or {}), "updatedAt": _now_iso()},
        }

    async def upsert(self, id: str | int, vector: list[float], payload: dict | None = None) -> bool:
        self._validate_id(id)
        self._validate_vector(vector)
        try:
            await self._limited(
                "PUT",
                self._points_path(),
                params={"wait": "true"},
                json={"points": [self._wire_point(id, vector, payload)]},
            )
        except Exception as e:
            _logger.error("Vector upsert failed for %s: %s", id, e)
            raise VectorDBError("Vector upsert failed", operation="upsert", cause=e) from e
        _logger.debug("Upserted vector %s (%d payload keys)", id, len(payload or {}))
        return True

    async def batch_upsert(self, points: list[VectorPoint], batch_size: int = VECTOR_UPSERT_BATCH) -> BatchUpsertResult:
        """Upsert in chunks; a failed chunk counts its points as failed and
        earlier chunks stay committed."""
        if not isinstance(points, list) or not points:
            raise ValidationError("points must be a non-empty list", field="points")
        for point in points:
            self._validate_id(point.id)
            self._validate_vector(point.vector, field=f"points[{point.id}].vector")

        success = 0
        failed = 0
        for i, start in enumerate(range(0, len(points), batch_size), start=1):
            batch = points[start : start + batch_size]
            try:
                await self._limited(
                    "PUT",
                    self._points_path(),
                    params={"wait": "true"},
                    json={"points": [self._wire_point(p.id, p.vector, p.payload) for p in batch]},
                )
                success += len(batch)
                _logger.debug("Upserted batch %d (%d points)", i, len(batch))
            except Exception as e:
                failed += len(batch)
                _logger.error("Batch %d upsert failed: %s", i, e)

        _logger.info("Batch upsert done: %d total, %d ok, %d failed", len(points), success, failed)
        return BatchUpsertResult(total=len(points), success=success, failed=failed)

    async def search(
        self,
        vector: list[float],
        top_k: int = 20,
        threshold: float = 0.5,
        filter: dict | None = None,
    ) -> list[VectorHit]:
        self._validate_vector(vector)
        if not 1 <= top_k <= self.search_limit:
            raise ValidationError(f"top_k must be 1-{self.search_limit}", field="top_k")

        body: dict = {
            "vector": vector,
            "limit": top_k,
            "score_threshold": threshold,
            "with_payload": True,
            "with_vector": False,
        }
        if filter:
            body["filter"] = filter

        try:
            data = await self._limited("POST", self._points_path("/search"), json=body)
            hits = [
                VectorHit(id=str(hit["id"]), score=float(hit["score"]), payload=hit.get("payload") or {})
                for hit in data.get("result", [])
            ]
        except Exception as e:
            _logger.error("Vector search failed (top_k=%d, threshold=%s): %s", top_k, threshold, e)
            raise SemanticSearchError("Vector search failed", query_vector=vector, cause=e) from e

        # Qdrant already applies score_threshold; re-check so the contract holds for any backend
        hits = [h for h in hits if h.score >= threshold]
        _logger.debug("Vector search returned %d hits", len(hits))
        return hits

    async def delete(self, id: str | int) -> bool:
        self._validate_id(id)
        return await self._delete([id], operation="delete")

    async def batch_delete(self, ids: list[str | int]) -> bool:
        if not isinstance(ids, list) or not ids:
            raise ValidationError("ids must be a non-empty list", field="ids")
        for id in ids:
            self._validate_id(id)
        return await self._delete(ids, operation="batch_delete")

    async def _delete(self, ids: list[str | int], operation: str) -> bool:
        try:
            await self._limited(
                "POST",
                self._points_path("/delete"),
                params={"wait": "true"},
                json={"points": [_wire_id(id) for id in ids]},
            )
        except Exception as e:
            _logger.error("Vector %s failed for %d id(s): %s", operation, len(ids), e)
            raise VectorDBError("Vector delete failed", operation=operation, cause=e) from e
        _logger.debug("Deleted %d vector(s)", len(ids))
        return True

    async def get(self, id: str | int) -> VectorPoint | None:
        self._validate_id(id)
        try:
            data = await self._limited(
                "POST",
                self._points_path(),
                json={"ids": [_wire_id(id)], "with_payload": True, "with_vector": True},
            )
        except Exception as e:
            raise VectorDBError("Vector retrieve failed", operation="retrieve", cause=e) from e

        rows = data.get("result", [])
        if not rows:
            return None
        row = rows[0]
        payload = row.get("payload") or {}
        return VectorPoint(
            id=str(row["id"]),
            vector=row.get("vector") or [],
            payload=payload,
            updated_at=payload.get("updatedAt"),
        )

    async def collection_exists(self) -> bool:
        data = await self._request("GET", "/collections")
        names = {c["name"] for c in data.get("result", {}).get("collections", [])}
        return self.collection in names

    async def ensure_collection(self) -> bool:
        """Create the collection with cosine distance if it does not exist.

        Returns True when a new collection was created.
        """
        try:
            if await self.collection_exists():
                _logger.info("Collection %s already exists", self.collection)
                return False
            await self._request(
                "PUT",
                f"/collections/{self.collection}",
                json={
                    "vectors": {"size": self.dim, "distance": VECTOR_DISTANCE},
                    "optimizers_config": {"default_segment_number": 2},
                    "replication_factor": 1,
                },
            )
        except httpx.HTTPError as e:
            raise VectorDBError("Collection creation failed", operation="create_collection", cause=e) from e
        _logger.info("Created collection %s (dim=%d, distance=%s)", self.collection, self.dim, VECTOR_DISTANCE)
        return True

    async def delete_collection(self) -> bool:
        try:
            await self._request("DELETE", f"/collections/{self.collection}")
        except httpx.HTTPError as e:
            raise VectorDBError("Collection delete failed", operation="delete_collection", cause=e) from e
        _logger.info("Deleted collection %s", self.collection)
        return True

    async def get_info(self) -> CollectionInfo:
        try:
            data = await self._request("GET", f"/collections/{self.collection}")
        except httpx.HTTPError as e:
            raise VectorDBError("Collection info failed", operation="get_collection_info", cause=e) from e
        result = data.get("result", {})
        vectors = result.get("config", {}).get("params", {}).get("vectors", {})
        return CollectionInfo(
            name=self.collection,
            vector_size=int(vectors.get("size", self.dim)),
            distance=str(vectors.get("distance", VECTOR_DISTANCE)),
            points_count=int(result.get("points_count") or 0),
            status=str(result.get("status", "unknown")),
        )

    async def health_check(self) -> dict:
        try:
            exists = await self.collection_exists()
            collection = None
            if exists:
                info = await self.get_info()
                collection = {
                    "name": info.name,
                    "pointsCount": info.points_count,
                    "vectorSize": info.vector_size,
                    "distance": info.distance,
                }
        except (httpx.HTTPError, VectorDBError) as e:
            _logger.error("Vector index health check failed: %s", e)
            return {"status": "unhealthy", "error": str(e)}
        return {
            "status": "healthy",
            "collection": collection,
            "configured": {"vectorSize": self.dim, "distance": VECTOR_DISTANCE},
        }
