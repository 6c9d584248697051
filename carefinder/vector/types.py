from dataclasses import dataclass, field


@dataclass
class VectorPoint:
    id: str
    vector: list[float]
    payload: dict = field(default_factory=dict)
    updated_at: str | None = None


@dataclass(frozen=True)
class VectorHit:
    """Search hit; the stored vector is never included."""

    id: str
    score: float
    payload: dict


@dataclass(frozen=True)
class BatchUpsertResult:
    total: int
    success: int
    failed: int


@dataclass(frozen=True)
class CollectionInfo:
    name: str
    vector_size: int
    distance: str
    points_count: int
    status: str
