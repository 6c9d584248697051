"""Cosine similarity over dense embedding vectors."""

from collections.abc import Hashable, Sequence
from dataclasses import dataclass
from enum import StrEnum

import numpy as np

from carefinder.errors import InvalidVectorError
from carefinder.utils import round_half_up


class SimilarityLevel(StrEnum):
    VERY_HIGH = "very_high"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


_LEVEL_DESCRIPTIONS = {
    SimilarityLevel.VERY_HIGH: "매우 높은 유사도",
    SimilarityLevel.HIGH: "높은 유사도",
    SimilarityLevel.MEDIUM: "중간 유사도",
    SimilarityLevel.LOW: "낮은 유사도",
}


@dataclass(frozen=True)
class ScoredCandidate:
    id: Hashable
    similarity: float


@dataclass(frozen=True)
class SimilarityExplanation:
    level: SimilarityLevel
    description: str
    percentage: int


def _as_vector(value, name: str) -> np.ndarray:
    if isinstance(value, (str, bytes)) or not isinstance(value, (Sequence, np.ndarray)):
        raise InvalidVectorError(f"{name} must be a sequence of numbers", field=name)
    try:
        arr = np.asarray(value, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidVectorError(f"{name} contains non-numeric values", field=name) from e
    if arr.ndim != 1:
        raise InvalidVectorError(f"{name} must be one-dimensional", field=name)
    if arr.size == 0:
        raise InvalidVectorError(f"{name} must not be empty", field=name)
    if not np.all(np.isfinite(arr)):
        raise InvalidVectorError(f"{name} contains NaN or Infinity", field=name)
    return arr


def cosine_similarity(a: Sequence[float] | np.ndarray, b: Sequence[float] | np.ndarray) -> float:
    """Return dot(a, b) / (|a| * |b|), clamped to [-1, 1].

    A zero vector on either side yields 0.0 instead of dividing by zero.
    """
    va = _as_vector(a, "a")
    vb = _as_vector(b, "b")
    if va.shape != vb.shape:
        raise InvalidVectorError(
            f"Vector dimensions differ ({va.size} vs {vb.size})",
            field="b",
            details={"expected": int(va.size), "actual": int(vb.size)},
        )

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0 or norm_b == 0:
        return 0.0

    similarity = float(np.dot(va, vb)) / (norm_a * norm_b)
    return max(-1.0, min(1.0, similarity))


def batch_cosine_similarity(query: Sequence[float] | np.ndarray, targets: Sequence) -> list[float]:
    if len(targets) == 0:
        raise InvalidVectorError("targets must not be empty", field="targets")
    return [cosine_similarity(query, target) for target in targets]


def top_k_similar(
    query: Sequence[float] | np.ndarray,
    candidates: Sequence[tuple[Hashable, Sequence[float]]],
    k: int = 10,
    threshold: float = 0.0,
) -> list[ScoredCandidate]:
    """Score (id, vector) pairs against *query*, keep those >= threshold, best first."""
    if not candidates:
        return []
    scored = [ScoredCandidate(id=cid, similarity=cosine_similarity(query, vector)) for cid, vector in candidates]
    kept = [c for c in scored if c.similarity >= threshold]
    kept.sort(key=lambda c: c.similarity, reverse=True)
    return kept[:k]


def similarity_level(score: float) -> SimilarityLevel:
    if score >= 0.9:
        return SimilarityLevel.VERY_HIGH
    if score >= 0.7:
        return SimilarityLevel.HIGH
    if score >= 0.5:
        return SimilarityLevel.MEDIUM
    return SimilarityLevel.LOW


def similarity_to_percentage(score: float) -> int:
    """Map a [-1, 1] cosine score onto 0-100."""
    return round_half_up((score + 1) / 2 * 100)


def explain_similarity(score: float) -> SimilarityExplanation:
    level = similarity_level(score)
    return SimilarityExplanation(
        level=level,
        description=_LEVEL_DESCRIPTIONS[level],
        percentage=round_half_up(score * 100),
    )
