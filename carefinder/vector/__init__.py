from carefinder.vector.store import QdrantVectorStore, VectorStore
from carefinder.vector.types import BatchUpsertResult, CollectionInfo, VectorHit, VectorPoint

__all__ = [
    "BatchUpsertResult",
    "CollectionInfo",
    "QdrantVectorStore",
    "VectorHit",
    "VectorPoint",
    "VectorStore",
]
