from abc import ABC, abstractmethod
from dataclasses import dataclass

from carefinder.llm.retry import with_retry


@dataclass(frozen=True)
class EmbeddingResponse:
    vectors: list[list[float]]
    model: str
    token_count: int


class EmbeddingProvider(ABC):
    name: str = "provider"

    @abstractmethod
    async def _embedding(self, texts: list[str], model: str) -> EmbeddingResponse: ...

    async def embedding(self, texts: list[str], model: str) -> EmbeddingResponse:
        return await with_retry(self._embedding, texts=texts, model=model)

    @abstractmethod
    async def close(self) -> None: ...
