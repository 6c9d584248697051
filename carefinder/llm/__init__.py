from carefinder.llm.base import EmbeddingProvider, EmbeddingResponse
from carefinder.llm.openai import OpenAIEmbeddingProvider

__all__ = ["EmbeddingProvider", "EmbeddingResponse", "OpenAIEmbeddingProvider"]
