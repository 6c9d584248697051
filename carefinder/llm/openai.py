import openai

from carefinder.constants import RATE_LIMIT_RETRY_AFTER
from carefinder.errors import ProviderAuthError, ProviderServerError, RateLimitExceededError
from carefinder.llm.base import EmbeddingProvider, EmbeddingResponse


class OpenAIEmbeddingProvider(EmbeddingProvider):
    name = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        organization: str | None = None,
        timeout: float | None = None,
        client: openai.AsyncOpenAI | None = None,
    ):
        # Retries are handled by with_retry, not the SDK
        self._client = client or openai.AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            organization=organization,
            timeout=timeout,
            max_retries=0,
        )

    async def _embedding(self, texts: list[str], model: str) -> EmbeddingResponse:
        try:
            response = await self._client.embeddings.create(
                model=model,
                input=texts,
                encoding_format="float",
            )
        except openai.APIStatusError as e:
            raise self._map_status_error(e) from e

        sorted_data = sorted(response.data, key=lambda x: x.index)
        return EmbeddingResponse(
            vectors=[item.embedding for item in sorted_data],
            model=response.model,
            token_count=response.usage.total_tokens if response.usage else 0,
        )

    def _map_status_error(self, e: openai.APIStatusError) -> Exception:
        status = e.status_code
        if status == 429:
            return RateLimitExceededError(
                "OpenAI rate limit exceeded, retry in 1 minute",
                retry_after=RATE_LIMIT_RETRY_AFTER,
                cause=e,
            )
        if status == 401:
            return ProviderAuthError("OpenAI API key is invalid", provider=self.name, cause=e)
        if status >= 500:
            return ProviderServerError(f"OpenAI server error ({status})", provider=self.name, cause=e)
        return e

    async def close(self) -> None:
        await self._client.close()
