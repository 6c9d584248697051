"""Error taxonomy for the recommendation core.

Every failure the core raises is a ``CarefinderError`` subclass. Callers
dispatch on the class (``except SemanticSearchError`` or ``match``), and the
API layer renders ``to_dict()`` with ``status_code``.
"""

from carefinder.constants import RATE_LIMIT_RETRY_AFTER


class CarefinderError(Exception):
    code = "INTERNAL_ERROR"
    status_code = 500
    retryable = False

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def details(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, **self.details()}


class ValidationError(CarefinderError):
    code = "INVALID_INPUT"
    status_code = 400

    def __init__(self, message: str, field: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.field = field
        self.extra = details or {}

    def details(self) -> dict:
        return {"field": self.field, "details": self.extra}


class InvalidVectorError(ValidationError):
    code = "INVALID_VECTOR"


class RateLimitExceededError(CarefinderError):
    code = "RATE_LIMIT_EXCEEDED"
    status_code = 429
    retryable = True

    def __init__(self, message: str, retry_after: int = RATE_LIMIT_RETRY_AFTER, cause: BaseException | None = None):
        super().__init__(message, cause)
        self.retry_after = retry_after

    def details(self) -> dict:
        return {"retryAfter": self.retry_after}


class ProviderAuthError(CarefinderError):
    code = "PROVIDER_AUTH_ERROR"
    status_code = 503

    def __init__(self, message: str, provider: str = "openai", cause: BaseException | None = None):
        super().__init__(message, cause)
        self.provider = provider

    def details(self) -> dict:
        return {"provider": self.provider}


class ProviderServerError(CarefinderError):
    code = "PROVIDER_SERVER_ERROR"
    status_code = 503
    retryable = True

    def __init__(self, message: str, provider: str = "openai", cause: BaseException | None = None):
        super().__init__(message, cause)
        self.provider = provider

    def details(self) -> dict:
        return {"provider": self.provider}


class EmbeddingGenerationError(CarefinderError):
    code = "EMBEDDING_ERROR"
    retryable = True

    def __init__(self, message: str, text: str | None = None, cause: BaseException | None = None):
        super().__init__(message, cause)
        # Only a preview is kept; request texts may be long and personal.
        self.text = f"{text[:100]}..." if text else None

    def details(self) -> dict:
        return {"text": self.text}


class VectorDBError(CarefinderError):
    code = "VECTOR_DB_ERROR"

    def __init__(self, message: str, operation: str = "unknown", cause: BaseException | None = None):
        super().__init__(message, cause)
        self.operation = operation

    def details(self) -> dict:
        return {"operation": self.operation}


class SemanticSearchError(VectorDBError):
    code = "SEMANTIC_SEARCH_ERROR"

    def __init__(
        self,
        message: str,
        query_vector: list[float] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message, operation="search", cause=cause)
        self.query_vector = query_vector

    @property
    def has_query_vector(self) -> bool:
        return self.query_vector is not None

    def details(self) -> dict:
        return {"operation": self.operation, "hasQueryVector": self.has_query_vector}


class CapacityExceededError(CarefinderError):
    code = "CAPACITY_EXCEEDED"
    status_code = 503
    retryable = True

    def __init__(self, message: str, limiter: str, queued: int, high_water: int):
        super().__init__(message)
        self.limiter = limiter
        self.queued = queued
        self.high_water = high_water

    def details(self) -> dict:
        return {"limiter": self.limiter, "queued": self.queued, "highWater": self.high_water}


class CacheError(CarefinderError):
    code = "CACHE_ERROR"
    retryable = True

    def __init__(self, message: str, operation: str = "unknown", cause: BaseException | None = None):
        super().__init__(message, cause)
        self.operation = operation

    def details(self) -> dict:
        return {"operation": self.operation}


class RecommendationError(CarefinderError):
    code = "RECOMMENDATION_ERROR"

    def __init__(
        self,
        message: str,
        algorithm: str = "hybrid",
        cause: BaseException | None = None,
        embedding_weight: float | None = None,
        rule_weight: float | None = None,
    ):
        super().__init__(message, cause)
        self.algorithm = algorithm
        self.embedding_weight = embedding_weight
        self.rule_weight = rule_weight
        if embedding_weight is not None or rule_weight is not None:
            self.status_code = 400

    def details(self) -> dict:
        out: dict = {"algorithm": self.algorithm}
        if self.embedding_weight is not None or self.rule_weight is not None:
            out["weights"] = {"embedding": self.embedding_weight, "rule": self.rule_weight}
        return out
