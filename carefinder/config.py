import logging
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from carefinder.constants import (
    DEFAULT_COLLECTION,
    DEFAULT_EMBEDDING_MODEL,
    DEFAULT_EMBEDDING_WEIGHT,
    DEFAULT_RULE_WEIGHT,
    EMBEDDING_MODELS,
    EMBEDDING_TIMEOUT,
    LLM_HIGH_WATER,
    LLM_MAX_CONCURRENT,
    LLM_MIN_TIME,
    LLM_REFRESH_INTERVAL,
    LLM_RESERVOIR,
    VECTOR_HIGH_WATER,
    VECTOR_MAX_CONCURRENT,
    VECTOR_MIN_TIME,
    VECTOR_REFRESH_INTERVAL,
    VECTOR_RESERVOIR,
    VECTOR_SEARCH_LIMIT,
    WEIGHT_SUM_TOLERANCE,
)
from carefinder.embedder import EmbeddingConfig
from carefinder.limiter import LimiterSettings
from carefinder.recommend.models import Weights

CAREFINDER_DIR = Path.home() / ".carefinder"


class Config(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CAREFINDER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        populate_by_name=True,
    )

    # Provider keys use their standard env var names
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    qdrant_api_key: str | None = Field(default=None, alias="QDRANT_API_KEY")

    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_timeout: float = Field(default=EMBEDDING_TIMEOUT, gt=0)

    qdrant_url: str = "http://localhost:6333"
    collection_name: str = DEFAULT_COLLECTION
    search_limit: int = Field(default=VECTOR_SEARCH_LIMIT, ge=1)

    cache_path: Path = CAREFINDER_DIR / "cache.db"

    rule_scorer_url: str = "http://localhost:8080/api"
    assessment_url: str | None = None

    default_embedding_weight: float = Field(default=DEFAULT_EMBEDDING_WEIGHT, ge=0, le=1)
    default_rule_weight: float = Field(default=DEFAULT_RULE_WEIGHT, ge=0, le=1)

    llm_min_time: float = LLM_MIN_TIME
    llm_max_concurrent: int = Field(default=LLM_MAX_CONCURRENT, ge=1)
    llm_reservoir: int = LLM_RESERVOIR
    llm_refresh_amount: int = LLM_RESERVOIR
    llm_refresh_interval: float = Field(default=LLM_REFRESH_INTERVAL, gt=0)
    llm_high_water: int = LLM_HIGH_WATER

    vector_min_time: float = VECTOR_MIN_TIME
    vector_max_concurrent: int = Field(default=VECTOR_MAX_CONCURRENT, ge=1)
    vector_reservoir: int = VECTOR_RESERVOIR
    vector_refresh_amount: int = VECTOR_RESERVOIR
    vector_refresh_interval: float = Field(default=VECTOR_REFRESH_INTERVAL, gt=0)
    vector_high_water: int = VECTOR_HIGH_WATER

    log_level: str = "INFO"

    @field_validator("embedding_model")
    @classmethod
    def _validate_embedding_model(cls, v: str) -> str:
        if v not in EMBEDDING_MODELS:
            raise ValueError(f"Unsupported embedding model: {v}. Must be one of: {', '.join(EMBEDDING_MODELS)}")
        return v

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level

    @model_validator(mode="after")
    def _validate_weights(self) -> "Config":
        total = self.default_embedding_weight + self.default_rule_weight
        if abs(total - 1.0) >= WEIGHT_SUM_TOLERANCE:
            raise ValueError(
                f"default weights must sum to 1.0, got {self.default_embedding_weight} + {self.default_rule_weight}"
            )
        return self

    @property
    def embedding(self) -> EmbeddingConfig:
        return EmbeddingConfig(model=self.embedding_model, dim=EMBEDDING_MODELS[self.embedding_model])

    @property
    def default_weights(self) -> Weights:
        return Weights(embedding=self.default_embedding_weight, rule=self.default_rule_weight)

    @property
    def llm_limiter(self) -> LimiterSettings:
        return LimiterSettings(
            min_time=self.llm_min_time,
            max_concurrent=self.llm_max_concurrent,
            reservoir=self.llm_reservoir,
            refresh_amount=self.llm_refresh_amount,
            refresh_interval=self.llm_refresh_interval,
            high_water=self.llm_high_water,
        )

    @property
    def vector_limiter(self) -> LimiterSettings:
        return LimiterSettings(
            min_time=self.vector_min_time,
            max_concurrent=self.vector_max_concurrent,
            reservoir=self.vector_reservoir,
            refresh_amount=self.vector_refresh_amount,
            refresh_interval=self.vector_refresh_interval,
            high_water=self.vector_high_water,
        )


def get_config() -> Config:
    return Config()
