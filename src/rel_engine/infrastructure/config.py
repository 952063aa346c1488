"""Configuration management for the query engine."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from rel_engine.domain.value_objects.sql_types import NullOrdering


class QueryConfig(BaseModel):
    """Query semantics and planner configuration."""

    null_ordering: Literal["nulls_low", "nulls_high"] = Field(
        default="nulls_low",
        description="nulls_low sorts NULL first ascending and last descending",
    )
    like_case_sensitive: bool = Field(
        default=False, description="Whether LIKE compares case-sensitively"
    )
    hash_join_enabled: bool = Field(
        default=True, description="Use hash joins for eligible equality joins"
    )
    index_pushdown_enabled: bool = Field(
        default=True, description="Use index scans for column = literal predicates"
    )
    statement_timeout_seconds: float | None = Field(
        default=None, gt=0, description="Cancel statements running longer than this"
    )

    @property
    def null_ordering_mode(self) -> NullOrdering:
        return NullOrdering(self.null_ordering)


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="json", description="Log format")
    metrics_enabled: bool = Field(
        default=False, description="Expose Prometheus metrics over HTTP"
    )
    metrics_port: int = Field(default=8001, ge=1, le=65535, description="Prometheus metrics port")
    otel_endpoint: str | None = Field(
        default=None, description="OpenTelemetry collector endpoint"
    )
    otel_service_name: str = Field(default="rel_engine", description="Service name for tracing")


class Config(BaseSettings):
    """Main configuration for the query engine."""

    model_config = SettingsConfigDict(
        env_prefix="REL_ENGINE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    query: QueryConfig = Field(default_factory=QueryConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()
