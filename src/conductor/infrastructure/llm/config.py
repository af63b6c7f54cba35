"""LiteLLM configuration: model aliases, default parameters and retry policy."""

from typing import Any

from pydantic import BaseModel, Field


class RetrySettings(BaseModel):
    """Retry policy for model calls."""

    max_attempts: int = Field(default=3, ge=1)
    backoff_multiplier: float = Field(default=2.0, ge=0)
    timeout: int = Field(default=60, description="Per-request timeout in seconds")
    retry_on_errors: list[str] = Field(
        default_factory=lambda: ["RateLimitError", "Timeout", "APIConnectionError"]
    )


class LLMSettings(BaseModel):
    """Model backend configuration (model aliases resolved through LiteLLM)."""

    default_model: str = Field(default="main", description="Alias used for agent turns")
    routing_model: str = Field(default="fast", description="Alias used to classify requests")
    models: dict[str, str] = Field(
        default_factory=lambda: {"main": "gpt-4.1", "fast": "gpt-4.1-mini"}
    )
    default_params: dict[str, Any] = Field(default_factory=lambda: {"temperature": 0.2})
    retry: RetrySettings = Field(default_factory=RetrySettings)

    def resolve(self, alias: str | None) -> str:
        alias = alias or self.default_model
        return self.models.get(alias, alias)
