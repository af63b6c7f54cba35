"""
Configuration management.

Settings come from defaults, a `.env` file and `CONDUCTOR_*` environment
variables. Nested values use `__` as delimiter, e.g.
`CONDUCTOR_LLM__DEFAULT_MODEL=fast`. Values read by load_from_file() are
passed as init arguments and win over the environment.
"""

from pathlib import Path

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings

from conductor.core.domain.handoff import MAX_HANDOFF_DEPTH
from conductor.core.domain.routing import DEFAULT_CONFIDENCE_THRESHOLD, RoutingStrategy
from conductor.core.domain.scheduler import DEFAULT_CONTINUATION_DELAY
from conductor.core.domain.turn import DEFAULT_MAX_CONTINUATIONS
from conductor.infrastructure.llm.config import LLMSettings


class ConductorSettings(BaseSettings):
    """Orchestrator settings with environment variable support."""

    default_agent: str = Field(default="general", description="Fallback agent when routing finds no match")
    routing_strategy: RoutingStrategy = Field(default=RoutingStrategy.HYBRID)
    routing_threshold: int = Field(default=DEFAULT_CONFIDENCE_THRESHOLD, ge=0, le=100)
    max_handoff_depth: int = Field(default=MAX_HANDOFF_DEPTH, ge=1)
    max_continuations: int = Field(default=DEFAULT_MAX_CONTINUATIONS, ge=0)
    batch_continuation_delay: float = Field(default=DEFAULT_CONTINUATION_DELAY, ge=0)
    workflow_timeout_seconds: float | None = Field(
        default=None, description="Applied to workflows that declare no timeout"
    )

    agents_file: str | None = Field(default=None, description="YAML file with agent definitions")
    workflows_file: str | None = Field(default=None, description="YAML file with workflow definitions")
    workspace_root: str = Field(default=".", description="Root directory for file tools")

    llm: LLMSettings = Field(default_factory=LLMSettings)

    debug_mode: bool = Field(default=False)
    log_level: str = Field(default="WARNING")

    model_config = {
        "env_file": ".env",
        "env_prefix": "CONDUCTOR_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @classmethod
    def load_from_file(cls, config_path: Path) -> "ConductorSettings":
        """Load settings from a YAML configuration file (defaults if it is missing)."""
        if not config_path.exists():
            return cls()

        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

        return cls(**config_data)

    def save_to_file(self, config_path: Path) -> None:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False, indent=2)
