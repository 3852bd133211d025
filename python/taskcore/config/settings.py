"""
Configuration management using Pydantic Settings.
Environment variables use the ``TASKCORE_`` prefix; a ``.env`` file is read
when present.
"""
import logging
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from taskcore.orchestration.models import (
    DEFAULT_AUTONOMY_LEVELS,
    AgentRole,
    AutonomyLevel,
    TaskPriority,
)

DEFAULT_MODEL = "claude-sonnet-4-20250514"

DEFAULT_PRIORITY_WEIGHTS: Dict[TaskPriority, int] = {
    TaskPriority.CRITICAL: 1000,
    TaskPriority.HIGH: 100,
    TaskPriority.NORMAL: 10,
    TaskPriority.LOW: 1,
}

# Verification work outranks generative work.
DEFAULT_TYPE_WEIGHTS: Dict[AgentRole, int] = {
    AgentRole.QA: 100,
    AgentRole.SECURITY: 90,
    AgentRole.TEST: 80,
    AgentRole.FEATURE: 50,
    AgentRole.REFACTOR: 30,
    AgentRole.DOCS: 20,
}


class TaskCoreSettings(BaseSettings):
    """Orchestration settings with validation and environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="TASKCORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Project
    project_name: str = Field(default="taskcore", description="Project the agents work on")
    working_directory: str = Field(default=".", description="Root directory handed to tools")

    # Model defaults
    model: str = Field(default=DEFAULT_MODEL, description="Model used by the execution loop")
    max_iterations: int = Field(default=10, ge=1, le=100, description="Iteration budget per run")
    temperature: float = Field(default=0.0, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: int = Field(default=8192, ge=1, description="Max tokens per model call")

    # Anthropic
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API key")
    anthropic_base_url: str = Field(default="https://api.anthropic.com", description="Anthropic API base URL")
    anthropic_version: str = Field(default="2023-06-01", description="anthropic-version header")
    request_timeout: float = Field(default=120.0, gt=0, description="HTTP timeout per model call (seconds)")
    llm_max_retries: int = Field(default=3, ge=1, le=10, description="Attempts for transient model errors")

    # Autonomy / approval
    autonomy: Dict[AgentRole, AutonomyLevel] = Field(
        default_factory=lambda: dict(DEFAULT_AUTONOMY_LEVELS),
        description="Autonomy level per agent role",
    )
    max_auto_approvals: int = Field(default=10, ge=1, description="Auto-approval budget exposed to policy callers")
    require_approval_for_destructive: bool = Field(
        default=True, description="Plans with destructive steps always need sign-off"
    )

    # Scheduling
    max_concurrent: int = Field(default=1, ge=1, le=64, description="Concurrent agent runs")
    cooldown_ms: int = Field(default=1000, ge=0, description="Minimum spacing between runs of one role")
    priority_weights: Dict[TaskPriority, int] = Field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_WEIGHTS),
        description="Score multiplier per priority",
    )
    type_weights: Dict[AgentRole, int] = Field(
        default_factory=lambda: dict(DEFAULT_TYPE_WEIGHTS),
        description="Score multiplier per role",
    )
    queue_poll_interval_ms: int = Field(default=100, ge=1, description="Sleep when nothing is eligible")
    auto_retry_failed: bool = Field(default=False, description="Re-queue failed tasks while retries remain")

    # Command tools
    test_command: List[str] = Field(
        default_factory=lambda: ["python", "-m", "pytest", "-q"], description="argv for the run_tests tool"
    )
    lint_command: List[str] = Field(
        default_factory=lambda: ["ruff", "check"], description="argv for the run_linter tool"
    )
    command_timeout: float = Field(default=120.0, gt=0, description="Timeout for command tools (seconds)")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="Log format: json or text")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"Log level must be one of {allowed}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format is valid."""
        allowed = ["json", "text"]
        if v not in allowed:
            raise ValueError(f"Log format must be one of {allowed}")
        return v

    @field_validator("autonomy")
    @classmethod
    def fill_autonomy_defaults(cls, v: Dict[AgentRole, AutonomyLevel]) -> Dict[AgentRole, AutonomyLevel]:
        """Partial overrides keep the defaults for roles they do not mention."""
        return {**DEFAULT_AUTONOMY_LEVELS, **v}

    @field_validator("priority_weights", "type_weights")
    @classmethod
    def validate_weights(cls, v: Dict, info) -> Dict:
        """Merge partial overrides onto defaults; weights must be positive."""
        defaults = DEFAULT_PRIORITY_WEIGHTS if info.field_name == "priority_weights" else DEFAULT_TYPE_WEIGHTS
        merged = {**defaults, **v}
        bad = [str(getattr(k, "value", k)) for k, weight in merged.items() if weight <= 0]
        if bad:
            raise ValueError(f"Weights must be positive: {', '.join(bad)}")
        return merged

    def autonomy_for(self, role: AgentRole) -> AutonomyLevel:
        return self.autonomy.get(role, AutonomyLevel.SUPERVISED)

    def get_log_level(self) -> int:
        """Get logging level as integer."""
        return getattr(logging, self.log_level)


@lru_cache(maxsize=1)
def get_settings() -> TaskCoreSettings:
    """
    Get cached settings instance.

    Returns:
        TaskCoreSettings: Application settings
    """
    return TaskCoreSettings()
