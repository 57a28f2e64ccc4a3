"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]

DEFAULT_SYSTEM_PROMPT = """You are an assistant that completes data management tasks for one user.

You have tools that can read, create, update and analyze that user's records.

Guidelines:
1. Every tool call is already scoped to the current user; never try to reach other users' data.
2. Read before you write: look up existing records before creating or changing them.
3. When a tool returns an error, adjust the input or pick a different tool.
4. Keep the final answer concise and state what was changed."""


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "task-agent"
    app_env: str = "dev"
    log_level: str = "INFO"

    llm_provider: str = "anthropic"
    llm_model: str = "claude-sonnet-4-5-20250929"
    llm_base_url: str = ""
    llm_max_tokens: int = Field(default=4096, ge=1)
    llm_temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    llm_request_timeout_s: float = Field(default=60.0, ge=0.5)
    llm_max_retries: int = Field(default=3, ge=0)
    llm_backoff_s: float = Field(default=0.5, ge=0.0)
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    agent_max_iterations: int = Field(default=20, ge=1)
    agent_timeout_s: float = Field(default=120.0, ge=1.0, le=600.0)
    tool_max_concurrency: int = Field(default=4, ge=1)
    tool_registry_factory: str = "task_agent.tools.catalog:build_default_registry"

    stream_heartbeat_s: float = Field(default=15.0, gt=0.0)

    redis_url: str = "redis://localhost:6379/0"
    queue_name: str = "agent-tasks"
    queue_max_retries: int = Field(default=3, ge=0, le=10)
    queue_backoff_base_s: float = Field(default=1.0, ge=0.0)
    queue_backoff_max_s: float = Field(default=60.0, ge=0.0)
    queue_concurrency: int = Field(default=3, ge=1, le=10)
    queue_rate_limit_max: int = Field(default=10, ge=1)
    queue_rate_limit_window_s: float = Field(default=1.0, gt=0.0)
    queue_keep_completed_s: int = Field(default=24 * 3600, ge=0)
    queue_keep_failed_s: int = Field(default=7 * 24 * 3600, ge=0)

    database_url: str = ""

    model_config = SettingsConfigDict(
        env_prefix="TASK_AGENT_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("DATABASE_URL", "")

    def resolved_openai_api_key(self) -> str:
        return self.openai_api_key or os.getenv("OPENAI_API_KEY", "")

    def resolved_anthropic_api_key(self) -> str:
        return self.anthropic_api_key or os.getenv("ANTHROPIC_API_KEY", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
