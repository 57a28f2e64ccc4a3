"""Completion clients for tool-calling LLM providers."""

from __future__ import annotations

from task_agent.config.settings import Settings
from task_agent.errors import ConfigurationError
from task_agent.llm.anthropic_client import AnthropicMessagesClient
from task_agent.llm.base import (
    Completion,
    CompletionClient,
    StopReason,
    TextBlock,
    ToolCallBlock,
    ToolResultBlock,
    Turn,
)
from task_agent.llm.openai_client import OpenAIChatCompletionsClient


def build_completion_client(settings: Settings) -> CompletionClient:
    provider = settings.llm_provider.lower().strip()
    common = {
        "model": settings.llm_model,
        "max_tokens": settings.llm_max_tokens,
        "temperature": settings.llm_temperature,
        "timeout_s": settings.llm_request_timeout_s,
        "max_retries": settings.llm_max_retries,
        "backoff_s": settings.llm_backoff_s,
    }

    if provider == "anthropic":
        api_key = settings.resolved_anthropic_api_key()
        if not api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is missing for llm provider anthropic")
        return AnthropicMessagesClient(
            api_key=api_key,
            base_url=settings.llm_base_url or "https://api.anthropic.com",
            **common,
        )

    if provider == "openai":
        api_key = settings.resolved_openai_api_key()
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is missing for llm provider openai")
        return OpenAIChatCompletionsClient(
            api_key=api_key,
            base_url=settings.llm_base_url or "https://api.openai.com/v1",
            **common,
        )

    raise ConfigurationError(f"unsupported llm provider: {settings.llm_provider}")


__all__ = [
    "AnthropicMessagesClient",
    "Completion",
    "CompletionClient",
    "OpenAIChatCompletionsClient",
    "StopReason",
    "TextBlock",
    "ToolCallBlock",
    "ToolResultBlock",
    "Turn",
    "build_completion_client",
]
