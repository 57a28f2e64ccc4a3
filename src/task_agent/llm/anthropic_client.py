"""Anthropic messages API client with tool use."""

from __future__ import annotations

import asyncio
from typing import Any

from task_agent.llm.base import (
    Completion,
    StopReason,
    TextBlock,
    ToolCallBlock,
    ToolResultBlock,
    Turn,
)
from task_agent.llm.http import post_json_with_retry
from task_agent.models import TokenUsage

ANTHROPIC_VERSION = "2023-06-01"

_STOP_REASONS = {
    "end_turn": StopReason.END_TURN,
    "stop_sequence": StopReason.END_TURN,
    "tool_use": StopReason.TOOL_USE,
    "max_tokens": StopReason.MAX_TOKENS,
}


class AnthropicMessagesClient:
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "claude-sonnet-4-5-20250929",
        base_url: str = "https://api.anthropic.com",
        max_tokens: int = 4096,
        temperature: float = 0.0,
        timeout_s: float = 60.0,
        max_retries: int = 3,
        backoff_s: float = 0.5,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout_s = timeout_s
        self.max_retries = max(0, max_retries)
        self.backoff_s = max(0.0, backoff_s)

    async def complete(
        self,
        turns: list[Turn],
        tools: list[dict[str, Any]],
        *,
        system: str | None = None,
    ) -> Completion:
        response_json = await asyncio.to_thread(
            post_json_with_retry,
            url=f"{self.base_url}/v1/messages",
            headers={"x-api-key": self.api_key, "anthropic-version": ANTHROPIC_VERSION},
            body=self.request_body(turns, tools, system=system),
            timeout_s=self.timeout_s,
            max_retries=self.max_retries,
            backoff_s=self.backoff_s,
            provider="anthropic",
        )
        return parse_message(response_json)

    def request_body(
        self,
        turns: list[Turn],
        tools: list[dict[str, Any]],
        *,
        system: str | None = None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": [
                {"role": turn.role, "content": [_block_payload(b) for b in turn.content]}
                for turn in turns
            ],
        }
        if system:
            body["system"] = system
        if tools:
            body["tools"] = [
                {
                    "name": tool["name"],
                    "description": tool.get("description", ""),
                    "input_schema": tool.get("input_schema", {"type": "object"}),
                }
                for tool in tools
            ]
        return body


def _block_payload(block: TextBlock | ToolCallBlock | ToolResultBlock) -> dict[str, Any]:
    if isinstance(block, ToolCallBlock):
        return {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
    if isinstance(block, ToolResultBlock):
        return {
            "type": "tool_result",
            "tool_use_id": block.call_id,
            "content": block.content,
            "is_error": block.is_error,
        }
    return {"type": "text", "text": block.text}


def parse_message(response_json: dict[str, Any]) -> Completion:
    raw_blocks = response_json.get("content")
    if not isinstance(raw_blocks, list):
        raise ValueError("Anthropic response did not contain content blocks")

    content: list[TextBlock | ToolCallBlock] = []
    for raw in raw_blocks:
        if not isinstance(raw, dict):
            continue
        if raw.get("type") == "text":
            content.append(TextBlock(text=str(raw.get("text", ""))))
        elif raw.get("type") == "tool_use":
            raw_input = raw.get("input")
            content.append(
                ToolCallBlock(
                    id=str(raw.get("id", "")),
                    name=str(raw.get("name", "")),
                    input=raw_input if isinstance(raw_input, dict) else {},
                )
            )

    usage = None
    usage_raw = response_json.get("usage")
    if isinstance(usage_raw, dict):
        input_tokens = int(usage_raw.get("input_tokens", 0))
        output_tokens = int(usage_raw.get("output_tokens", 0))
        usage = TokenUsage(
            input=input_tokens,
            output=output_tokens,
            total=input_tokens + output_tokens,
        )

    return Completion(
        content=content,
        stop_reason=_STOP_REASONS.get(str(response_json.get("stop_reason")), StopReason.OTHER),
        usage=usage,
    )
