"""OpenAI chat completions client with function tools."""

from __future__ import annotations

import asyncio
import json
import logging
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

logger = logging.getLogger(__name__)

_FINISH_REASONS = {
    "stop": StopReason.END_TURN,
    "tool_calls": StopReason.TOOL_USE,
    "function_call": StopReason.TOOL_USE,
    "length": StopReason.MAX_TOKENS,
}


class OpenAIChatCompletionsClient:
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
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
        payload = self.request_body(turns, tools, system=system)
        response_json = await asyncio.to_thread(
            post_json_with_retry,
            url=f"{self.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key}"},
            body=payload,
            timeout_s=self.timeout_s,
            max_retries=self.max_retries,
            backoff_s=self.backoff_s,
            provider="openai",
        )
        return parse_chat_completion(response_json)

    def request_body(
        self,
        turns: list[Turn],
        tools: list[dict[str, Any]],
        *,
        system: str | None = None,
    ) -> dict[str, Any]:
        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        for turn in turns:
            messages.extend(_turn_messages(turn))

        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": messages,
        }
        if tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool["name"],
                        "description": tool.get("description", ""),
                        "parameters": tool.get("input_schema", {"type": "object"}),
                    },
                }
                for tool in tools
            ]
        return body


def _turn_messages(turn: Turn) -> list[dict[str, Any]]:
    if turn.role == "assistant":
        text = "\n\n".join(b.text for b in turn.content if isinstance(b, TextBlock))
        message: dict[str, Any] = {"role": "assistant", "content": text or None}
        calls = [b for b in turn.content if isinstance(b, ToolCallBlock)]
        if calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": json.dumps(call.input)},
                }
                for call in calls
            ]
        return [message]

    # Tool results become one "tool" message each; text stays a user message.
    messages: list[dict[str, Any]] = []
    for block in turn.content:
        if isinstance(block, ToolResultBlock):
            messages.append(
                {"role": "tool", "tool_call_id": block.call_id, "content": block.content}
            )
        elif isinstance(block, TextBlock):
            messages.append({"role": "user", "content": block.text})
    return messages


def parse_chat_completion(response_json: dict[str, Any]) -> Completion:
    choices = response_json.get("choices", [])
    if not choices:
        raise ValueError("OpenAI response did not contain choices")

    choice = choices[0]
    message = choice.get("message", {}) or {}
    content: list[TextBlock | ToolCallBlock] = []

    text = message.get("content")
    if isinstance(text, str) and text.strip():
        content.append(TextBlock(text=text))
    elif isinstance(text, list):
        merged = "".join(
            item["text"] for item in text if isinstance(item, dict) and isinstance(item.get("text"), str)
        ).strip()
        if merged:
            content.append(TextBlock(text=merged))

    for raw_call in message.get("tool_calls") or []:
        function = raw_call.get("function", {})
        content.append(
            ToolCallBlock(
                id=str(raw_call.get("id", "")),
                name=str(function.get("name", "")),
                input=_parse_arguments(function.get("arguments")),
            )
        )

    stop_reason = _FINISH_REASONS.get(str(choice.get("finish_reason")), StopReason.OTHER)
    if stop_reason is StopReason.OTHER and any(isinstance(b, ToolCallBlock) for b in content):
        stop_reason = StopReason.TOOL_USE

    usage_raw = response_json.get("usage")
    usage = None
    if isinstance(usage_raw, dict):
        prompt = int(usage_raw.get("prompt_tokens", 0))
        completion = int(usage_raw.get("completion_tokens", 0))
        usage = TokenUsage(
            input=prompt,
            output=completion,
            total=int(usage_raw.get("total_tokens", prompt + completion)),
        )
    return Completion(content=content, stop_reason=stop_reason, usage=usage)


def _parse_arguments(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("llm_response event=invalid_tool_arguments provider=openai raw=%s", raw[:200])
        return {}
    return parsed if isinstance(parsed, dict) else {}
