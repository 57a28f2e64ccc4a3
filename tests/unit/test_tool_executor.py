import asyncio
import json

import pytest
from pydantic import BaseModel

from task_agent.llm.base import ToolCallBlock
from task_agent.tools.gateway import ToolExecutor
from task_agent.tools.registry import ToolContext, ToolRegistry, ToolSpec


class EchoInput(BaseModel):
    text: str
    delay_s: float = 0.0


async def _async_echo(payload: EchoInput, context: ToolContext) -> dict:
    await asyncio.sleep(payload.delay_s)
    return {"echo": payload.text, "owner": context.owner_id}


def _sync_boom(payload: EchoInput, context: ToolContext) -> str:
    raise RuntimeError(f"cannot handle {payload.text}")


def _registry() -> ToolRegistry:
    return ToolRegistry(
        [
            ToolSpec(name="echo", description="Echo text back.", input_model=EchoInput, fn=_async_echo),
            ToolSpec(name="boom", description="Always fails.", input_model=EchoInput, fn=_sync_boom),
        ]
    )


def _context() -> ToolContext:
    return ToolContext(owner_id="user-1", task_id="task-1")


@pytest.mark.asyncio
async def test_tool_executor_success_renders_json() -> None:
    executor = ToolExecutor(registry=_registry())
    outcome = await executor.execute(ToolCallBlock(id="c1", name="echo", input={"text": "hi"}), _context())

    assert outcome.is_error is False
    assert outcome.call_id == "c1"
    assert json.loads(outcome.output_text) == {"echo": "hi", "owner": "user-1"}


@pytest.mark.asyncio
async def test_unknown_tool_becomes_error_outcome() -> None:
    executor = ToolExecutor(registry=_registry())
    outcome = await executor.execute(ToolCallBlock(id="c2", name="missing"), _context())

    assert outcome.is_error is True
    assert json.loads(outcome.output_text) == {"success": False, "error": "Tool 'missing' not found"}


@pytest.mark.asyncio
async def test_invalid_input_and_exceptions_never_raise() -> None:
    executor = ToolExecutor(registry=_registry())

    invalid = await executor.execute(ToolCallBlock(id="c3", name="echo", input={"text": 3.5j}), _context())
    failed = await executor.execute(ToolCallBlock(id="c4", name="boom", input={"text": "x"}), _context())

    assert invalid.is_error is True
    assert "Invalid input for tool 'echo'" in invalid.output_text
    assert failed.is_error is True
    assert "cannot handle x" in failed.output_text


@pytest.mark.asyncio
async def test_execute_all_keeps_request_order() -> None:
    executor = ToolExecutor(registry=_registry(), max_concurrency=3)
    calls = [
        ToolCallBlock(id="slow", name="echo", input={"text": "a", "delay_s": 0.05}),
        ToolCallBlock(id="fast", name="echo", input={"text": "b"}),
        ToolCallBlock(id="bad", name="boom", input={"text": "c"}),
    ]

    outcomes = await executor.execute_all(calls, _context())

    assert [outcome.call_id for outcome in outcomes] == ["slow", "fast", "bad"]
    assert [outcome.is_error for outcome in outcomes] == [False, False, True]


def test_registry_rejects_duplicate_names_and_declares_schema() -> None:
    registry = _registry()

    with pytest.raises(ValueError):
        registry.register(
            ToolSpec(name="echo", description="dup", input_model=EchoInput, fn=_async_echo)
        )

    declarations = {item["name"]: item for item in registry.declarations()}
    assert registry.names() == ["boom", "echo"]
    assert declarations["echo"]["input_schema"]["properties"]["text"]["type"] == "string"
