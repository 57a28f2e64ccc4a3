"""Tool dispatch gateway: schema validation plus error-to-outcome conversion."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import time
from typing import Any

from pydantic import BaseModel, ValidationError

from task_agent.llm.base import ToolCallBlock
from task_agent.tools.registry import ToolContext, ToolOutcome, ToolRegistry

logger = logging.getLogger(__name__)


class ToolExecutor:
    """Run model-requested tool calls without ever raising into the agent loop."""

    def __init__(self, *, registry: ToolRegistry, max_concurrency: int = 4) -> None:
        self.registry = registry
        self.max_concurrency = max(1, max_concurrency)

    async def execute_all(
        self,
        calls: list[ToolCallBlock],
        context: ToolContext,
    ) -> list[ToolOutcome]:
        """Dispatch calls with bounded fan-out; outcomes keep the request order."""
        if not calls:
            return []
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(call: ToolCallBlock) -> ToolOutcome:
            async with semaphore:
                return await self.execute(call, context)

        return list(await asyncio.gather(*(_bounded(call) for call in calls)))

    async def execute(self, call: ToolCallBlock, context: ToolContext) -> ToolOutcome:
        started_at = time.perf_counter()
        spec = self.registry.get(call.name)
        if spec is None:
            logger.warning(
                "tool_call event=not_found task_id=%s tool=%s call_id=%s",
                context.task_id,
                call.name,
                call.id,
            )
            return _error_outcome(call, f"Tool '{call.name}' not found")

        try:
            payload = spec.input_model.model_validate(call.input)
            if inspect.iscoroutinefunction(spec.fn):
                raw_output = await spec.fn(payload, context)
            else:
                # Blocking tools run off the event loop.
                raw_output = await asyncio.to_thread(spec.fn, payload, context)
            if inspect.isawaitable(raw_output):
                raw_output = await raw_output
            output_text = render_output(raw_output)
        except ValidationError as exc:
            logger.info(
                "tool_call event=invalid_input task_id=%s tool=%s call_id=%s errors=%d",
                context.task_id,
                call.name,
                call.id,
                exc.error_count(),
            )
            return _error_outcome(call, f"Invalid input for tool '{call.name}': {exc}")
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "tool_call event=failed task_id=%s tool=%s call_id=%s",
                context.task_id,
                call.name,
                call.id,
            )
            return _error_outcome(call, str(exc) or type(exc).__name__)

        logger.info(
            "tool_call event=completed task_id=%s tool=%s call_id=%s duration_ms=%.2f",
            context.task_id,
            call.name,
            call.id,
            (time.perf_counter() - started_at) * 1000.0,
        )
        return ToolOutcome(call_id=call.id, name=call.name, output_text=output_text)


def render_output(raw_output: Any) -> str:
    if isinstance(raw_output, str):
        return raw_output
    if isinstance(raw_output, BaseModel):
        return raw_output.model_dump_json(indent=2)
    return json.dumps(raw_output, indent=2, default=str)


def _error_outcome(call: ToolCallBlock, message: str) -> ToolOutcome:
    return ToolOutcome(
        call_id=call.id,
        name=call.name,
        output_text=json.dumps({"success": False, "error": message}),
        is_error=True,
    )
