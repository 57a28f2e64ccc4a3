"""Agent executor: runs one task through the tool-calling graph under a deadline."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from langgraph.errors import GraphRecursionError

from task_agent.agent.events import EventSink, StreamEvent
from task_agent.agent.graph import build_agent_graph, emit, recursion_limit_for
from task_agent.agent.state import initial_state
from task_agent.config.settings import DEFAULT_SYSTEM_PROMPT, Settings
from task_agent.errors import (
    AgentError,
    ExecutionError,
    ExecutionTimeout,
    IterationLimitExceeded,
)
from task_agent.llm.base import CompletionClient
from task_agent.models import ExecutionResult
from task_agent.tools.gateway import ToolExecutor
from task_agent.tools.registry import ToolContext, ToolRegistry

logger = logging.getLogger(__name__)


class AgentExecutor:
    """Drive a completion client and a tool registry until the model stops asking for tools.

    The executor is stateless across calls; one instance is safe to share between
    concurrent tasks as long as the completion client and tools are.
    """

    def __init__(
        self,
        *,
        completion_client: CompletionClient,
        registry: ToolRegistry,
        max_iterations: int = 20,
        timeout_s: float = 120.0,
        tool_max_concurrency: int = 4,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.completion_client = completion_client
        self.registry = registry
        self.max_iterations = max_iterations
        self.timeout_s = timeout_s
        self.system_prompt = system_prompt
        self.tool_executor = ToolExecutor(registry=registry, max_concurrency=tool_max_concurrency)
        self.workflow = build_agent_graph(
            completion_client=completion_client,
            tool_executor=self.tool_executor,
            max_iterations=max_iterations,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        completion_client: CompletionClient,
        registry: ToolRegistry,
    ) -> AgentExecutor:
        return cls(
            completion_client=completion_client,
            registry=registry,
            max_iterations=settings.agent_max_iterations,
            timeout_s=settings.agent_timeout_s,
            tool_max_concurrency=settings.tool_max_concurrency,
            system_prompt=settings.system_prompt,
        )

    async def execute(
        self,
        task_id: str,
        owner_id: str,
        instruction: str,
        conversation_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        sink: EventSink | None = None,
    ) -> ExecutionResult:
        started_at = time.perf_counter()
        context = ToolContext(
            owner_id=owner_id,
            task_id=task_id,
            conversation_id=conversation_id,
            metadata=dict(metadata or {}),
        )
        logger.info(
            "agent_task event=started task_id=%s owner_id=%s instruction=%s",
            task_id,
            owner_id,
            instruction[:100],
        )
        await emit(sink, StreamEvent.progress("Starting task execution...", 0))

        state = initial_state(
            context,
            instruction,
            system=self._system_prompt_for(context.metadata),
            sink=sink,
        )
        try:
            final_state = await asyncio.wait_for(
                self.workflow.ainvoke(
                    state,
                    config={"recursion_limit": recursion_limit_for(self.max_iterations)},
                ),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError:
            timeout_ms = int(self.timeout_s * 1000)
            error: AgentError = ExecutionTimeout(
                f"Agent execution timed out after {timeout_ms}ms",
                details={"task_id": task_id, "timeout_ms": timeout_ms},
            )
            await self._report_failure(error, task_id, owner_id, started_at, sink)
            raise error from None
        except GraphRecursionError as exc:
            error = IterationLimitExceeded(
                f"Agent exceeded maximum iterations ({self.max_iterations})",
                details={"task_id": task_id, "max_iterations": self.max_iterations},
            )
            await self._report_failure(error, task_id, owner_id, started_at, sink)
            raise error from exc
        except AgentError as exc:
            await self._report_failure(exc, task_id, owner_id, started_at, sink)
            raise
        except Exception as exc:
            error = ExecutionError(
                f"Agent task execution failed: {exc}",
                details={"task_id": task_id},
            )
            await self._report_failure(error, task_id, owner_id, started_at, sink)
            raise error from exc

        result = ExecutionResult(
            task_id=task_id,
            result=str(final_state.get("final_text") or ""),
            tools_used=int(final_state.get("tools_used", 0)),
            iterations=max(1, int(final_state.get("tool_rounds", 0))),
            duration_ms=_elapsed_ms(started_at),
            token_usage=final_state.get("token_usage"),
        )
        logger.info(
            "agent_task event=completed task_id=%s owner_id=%s iterations=%d tools_used=%d "
            "duration_ms=%d stop_reason=%s",
            task_id,
            owner_id,
            result.iterations,
            result.tools_used,
            result.duration_ms,
            final_state.get("stop_reason"),
        )
        await emit(
            sink,
            StreamEvent.complete(
                {
                    "task_id": task_id,
                    "result": result.result,
                    "metadata": result.task_metadata().model_dump(exclude_none=True),
                }
            ),
        )
        return result

    def _system_prompt_for(self, metadata: dict[str, Any]) -> str:
        extra = metadata.get("additional_instructions")
        if isinstance(extra, str) and extra.strip():
            return f"{self.system_prompt}\n\nAdditional instructions:\n{extra.strip()}"
        return self.system_prompt

    @staticmethod
    async def _report_failure(
        error: AgentError,
        task_id: str,
        owner_id: str,
        started_at: float,
        sink: EventSink | None,
    ) -> None:
        logger.error(
            "agent_task event=failed task_id=%s owner_id=%s code=%s duration_ms=%d message=%s",
            task_id,
            owner_id,
            error.code,
            _elapsed_ms(started_at),
            error.message,
        )
        await emit(sink, StreamEvent.error(error.code, error.message))


def _elapsed_ms(started_at: float) -> int:
    return int((time.perf_counter() - started_at) * 1000)
