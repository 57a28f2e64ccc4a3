"""LangGraph assembly of the bounded tool-calling loop."""

from __future__ import annotations

import logging
from typing import Any

from langgraph.graph import END, StateGraph

from task_agent.agent.events import EventSink, StreamEvent
from task_agent.agent.state import AgentState
from task_agent.errors import ExecutionError, IterationLimitExceeded
from task_agent.llm.base import Completion, CompletionClient, StopReason, ToolResultBlock, Turn
from task_agent.tools.gateway import ToolExecutor

logger = logging.getLogger(__name__)

NO_TEXT_RESULT = "Task completed (no text output)"


async def emit(sink: EventSink | None, event: StreamEvent) -> None:
    if sink is not None:
        await sink.send(event)


def pending_completion(state: AgentState) -> Completion:
    """Return the model turn whose tool calls the tool round should run."""
    completion = state.get("last_completion")
    if completion is None:
        raise ExecutionError(
            "Tool round reached without a model completion",
            details={"task_id": state["context"].task_id},
        )
    return completion


def build_agent_graph(
    *,
    completion_client: CompletionClient,
    tool_executor: ToolExecutor,
    max_iterations: int = 20,
):
    declarations: list[dict[str, Any]] = tool_executor.registry.declarations()

    async def call_model(state: AgentState) -> dict[str, Any]:
        context = state["context"]
        model_calls = int(state.get("model_calls", 0))
        if model_calls >= max_iterations:
            raise IterationLimitExceeded(
                f"Agent exceeded maximum iterations ({max_iterations})",
                details={"task_id": context.task_id, "max_iterations": max_iterations},
            )

        completion = await completion_client.complete(
            state["turns"],
            declarations,
            system=state.get("system"),
        )
        logger.debug(
            "agent_loop event=model_response task_id=%s iteration=%d stop_reason=%s blocks=%d",
            context.task_id,
            model_calls + 1,
            completion.stop_reason.value,
            len(completion.content),
        )

        sink = state.get("sink")
        for text in completion.text_segments():
            await emit(sink, StreamEvent.thinking(text))
        for call in completion.tool_calls():
            await emit(sink, StreamEvent.tool_use(call.name, call.input))

        usage = state.get("token_usage")
        if completion.usage is not None:
            usage = completion.usage if usage is None else usage + completion.usage

        update: dict[str, Any] = {
            "model_calls": model_calls + 1,
            "last_completion": completion,
            "token_usage": usage,
            "stop_reason": completion.stop_reason.value,
        }
        if completion.stop_reason is StopReason.TOOL_USE and completion.tool_calls():
            return update

        if completion.stop_reason is StopReason.MAX_TOKENS:
            logger.warning("agent_loop event=max_tokens task_id=%s", context.task_id)
        segments = completion.text_segments()
        update["final_text"] = "\n\n".join(segments) if segments else NO_TEXT_RESULT
        return update

    async def run_tools(state: AgentState) -> dict[str, Any]:
        context = state["context"]
        sink = state.get("sink")
        completion = pending_completion(state)
        calls = completion.tool_calls()

        await emit(sink, StreamEvent.progress("Executing tools...", 50))
        outcomes = await tool_executor.execute_all(calls, context)
        for call, outcome in zip(calls, outcomes):
            await emit(
                sink,
                StreamEvent.tool_use(call.name, {"tool_id": call.id}, outcome.output_text),
            )

        results = [
            ToolResultBlock(call_id=o.call_id, content=o.output_text, is_error=o.is_error)
            for o in outcomes
        ]
        turns = [
            *state["turns"],
            Turn(role="assistant", content=list(completion.content)),
            Turn(role="user", content=results),
        ]
        return {
            "turns": turns,
            "tool_rounds": int(state.get("tool_rounds", 0)) + 1,
            "tools_used": int(state.get("tools_used", 0)) + len(calls),
        }

    def _route(state: AgentState) -> str:
        return "done" if state.get("final_text") is not None else "tools"

    graph = StateGraph(AgentState)

    graph.add_node("call_model", call_model)
    graph.add_node("run_tools", run_tools)

    graph.set_entry_point("call_model")
    graph.add_conditional_edges("call_model", _route, {"tools": "run_tools", "done": END})
    graph.add_edge("run_tools", "call_model")

    return graph.compile()


def recursion_limit_for(max_iterations: int) -> int:
    """Graph steps needed for ``max_iterations`` model calls plus the tool rounds between them."""
    return max_iterations * 2 + 5
