from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest
from fastapi.testclient import TestClient

from task_agent.agent.events import StreamEvent
from task_agent.api.main import create_app
from task_agent.config.settings import Settings
from task_agent.jobs import InMemoryJobQueue, RetryPolicy
from task_agent.llm.base import Completion, StopReason, TextBlock, ToolCallBlock, Turn
from task_agent.models import TokenUsage
from task_agent.storage import InMemoryTaskTracker
from task_agent.tools.catalog import CatalogStore, build_catalog_registry
from task_agent.tools.schemas import Category, Question

Responder = Callable[[list[Turn], int], Completion]


class ScriptedCompletionClient:
    """Test double that replays completions and records every request."""

    def __init__(
        self,
        responses: list[Completion] | Responder,
        *,
        delay_s: float = 0.0,
    ) -> None:
        self._responses = responses
        self.delay_s = delay_s
        self.calls: list[list[Turn]] = []
        self.systems: list[str | None] = []
        self.tools: list[dict[str, Any]] = []

    async def complete(
        self,
        turns: list[Turn],
        tools: list[dict[str, Any]],
        *,
        system: str | None = None,
    ) -> Completion:
        index = len(self.calls)
        self.calls.append(list(turns))
        self.systems.append(system)
        self.tools = tools
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if callable(self._responses):
            return self._responses(turns, index)
        return self._responses[min(index, len(self._responses) - 1)]

    @staticmethod
    def text(*segments: str, stop_reason: StopReason = StopReason.END_TURN, tokens: int = 10) -> Completion:
        return Completion(
            content=[TextBlock(text=segment) for segment in segments],
            stop_reason=stop_reason,
            usage=TokenUsage(input=tokens, output=tokens, total=tokens * 2),
        )

    @staticmethod
    def tool_call(
        name: str,
        tool_input: dict[str, Any] | None = None,
        *,
        call_id: str = "call_1",
        preamble: str | None = None,
    ) -> Completion:
        content: list[Any] = []
        if preamble:
            content.append(TextBlock(text=preamble))
        content.append(ToolCallBlock(id=call_id, name=name, input=tool_input or {}))
        return Completion(
            content=content,
            stop_reason=StopReason.TOOL_USE,
            usage=TokenUsage(input=5, output=5, total=10),
        )


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[StreamEvent] = []

    async def send(self, event: StreamEvent) -> None:
        self.events.append(event)

    @property
    def kinds(self) -> list[str]:
        return [event.kind for event in self.events]


@pytest.fixture
def scripted() -> type[ScriptedCompletionClient]:
    return ScriptedCompletionClient


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def catalog_store() -> CatalogStore:
    store = CatalogStore()
    store.seed(
        "user-1",
        categories=[
            Category(id="cat-behavioral", name="Behavioral", order=0),
            Category(id="cat-technical", name="Technical", order=1),
        ],
        questions=[
            Question(
                id="q-1",
                question_text="Tell me about a time you resolved a conflict on your team",
                category_id="cat-behavioral",
                tags=["teamwork"],
            ),
            Question(
                id="q-2",
                question_text="Tell me about a time you resolved a conflict within your team",
                tags=["conflict"],
            ),
            Question(
                id="q-3",
                question_text="Explain how a hash map handles collisions",
                category_id="cat-technical",
                difficulty="Hard",
                tags=["data-structures"],
            ),
        ],
    )
    store.seed(
        "user-2",
        categories=[Category(id="cat-private", name="Private", order=0)],
    )
    return store


@pytest.fixture
def catalog_registry(catalog_store: CatalogStore):
    return build_catalog_registry(catalog_store)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        llm_provider="anthropic",
        anthropic_api_key="test-key",
        database_url="",
        stream_heartbeat_s=30.0,
        agent_timeout_s=5.0,
        _env_file=None,
    )


@pytest.fixture
def tracker() -> InMemoryTaskTracker:
    return InMemoryTaskTracker()


@pytest.fixture
def job_queue() -> InMemoryJobQueue:
    return InMemoryJobQueue(retry_policy=RetryPolicy(max_retries=3, base_delay_s=0.0))


@pytest.fixture
def make_client(tracker, job_queue, catalog_registry, settings):
    """Build a TestClient whose app runs against in-memory state and a scripted model."""

    def _make(completion_client: ScriptedCompletionClient) -> TestClient:
        app = create_app(
            tracker=tracker,
            job_queue=job_queue,
            completion_client=completion_client,
            registry=catalog_registry,
            settings_override=settings,
        )
        return TestClient(app)

    return _make


@pytest.fixture
def client(make_client):
    return make_client(ScriptedCompletionClient([ScriptedCompletionClient.text("Done.")]))
