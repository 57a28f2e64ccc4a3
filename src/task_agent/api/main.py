"""FastAPI app entrypoint for task-agent."""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse

from task_agent.agent.events import EventSink, StreamEvent
from task_agent.agent.executor import AgentExecutor
from task_agent.api.schemas import (
    BatchQueuedResponse,
    BatchTaskRequest,
    QueuedTaskResponse,
    TaskListResponse,
    TaskRequest,
    TaskResultResponse,
    TaskStatusResponse,
    utc_now_iso,
)
from task_agent.config import configure_logging
from task_agent.config.settings import Settings, get_settings
from task_agent.errors import (
    AgentError,
    ServiceUnavailable,
    TaskAlreadyExists,
    TaskNotFound,
    error_payload,
)
from task_agent.jobs.base import JobQueue
from task_agent.jobs.models import JobPayload
from task_agent.jobs.redis_queue import RedisJobQueue
from task_agent.llm import build_completion_client
from task_agent.llm.base import CompletionClient
from task_agent.models import TaskError
from task_agent.storage.base import TaskTracker
from task_agent.storage.postgres import PostgresTaskTracker
from task_agent.streaming.manager import SSE_HEADERS, StreamingManager, format_sse
from task_agent.tools.loader import load_registry
from task_agent.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    tracker_override: TaskTracker | None,
    queue_override: JobQueue | None,
    completion_client: CompletionClient | None,
    registry: ToolRegistry | None,
) -> None:
    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "tracker"):
        database_url = settings.resolved_database_url()
        if tracker_override is None and not database_url:
            raise RuntimeError(
                "Missing database URL. Set TASK_AGENT_DATABASE_URL "
                "or DATABASE_URL before starting the app."
            )
        app.state.tracker = tracker_override or PostgresTaskTracker(database_url)
        app.state.tracker.migrate()

    if not hasattr(app.state, "job_queue"):
        app.state.job_queue = queue_override or RedisJobQueue.from_settings(settings)

    if not hasattr(app.state, "executor"):
        app.state.executor = AgentExecutor.from_settings(
            settings,
            completion_client=completion_client or build_completion_client(settings),
            registry=(
                registry if registry is not None else load_registry(settings.tool_registry_factory)
            ),
        )

    if not hasattr(app.state, "streaming"):
        app.state.streaming = StreamingManager(heartbeat_s=settings.stream_heartbeat_s)
        app.state.background_runs = set()


def _error_response(status_code: int, payload: dict[str, str]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": payload, "timestamp": utc_now_iso()},
    )


def create_app(
    *,
    tracker: TaskTracker | None = None,
    job_queue: JobQueue | None = None,
    completion_client: CompletionClient | None = None,
    registry: ToolRegistry | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    runtime_kwargs: dict[str, Any] = {
        "settings": settings,
        "tracker_override": tracker,
        "queue_override": job_queue,
        "completion_client": completion_client,
        "registry": registry,
    }

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.log_level)
        _ensure_runtime_state(app, **runtime_kwargs)
        await app.state.job_queue.connect()
        yield
        app.state.streaming.shutdown()
        await app.state.job_queue.close()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if tracker is not None and job_queue is not None and completion_client is not None:
        _ensure_runtime_state(app, **runtime_kwargs)

    def _state(request: Request) -> Any:
        if not hasattr(request.app.state, "streaming"):
            _ensure_runtime_state(request.app, **runtime_kwargs)
        return request.app.state

    @app.exception_handler(AgentError)
    async def agent_error_handler(_: Request, exc: AgentError) -> JSONResponse:
        return _error_response(exc.status_code, exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
        messages = [
            f"{'.'.join(str(part) for part in err.get('loc', ()) if part != 'body')}: {err.get('msg')}"
            for err in exc.errors()
        ]
        return _error_response(400, {"code": "VALIDATION_ERROR", "message": "; ".join(messages)})

    async def _run_tracked(
        state: Any,
        task_id: str,
        payload: TaskRequest,
        sink: EventSink | None = None,
    ) -> TaskResultResponse:
        task_tracker: TaskTracker = state.tracker
        await asyncio.to_thread(task_tracker.mark_running, task_id)
        try:
            result = await state.executor.execute(
                task_id,
                payload.owner_id,
                payload.instruction,
                conversation_id=payload.conversation_id(),
                metadata=payload.metadata(),
                sink=sink,
            )
        except Exception as exc:
            await asyncio.to_thread(
                task_tracker.mark_failed,
                task_id,
                TaskError(**error_payload(exc)),
                1,
            )
            raise
        metadata = result.task_metadata()
        await asyncio.to_thread(task_tracker.mark_completed, task_id, result.result, metadata)
        return TaskResultResponse(task_id=task_id, result=result.result, metadata=metadata)

    async def _create_fresh(state: Any, task_id: str, payload: TaskRequest) -> None:
        # Sync and stream runs only execute a task this request inserted.
        _, created = await asyncio.to_thread(
            state.tracker.try_create, task_id, payload.owner_id, payload.instruction
        )
        if not created:
            raise TaskAlreadyExists(task_id)

    async def _enqueue(state: Any, payload: TaskRequest) -> QueuedTaskResponse:
        task_id = payload.idempotency_key or str(uuid.uuid4())
        record, created = await asyncio.to_thread(
            state.tracker.try_create, task_id, payload.owner_id, payload.instruction
        )
        if record.owner_id != payload.owner_id:
            raise TaskAlreadyExists(task_id)
        if not created and record.status != "pending":
            # Already picked up by another path; a new job would run it twice.
            logger.info(
                "agent_api event=queue_skipped task_id=%s status=%s",
                task_id,
                record.status,
            )
            return QueuedTaskResponse(
                task_id=task_id,
                job_id=task_id,
                status=record.status,
                message="Task already exists; not queued again",
            )
        job = await state.job_queue.enqueue(
            JobPayload(
                task_id=task_id,
                owner_id=payload.owner_id,
                instruction=payload.instruction,
                conversation_id=payload.conversation_id(),
                metadata=payload.metadata(),
            )
        )
        logger.info(
            "agent_api event=queued task_id=%s owner_id=%s job_state=%s",
            task_id,
            payload.owner_id,
            job.state,
        )
        return QueuedTaskResponse(task_id=task_id, job_id=job.job_id, status=record.status)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    @app.get("/agent/health")
    async def agent_health(request: Request) -> JSONResponse:
        try:
            state = _state(request)
            await state.job_queue.connect()
            queue_counts = await state.job_queue.counts()
        except Exception as exc:
            logger.warning("agent_api event=health_degraded error=%s", exc)
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unhealthy",
                    "service": "agent",
                    "error": str(exc),
                    "timestamp": utc_now_iso(),
                },
            )
        return JSONResponse(
            content={
                "status": "healthy",
                "service": "agent",
                "tools": len(state.executor.registry),
                "queue": queue_counts,
                "streams": state.streaming.connection_count,
                "timestamp": utc_now_iso(),
            }
        )

    @app.get("/tools")
    def tools(request: Request) -> dict[str, list[str]]:
        return {"tools": _state(request).executor.registry.names()}

    @app.post("/agent/task", response_model=TaskResultResponse)
    async def execute_task(payload: TaskRequest, request: Request) -> TaskResultResponse:
        state = _state(request)
        task_id = payload.idempotency_key or str(uuid.uuid4())
        await _create_fresh(state, task_id, payload)
        return await _run_tracked(state, task_id, payload)

    @app.post("/agent/task/stream")
    async def stream_task(payload: TaskRequest, request: Request) -> StreamingResponse:
        state = _state(request)
        task_id = payload.idempotency_key or str(uuid.uuid4())
        # Attach before the task exists so a refused stream leaves nothing pending.
        try:
            session = state.streaming.attach(task_id)
        except ValueError as exc:
            raise TaskAlreadyExists(task_id) from exc
        except RuntimeError as exc:
            raise ServiceUnavailable("Server is shutting down") from exc
        try:
            await _create_fresh(state, task_id, payload)
        except Exception:
            session.close()
            raise

        async def _run() -> None:
            try:
                await _run_tracked(state, task_id, payload, sink=session)
            except AgentError:
                # Already delivered as the terminal error event and recorded as failed.
                return
            except Exception as exc:
                logger.exception("agent_api event=stream_run_failed task_id=%s", task_id)
                await session.send(StreamEvent.error(**error_payload(exc)))

        # The run outlives the response if the client disconnects.
        run = asyncio.create_task(_run(), name=f"agent-stream-{task_id}")
        state.background_runs.add(run)
        run.add_done_callback(state.background_runs.discard)

        async def _event_stream():
            try:
                async for event in session:
                    yield format_sse(event)
                    if await request.is_disconnected():
                        session.mark_disconnected()
                        break
            finally:
                if not session.closed:
                    session.mark_disconnected()

        return StreamingResponse(
            _event_stream(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.post("/agent/task/queue", status_code=202, response_model=QueuedTaskResponse)
    async def queue_task(payload: TaskRequest, request: Request) -> QueuedTaskResponse:
        state = _state(request)
        await state.job_queue.connect()
        return await _enqueue(state, payload)

    @app.post("/agent/task/queue/batch", status_code=202, response_model=BatchQueuedResponse)
    async def queue_batch(payload: BatchTaskRequest, request: Request) -> BatchQueuedResponse:
        state = _state(request)
        await state.job_queue.connect()
        queued = [await _enqueue(state, item) for item in payload.tasks]
        return BatchQueuedResponse(count=len(queued), tasks=queued)

    @app.get("/agent/task/{task_id}", response_model=TaskStatusResponse)
    async def get_task(
        task_id: str,
        request: Request,
        owner_id: str | None = Query(default=None),
    ) -> TaskStatusResponse:
        state = _state(request)
        record = await asyncio.to_thread(state.tracker.get, task_id)
        if record is None or (owner_id is not None and record.owner_id != owner_id):
            raise TaskNotFound(task_id)

        progress = None
        if not record.is_terminal:
            await state.job_queue.connect()
            job = await state.job_queue.get(task_id)
            progress = job.progress if job is not None else None
        return TaskStatusResponse.from_record(record, progress=progress)

    @app.get("/agent/tasks", response_model=TaskListResponse)
    async def list_tasks(
        request: Request,
        owner_id: str = Query(min_length=1),
        limit: int = Query(default=50, ge=1, le=200),
    ) -> TaskListResponse:
        state = _state(request)
        records = await asyncio.to_thread(state.tracker.list_tasks, owner_id, limit)
        items = [TaskStatusResponse.from_record(record) for record in records]
        return TaskListResponse(count=len(items), tasks=items)

    return app


app = create_app()
