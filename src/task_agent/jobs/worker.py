"""Fixed-size worker pool that runs queued jobs through the agent executor."""

from __future__ import annotations

import asyncio
import logging

from task_agent.agent.executor import AgentExecutor
from task_agent.errors import error_payload
from task_agent.jobs.base import JobQueue
from task_agent.jobs.models import Job, JobState
from task_agent.jobs.rate_limit import SlidingWindowRateLimiter
from task_agent.models import TaskError
from task_agent.storage.base import TaskTracker

logger = logging.getLogger(__name__)

BROKER_ERROR_BACKOFF_S = 1.0


class AgentWorkerPool:
    """Pulls jobs with ``concurrency`` loops; every attempt failure feeds the retry policy.

    The tracker is only marked failed on the final attempt, with
    ``attempt_count`` equal to the attempts made before it.
    """

    def __init__(
        self,
        *,
        queue: JobQueue,
        executor: AgentExecutor,
        tracker: TaskTracker,
        concurrency: int = 3,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        poll_timeout_s: float = 1.0,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.queue = queue
        self.executor = executor
        self.tracker = tracker
        self.concurrency = concurrency
        self.rate_limiter = rate_limiter
        self.poll_timeout_s = poll_timeout_s
        self._stopping = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._worker_loop(index), name=f"agent-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info("agent_worker event=started concurrency=%d", self.concurrency)

    async def stop(self) -> None:
        """Stop pulling new jobs and wait for in-flight ones to finish."""
        self._stopping.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("agent_worker event=stopped")

    async def run_once(self, timeout_s: float | None = None) -> tuple[Job, JobState] | None:
        job = await self.queue.dequeue(self.poll_timeout_s if timeout_s is None else timeout_s)
        if job is None:
            return None
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire()
        return job, await self.process(job)

    async def process(self, job: Job) -> JobState:
        payload = job.payload
        logger.info(
            "agent_worker event=processing job_id=%s owner_id=%s attempt=%d max_attempts=%d",
            job.job_id,
            payload.owner_id,
            job.attempt_number,
            job.max_attempts,
        )
        try:
            await self.queue.update_progress(job.job_id, "starting")
            await asyncio.to_thread(
                self.tracker.create, payload.task_id, payload.owner_id, payload.instruction
            )
            await asyncio.to_thread(self.tracker.mark_running, payload.task_id)

            await self.queue.update_progress(job.job_id, "executing")
            result = await self.executor.execute(
                payload.task_id,
                payload.owner_id,
                payload.instruction,
                conversation_id=payload.conversation_id,
                metadata=payload.metadata,
            )

            await self.queue.update_progress(job.job_id, "finalizing")
            await asyncio.to_thread(
                self.tracker.mark_completed,
                payload.task_id,
                result.result,
                result.task_metadata(),
            )
        except Exception as exc:
            return await self._handle_failure(job, exc)

        await self.queue.complete(job, result.model_dump(mode="json"))
        await self.queue.update_progress(job.job_id, "done")
        logger.info(
            "agent_worker event=completed job_id=%s attempt=%d duration_ms=%d",
            job.job_id,
            job.attempt_number,
            result.duration_ms,
        )
        return "completed"

    async def _handle_failure(self, job: Job, exc: Exception) -> JobState:
        error = TaskError(**error_payload(exc))
        if job.is_final_attempt:
            await asyncio.to_thread(
                self.tracker.mark_failed,
                job.payload.task_id,
                error,
                job.attempts_made,
            )
        state = await self.queue.fail(job, error.message)
        logger.warning(
            "agent_worker event=attempt_failed job_id=%s attempt=%d code=%s next_state=%s",
            job.job_id,
            job.attempt_number,
            error.code,
            state,
        )
        return state

    async def _worker_loop(self, index: int) -> None:
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("agent_worker event=broker_error worker=%d", index)
                await asyncio.sleep(BROKER_ERROR_BACKOFF_S)
