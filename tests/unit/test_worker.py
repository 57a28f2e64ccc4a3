import asyncio

import pytest

from task_agent.agent.executor import AgentExecutor
from task_agent.jobs import AgentWorkerPool, InMemoryJobQueue, JobPayload, RetryPolicy
from task_agent.storage import InMemoryTaskTracker
from task_agent.tools.registry import ToolRegistry


def _payload(task_id: str = "task-1") -> JobPayload:
    return JobPayload(task_id=task_id, owner_id="user-1", instruction="list categories")


def _pool(client, queue, tracker, **kwargs) -> AgentWorkerPool:
    executor = AgentExecutor(completion_client=client, registry=ToolRegistry())
    return AgentWorkerPool(queue=queue, executor=executor, tracker=tracker, poll_timeout_s=0, **kwargs)


@pytest.mark.asyncio
async def test_successful_job_completes_task_and_job(scripted) -> None:
    queue = InMemoryJobQueue()
    tracker = InMemoryTaskTracker()
    pool = _pool(scripted([scripted.text("All done.")]), queue, tracker)

    await queue.enqueue(_payload())
    job, state = await pool.run_once()

    assert state == "completed"
    record = tracker.get("task-1")
    assert record.status == "completed"
    assert record.result == "All done."
    assert record.metadata.iterations == 1
    stored = await queue.get(job.job_id)
    assert stored.progress == "done"
    assert stored.result["result"] == "All done."


@pytest.mark.asyncio
async def test_task_fails_once_after_all_attempts(scripted) -> None:
    def explode(turns, index):
        raise RuntimeError("provider down")

    client = scripted(explode)
    queue = InMemoryJobQueue(retry_policy=RetryPolicy(max_retries=3, base_delay_s=0.0))
    tracker = InMemoryTaskTracker()
    pool = _pool(client, queue, tracker)

    await queue.enqueue(_payload())
    states = []
    while (outcome := await pool.run_once()) is not None:
        states.append(outcome[1])

    assert states == ["delayed", "delayed", "delayed", "failed"]
    assert len(client.calls) == 4
    record = tracker.get("task-1")
    assert record.status == "failed"
    assert record.error.code == "EXECUTION_ERROR"
    assert record.metadata.attempt_count == 3
    assert tracker.transitions["task-1"] == ["pending", "in_progress", "failed"]


@pytest.mark.asyncio
async def test_timed_out_attempts_retry_then_fail_with_timeout_code(scripted) -> None:
    client = scripted(lambda turns, index: scripted.text("too late"), delay_s=1.0)
    queue = InMemoryJobQueue(retry_policy=RetryPolicy(max_retries=3, base_delay_s=0.0))
    tracker = InMemoryTaskTracker()
    executor = AgentExecutor(completion_client=client, registry=ToolRegistry(), timeout_s=0.05)
    pool = AgentWorkerPool(queue=queue, executor=executor, tracker=tracker, poll_timeout_s=0)

    await queue.enqueue(_payload())
    states = []
    while (outcome := await pool.run_once()) is not None:
        states.append(outcome[1])

    assert states == ["delayed", "delayed", "delayed", "failed"]
    record = tracker.get("task-1")
    assert record.status == "failed"
    assert record.error.code == "TIMEOUT"
    assert record.metadata.attempt_count == 3
    stored = await queue.get("task-1")
    assert stored.state == "failed"
    assert "timed out" in stored.failed_reason


@pytest.mark.asyncio
async def test_duplicate_enqueue_runs_once(scripted) -> None:
    client = scripted([scripted.text("once")])
    queue = InMemoryJobQueue()
    tracker = InMemoryTaskTracker()
    pool = _pool(client, queue, tracker)

    await queue.enqueue(_payload())
    await queue.enqueue(_payload())
    while await pool.run_once() is not None:
        pass

    assert len(client.calls) == 1
    assert tracker.transitions["task-1"] == ["pending", "in_progress", "completed"]


@pytest.mark.asyncio
async def test_pool_drains_queue_and_stops(scripted) -> None:
    client = scripted([scripted.text("ok")])
    queue = InMemoryJobQueue()
    tracker = InMemoryTaskTracker()
    pool = _pool(client, queue, tracker, concurrency=2)
    pool.poll_timeout_s = 0.01

    for index in range(5):
        await queue.enqueue(_payload(f"task-{index}"))
    await pool.start()
    assert pool.running is True

    for _ in range(200):
        if (await queue.counts())["completed"] == 5:
            break
        await asyncio.sleep(0.01)
    await pool.stop()

    assert pool.running is False
    assert all(tracker.get(f"task-{index}").status == "completed" for index in range(5))
