import fakeredis.aioredis
import pytest

from task_agent import cli
from task_agent.jobs import JobPayload, RedisJobQueue


def test_parser_requires_a_command() -> None:
    parser = cli.build_parser()

    with pytest.raises(SystemExit):
        parser.parse_args([])

    args = parser.parse_args(["housekeeping", "--task-retention-days", "7", "--skip-tasks"])
    assert args.command == "housekeeping"
    assert args.task_retention_days == 7.0
    assert args.skip_tasks is True


def test_worker_accepts_registry_factory() -> None:
    args = cli.build_parser().parse_args(
        ["worker", "--concurrency", "2", "--registry-factory", "acme.tools:build_registry"]
    )

    assert args.concurrency == 2
    assert args.registry_factory == "acme.tools:build_registry"
    assert cli.build_parser().parse_args(["worker"]).registry_factory is None


@pytest.mark.asyncio
async def test_housekeeping_cleans_expired_jobs(monkeypatch, settings) -> None:
    server = fakeredis.FakeServer()
    clock = [1_000.0]

    def _queue(_settings):
        return RedisJobQueue(
            name="housekeeping",
            client=fakeredis.aioredis.FakeRedis(server=server, decode_responses=True),
            clock=lambda: clock[0],
        )

    seeded = _queue(settings)
    await seeded.enqueue(JobPayload(task_id="old", owner_id="user-1", instruction="x"))
    job = await seeded.dequeue(timeout_s=0)
    await seeded.complete(job, {"result": "ok"})

    clock[0] += settings.queue_keep_completed_s + 1
    monkeypatch.setattr(cli.RedisJobQueue, "from_settings", staticmethod(_queue))

    summary = await cli.run_housekeeping(settings, task_retention_days=30, skip_tasks=True)

    assert summary == {"jobs_removed": 1, "tasks_removed": 0}
