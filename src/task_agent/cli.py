"""Command line entrypoints: queue worker and retention housekeeping."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from datetime import UTC, datetime, timedelta

from task_agent.agent.executor import AgentExecutor
from task_agent.config import configure_logging
from task_agent.config.settings import Settings, get_settings
from task_agent.jobs.rate_limit import SlidingWindowRateLimiter
from task_agent.jobs.redis_queue import RedisJobQueue
from task_agent.jobs.worker import AgentWorkerPool
from task_agent.llm import build_completion_client
from task_agent.storage.postgres import PostgresTaskTracker
from task_agent.tools.loader import load_registry
from task_agent.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="task-agent")
    parser.add_argument("--log-level", default=None, help="Override TASK_AGENT_LOG_LEVEL.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    worker = subparsers.add_parser("worker", help="Run the queue worker pool until interrupted.")
    worker.add_argument("--concurrency", type=int, default=None)
    worker.add_argument(
        "--registry-factory",
        default=None,
        help=(
            "module:callable returning the ToolRegistry. "
            "Overrides TASK_AGENT_TOOL_REGISTRY_FACTORY."
        ),
    )

    housekeeping = subparsers.add_parser(
        "housekeeping",
        help="Drop expired queue jobs and old finished task records.",
    )
    housekeeping.add_argument(
        "--task-retention-days",
        type=float,
        default=30.0,
        help="Delete completed/failed task records finished more than this many days ago.",
    )
    housekeeping.add_argument(
        "--skip-tasks",
        action="store_true",
        help="Only clean the queue; leave task records untouched.",
    )
    return parser


async def run_worker(
    settings: Settings,
    *,
    concurrency: int | None = None,
    registry: ToolRegistry | None = None,
) -> None:
    if registry is None:
        registry = load_registry(settings.tool_registry_factory)
    tracker = PostgresTaskTracker(settings.resolved_database_url())
    tracker.migrate()
    queue = RedisJobQueue.from_settings(settings)
    await queue.connect()

    executor = AgentExecutor.from_settings(
        settings,
        completion_client=build_completion_client(settings),
        registry=registry,
    )
    pool = AgentWorkerPool(
        queue=queue,
        executor=executor,
        tracker=tracker,
        concurrency=concurrency or settings.queue_concurrency,
        rate_limiter=SlidingWindowRateLimiter(
            settings.queue_rate_limit_max,
            settings.queue_rate_limit_window_s,
        ),
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await pool.start()
    try:
        await stop.wait()
        logger.info("agent_worker event=shutdown_requested")
    finally:
        await pool.stop()
        await queue.close()


async def run_housekeeping(
    settings: Settings,
    *,
    task_retention_days: float,
    skip_tasks: bool = False,
) -> dict[str, int]:
    queue = RedisJobQueue.from_settings(settings)
    await queue.connect()
    try:
        jobs_removed = await queue.clean(
            settings.queue_keep_completed_s,
            settings.queue_keep_failed_s,
        )
    finally:
        await queue.close()

    tasks_removed = 0
    if not skip_tasks:
        tracker = PostgresTaskTracker(settings.resolved_database_url())
        tracker.migrate()
        cutoff = datetime.now(UTC) - timedelta(days=task_retention_days)
        tasks_removed = await asyncio.to_thread(tracker.delete_finished_before, cutoff)

    logger.info(
        "housekeeping event=done jobs_removed=%d tasks_removed=%d",
        jobs_removed,
        tasks_removed,
    )
    return {"jobs_removed": jobs_removed, "tasks_removed": tasks_removed}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(args.log_level or settings.log_level)

    if args.command == "worker":
        if args.registry_factory:
            settings = settings.model_copy(update={"tool_registry_factory": args.registry_factory})
        asyncio.run(run_worker(settings, concurrency=args.concurrency))
        return 0
    if args.command == "housekeeping":
        summary = asyncio.run(
            run_housekeeping(
                settings,
                task_retention_days=args.task_retention_days,
                skip_tasks=args.skip_tasks,
            )
        )
        print(f"jobs_removed={summary['jobs_removed']} tasks_removed={summary['tasks_removed']}")
        return 0
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
