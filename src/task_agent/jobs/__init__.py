"""Durable task queue and worker pool."""

from task_agent.jobs.base import JobQueue
from task_agent.jobs.memory import InMemoryJobQueue
from task_agent.jobs.models import PROGRESS_STEPS, Job, JobPayload, JobState, RetryPolicy
from task_agent.jobs.rate_limit import SlidingWindowRateLimiter
from task_agent.jobs.redis_queue import RedisJobQueue
from task_agent.jobs.worker import AgentWorkerPool

__all__ = [
    "PROGRESS_STEPS",
    "AgentWorkerPool",
    "InMemoryJobQueue",
    "Job",
    "JobPayload",
    "JobQueue",
    "JobState",
    "RedisJobQueue",
    "RetryPolicy",
    "SlidingWindowRateLimiter",
]
