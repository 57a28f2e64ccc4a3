"""Redis-backed durable job queue.

Key layout under ``{prefix}:{name}``:
- ``job:{id}``: hash holding one job (payload JSON plus lifecycle fields)
- ``wait``: list of ready job ids (LPUSH in, BRPOP out)
- ``delayed``: sorted set of ids scored by next attempt time
- ``active``: sorted set of ids scored by lease expiry, for stall recovery
- ``completed`` / ``failed``: sorted sets scored by finish time, for retention
"""

from __future__ import annotations

import json
import logging
import math
import time
from collections.abc import Callable
from typing import Any

import redis.asyncio as redis
from redis.exceptions import WatchError

from task_agent.config.settings import Settings
from task_agent.jobs.models import Job, JobPayload, JobState, RetryPolicy

logger = logging.getLogger(__name__)

_OPTIONAL_FLOATS = ("processed_at", "finished_at", "next_attempt_at")


class RedisJobQueue:
    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        *,
        name: str = "agent-tasks",
        key_prefix: str = "task-agent",
        retry_policy: RetryPolicy | None = None,
        stall_timeout_s: float = 600.0,
        client: redis.Redis | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis_url = redis_url
        self.name = name
        self._base = f"{key_prefix}:{name}"
        self.retry_policy = retry_policy or RetryPolicy()
        self.stall_timeout_s = stall_timeout_s
        self._redis = client
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> RedisJobQueue:
        return cls(
            settings.redis_url,
            name=settings.queue_name,
            retry_policy=RetryPolicy(
                max_retries=settings.queue_max_retries,
                base_delay_s=settings.queue_backoff_base_s,
                max_delay_s=settings.queue_backoff_max_s,
            ),
            # A job is only presumed lost once it has outlived the executor deadline.
            stall_timeout_s=settings.agent_timeout_s * 2 + 60,
        )

    async def connect(self) -> None:
        if self._redis is None:
            self._redis = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("job_queue event=connected queue=%s", self.name)

    @property
    def client(self) -> redis.Redis:
        if self._redis is None:
            raise RuntimeError("Redis not connected. Call connect() first.")
        return self._redis

    def _key(self, *parts: str) -> str:
        return ":".join((self._base, *parts))

    async def enqueue(self, payload: JobPayload) -> Job:
        job_id = payload.task_id
        job_key = self._key("job", job_id)
        job = Job(
            job_id=job_id,
            payload=payload,
            max_attempts=self.retry_policy.max_attempts,
            created_at=self._clock(),
        )

        # WATCH makes the existence check and the write one step: the job hash
        # and its wait-list entry land together or not at all.
        async with self.client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(job_key)
                    raw = await pipe.hgetall(job_key)
                    if raw and "payload" in raw:
                        existing = _from_hash(job_id, raw)
                        logger.info(
                            "job_queue event=duplicate_enqueue job_id=%s state=%s",
                            job_id,
                            existing.state,
                        )
                        return existing
                    pipe.multi()
                    pipe.hset(job_key, mapping=_to_hash(job))
                    pipe.lpush(self._key("wait"), job_id)
                    await pipe.execute()
                    break
                except WatchError:
                    logger.debug("job_queue event=enqueue_retry job_id=%s", job_id)
                    continue
        logger.info("job_queue event=enqueued job_id=%s", job_id)
        return job

    async def dequeue(self, timeout_s: float = 1.0) -> Job | None:
        await self._promote_due()
        if timeout_s <= 0:
            job_id = await self.client.rpop(self._key("wait"))
            if job_id is None:
                return None
        else:
            # BRPOP treats 0 as "block forever"; always wait at least one second.
            item = await self.client.brpop([self._key("wait")], timeout=max(1, math.ceil(timeout_s)))
            if item is None:
                return None
            _, job_id = item

        now = self._clock()
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.hset(
                self._key("job", job_id),
                mapping={"state": "active", "processed_at": repr(now), "next_attempt_at": ""},
            )
            pipe.zadd(self._key("active"), {job_id: now + self.stall_timeout_s})
            await pipe.execute()

        job = await self.get(job_id)
        if job is None:
            logger.warning("job_queue event=missing_job job_id=%s", job_id)
            await self.client.zrem(self._key("active"), job_id)
        return job

    async def update_progress(self, job_id: str, progress: str) -> None:
        await self.client.hset(self._key("job", job_id), "progress", progress)

    async def complete(self, job: Job, result: dict[str, Any]) -> None:
        now = self._clock()
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.hset(
                self._key("job", job.job_id),
                mapping={
                    "state": "completed",
                    "result": json.dumps(result, default=str),
                    "attempts_made": str(job.attempts_made + 1),
                    "finished_at": repr(now),
                },
            )
            pipe.zrem(self._key("active"), job.job_id)
            pipe.zadd(self._key("completed"), {job.job_id: now})
            await pipe.execute()

    async def fail(self, job: Job, reason: str) -> JobState:
        attempts_made = job.attempts_made + 1
        now = self._clock()
        job_key = self._key("job", job.job_id)

        if attempts_made < job.max_attempts:
            delay = self.retry_policy.delay_for(attempts_made)
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(
                    job_key,
                    mapping={
                        "state": "delayed",
                        "attempts_made": str(attempts_made),
                        "failed_reason": reason,
                        "next_attempt_at": repr(now + delay),
                    },
                )
                pipe.zrem(self._key("active"), job.job_id)
                pipe.zadd(self._key("delayed"), {job.job_id: now + delay})
                await pipe.execute()
            logger.info(
                "job_queue event=retry_scheduled job_id=%s attempts_made=%d delay_s=%.3f",
                job.job_id,
                attempts_made,
                delay,
            )
            return "delayed"

        async with self.client.pipeline(transaction=True) as pipe:
            pipe.hset(
                job_key,
                mapping={
                    "state": "failed",
                    "attempts_made": str(attempts_made),
                    "failed_reason": reason,
                    "finished_at": repr(now),
                },
            )
            pipe.zrem(self._key("active"), job.job_id)
            pipe.zadd(self._key("failed"), {job.job_id: now})
            await pipe.execute()
        logger.warning("job_queue event=failed job_id=%s attempts_made=%d", job.job_id, attempts_made)
        return "failed"

    async def get(self, job_id: str) -> Job | None:
        raw = await self.client.hgetall(self._key("job", job_id))
        if not raw or "payload" not in raw:
            return None
        return _from_hash(job_id, raw)

    async def counts(self) -> dict[str, int]:
        async with self.client.pipeline(transaction=False) as pipe:
            pipe.llen(self._key("wait"))
            pipe.zcard(self._key("delayed"))
            pipe.zcard(self._key("active"))
            pipe.zcard(self._key("completed"))
            pipe.zcard(self._key("failed"))
            waiting, delayed, active, completed, failed = await pipe.execute()
        return {
            "waiting": int(waiting),
            "delayed": int(delayed),
            "active": int(active),
            "completed": int(completed),
            "failed": int(failed),
        }

    async def clean(self, keep_completed_s: float, keep_failed_s: float) -> int:
        now = self._clock()
        removed = 0
        for set_name, keep_s in (("completed", keep_completed_s), ("failed", keep_failed_s)):
            set_key = self._key(set_name)
            job_ids = await self.client.zrangebyscore(set_key, 0, now - keep_s)
            if not job_ids:
                continue
            async with self.client.pipeline(transaction=True) as pipe:
                for job_id in job_ids:
                    pipe.delete(self._key("job", job_id))
                pipe.zrem(set_key, *job_ids)
                await pipe.execute()
            removed += len(job_ids)
            logger.info("job_queue event=cleaned set=%s removed=%d", set_name, len(job_ids))
        return removed

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("job_queue event=disconnected queue=%s", self.name)

    async def _promote_due(self) -> None:
        now = self._clock()
        await self._requeue_from(self._key("delayed"), now, event="promoted")
        await self._requeue_from(self._key("active"), now, event="stalled_requeued")

    async def _requeue_from(self, set_key: str, now: float, *, event: str) -> None:
        job_ids = await self.client.zrangebyscore(set_key, 0, now)
        for job_id in job_ids:
            # ZREM decides which worker owns the move when several race.
            if not await self.client.zrem(set_key, job_id):
                continue
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.hset(self._key("job", job_id), "state", "waiting")
                pipe.lpush(self._key("wait"), job_id)
                await pipe.execute()
            if event == "stalled_requeued":
                logger.warning("job_queue event=%s job_id=%s", event, job_id)
            else:
                logger.debug("job_queue event=%s job_id=%s", event, job_id)


def _to_hash(job: Job) -> dict[str, str]:
    return {
        "payload": job.payload.model_dump_json(),
        "state": job.state,
        "attempts_made": str(job.attempts_made),
        "max_attempts": str(job.max_attempts),
        "progress": job.progress,
        "result": json.dumps(job.result) if job.result is not None else "",
        "failed_reason": job.failed_reason or "",
        "created_at": repr(job.created_at),
        "processed_at": repr(job.processed_at) if job.processed_at is not None else "",
        "finished_at": repr(job.finished_at) if job.finished_at is not None else "",
        "next_attempt_at": repr(job.next_attempt_at) if job.next_attempt_at is not None else "",
    }


def _from_hash(job_id: str, raw: dict[str, str]) -> Job:
    optional = {name: float(raw[name]) if raw.get(name) else None for name in _OPTIONAL_FLOATS}
    return Job(
        job_id=job_id,
        payload=JobPayload.model_validate_json(raw["payload"]),
        state=raw.get("state", "waiting"),
        attempts_made=int(raw.get("attempts_made") or 0),
        max_attempts=int(raw.get("max_attempts") or 1),
        progress=raw.get("progress") or "queued",
        result=json.loads(raw["result"]) if raw.get("result") else None,
        failed_reason=raw.get("failed_reason") or None,
        created_at=float(raw["created_at"]),
        **optional,
    )
