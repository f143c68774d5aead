"""
Job Queue - Redis Backend.

============================================================
PURPOSE
============================================================
Durable queue kept in Redis.

KEYS (prefix = "<key_prefix>:<queue_name>"):
- <prefix>:job:<id>     job record (JSON string)
- <prefix>:wait         list of due job ids (FIFO)
- <prefix>:delayed      sorted set of job ids by due timestamp
- <prefix>:active       list of delivered, unfinished job ids
- <prefix>:completed    list of completed job ids (trimmed)
- <prefix>:failed       list of dead-lettered job ids

Every move of an id between lists runs in one WATCH/MULTI
transaction with the write of its job record. A crash or a
connection error leaves both as they were, and no job is
handed to two consumers.

============================================================
"""

import json
import logging
from datetime import datetime
from typing import Dict, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from core.exceptions import InvalidJobTransitionError, QueueUnavailableError

from ..config import QueueConfig
from ..models import JobState, QueueJob
from .base import QueueBackend


logger = logging.getLogger(__name__)


COMPLETED_HISTORY_LIMIT = 1000


class RedisQueueBackend(QueueBackend):
    """
    Queue backed by Redis lists and a sorted set.

    Usage:
        client = redis.Redis(host="127.0.0.1", port=6379, decode_responses=True)
        backend = RedisQueueBackend(client, "tx-queue")
    """

    def __init__(
        self,
        client: "redis.Redis",
        queue_name: str,
        key_prefix: str = "pipeline",
        completed_retention_seconds: int = 3600,
    ) -> None:
        super().__init__(queue_name)
        self._client = client
        self._prefix = f"{key_prefix}:{queue_name}"
        self._completed_retention = completed_retention_seconds

    @classmethod
    def from_config(cls, config: QueueConfig) -> "RedisQueueBackend":
        client = redis.Redis(
            host=config.redis_host,
            port=config.redis_port,
            password=config.redis_password,
            db=config.redis_db,
            decode_responses=True,
        )
        return cls(
            client,
            config.queue_name,
            key_prefix=config.key_prefix,
            completed_retention_seconds=config.completed_retention_seconds,
        )

    @property
    def name(self) -> str:
        return "redis"

    # =========================================================
    # KEYS
    # =========================================================

    def _job_key(self, job_id: str) -> str:
        return f"{self._prefix}:job:{job_id}"

    def _state_key(self, state: JobState) -> str:
        return {
            JobState.WAITING: f"{self._prefix}:wait",
            JobState.DELAYED: f"{self._prefix}:delayed",
            JobState.ACTIVE: f"{self._prefix}:active",
            JobState.COMPLETED: f"{self._prefix}:completed",
            JobState.FAILED: f"{self._prefix}:failed",
        }[state]

    def _unavailable(self, operation: str, error: Exception) -> QueueUnavailableError:
        logger.error(f"[redis_queue] {operation} failed on {self.queue_name}: {error}")
        return QueueUnavailableError(
            f"Redis error during {operation}: {error}",
            queue_name=self.queue_name,
            operation=operation,
            cause=error,
        )

    @staticmethod
    def _serialize(job: QueueJob) -> str:
        return json.dumps(job.to_dict(), separators=(",", ":"))

    async def _load(self, job_id: str) -> Optional[QueueJob]:
        raw = await self._client.get(self._job_key(job_id))
        if raw is None:
            return None
        return QueueJob.from_dict(json.loads(raw))

    # =========================================================
    # OPERATIONS
    # =========================================================

    async def add(self, job: QueueJob) -> None:
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.set(self._job_key(job.id), self._serialize(job))
                pipe.rpush(self._state_key(JobState.WAITING), job.id)
                await pipe.execute()
        except RedisError as e:
            raise self._unavailable("add", e)

    async def _promote_due(self, now: datetime) -> None:
        """Move every due delayed id to the wait list in one transaction."""
        delayed_key = self._state_key(JobState.DELAYED)
        wait_key = self._state_key(JobState.WAITING)
        async with self._client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(delayed_key)
                    due_ids = await pipe.zrangebyscore(delayed_key, "-inf", now.timestamp())
                    if not due_ids:
                        return
                    pipe.multi()
                    pipe.zrem(delayed_key, *due_ids)
                    pipe.rpush(wait_key, *due_ids)
                    await pipe.execute()
                    return
                except WatchError:
                    continue

    async def claim_next(self, now: datetime) -> Optional[QueueJob]:
        wait_key = self._state_key(JobState.WAITING)
        active_key = self._state_key(JobState.ACTIVE)
        try:
            await self._promote_due(now)
            async with self._client.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(wait_key)
                        job_id = await pipe.lindex(wait_key, 0)
                        if job_id is None:
                            return None

                        raw = await pipe.get(self._job_key(job_id))
                        job = QueueJob.from_dict(json.loads(raw)) if raw is not None else None

                        pipe.multi()
                        pipe.lrem(wait_key, 1, job_id)
                        if job is None or not self._state_machine.can_transition(job.state, JobState.ACTIVE):
                            logger.warning(f"[redis_queue] Dropping id {job_id} without a claimable job record")
                            await pipe.execute()
                            continue

                        # The id and the ACTIVE record are written together.
                        self._state_machine.transition(job, JobState.ACTIVE, now)
                        pipe.rpush(active_key, job.id)
                        pipe.set(self._job_key(job.id), self._serialize(job))
                        await pipe.execute()
                        return job
                    except WatchError:
                        continue
        except RedisError as e:
            raise self._unavailable("claim", e)

    async def _is_member(self, pipe, state: JobState, job_id: str) -> bool:
        key = self._state_key(state)
        if state == JobState.DELAYED:
            return await pipe.zscore(key, job_id) is not None
        return await pipe.lpos(key, job_id) is not None

    async def update(self, job: QueueJob, from_state: JobState) -> None:
        """
        Move the job id from the ``from_state`` list to the one of
        ``job.state`` and store the record, atomically.

        Raises:
            InvalidJobTransitionError: If the id is no longer listed
                under ``from_state``
        """
        from_key = self._state_key(from_state)
        to_key = self._state_key(job.state)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(from_key)
                        if not await self._is_member(pipe, from_state, job.id):
                            raise InvalidJobTransitionError(job.id, from_state.value, job.state.value)

                        pipe.multi()
                        if from_state == JobState.DELAYED:
                            pipe.zrem(from_key, job.id)
                        else:
                            pipe.lrem(from_key, 0, job.id)

                        if job.state == JobState.DELAYED:
                            pipe.zadd(to_key, {job.id: job.available_at.timestamp()})
                        elif job.state == JobState.COMPLETED:
                            pipe.lpush(to_key, job.id)
                            pipe.ltrim(to_key, 0, COMPLETED_HISTORY_LIMIT - 1)
                        elif job.state == JobState.FAILED:
                            pipe.lpush(to_key, job.id)
                        else:
                            pipe.rpush(to_key, job.id)

                        if job.state == JobState.COMPLETED:
                            pipe.set(self._job_key(job.id), self._serialize(job), ex=self._completed_retention)
                        else:
                            pipe.set(self._job_key(job.id), self._serialize(job))
                        await pipe.execute()
                        return
                    except WatchError:
                        continue
        except RedisError as e:
            raise self._unavailable("update", e)

    async def release_active(self, job_id: str) -> None:
        try:
            await self._client.lrem(self._state_key(JobState.ACTIVE), 0, job_id)
        except RedisError as e:
            raise self._unavailable("release", e)

    async def get(self, job_id: str) -> Optional[QueueJob]:
        try:
            return await self._load(job_id)
        except RedisError as e:
            raise self._unavailable("get", e)

    async def _jobs_for_ids(self, ids: List[str]) -> List[QueueJob]:
        if not ids:
            return []
        raws = await self._client.mget([self._job_key(i) for i in ids])
        return [QueueJob.from_dict(json.loads(raw)) for raw in raws if raw is not None]

    async def list_by_state(self, state: JobState, limit: int = 100) -> List[QueueJob]:
        key = self._state_key(state)
        try:
            if state == JobState.DELAYED:
                ids = await self._client.zrange(key, 0, limit - 1)
            else:
                ids = await self._client.lrange(key, 0, limit - 1)
            return await self._jobs_for_ids(list(ids))
        except RedisError as e:
            raise self._unavailable("list", e)

    async def list_active(self) -> List[QueueJob]:
        try:
            ids = await self._client.lrange(self._state_key(JobState.ACTIVE), 0, -1)
            return await self._jobs_for_ids(list(ids))
        except RedisError as e:
            raise self._unavailable("list", e)

    async def count_by_state(self) -> Dict[JobState, int]:
        try:
            counts = {}
            for state in JobState:
                key = self._state_key(state)
                if state == JobState.DELAYED:
                    counts[state] = await self._client.zcard(key)
                else:
                    counts[state] = await self._client.llen(key)
            return counts
        except RedisError as e:
            raise self._unavailable("count", e)

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except RedisError as e:
            raise self._unavailable("ping", e)

    async def close(self) -> None:
        await self._client.aclose()
