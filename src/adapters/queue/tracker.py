"""
Job tracker - notification queue metrics kept in Redis sorted sets.

Each job id lives in exactly one state set at a time:
``queue:{name}:{waiting|active|delayed|completed|failed}``, scored by the
time it entered that state. Completed and failed entries are pruned once
they are older than their retention. Parked (failed) jobs keep their
payload and last error in ``queue:{name}:failed:details`` for inspection.

Uses the synchronous redis client: it is called from Celery tasks, and
from the API through asyncio.to_thread.
"""

import json
import logging
import time
from collections.abc import Callable
from typing import Any

import redis
from redis.exceptions import RedisError

from src.domain.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

STATES = ("waiting", "active", "delayed", "completed", "failed")


class JobTracker:
    def __init__(
        self,
        client: redis.Redis,
        queue_name: str = "notifications",
        completed_retention_seconds: int = 3600,
        failed_retention_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._queue_name = queue_name
        self._retention = {
            "completed": completed_retention_seconds,
            "failed": failed_retention_seconds,
        }
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> "JobTracker":
        return cls(redis.Redis.from_url(url, decode_responses=True), **kwargs)

    def key(self, state: str) -> str:
        return f"queue:{self._queue_name}:{state}"

    @property
    def details_key(self) -> str:
        return f"{self.key('failed')}:details"

    def _move(self, job_id: str, state: str, details: dict[str, Any] | None = None) -> None:
        pipe = self._client.pipeline(transaction=True)
        for other in STATES:
            if other != state:
                pipe.zrem(self.key(other), job_id)
        pipe.zadd(self.key(state), {job_id: self._clock()})
        if details is not None:
            pipe.hset(self.details_key, job_id, json.dumps(details))
        pipe.execute()

    def _record(self, job_id: str, state: str, details: dict[str, Any] | None = None) -> None:
        # Metrics are best effort; a tracking failure never fails delivery
        try:
            self._move(job_id, state, details)
        except RedisError as e:
            logger.warning("Failed to record job %s as %s: %s", job_id, state, e)

    def mark_waiting(self, job_id: str) -> None:
        self._record(job_id, "waiting")

    def mark_active(self, job_id: str) -> None:
        self._record(job_id, "active")

    def mark_delayed(self, job_id: str) -> None:
        self._record(job_id, "delayed")

    def mark_completed(self, job_id: str) -> None:
        self._record(job_id, "completed")

    def mark_failed(self, job_id: str, payload: dict[str, Any], error: str) -> None:
        self._record(
            job_id,
            "failed",
            {"job_id": job_id, "payload": payload, "error": error, "failed_at": self._clock()},
        )

    def forget(self, job_id: str) -> None:
        try:
            pipe = self._client.pipeline(transaction=True)
            for state in STATES:
                pipe.zrem(self.key(state), job_id)
            pipe.hdel(self.details_key, job_id)
            pipe.execute()
        except RedisError as e:
            logger.warning("Failed to forget job %s: %s", job_id, e)

    def prune(self) -> int:
        """Drop completed/failed entries older than their retention."""
        now = self._clock()
        removed = 0
        for state, retention in self._retention.items():
            expired = self._client.zrangebyscore(self.key(state), "-inf", now - retention)
            if not expired:
                continue
            pipe = self._client.pipeline(transaction=True)
            pipe.zrem(self.key(state), *expired)
            if state == "failed":
                pipe.hdel(self.details_key, *expired)
            pipe.execute()
            removed += len(expired)
        return removed

    def counts(self) -> dict[str, int]:
        try:
            self.prune()
            pipe = self._client.pipeline(transaction=False)
            for state in STATES:
                pipe.zcard(self.key(state))
            values = pipe.execute()
        except RedisError as e:
            raise StoreUnavailable("Failed to read queue metrics") from e

        metrics = {state: int(value) for state, value in zip(STATES, values)}
        metrics["total"] = metrics["waiting"] + metrics["active"] + metrics["delayed"]
        return metrics

    def failed_jobs(self, limit: int = 50) -> list[dict[str, Any]]:
        try:
            job_ids = self._client.zrevrange(self.key("failed"), 0, limit - 1)
            if not job_ids:
                return []
            raw = self._client.hmget(self.details_key, job_ids)
        except RedisError as e:
            raise StoreUnavailable("Failed to read failed jobs") from e
        return [json.loads(item) for item in raw if item]
