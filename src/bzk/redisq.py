# redisq.py
from __future__ import annotations

from typing import Optional

import redis


class JobQueue:
    """FIFO of job ids waiting for an orchestrator, kept in a Redis list."""

    def __init__(self, client: redis.Redis, name: str):
        self.client = client
        self.name = name

    @classmethod
    def from_url(cls, url: str, name: str) -> "JobQueue":
        return cls(redis.Redis.from_url(url, decode_responses=True), name)

    def enqueue(self, job_id: str) -> None:
        self.client.rpush(self.name, job_id)  # FIFO: push right

    def dequeue(self, timeout_s: int = 5) -> Optional[str]:
        item = self.client.blpop([self.name], timeout=timeout_s)  # FIFO: pop left
        if not item:
            return None
        _q, job_id = item
        return job_id
