"""
Dispatch of sync job ids from the API to the backup workers.

The job row in the database is the source of truth; the queue only carries
ids so a worker can wake up as soon as a record changes. Redis lists are used
in production, a plain list in tests and local runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)


class JobQueue(Protocol):
    def enqueue(self, job_id: str) -> None:
        ...

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        ...

    def depth(self) -> int:
        """Number of job ids waiting to be picked up."""
        ...


@dataclass
class InMemoryJobQueue:
    """FIFO of job ids; never blocks."""

    items: list[str] = field(default_factory=list)

    def enqueue(self, job_id: str) -> None:
        self.items.append(job_id)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        return self.items.pop(0) if self.items else None

    def depth(self) -> int:
        return len(self.items)


@dataclass
class RedisJobQueue:
    """Job ids pushed with RPUSH and taken with BLPOP/LPOP from one list key."""

    url: str
    queue_key: str = "paperflame:sync-jobs"

    def __post_init__(self):
        self.client = self._connect()

    def _connect(self) -> redis.Redis:
        return redis.Redis.from_url(self.url, decode_responses=True)

    def enqueue(self, job_id: str) -> None:
        self.client.rpush(self.queue_key, job_id)

    def dequeue(self, *, block: bool = True, timeout: int | None = None) -> Optional[str]:
        try:
            if not block:
                return self.client.lpop(self.queue_key)
            popped = self.client.blpop([self.queue_key], timeout=timeout or 0)
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections; treat as an empty poll.
            logger.warning("Redis connection lost, reconnecting to %s", self.queue_key)
            self.client = self._connect()
            return None
        return popped[1] if popped else None

    def depth(self) -> int:
        return int(self.client.llen(self.queue_key))
