"""
Progress Cache

Low-latency store for the latest AnalysisProgress of each run, keyed by run
id. The analysis engine is the only writer; pollers only read. Entries are
deleted when a run reaches a terminal state.

Two backends:
- InMemoryProgressCache: single process
- RedisProgressCache: shared across processes, with TTL as a safety net
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class ProgressCache(ABC):
    """Interface for the per-run progress cache."""

    @abstractmethod
    async def get(self, run_id: str) -> Optional[Dict[str, Any]]:
        """Latest progress record for a run, or None."""

    @abstractmethod
    async def set(self, run_id: str, progress: Dict[str, Any]) -> bool:
        """Store the latest progress record (last write wins)."""

    @abstractmethod
    async def delete(self, run_id: str) -> bool:
        """Drop a run's entry."""

    async def close(self):
        """Release backend resources."""


class InMemoryProgressCache(ProgressCache):
    """Process-local progress cache."""

    def __init__(self):
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, run_id: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            entry = self._entries.get(run_id)
            return dict(entry) if entry is not None else None

    async def set(self, run_id: str, progress: Dict[str, Any]) -> bool:
        async with self._lock:
            self._entries[run_id] = dict(progress)
        return True

    async def delete(self, run_id: str) -> bool:
        async with self._lock:
            return self._entries.pop(run_id, None) is not None

    def __len__(self) -> int:
        return len(self._entries)


class RedisProgressCache(ProgressCache):
    """
    Redis-backed progress cache.

    Degrades gracefully: Redis errors are logged and reads return None.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        ttl_seconds: int = 3600,
        namespace: str = "linkscore:progress",
        client: Optional[Redis] = None,
    ):
        if client is None and not redis_url:
            raise ValueError("RedisProgressCache needs a redis_url or a client")

        self.ttl_seconds = ttl_seconds
        self.namespace = namespace
        self._redis = client or Redis.from_url(redis_url, decode_responses=True)

    def _make_key(self, run_id: str) -> str:
        """Create namespaced cache key."""
        return f"{self.namespace}:{run_id}"

    async def get(self, run_id: str) -> Optional[Dict[str, Any]]:
        try:
            data = await self._redis.get(self._make_key(run_id))
        except RedisError as e:
            logger.warning(f"Progress cache get failed for {run_id}: {e}")
            return None

        if data is None:
            return None

        try:
            return json.loads(data)
        except ValueError as e:
            logger.error(f"Corrupt progress entry for {run_id}: {e}")
            return None

    async def set(self, run_id: str, progress: Dict[str, Any]) -> bool:
        try:
            await self._redis.set(
                self._make_key(run_id),
                json.dumps(progress, default=str),
                ex=self.ttl_seconds,
            )
            return True
        except RedisError as e:
            logger.warning(f"Progress cache set failed for {run_id}: {e}")
            return False

    async def delete(self, run_id: str) -> bool:
        try:
            return bool(await self._redis.delete(self._make_key(run_id)))
        except RedisError as e:
            logger.warning(f"Progress cache delete failed for {run_id}: {e}")
            return False

    async def close(self):
        """Close the Redis connection."""
        await self._redis.aclose()
