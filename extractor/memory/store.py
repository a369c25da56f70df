"""
Durable backends for pattern memory.

Pattern memory persists a single JSON document keyed by data type and
selector. Backends only move that document in and out of storage; they
raise PatternStoreError and leave degradation to the caller.
"""

import asyncio
import json
from pathlib import Path
from typing import Any, Protocol

import redis.asyncio as redis

from extractor.config import PatternMemoryConfig, PatternStoreType
from extractor.exceptions import PatternStoreError
from extractor.utils import metrics


class PatternStore(Protocol):
    """Protocol defining the common interface for pattern stores."""

    @property
    def location(self) -> str:
        """Human-readable location for logs."""
        ...

    async def load(self) -> dict[str, Any] | None:
        """Load the memory document, or None when nothing is stored."""
        ...

    async def save(self, data: dict[str, Any]) -> None:
        """Replace the stored memory document."""
        ...

    async def clear(self) -> None:
        """Remove the stored memory document."""
        ...


class JSONFileStore:
    """Pattern memory kept in a JSON file on disk."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    @property
    def location(self) -> str:
        return str(self.path)

    async def load(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        try:
            raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
            data = json.loads(raw)
        except (OSError, ValueError) as e:
            metrics.STORE_OPERATIONS.labels(operation="load", status="error").inc()
            raise PatternStoreError("load", self.location, str(e)) from e
        metrics.STORE_OPERATIONS.labels(operation="load", status="success").inc()
        return data

    async def save(self, data: dict[str, Any]) -> None:
        try:
            payload = json.dumps(data, indent=2, default=str)
            await asyncio.to_thread(self._write, payload)
        except (OSError, TypeError, ValueError) as e:
            metrics.STORE_OPERATIONS.labels(operation="save", status="error").inc()
            raise PatternStoreError("save", self.location, str(e)) from e
        metrics.STORE_OPERATIONS.labels(operation="save", status="success").inc()

    async def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise PatternStoreError("clear", self.location, str(e)) from e

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(self.path)


class RedisPatternStore:
    """Pattern memory kept under a single Redis key."""

    def __init__(self, redis_client: redis.Redis, key: str = "extractor:pattern_memory"):
        self.redis = redis_client
        self.key = key

    @property
    def location(self) -> str:
        return f"redis:{self.key}"

    async def load(self) -> dict[str, Any] | None:
        try:
            raw = await self.redis.get(self.key)
        except redis.RedisError as e:
            metrics.STORE_OPERATIONS.labels(operation="load", status="error").inc()
            raise PatternStoreError("load", self.location, str(e)) from e

        metrics.STORE_OPERATIONS.labels(operation="load", status="success").inc()
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise PatternStoreError("load", self.location, str(e)) from e

    async def save(self, data: dict[str, Any]) -> None:
        try:
            await self.redis.set(self.key, json.dumps(data, default=str))
        except (redis.RedisError, TypeError, ValueError) as e:
            metrics.STORE_OPERATIONS.labels(operation="save", status="error").inc()
            raise PatternStoreError("save", self.location, str(e)) from e
        metrics.STORE_OPERATIONS.labels(operation="save", status="success").inc()

    async def clear(self) -> None:
        try:
            await self.redis.delete(self.key)
        except redis.RedisError as e:
            raise PatternStoreError("clear", self.location, str(e)) from e


def create_pattern_store(
    config: PatternMemoryConfig,
    redis_client: redis.Redis | None = None,
) -> JSONFileStore | RedisPatternStore:
    """
    Create a pattern store based on configuration.

    Args:
        config: Pattern memory configuration.
        redis_client: Existing client; one is created from ``config.redis_url``
            when omitted and the Redis backend is selected.

    Returns:
        Configured store.

    Raises:
        ValueError: If store type is unknown.
    """
    if config.store_type == PatternStoreType.FILE:
        return JSONFileStore(config.path)

    elif config.store_type == PatternStoreType.REDIS:
        client = redis_client or redis.from_url(config.redis_url)
        return RedisPatternStore(client, key=config.redis_key)

    else:
        raise ValueError(f"Unknown pattern store type: {config.store_type}")
