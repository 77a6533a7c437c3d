"""
Idempotency keys for POSTs that must not run twice: lead creation from the CRM form and the
checkout purchase hook (a replayed purchase would pay the vendor's commission twice).

Results are kept in Redis under ``idem:<operation>:<key>``. When Redis cannot be reached the
store falls back to process memory for the rest of the process lifetime.
"""
from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Optional

import redis.asyncio as redis
from fastapi import Header

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


async def idempotency_key_header(
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key", max_length=128),
) -> Optional[str]:
    if not idempotency_key:
        return None
    return idempotency_key.strip() or None


class IdempotencyStore:
    def __init__(self, prefix: str = "idem") -> None:
        self.prefix = prefix
        self._redis: Optional[redis.Redis] = None
        self._redis_unavailable = False
        self._memory: dict[str, tuple[float, dict[str, Any]]] = {}
        self._memory_lock = asyncio.Lock()

    def key(self, operation: str, client_key: str) -> str:
        return f"{self.prefix}:{operation}:{client_key}"

    async def _get_redis(self) -> Optional[redis.Redis]:
        if self._redis_unavailable:
            return None
        if self._redis is None:
            try:
                self._redis = redis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
                await self._redis.ping()
            except (redis.RedisError, OSError) as exc:
                logger.warning("idempotency_redis_unavailable", error=str(exc))
                self._redis_unavailable = True
                self._redis = None
        return self._redis

    async def get(self, operation: str, client_key: str) -> Optional[dict[str, Any]]:
        """Stored result of an earlier call with the same key, if it has not expired."""
        key = self.key(operation, client_key)
        conn = await self._get_redis()
        if conn:
            raw = await conn.get(key)
            if raw:
                logger.info("idempotent_replay", operation=operation)
                return json.loads(raw)
            return None

        async with self._memory_lock:
            item = self._memory.get(key)
            if not item:
                return None
            expires_at, payload = item
            if expires_at <= time.time():
                del self._memory[key]
                return None
        logger.info("idempotent_replay", operation=operation)
        return payload

    async def remember(
        self,
        operation: str,
        client_key: str,
        result: dict[str, Any],
        ttl_seconds: Optional[int] = None,
    ) -> None:
        key = self.key(operation, client_key)
        ttl = ttl_seconds or settings.IDEMPOTENCY_TTL_SECONDS
        conn = await self._get_redis()
        if conn:
            await conn.setex(key, ttl, json.dumps(result, default=str))
            return

        async with self._memory_lock:
            self._memory[key] = (time.time() + ttl, result)


idempotency_store = IdempotencyStore()
