"""Read-through cache for the upstream model directory with single-flight fetches."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from jimmygate.util.logger import get_logger

logger = get_logger("model_cache")


class ModelDirectoryCache:
    """Owns the cached model list and the one in-flight upstream fetch.

    The check TTL / join in-flight / start fetch sequence runs under ``_lock``;
    the fetch itself runs in a task shared by every caller that joined it.
    """

    def __init__(
        self,
        *,
        fetcher: Callable[[], Awaitable[Any]],
        ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetcher = fetcher
        self.ttl_seconds = max(0.0, float(ttl_seconds))
        self._clock = clock
        self._payload: Any = None
        self._fetched_at = 0.0
        self._inflight: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    def _is_fresh(self, now: float) -> bool:
        if self._payload is None or self.ttl_seconds <= 0:
            return False
        return now - self._fetched_at <= self.ttl_seconds

    async def _populate(self) -> Any:
        try:
            payload = await self._fetcher()
            self._payload = payload
            self._fetched_at = self._clock()
            logger.info("models cache populated ttl_seconds=%s", self.ttl_seconds)
            return payload
        except Exception as exc:
            logger.warning("models cache fetch failed error=%s", exc)
            raise
        finally:
            self._inflight = None

    async def get(self) -> Any:
        async with self._lock:
            if self._is_fresh(self._clock()):
                logger.debug("models cache hit")
                return self._payload
            if self._inflight is None:
                logger.debug("models cache miss, starting upstream fetch")
                self._inflight = asyncio.create_task(self._populate(), name="jimmygate-models-fetch")
            else:
                logger.debug("models cache miss, joining in-flight fetch")
            inflight = self._inflight
        # cancelling one caller leaves the shared fetch running
        return await asyncio.shield(inflight)

    async def get_by_id(self, model_id: str) -> dict[str, Any] | None:
        payload = await self.get()
        items = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(items, list):
            return None
        for item in items:
            if isinstance(item, dict) and item.get("id") == model_id:
                return item
        return None

    def invalidate(self) -> None:
        self._payload = None
        self._fetched_at = 0.0
