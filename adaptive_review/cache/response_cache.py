"""
Content-addressed cache in front of the content generator.

Keys are a SHA-256 over (serialized input, model, temperature), so identical
requests reuse identical output regardless of which learner asked. Every
failure inside the cache is logged and swallowed: caching is strictly an
optimization. Generator failures are not the cache's to handle and propagate.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timedelta
from typing import Any

from loguru import logger

from adaptive_review.generation.client import ContentGenerator
from adaptive_review.models import CacheEntry, TokenUsage, UsageRecord, utc_now
from adaptive_review.store.base import CacheStore

DEFAULT_TTL_HOURS = 24
DEFAULT_CLEANUP_HOURS = 168  # 7 days
DEFAULT_USAGE_DAYS = 7
DEFAULT_USAGE_LIMIT = 1000
MAX_USAGE_LIMIT = 5000


def serialize_payload(payload: Any) -> str:
    """Canonical text form of a request payload."""
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def make_cache_key(payload: Any, model: str, temperature: float) -> str:
    """Stable hex digest for (payload, model, temperature)."""
    key_data = f"{serialize_payload(payload)}:{model}:{float(temperature)!r}"
    return hashlib.sha256(key_data.encode("utf-8")).hexdigest()


class ResponseCache:
    """
    Cache generator responses with a lookup TTL and a longer cleanup horizon.

    Usage logging runs as background tasks; call ``drain()`` before shutdown
    to let them finish.
    """

    def __init__(
        self,
        store: CacheStore,
        ttl_hours: float = DEFAULT_TTL_HOURS,
        cleanup_hours: float = DEFAULT_CLEANUP_HOURS,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.ttl = timedelta(hours=ttl_hours)
        self.cleanup_hours = cleanup_hours
        self.clock = clock
        self._pending: set[asyncio.Task] = set()

    async def get(
        self,
        payload: Any,
        model: str,
        temperature: float,
    ) -> CacheEntry | None:
        """Cached entry younger than the TTL, else None (also None on any store failure)."""
        cache_key = make_cache_key(payload, model, temperature)
        try:
            entry = await self.store.fetch(cache_key, not_before=self.clock() - self.ttl)
        except Exception as e:  # cache failures never reach the caller
            logger.warning(f"Cache read failed, treating as miss: {e}")
            return None

        if entry is None:
            logger.debug(f"Cache miss {cache_key[:12]}")
        else:
            logger.debug(f"Cache hit {cache_key[:12]}")
        return entry

    async def set(
        self,
        payload: Any,
        response: str,
        model: str,
        temperature: float,
        usage: TokenUsage | None = None,
    ) -> None:
        """Store a response. Never raises."""
        entry = CacheEntry(
            cache_key=make_cache_key(payload, model, temperature),
            input_hash=make_cache_key(payload, "", 0),
            response=response,
            model=model,
            temperature=float(temperature),
            usage=usage,
            created_at=self.clock(),
        )
        try:
            await self.store.put(entry)
            logger.debug(f"Cached response {entry.cache_key[:12]} ({len(response)} chars)")
        except Exception as e:  # cache failures never reach the caller
            logger.warning(f"Cache write failed, continuing without cache: {e}")

    async def log_usage(
        self,
        model: str,
        operation: str,
        usage: TokenUsage,
        latency_ms: int | None = None,
    ) -> None:
        """Append a usage record. Never raises."""
        record = UsageRecord(
            model=model,
            operation=operation,
            usage=usage,
            latency_ms=latency_ms,
            created_at=self.clock(),
        )
        try:
            await self.store.log_usage(record)
        except Exception as e:  # cache failures never reach the caller
            logger.warning(f"Usage logging failed: {e}")

    async def usage(
        self,
        days: float | None = DEFAULT_USAGE_DAYS,
        operation: str | None = None,
        limit: int = DEFAULT_USAGE_LIMIT,
    ) -> list[UsageRecord]:
        """
        Logged usage, newest first.

        Args:
            days: Look back this many days (None for all time)
            operation: Only records of this operation (case-insensitive)
            limit: Maximum records, capped at 5000

        Returns:
            Usage records (empty on failure)
        """
        since = None if days is None else self.clock() - timedelta(days=days)
        operation = (operation or "").strip().lower() or None
        limit = max(1, min(limit, MAX_USAGE_LIMIT))
        try:
            return await self.store.load_usage(since=since, operation=operation, limit=limit)
        except Exception as e:  # cache failures never reach the caller
            logger.warning(f"Usage read failed: {e}")
            return []

    async def cleanup(self, older_than_hours: float | None = None) -> int:
        """
        Delete entries older than the horizon (default 7 days).

        Meant to run on a schedule outside the request path.

        Returns:
            Number of entries removed (0 on failure)
        """
        hours = self.cleanup_hours if older_than_hours is None else older_than_hours
        cutoff = self.clock() - timedelta(hours=hours)
        try:
            removed = await self.store.delete_older_than(cutoff)
        except Exception as e:  # cache failures never reach the caller
            logger.error(f"Cache cleanup failed: {e}")
            return 0

        logger.info(f"Cache cleanup removed {removed} entries older than {hours}h")
        return removed

    async def generate(
        self,
        generator: ContentGenerator,
        prompt: str,
        model: str,
        temperature: float,
        operation: str = "generate",
    ) -> str:
        """
        Return a cached response or call the generator and cache the result.

        Raises:
            GenerationError: If the generator fails (no retries here)
        """
        cached = await self.get(prompt, model, temperature)
        if cached is not None:
            return cached.response

        result = await generator.generate(prompt, model, temperature)
        await self.set(prompt, result.text, model, temperature, usage=result.usage)

        if result.usage is not None:
            self._spawn(self.log_usage(model, operation, result.usage, result.latency_ms))
        return result.text

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for background usage logging to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def usage_totals(records: Iterable[UsageRecord]) -> TokenUsage:
    """Sum token counts over usage records."""
    prompt = completion = total = 0
    for record in records:
        prompt += record.usage.prompt_tokens
        completion += record.usage.completion_tokens
        total += record.usage.total_tokens
    return TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=total)
