# services/fortune/ai_cache.py
"""
In-process cache for AI fortunes.

Entries are keyed per user, language, theme, line count and the client's local
date, and expire a fixed TTL after they are written. The map is bounded (LRU) and
guarded by an asyncio lock; a background sweeper drops expired entries so idle
keys do not pile up in long-running processes.
"""

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

HOUR_MS = 3600 * 1000


def epoch_ms() -> int:
    return int(time.time() * 1000)


def build_cache_key(user_id: str, lang: str, theme: str, lines: int, local_date: str) -> str:
    return f"{user_id}:{lang}:{theme}:{lines}:{local_date}"


@dataclass(frozen=True)
class CacheEntry:
    fortune: str
    expires_at_ms: int


class DailyFortuneCache:
    """LRU + TTL cache for generated fortunes"""

    def __init__(
        self,
        ttl_ms: int = 26 * HOUR_MS,
        max_entries: int = 10_000,
        clock: Optional[Callable[[], int]] = None,
    ):
        if ttl_ms <= 0:
            raise ValueError("ttl_ms must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")

        self.ttl_ms = ttl_ms
        self.max_entries = max_entries
        self.clock = clock or epoch_ms
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for key, or None if missing or expired."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            if entry.expires_at_ms <= self.clock():
                del self._entries[key]
                return None

            self._entries.move_to_end(key)
            return entry

    async def set(self, key: str, fortune: str) -> CacheEntry:
        """Store fortune under key, expiring ttl_ms from now."""
        entry = CacheEntry(fortune=fortune, expires_at_ms=self.clock() + self.ttl_ms)

        async with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)

            while len(self._entries) > self.max_entries:
                evicted_key, _ = self._entries.popitem(last=False)
                logger.debug(f"🗑️ AI_CACHE: Evicted {evicted_key.split(':', 1)[0][:8]}")

        return entry

    async def sweep_expired(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        async with self._lock:
            now = self.clock()
            expired = [k for k, entry in self._entries.items() if entry.expires_at_ms <= now]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.info(f"🧹 AI_CACHE: Swept {len(expired)} expired entries, {len(self)} remain")
        return len(expired)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()


class CacheSweeper:
    """Periodically removes expired entries from a DailyFortuneCache"""

    def __init__(self, cache: DailyFortuneCache, interval_seconds: float):
        self.cache = cache
        self.interval_seconds = interval_seconds
        self.is_running = False
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        """Start the sweeper as a background task"""
        if self.is_running or self.interval_seconds <= 0:
            return

        self.is_running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"🧹 AI_CACHE: Sweeper started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the sweeper and wait for the task to finish"""
        self.is_running = False
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("🧹 AI_CACHE: Sweeper stopped")

    async def _run(self) -> None:
        while self.is_running:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.cache.sweep_expired()
            except Exception as e:
                logger.error(f"❌ AI_CACHE: Sweep failed: {e}", exc_info=True)
