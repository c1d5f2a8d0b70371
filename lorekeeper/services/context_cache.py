"""Provider-side context caches reused across chat turns.

One cache per (campaign, exact set of source handles). Entries live in a
``CacheStore`` and move through absent -> pending -> live -> absent:

* creation is single-flight per key; callers wait a bounded time and fall
  back to inline source material when the remote call is slow or fails,
* expiry is checked lazily on every turn and by ``sweep_expired``,
* a campaign whose source set changed drops its old entries before the
  new key is looked up, so a stale cache is never reused.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from lorekeeper.config import env_float, env_int, llm_provider
from lorekeeper.errors import CacheUnavailableError
from lorekeeper.memory.store import CacheEntry, CacheStore, InMemoryCacheStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SourceHandle:
    uri: str
    mime_type: str = "application/pdf"


def cache_key(campaign_id: int, handles: Iterable[str]) -> str:
    joined = "\n".join(sorted({h for h in handles if h}))
    digest = hashlib.sha256(joined.encode("utf-8")).hexdigest()
    return f"campaign:{int(campaign_id)}:{digest}"


class RemoteCacheProvider:
    """Contract for the provider side. The default reports caching as unsupported."""

    name = "none"

    async def create(self, sources: List[SourceHandle], ttl_seconds: int) -> str:
        raise CacheUnavailableError(f"context caching not supported by provider {self.name!r}")

    async def delete(self, handle: str) -> None:
        return None


class ContextCacheManager:
    def __init__(
        self,
        provider: Optional[RemoteCacheProvider] = None,
        store: Optional[CacheStore] = None,
        *,
        ttl_seconds: Optional[int] = None,
        safety_margin: Optional[int] = None,
        wait_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.provider = provider or RemoteCacheProvider()
        self.store = store or InMemoryCacheStore()
        self.ttl_seconds = max(1, ttl_seconds if ttl_seconds is not None else env_int("CACHE_TTL_SECONDS", 3600))
        margin = safety_margin if safety_margin is not None else env_int("CACHE_SAFETY_MARGIN_SECONDS", 100)
        # the local expiry must stay positive even with an odd configuration
        self.safety_margin = min(max(0, margin), self.ttl_seconds - 1)
        self.wait_seconds = max(0.0, wait_seconds if wait_seconds is not None else env_float("CACHE_WAIT_SECONDS", 2.0))
        self.clock = clock
        self._inflight: Dict[str, asyncio.Task] = {}
        # bumped by invalidate_campaign; creations started under an older value are discarded
        self._epochs: Dict[int, int] = {}

    @property
    def enabled(self) -> bool:
        return self.provider.name != "none"

    async def get_or_create(self, campaign_id: int, sources: Iterable[SourceHandle]) -> Optional[str]:
        """Remote handle to use for this turn, or None to send material inline."""
        unique: Dict[str, SourceHandle] = {}
        for src in sources:
            if src.uri and src.uri not in unique:
                unique[src.uri] = src
        if not unique:
            return None
        key = cache_key(campaign_id, unique.keys())
        await self._invalidate_other_keys(campaign_id, key)

        entry = self.store.get(key)
        if entry is not None:
            if entry.expired(self.clock()):
                await self._drop(entry, reason="expired")
            else:
                return entry.remote_handle

        task = self._inflight.get(key)
        if task is None:
            ordered = [unique[u] for u in sorted(unique)]
            epoch = self._epochs.get(int(campaign_id), 0)
            task = asyncio.create_task(self._create(key, campaign_id, ordered, epoch))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        try:
            created = await asyncio.wait_for(asyncio.shield(task), timeout=self.wait_seconds)
        except asyncio.TimeoutError:
            logger.info("cache: creation for %s still pending; sending sources inline this turn", key)
            return None
        return created.remote_handle if created is not None else None

    def pending(self, campaign_id: int, sources: Iterable[SourceHandle]) -> bool:
        return cache_key(campaign_id, (s.uri for s in sources)) in self._inflight

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    async def _create(self, key: str, campaign_id: int, sources: List[SourceHandle], epoch: int) -> Optional[CacheEntry]:
        try:
            handle = await self.provider.create(sources, self.ttl_seconds)
        except CacheUnavailableError as e:
            logger.info("cache: unavailable for %s: %s", key, e)
            return None
        except Exception as e:
            logger.warning("cache: creation failed for %s: %s", key, e)
            return None
        if not handle:
            return None
        if self._epochs.get(int(campaign_id), 0) != epoch:
            logger.info("cache: campaign %s invalidated while %s was being created; discarding", campaign_id, handle)
            await self._delete_remote(handle)
            return None
        entry = CacheEntry(
            cache_key=key,
            campaign_id=int(campaign_id),
            remote_handle=handle,
            expires_at=self.clock() + self.ttl_seconds - self.safety_margin,
        )
        self.store.put(entry)
        logger.info("cache: created %s for %s (%d sources)", handle, key, len(sources))
        return entry

    async def _delete_remote(self, handle: str) -> None:
        try:
            await asyncio.wait_for(self.provider.delete(handle), timeout=max(self.wait_seconds, 1.0))
        except Exception as e:
            logger.info("cache: remote delete of %s failed (ignored): %s", handle, e)

    async def _drop(self, entry: CacheEntry, reason: str) -> None:
        current = self.store.get(entry.cache_key)
        if current is not None and current.remote_handle == entry.remote_handle:
            self.store.pop(entry.cache_key)
        logger.info("cache: dropping %s (%s)", entry.cache_key, reason)
        await self._delete_remote(entry.remote_handle)

    async def _invalidate_other_keys(self, campaign_id: int, key: str) -> None:
        for e in self.store.entries():
            if e.campaign_id == int(campaign_id) and e.cache_key != key:
                await self._drop(e, reason="source set changed")

    async def invalidate_campaign(self, campaign_id: int) -> int:
        """Drop the campaign's live entries; creations still in flight are discarded when they finish."""
        cid = int(campaign_id)
        self._epochs[cid] = self._epochs.get(cid, 0) + 1
        dropped = 0
        for e in self.store.entries():
            if e.campaign_id == int(campaign_id):
                await self._drop(e, reason="campaign invalidated")
                dropped += 1
        return dropped

    async def sweep_expired(self) -> int:
        now = self.clock()
        dropped = 0
        for e in self.store.entries():
            if e.expired(now):
                await self._drop(e, reason="expired")
                dropped += 1
        return dropped

    async def close(self) -> None:
        tasks = list(self._inflight.values())
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()


def default_cache_provider() -> RemoteCacheProvider:
    if llm_provider() == "gemini":
        from lorekeeper.services.providers.gemini import GeminiCacheProvider, is_configured
        if is_configured():
            return GeminiCacheProvider()
    return RemoteCacheProvider()


_manager: Optional[ContextCacheManager] = None


def get_cache_manager() -> ContextCacheManager:
    global _manager
    if _manager is None:
        _manager = ContextCacheManager(provider=default_cache_provider())
    return _manager


def reset_cache_manager(manager: Optional[ContextCacheManager] = None) -> None:
    global _manager
    _manager = manager
