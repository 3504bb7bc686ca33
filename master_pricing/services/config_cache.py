"""Config cache and invalidation manager.

Keyed cache of resolved ServiceConfigs per (service_id, company_id). This
is the only component that mutates the cache map.

Per-key state machine: EMPTY -> LOADING -> CACHED -> (invalidate) -> EMPTY.

Coalescing: concurrent ``resolve`` calls on a cold key share one load.

Invalidation during a load: the in-flight load is detached. It still
answers the callers already waiting on it (they get the pre-invalidation
value) but can no longer populate the cache. Callers arriving after the
invalidation wait for the detached load to settle, then start exactly one
fresh load.

Changes made by other processes: a local save invalidates directly, but a
save made through another instance sharing the backend is only seen via
the backend's ``watch``. The watch callback (possibly on another thread)
marks the key stale; the mark is applied on the event loop, evicting the
entry and, when the key has subscribers, reloading and publishing the new
config. A TTL bounds staleness if a notification is ever missed.
"""

import asyncio
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

import structlog

from master_pricing.models.service_config import ServiceConfig
from master_pricing.services.broadcaster import (
    ChangeCallback,
    ConfigChangeBroadcaster,
    Unsubscribe,
)

logger = structlog.get_logger(__name__)

CacheKey = Tuple[str, str]
ConfigLoader = Callable[[str, str], Awaitable[ServiceConfig]]
ConfigWatcher = Callable[[str, str, Callable[[], None]], Callable[[], None]]


class CacheState(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    CACHED = "cached"


@dataclass(frozen=True)
class CacheEntry:
    """One authoritative cached config."""

    service_id: str
    company_id: str
    config: ServiceConfig
    last_modified: Optional[str]
    loaded_at: datetime
    expires_at: Optional[float] = None


class ConfigCacheManager:
    """Cache-or-load access to service configs.

    Args:
        loader: Coroutine function ``(service_id, company_id) -> ServiceConfig``,
            normally ``ConfigStore.get``.
        broadcaster: Change broadcaster used by ``subscribe``. A private one
            is created when omitted.
        watcher: ``(service_id, company_id, on_change) -> stop`` reporting
            changes written by other processes, normally ``backend.watch``.
            Registered once per key, when the key is first cached.
        ttl_seconds: Entries older than this are reloaded on the next
            ``resolve``. None or 0 keeps entries until invalidated.
        clock: Monotonic time source for the TTL.
    """

    def __init__(
        self,
        loader: ConfigLoader,
        broadcaster: Optional[ConfigChangeBroadcaster] = None,
        watcher: Optional[ConfigWatcher] = None,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self._loader = loader
        self.broadcaster = broadcaster or ConfigChangeBroadcaster()
        self._watcher = watcher
        self._ttl = ttl_seconds or None
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._inflight: Dict[CacheKey, asyncio.Task] = {}
        self._superseded: Dict[CacheKey, asyncio.Task] = {}
        self._generations: Dict[CacheKey, int] = {}
        self._watches: Dict[CacheKey, Callable[[], None]] = {}
        self._remote_changes: Set[CacheKey] = set()
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.load_count = 0

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def state(self, service_id: str, company_id: str) -> CacheState:
        key = (service_id, company_id)
        if key in self._entries:
            return CacheState.CACHED
        if key in self._inflight:
            return CacheState.LOADING
        return CacheState.EMPTY

    def entry(self, service_id: str, company_id: str) -> Optional[CacheEntry]:
        return self._entries.get((service_id, company_id))

    def keys(self) -> List[CacheKey]:
        return list(self._entries)

    def is_watching(self, service_id: str, company_id: str) -> bool:
        return (service_id, company_id) in self._watches

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def resolve(self, service_id: str, company_id: str) -> ServiceConfig:
        """Return the cached config, loading it on a miss.

        Raises:
            ConfigLoadFailure: If the load fails. The key is left EMPTY so a
                later call retries.
        """
        self._loop = asyncio.get_running_loop()
        self._apply_remote_changes()
        key = (service_id, company_id)
        while True:
            entry = self._entries.get(key)
            if entry is not None:
                if entry.expires_at is None or self._clock() < entry.expires_at:
                    logger.debug("config_cache_hit", service_id=service_id, company_id=company_id)
                    return entry.config
                logger.info("config_cache_expired", service_id=service_id, company_id=company_id)
                self.invalidate(service_id, company_id)
                continue

            task = self._inflight.get(key)
            if task is None:
                superseded = self._superseded.get(key)
                if superseded is not None and not superseded.done():
                    logger.debug(
                        "config_cache_waiting_for_superseded_load",
                        service_id=service_id,
                        company_id=company_id
                    )
                    await asyncio.wait({superseded})
                    continue
                task = self._start_load(key)
            else:
                logger.debug("config_cache_coalesced", service_id=service_id, company_id=company_id)

            # Shield so one cancelled waiter does not cancel the shared load.
            return await asyncio.shield(task)

    def invalidate(self, service_id: str, company_id: str) -> None:
        """Evict the key. Idempotent; safe on a key with no entry.

        Also drops a pending remote-change mark for the key: whatever the
        mark reported is covered by this eviction.
        """
        key = (service_id, company_id)
        with self._lock:
            self._remote_changes.discard(key)
        self._evict(key)

    def clear(self) -> None:
        """Invalidate every key."""
        for service_id, company_id in set(self._entries) | set(self._inflight):
            self.invalidate(service_id, company_id)

    def subscribe(self, service_id: str, company_id: str, on_change: ChangeCallback) -> Unsubscribe:
        """Subscribe to config changes for one key."""
        return self.broadcaster.subscribe(service_id, company_id, on_change)

    def mark_stale(self, service_id: str, company_id: str) -> None:
        """Record that the stored config changed outside this instance.

        Safe to call from any thread. The mark is applied on the event loop
        that last resolved through this cache, or on the next ``resolve``.
        """
        with self._lock:
            self._remote_changes.add((service_id, company_id))
        logger.info("config_marked_stale", service_id=service_id, company_id=company_id)
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._apply_remote_changes)

    def close(self) -> None:
        """Stop every backend watch. Cached entries are kept."""
        watches, self._watches = self._watches, {}
        for stop in watches.values():
            stop()
        logger.info("config_cache_closed", watches=len(watches))

    # -------------------------------------------------------------------------
    # Remote changes
    # -------------------------------------------------------------------------

    def _apply_remote_changes(self) -> None:
        with self._lock:
            changed = list(self._remote_changes)
            self._remote_changes.clear()
        for key in changed:
            self._refresh(key)

    def _refresh(self, key: CacheKey) -> None:
        service_id, company_id = key
        previous = self._entries.get(key)
        self._evict(key)
        if previous is None or self.broadcaster.subscriber_count(service_id, company_id) == 0:
            return
        logger.info("config_remote_change_reloading", service_id=service_id, company_id=company_id)
        task = self._start_load(key)
        task.add_done_callback(lambda done: self._publish_reloaded(previous, done))

    def _publish_reloaded(self, previous: CacheEntry, task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is not None:
            return
        config = task.result()
        if config.last_modified == previous.last_modified:
            return
        self.broadcaster.publish(
            previous.service_id,
            previous.company_id,
            config,
            actor=config.modified_by
        )

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def _evict(self, key: CacheKey) -> None:
        service_id, company_id = key
        self._generations[key] = self._generations.get(key, 0) + 1
        removed = self._entries.pop(key, None)
        task = self._inflight.pop(key, None)
        if task is not None and not task.done():
            self._superseded[key] = task
        logger.info(
            "config_cache_invalidated",
            service_id=service_id,
            company_id=company_id,
            had_entry=removed is not None,
            load_superseded=task is not None
        )

    def _start_load(self, key: CacheKey) -> asyncio.Task:
        generation = self._generations.get(key, 0)
        self.load_count += 1
        task = asyncio.ensure_future(self._load(key, generation))
        task.add_done_callback(_retrieve_exception)
        self._inflight[key] = task
        return task

    async def _load(self, key: CacheKey, generation: int) -> ServiceConfig:
        service_id, company_id = key
        logger.info("config_cache_miss", service_id=service_id, company_id=company_id)
        try:
            config = await self._loader(service_id, company_id)
            if self._generations.get(key, 0) == generation:
                self._entries[key] = CacheEntry(
                    service_id=service_id,
                    company_id=company_id,
                    config=config,
                    last_modified=config.last_modified,
                    loaded_at=datetime.now(timezone.utc),
                    expires_at=self._clock() + self._ttl if self._ttl else None
                )
                logger.info(
                    "config_cached",
                    service_id=service_id,
                    company_id=company_id,
                    last_modified=config.last_modified
                )
                self._ensure_watch(key)
            else:
                logger.info("config_load_superseded", service_id=service_id, company_id=company_id)
            return config
        except Exception as e:
            logger.warning(
                "config_load_failed",
                service_id=service_id,
                company_id=company_id,
                error=str(e)
            )
            raise
        finally:
            current = asyncio.current_task()
            if self._inflight.get(key) is current:
                del self._inflight[key]
            if self._superseded.get(key) is current:
                del self._superseded[key]

    def _ensure_watch(self, key: CacheKey) -> None:
        if self._watcher is None or key in self._watches:
            return
        service_id, company_id = key
        try:
            self._watches[key] = self._watcher(
                service_id,
                company_id,
                lambda: self.mark_stale(service_id, company_id)
            )
        except Exception as e:
            # Without a watch the TTL is the only freshness bound for this key.
            logger.warning(
                "config_watch_failed",
                service_id=service_id,
                company_id=company_id,
                error=str(e)
            )


def _retrieve_exception(task: asyncio.Task) -> None:
    # Waiters see the error through the shield; this only marks it retrieved
    # when every waiter went away.
    if not task.cancelled():
        task.exception()
