"""Config change broadcaster.

In-process publish/subscribe for config changes, keyed by
(service_id, company_id). The config store publishes after every successful
save; pricing sessions subscribe to re-resolve and recompute.

Delivery rules:
- Sync callbacks run inline, async callbacks run as background tasks.
- A failing subscriber is logged and never blocks the others.
- ``unsubscribe`` is idempotent and safe to call during delivery; a
  subscriber removed mid-publish is not called for that publish if it has
  not been reached yet.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

import structlog

from master_pricing.models.service_config import ServiceConfig

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ConfigChangeEvent:
    """A persisted config change for one (service, company) pair."""

    service_id: str
    company_id: str
    config: ServiceConfig
    actor: Optional[str] = None
    changed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


ChangeCallback = Callable[[ConfigChangeEvent], Union[None, Awaitable[Any]]]
Unsubscribe = Callable[[], None]


@dataclass(eq=False)
class _Subscription:
    callback: ChangeCallback
    active: bool = True


class ConfigChangeBroadcaster:
    """Fans config change events out to per-key subscribers."""

    def __init__(self):
        self._subscribers: Dict[Tuple[str, str], List[_Subscription]] = {}
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, service_id: str, company_id: str, on_change: ChangeCallback) -> Unsubscribe:
        """Register ``on_change`` for one key.

        Returns:
            A function that removes the subscription. Calling it more than
            once is a no-op.
        """
        key = (service_id, company_id)
        subscription = _Subscription(callback=on_change)
        self._subscribers.setdefault(key, []).append(subscription)
        logger.debug("config_subscriber_added", service_id=service_id, company_id=company_id)

        def unsubscribe() -> None:
            if not subscription.active:
                return
            subscription.active = False
            subscribers = self._subscribers.get(key)
            if subscribers is None:
                return
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                del self._subscribers[key]
            logger.debug("config_subscriber_removed", service_id=service_id, company_id=company_id)

        return unsubscribe

    def subscriber_count(self, service_id: str, company_id: str) -> int:
        return len(self._subscribers.get((service_id, company_id), ()))

    def publish(
        self,
        service_id: str,
        company_id: str,
        config: ServiceConfig,
        actor: Optional[str] = None
    ) -> ConfigChangeEvent:
        """Deliver a change event to every current subscriber of the key.

        Must be called from inside a running event loop when any subscriber
        is a coroutine function.
        """
        event = ConfigChangeEvent(
            service_id=service_id,
            company_id=company_id,
            config=config,
            actor=actor
        )
        # Snapshot so subscribe/unsubscribe during delivery cannot skip or
        # repeat anyone.
        subscribers = list(self._subscribers.get((service_id, company_id), ()))
        delivered = 0

        for subscription in subscribers:
            if not subscription.active:
                continue
            try:
                result = subscription.callback(event)
            except Exception as e:
                logger.error(
                    "subscriber_failed",
                    service_id=service_id,
                    company_id=company_id,
                    error=str(e)
                )
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_task_done)
            delivered += 1

        logger.info(
            "config_change_published",
            service_id=service_id,
            company_id=company_id,
            actor=actor,
            subscribers=delivered
        )
        return event

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("subscriber_failed", error=str(error))

    async def drain(self) -> None:
        """Wait for all background subscriber tasks, including ones they schedule."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
            self._pending = {task for task in self._pending if not task.done()}

    @property
    def pending(self) -> int:
        return len(self._pending)
