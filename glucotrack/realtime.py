"""Realtime change feed: the transport interface and an in-process hub."""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


class ChangeEvent(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


@dataclass(frozen=True)
class RowFilter:
    """Matches rows where ``column`` equals ``value``."""

    column: str
    value: str

    def matches(self, row: Dict[str, Any]) -> bool:
        return str(row.get(self.column)) == self.value


ChangeCallback = Callable[[ChangeEvent, Dict[str, Any]], None]


class RealtimeTransport(Protocol):
    async def subscribe(
        self, table: str, event: ChangeEvent, row_filter: RowFilter, callback: ChangeCallback
    ) -> Any:
        """Attach ``callback``; raises ``SubscriptionError`` when rejected."""
        ...

    async def unsubscribe(self, handle: Any) -> None:
        """Detach a handle; must tolerate handles that are already closed."""
        ...


@dataclass(eq=False)
class Subscription:
    table: str
    event: ChangeEvent
    row_filter: RowFilter
    callback: ChangeCallback
    loop: Optional[asyncio.AbstractEventLoop] = field(default=None, repr=False)
    active: bool = True


class LocalRealtimeHub:
    """In-process change feed used by the in-memory message store.

    Callbacks are scheduled on the subscriber's event loop, so rows published
    from worker threads are delivered on the loop like network pushes are.
    """

    def __init__(self) -> None:
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()

    @property
    def subscription_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    async def subscribe(
        self, table: str, event: ChangeEvent, row_filter: RowFilter, callback: ChangeCallback
    ) -> Subscription:
        subscription = Subscription(table, event, row_filter, callback, loop=asyncio.get_running_loop())
        with self._lock:
            self._subscriptions.append(subscription)
        logger.debug("Subscribed to %s %s where %s=%s", event.value, table, row_filter.column, row_filter.value)
        return subscription

    async def unsubscribe(self, handle: Any) -> None:
        if not isinstance(handle, Subscription) or not handle.active:
            return
        handle.active = False
        self._discard(handle)

    def publish(self, table: str, event: ChangeEvent, row: Dict[str, Any]) -> int:
        """Fan ``row`` out to matching subscriptions; returns how many were notified."""
        delivered = 0
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            if not subscription.active or subscription.table != table or subscription.event is not event:
                continue
            if not subscription.row_filter.matches(row):
                continue
            payload = dict(row)
            if subscription.loop is None:
                subscription.callback(event, payload)
            else:
                try:
                    subscription.loop.call_soon_threadsafe(subscription.callback, event, payload)
                except RuntimeError:
                    logger.debug("Dropping subscription whose event loop is closed")
                    subscription.active = False
                    self._discard(subscription)
                    continue
            delivered += 1
        return delivered

    def _discard(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)


__all__ = ["ChangeCallback", "ChangeEvent", "LocalRealtimeHub", "RealtimeTransport", "RowFilter", "Subscription"]
