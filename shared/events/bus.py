"""In-process broadcast channel for normalized events and connection changes."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

from shared.events.models import Event
from shared.logging.logger import get_logger

log = get_logger("events.bus")

Subscriber = Callable[[Event], Union[None, Awaitable[None]]]


class Subscription:
    """Handle returned by ``subscribe``; ``close`` is idempotent."""

    def __init__(self, bus: "EventBus", callback: Subscriber):
        self._bus = bus
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._bus._remove(self)


class EventBus:
    """
    Broadcast channel consumed by the presentation layer and command/plugin
    collaborators.

    - Publishing never raises; subscriber failures are logged
    - Coroutine subscribers are scheduled as tasks on the running loop
    - Subscribers are called in registration order
    """

    def __init__(self) -> None:
        self._subscriptions: List[Subscription] = []
        self._pending: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #

    def subscribe(self, callback: Subscriber) -> Subscription:
        subscription = Subscription(self, callback)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass

    # ------------------------------------------------------------------ #

    def publish(self, event: Event) -> None:
        log.debug(
            f"[{event.platform}] publish {event.kind} "
            f"(id={event.id}, account={event.originating_account_id})"
        )
        for subscription in list(self._subscriptions):
            try:
                result = subscription.callback(event)
                if inspect.isawaitable(result):
                    self._schedule(result)
            except Exception as e:
                log.warning(f"Event subscriber error ignored ({event.kind}): {e}")

    def _schedule(self, awaitable: Awaitable[None]) -> None:
        task = asyncio.ensure_future(awaitable)
        self._pending.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            log.warning(f"Async event subscriber error ignored: {exc}")

    async def drain(self) -> None:
        """Wait for scheduled async subscribers to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class ConnectionsChangedNotifier:
    """
    Coalesces bursts of status changes into a single callback per loop turn.

    Consumers re-read adapter state on notification; there is no per-field diff.
    """

    def __init__(self, callback: Optional[Callable[[], Any]] = None) -> None:
        self._callbacks: List[Callable[[], Any]] = []
        if callback:
            self._callbacks.append(callback)
        self._scheduled = False
        self.notifications = 0

    def add_listener(self, callback: Callable[[], Any]) -> None:
        self._callbacks.append(callback)

    def notify(self) -> None:
        if self._scheduled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._fire()
            return
        self._scheduled = True
        loop.call_soon(self._fire)

    def _fire(self) -> None:
        self._scheduled = False
        self.notifications += 1
        for callback in list(self._callbacks):
            try:
                callback()
            except Exception as e:
                log.warning(f"Connections-changed listener error ignored: {e}")


__all__ = ["EventBus", "Subscription", "ConnectionsChangedNotifier"]
