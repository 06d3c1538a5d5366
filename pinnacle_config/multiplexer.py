"""Event subscription multiplexer.

Makes the single compositor connection behave like many independent event
streams. Each subscription owns a bounded queue drained by its own worker
task, so dispatch never waits on a handler and one slow handler cannot delay
delivery to other subscriptions or the resolution of pending calls.

Coroutine handlers are awaited on the worker task; plain callables run on a
bounded thread pool so a blocking handler never blocks the event loop.
"""

import asyncio
import functools
import inspect
import itertools
import logging
from concurrent.futures import Executor
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .models import Event
from .state import ClientStats

logger = logging.getLogger(__name__)

Handler = Callable[[Event], Union[Awaitable[None], None]]

_STOP = object()


class Subscription:
    """A standing registration for events of one category (optionally filtered)."""

    def __init__(
        self,
        subscription_id: int,
        category: str,
        handler: Handler,
        event_filter: Optional[str] = None,
        queue_size: int = 1024,
    ):
        self.id = subscription_id
        self.category = category
        self.filter = event_filter
        self.handler = handler
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.task: Optional[asyncio.Task] = None
        self.active = True
        self.delivered = 0

    def matches(self, event: Event) -> bool:
        if not self.active or event.category != self.category:
            return False
        return self.filter is None or self.filter == event.filter

    def __repr__(self) -> str:
        return f"Subscription(id={self.id}, category={self.category!r}, filter={self.filter!r}, active={self.active})"


class EventMultiplexer:
    """Routes server-pushed events to subscriptions by category and filter."""

    def __init__(
        self,
        executor: Optional[Executor] = None,
        queue_size: int = 1024,
        stats: Optional[ClientStats] = None,
    ):
        """Initialize multiplexer.

        Args:
            executor: Pool running synchronous handlers (default loop executor if None)
            queue_size: Per-subscription queue bound
            stats: Session statistics to update
        """
        self._executor = executor
        self._queue_size = queue_size
        self.stats = stats or ClientStats()
        self._ids = itertools.count(1)
        # category -> subscriptions in registration order
        self._table: Dict[str, List[Subscription]] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscriptions(self, category: Optional[str] = None) -> List[Subscription]:
        """Return live subscriptions, optionally for one category."""
        if category is not None:
            return list(self._table.get(category, []))
        return [sub for subs in self._table.values() for sub in subs]

    def subscribe(
        self,
        category: str,
        handler: Handler,
        event_filter: Optional[str] = None,
    ) -> Subscription:
        """Register interest in a category.

        Must be called from the event loop thread.

        Args:
            category: Event category (e.g. "input.keybind")
            handler: Coroutine function or plain callable taking an Event
            event_filter: Only deliver events carrying this filter (None = all)

        Returns:
            Subscription handle for unsubscribe()

        Raises:
            RuntimeError: If the multiplexer is closed
        """
        if self._closed:
            raise RuntimeError("Event multiplexer is closed")

        category = getattr(category, "value", category)
        subscription = Subscription(
            subscription_id=next(self._ids),
            category=category,
            handler=handler,
            event_filter=event_filter,
            queue_size=self._queue_size,
        )
        subscription.task = asyncio.get_running_loop().create_task(
            self._worker(subscription), name=f"pinnacle-sub-{subscription.id}-{category}"
        )
        self._table.setdefault(category, []).append(subscription)

        logger.debug(f"Subscribed {subscription}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove a subscription.

        Events queued but not yet started are discarded; a handler invocation
        already running completes normally. Idempotent.

        Returns:
            True if the subscription was live
        """
        subs = self._table.get(subscription.category, [])
        was_live = subscription.active
        subscription.active = False

        if subscription in subs:
            subs.remove(subscription)
            if not subs:
                self._table.pop(subscription.category, None)

        self._drain(subscription)
        try:
            subscription.queue.put_nowait(_STOP)
        except asyncio.QueueFull:
            pass

        if was_live:
            logger.debug(f"Unsubscribed {subscription}")
        return was_live

    def dispatch(self, event: Event) -> int:
        """Hand an event to every matching subscription, in registration order.

        Never waits for handlers.

        Returns:
            Number of subscriptions the event was handed to
        """
        if self._closed:
            return 0

        handed = 0
        for subscription in list(self._table.get(event.category, [])):
            if not subscription.matches(event):
                continue
            try:
                subscription.queue.put_nowait(event)
                handed += 1
            except asyncio.QueueFull:
                self.stats.increment("events_dropped")
                logger.warning(
                    f"Dropping {event.category} event for subscription {subscription.id}: "
                    f"handler queue full ({self._queue_size})"
                )

        if handed:
            self.stats.increment("events_dispatched")
        else:
            self.stats.increment("events_unrouted")
            logger.debug(f"No subscription for {event.category} event (filter={event.filter!r})")
        return handed

    async def close(self) -> None:
        """Remove every subscription and wait for the worker tasks.

        No handler starts after this returns.
        """
        if self._closed:
            return
        self._closed = True

        subscriptions = self.subscriptions()
        for subscription in subscriptions:
            self.unsubscribe(subscription)

        # A handler may trigger teardown itself; never wait on the calling task
        current = asyncio.current_task()
        tasks = [
            s.task for s in subscriptions
            if s.task is not None and not s.task.done() and s.task is not current
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.debug(f"Event multiplexer closed ({len(subscriptions)} subscriptions removed)")

    def _drain(self, subscription: Subscription) -> None:
        while True:
            try:
                subscription.queue.get_nowait()
            except asyncio.QueueEmpty:
                return

    async def _worker(self, subscription: Subscription) -> None:
        while True:
            event = await subscription.queue.get()
            if event is _STOP or not subscription.active:
                return
            await self._invoke(subscription, event)

    async def _invoke(self, subscription: Subscription, event: Event) -> None:
        handler = subscription.handler
        try:
            if is_async_handler(handler):
                await handler(event)
            else:
                loop = asyncio.get_running_loop()
                result = await loop.run_in_executor(self._executor, functools.partial(handler, event))
                if inspect.isawaitable(result):
                    await result
            subscription.delivered += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            self.stats.increment("handler_errors")
            logger.exception(
                f"Handler for {event.category} (subscription {subscription.id}) raised; "
                f"continuing dispatch"
            )


def is_async_handler(handler: Any) -> bool:
    target = handler.func if isinstance(handler, functools.partial) else handler
    return inspect.iscoroutinefunction(target) or inspect.iscoroutinefunction(
        getattr(target, "__call__", None)
    )
