"""
Typed event bus for cross-component signalling.

Design Considerations:
- Each event type is a distinct frozen dataclass with a fixed payload
- Every subscriber owns its queue and worker, so a slow subscriber never
  delays delivery to another one
- A subscriber may run several handlers at once (bounded by ``concurrency``),
  which is how the pipeline processes distinct emails concurrently
- Handler failures are logged and never stop the worker
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Type

from onebox.models import Email, EmailCategory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailReceived:
    email: Email


@dataclass(frozen=True)
class ConnectionLost:
    account_id: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class ConnectionRestored:
    account_id: str


@dataclass(frozen=True)
class EmailCategorized:
    email: Email
    category: EmailCategory


Handler = Callable[[Any], Awaitable[None]]


class Subscription:
    """One subscriber's queue, worker and in-flight handler tasks."""

    def __init__(self, name: str, event_type: Type, handler: Handler, concurrency: int):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.name = name
        self.event_type = event_type
        self.handler = handler
        self.concurrency = concurrency
        self.queue: asyncio.Queue = asyncio.Queue()
        self.worker: Optional[asyncio.Task] = None
        self.inflight: Set[asyncio.Task] = set()
        self._slots = asyncio.Semaphore(concurrency)

    @property
    def pending(self) -> int:
        return self.queue.qsize() + len(self.inflight)


class EventBus:
    """
    Delivers published events to per-subscriber queues.

    ``publish`` never blocks: it enqueues the event for every subscriber of
    that exact event type and returns the number of subscribers reached.
    Workers only run between ``start`` and ``stop``; events published before
    ``start`` wait in the queues.
    """

    def __init__(self):
        self._subscriptions: Dict[Type, List[Subscription]] = defaultdict(list)
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def subscribe(
        self,
        event_type: Type,
        handler: Handler,
        concurrency: int = 1,
        name: Optional[str] = None
    ) -> Subscription:
        """
        Register an async handler for one event type.

        Args:
            event_type: Event class to receive
            handler: Coroutine function called with each event
            concurrency: Maximum handler invocations running at once
            name: Subscriber name used in log messages

        Returns:
            The created subscription
        """
        subscription = Subscription(
            name=name or getattr(handler, "__qualname__", repr(handler)),
            event_type=event_type,
            handler=handler,
            concurrency=concurrency,
        )
        self._subscriptions[event_type].append(subscription)
        if self._running:
            self._start_worker(subscription)
        logger.debug(f"Subscribed {subscription.name} to {event_type.__name__}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscriptions = self._subscriptions.get(subscription.event_type, [])
        if subscription in subscriptions:
            subscriptions.remove(subscription)
        if subscription.worker:
            subscription.worker.cancel()

    def publish(self, event: Any) -> int:
        subscriptions = self._subscriptions.get(type(event), [])
        for subscription in subscriptions:
            subscription.queue.put_nowait(event)
        if not subscriptions:
            logger.debug(f"No subscribers for {type(event).__name__}")
        return len(subscriptions)

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        for subscriptions in self._subscriptions.values():
            for subscription in subscriptions:
                self._start_worker(subscription)
        logger.info("Event bus started")

    async def stop(self, drain: bool = True) -> None:
        """
        Stop all workers.

        Args:
            drain: Wait for queued and in-flight events to finish first
        """
        if not self._running:
            return
        all_subscriptions = [s for subs in self._subscriptions.values() for s in subs]

        if drain:
            await asyncio.gather(*(s.queue.join() for s in all_subscriptions))

        for subscription in all_subscriptions:
            if subscription.worker:
                subscription.worker.cancel()
        workers = [s.worker for s in all_subscriptions if s.worker]
        await asyncio.gather(*workers, return_exceptions=True)
        inflight = [task for s in all_subscriptions for task in s.inflight]
        await asyncio.gather(*inflight, return_exceptions=True)

        for subscription in all_subscriptions:
            subscription.worker = None
        self._running = False
        logger.info("Event bus stopped")

    def _start_worker(self, subscription: Subscription) -> None:
        subscription.worker = asyncio.create_task(
            self._worker(subscription),
            name=f"event-worker:{subscription.name}"
        )

    async def _worker(self, subscription: Subscription) -> None:
        while True:
            event = await subscription.queue.get()
            await subscription._slots.acquire()
            task = asyncio.create_task(self._dispatch(subscription, event))
            subscription.inflight.add(task)
            task.add_done_callback(subscription.inflight.discard)

    async def _dispatch(self, subscription: Subscription, event: Any) -> None:
        try:
            await subscription.handler(event)
        except Exception as e:
            logger.error(
                f"Subscriber {subscription.name} failed on {type(event).__name__}: {e}",
                exc_info=True
            )
        finally:
            subscription._slots.release()
            subscription.queue.task_done()
