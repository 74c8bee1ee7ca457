from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, Iterator, Union

from recruit_chat.core.errors import SubscriptionError
from recruit_chat.schemas.message import MessagePublic

logger = logging.getLogger(__name__)

Handler = Callable[[MessagePublic], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class ConversationFilter:
    conversation_id: int

    def matches(self, message: MessagePublic) -> bool:
        return message.conversation_id == self.conversation_id


@dataclass(frozen=True)
class ConversationSetFilter:
    conversation_ids: frozenset[int]

    def __init__(self, conversation_ids: Iterable[int]) -> None:
        object.__setattr__(self, "conversation_ids", frozenset(conversation_ids))

    def matches(self, message: MessagePublic) -> bool:
        return message.conversation_id in self.conversation_ids


EventFilter = Union[ConversationFilter, ConversationSetFilter]


class Subscription:
    """A registered insert handler with its own delivery queue.

    Events are handed to the handler one at a time, in publish order, on the
    loop that created the subscription.
    """

    def __init__(
        self,
        bus: "LiveEventBus",
        subscription_id: int,
        event_filter: EventFilter,
        handler: Handler,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        self.id = subscription_id
        self.filter = event_filter
        self._bus = bus
        self._handler = handler
        self._loop = loop
        self._queue: asyncio.Queue[MessagePublic] = asyncio.Queue()
        self._closed = False
        self._handling = False
        self._task = loop.create_task(self._run(), name=f"live-subscription-{subscription_id}")

    @property
    def closed(self) -> bool:
        return self._closed

    def matches(self, message: MessagePublic) -> bool:
        return self.filter.matches(message)

    def close(self) -> None:
        """Stop delivery and release the subscription. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        self._bus._discard(self)
        # A handler in progress (possibly the caller) runs to completion; the
        # loop stops before the next event.
        if self._task.done() or self._handling or _current_task() is self._task:
            return
        self._task.cancel()

    def deliver(self, message: MessagePublic) -> None:
        if self._closed:
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, message)
        except RuntimeError:
            # Subscriber loop is gone
            logger.warning("Dropping subscription %s: event loop closed", self.id)
            self._closed = True
            self._bus._discard(self)

    async def _run(self) -> None:
        while not self._closed:
            message = await self._queue.get()
            if self._closed:
                return
            self._handling = True
            try:
                result = self._handler(message)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                error = SubscriptionError(
                    f"Handler for subscription {self.id} failed on message {message.id}"
                )
                logger.exception(error.detail)
                self._closed = True
                self._bus._discard(self)
                return
            finally:
                self._handling = False


class LiveEventBus:
    """Fans committed message inserts out to matching subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._registry_lock = threading.Lock()
        self._sequence_lock = threading.Lock()

    @property
    def subscription_count(self) -> int:
        with self._registry_lock:
            return len(self._subscriptions)

    def subscribe(self, event_filter: EventFilter, handler: Handler) -> Subscription:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError as exc:
            raise SubscriptionError("subscribe() must be called from a running event loop") from exc
        with self._registry_lock:
            subscription = Subscription(self, next(self._ids), event_filter, handler, loop)
            self._subscriptions[subscription.id] = subscription
        logger.debug("Opened subscription %s for %s", subscription.id, event_filter)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()

    def publish(self, message: MessagePublic) -> int:
        """Deliver ``message`` to every matching subscription; callable from any thread."""
        with self._registry_lock:
            targets = [s for s in self._subscriptions.values() if s.matches(message)]
        for subscription in targets:
            subscription.deliver(message)
        return len(targets)

    @contextmanager
    def sequenced(self) -> Iterator[None]:
        """Hold while committing and publishing so delivery follows commit order."""
        with self._sequence_lock:
            yield

    def close(self) -> None:
        with self._registry_lock:
            subscriptions = list(self._subscriptions.values())
        for subscription in subscriptions:
            subscription.close()

    def _discard(self, subscription: Subscription) -> None:
        with self._registry_lock:
            if self._subscriptions.get(subscription.id) is subscription:
                del self._subscriptions[subscription.id]
        logger.debug("Closed subscription %s", subscription.id)


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
