from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session, sessionmaker

from recruit_chat.realtime.bus import EventFilter, Handler, LiveEventBus, Subscription
from recruit_chat.schemas.conversation import ConversationSummary
from recruit_chat.schemas.message import MessagePublic
from recruit_chat.services import aggregator
from recruit_chat.services import conversations as conversation_service
from recruit_chat.services import messages as message_service


class SubscriptionHandle(ABC):
    """Cancellation token for a live subscription."""

    @abstractmethod
    async def close(self) -> None:
        """Release the subscription. Must be idempotent."""


class MessagingBackend(ABC):
    """Store, resolver and live bus capabilities consumed by a client session."""

    @abstractmethod
    async def get_or_create_conversation(self, user_a: int, user_b: int) -> int:
        """Return the one conversation id for the unordered pair."""

    @abstractmethod
    async def append_message(
        self, conversation_id: int, sender_id: int, content: str
    ) -> MessagePublic:
        """Persist a message and return the server copy."""

    @abstractmethod
    async def load_history(self, conversation_id: int) -> list[MessagePublic]:
        """Messages of a conversation, oldest first."""

    @abstractmethod
    async def list_conversations(self, user_id: int) -> list[ConversationSummary]:
        """Conversation list for ``user_id``, most recent first."""

    @abstractmethod
    async def subscribe(self, event_filter: EventFilter, handler: Handler) -> SubscriptionHandle:
        """Register ``handler`` for inserts matching ``event_filter``."""

    async def aclose(self) -> None:
        """Release transport resources."""


class BusSubscriptionHandle(SubscriptionHandle):
    def __init__(self, subscription: Subscription) -> None:
        self.subscription = subscription

    @property
    def closed(self) -> bool:
        return self.subscription.closed

    async def close(self) -> None:
        self.subscription.close()


class LocalBackend(MessagingBackend):
    """Runs the store services in-process against a session factory and bus.

    Database work happens on the threadpool so the event loop stays free while
    a query is in flight.
    """

    def __init__(self, session_factory: sessionmaker, bus: LiveEventBus) -> None:
        self._session_factory = session_factory
        self.bus = bus

    async def _run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        def call() -> Any:
            db: Session
            with self._session_factory() as db:
                return fn(db, *args, **kwargs)

        return await run_in_threadpool(call)

    async def get_or_create_conversation(self, user_a: int, user_b: int) -> int:
        return await self._run(conversation_service.get_or_create_conversation, user_a, user_b)

    async def append_message(
        self, conversation_id: int, sender_id: int, content: str
    ) -> MessagePublic:
        return await self._run(
            message_service.append_message, conversation_id, sender_id, content, bus=self.bus
        )

    async def load_history(self, conversation_id: int) -> list[MessagePublic]:
        return await self._run(message_service.load_history, conversation_id)

    async def list_conversations(self, user_id: int) -> list[ConversationSummary]:
        return await self._run(aggregator.list_conversations, user_id)

    async def subscribe(self, event_filter: EventFilter, handler: Handler) -> SubscriptionHandle:
        return BusSubscriptionHandle(self.bus.subscribe(event_filter, handler))
