from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable

from recruit_chat.client.backend import MessagingBackend, SubscriptionHandle
from recruit_chat.client.thread import MessageThreadController
from recruit_chat.core.errors import MessagingError
from recruit_chat.realtime.bus import ConversationSetFilter
from recruit_chat.schemas.message import MessagePublic

logger = logging.getLogger(__name__)


class CrossConversationNotifier:
    """Watches every conversation of a user for activity outside the open thread.

    Inbound messages elsewhere pull the thread over to their conversation;
    any activity elsewhere triggers ``refresh`` so list order and previews
    stay current. The live filter is a fixed id list, so a changed
    conversation set means tearing the subscription down and opening a new one.
    """

    def __init__(
        self,
        backend: MessagingBackend,
        user_id: int,
        thread: MessageThreadController,
        refresh: Callable[[], Awaitable[Any]],
        *,
        on_error: Callable[[MessagingError], None] | None = None,
    ) -> None:
        self._backend = backend
        self.user_id = user_id
        self._thread = thread
        self._refresh = refresh
        self._on_error = on_error
        self._subscription: SubscriptionHandle | None = None
        self._conversation_ids: frozenset[int] = frozenset()
        self._lock = asyncio.Lock()

    @property
    def conversation_ids(self) -> frozenset[int]:
        return self._conversation_ids

    @property
    def subscribed(self) -> bool:
        return self._subscription is not None

    async def start(self, conversation_ids: Iterable[int]) -> None:
        await self.update_conversations(conversation_ids, force=True)

    async def update_conversations(
        self, conversation_ids: Iterable[int], *, force: bool = False
    ) -> bool:
        """Resubscribe if the id set changed. Returns True when it did."""
        ids = frozenset(conversation_ids)
        async with self._lock:
            if not force and ids == self._conversation_ids:
                return False
            previous = self._subscription
            self._subscription = None
            self._conversation_ids = ids
            if previous is not None:
                await previous.close()
            if ids:
                self._subscription = await self._backend.subscribe(
                    ConversationSetFilter(ids), self._on_insert
                )
            logger.debug("Watching %d conversations for user %s", len(ids), self.user_id)
            return True

    async def close(self) -> None:
        async with self._lock:
            previous = self._subscription
            self._subscription = None
            self._conversation_ids = frozenset()
        if previous is not None:
            await previous.close()

    async def _on_insert(self, message: MessagePublic) -> None:
        if message.conversation_id == self._thread.conversation_id:
            return
        try:
            if message.sender_id != self.user_id:
                logger.info(
                    "New message in conversation %s, switching thread", message.conversation_id
                )
                await self._thread.select(message.conversation_id)
            await self._refresh()
        except MessagingError as exc:
            logger.warning(
                "Handling activity in conversation %s failed: %s", message.conversation_id, exc
            )
            if self._on_error is not None:
                self._on_error(exc)
