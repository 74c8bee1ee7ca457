from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable

from recruit_chat.client.backend import MessagingBackend
from recruit_chat.client.notifier import CrossConversationNotifier
from recruit_chat.client.thread import (
    DEFAULT_RECONCILE_WINDOW,
    MessageThreadController,
    ThreadEntry,
)
from recruit_chat.core.errors import MessagingError
from recruit_chat.schemas.conversation import ConversationSummary

logger = logging.getLogger(__name__)


class MessagingSession:
    """One user's messages screen: conversation list, open thread, notifier.

    Holds at most one thread subscription and one all-conversations
    subscription; ``close`` releases both.
    """

    def __init__(
        self,
        backend: MessagingBackend,
        user_id: int,
        *,
        reconcile_window: timedelta = DEFAULT_RECONCILE_WINDOW,
        on_error: Callable[[MessagingError], None] | None = None,
    ) -> None:
        self.backend = backend
        self.user_id = user_id
        self.conversations: list[ConversationSummary] = []
        self.thread = MessageThreadController(
            backend, user_id, reconcile_window=reconcile_window
        )
        self.notifier = CrossConversationNotifier(
            backend, user_id, self.thread, self.refresh, on_error=on_error
        )
        self._started = False

    @property
    def conversation_ids(self) -> list[int]:
        return [summary.conversation.id for summary in self.conversations]

    def summary_for(self, conversation_id: int) -> ConversationSummary | None:
        for summary in self.conversations:
            if summary.conversation.id == conversation_id:
                return summary
        return None

    async def start(self) -> None:
        await self.refresh()
        if self.thread.conversation_id is None and self.conversations:
            await self.thread.select(self.conversations[0].conversation.id)
        await self.notifier.start(self.conversation_ids)
        self._started = True

    async def refresh(self) -> list[ConversationSummary]:
        self.conversations = await self.backend.list_conversations(self.user_id)
        if self._started:
            await self.notifier.update_conversations(self.conversation_ids)
        return self.conversations

    async def open_conversation_with(self, counterpart_id: int) -> int:
        conversation_id = await self.backend.get_or_create_conversation(
            self.user_id, counterpart_id
        )
        await self.refresh()
        await self.thread.select(conversation_id)
        return conversation_id

    async def select(self, conversation_id: int) -> bool:
        return await self.thread.select(conversation_id)

    async def send(self, text: str) -> ThreadEntry:
        entry = await self.thread.send(text)
        await self.refresh()
        return entry

    async def close(self) -> None:
        self._started = False
        await self.thread.close()
        await self.notifier.close()
        logger.debug("Messaging session for user %s closed", self.user_id)

    async def __aenter__(self) -> "MessagingSession":
        try:
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
