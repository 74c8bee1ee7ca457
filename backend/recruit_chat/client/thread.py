from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import partial
from typing import Callable

from recruit_chat.client.backend import MessagingBackend, SubscriptionHandle
from recruit_chat.core.errors import MessagingError, ValidationError
from recruit_chat.realtime.bus import ConversationFilter
from recruit_chat.schemas.message import MessagePublic

logger = logging.getLogger(__name__)

TRANSIENT_ID_PREFIX = "temp-"
DEFAULT_RECONCILE_WINDOW = timedelta(seconds=30)


class ThreadState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LIVE = "live"


class EntryStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class ThreadEntry:
    """A displayed message: server-confirmed, or an optimistic local copy."""

    id: int | str
    conversation_id: int
    sender_id: int
    content: str
    created_at: datetime
    read_at: datetime | None = None
    status: EntryStatus = EntryStatus.CONFIRMED

    @property
    def transient(self) -> bool:
        return isinstance(self.id, str) and self.id.startswith(TRANSIENT_ID_PREFIX)

    @classmethod
    def from_message(cls, message: MessagePublic) -> "ThreadEntry":
        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            content=message.content,
            created_at=message.created_at,
            read_at=message.read_at,
        )


ChangeListener = Callable[["MessageThreadController"], None]


class MessageThreadController:
    """Displayed history and live subscription for the selected conversation.

    ``IDLE -> LOADING -> LIVE -> IDLE``. Every ``select`` bumps a generation
    counter; history loads and subscriptions issued for an older generation
    are discarded when they complete late.
    """

    def __init__(
        self,
        backend: MessagingBackend,
        user_id: int,
        *,
        reconcile_window: timedelta = DEFAULT_RECONCILE_WINDOW,
        on_change: ChangeListener | None = None,
    ) -> None:
        self._backend = backend
        self.user_id = user_id
        self.reconcile_window = reconcile_window
        self.state = ThreadState.IDLE
        self.conversation_id: int | None = None
        self._entries: list[ThreadEntry] = []
        self._subscription: SubscriptionHandle | None = None
        self._generation = 0
        self._listeners: list[ChangeListener] = [on_change] if on_change else []

    @property
    def messages(self) -> tuple[ThreadEntry, ...]:
        return tuple(self._entries)

    @property
    def has_subscription(self) -> bool:
        return self._subscription is not None

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    async def select(self, conversation_id: int) -> bool:
        """Switch to ``conversation_id``. Returns False if superseded mid-way."""
        self._generation += 1
        generation = self._generation
        previous = self._subscription
        self._subscription = None
        self.conversation_id = conversation_id
        self.state = ThreadState.LOADING
        self._entries = []
        self._notify()

        try:
            if previous is not None:
                await previous.close()
            history = await self._backend.load_history(conversation_id)
        except BaseException:
            # Cancellation included; never leave the thread stuck in LOADING
            if generation == self._generation:
                self._reset()
            raise
        if generation != self._generation:
            logger.debug("Discarding stale history for conversation %s", conversation_id)
            return False

        self._entries = [ThreadEntry.from_message(message) for message in history]
        self._notify()

        try:
            subscription = await self._backend.subscribe(
                ConversationFilter(conversation_id), partial(self._on_insert, generation)
            )
        except BaseException:
            if generation == self._generation:
                self._reset()
            raise
        if generation != self._generation:
            await subscription.close()
            return False

        self._subscription = subscription
        self.state = ThreadState.LIVE
        self._notify()
        return True

    async def deselect(self) -> None:
        self._generation += 1
        previous = self._subscription
        self._reset()
        if previous is not None:
            await previous.close()

    async def close(self) -> None:
        await self.deselect()

    async def send(self, text: str) -> ThreadEntry:
        """Optimistically display ``text`` and persist it.

        The pending entry is visible before the store call starts. On failure
        it stays visible, marked failed, and the error propagates.
        """
        if self.state is not ThreadState.LIVE or self.conversation_id is None:
            raise ValidationError("No live conversation selected")
        content = (text or "").strip()
        if not content:
            raise ValidationError("Message content cannot be empty")

        conversation_id = self.conversation_id
        generation = self._generation
        entry = ThreadEntry(
            id=f"{TRANSIENT_ID_PREFIX}{uuid.uuid4().hex}",
            conversation_id=conversation_id,
            sender_id=self.user_id,
            content=content,
            created_at=datetime.now(timezone.utc),
            status=EntryStatus.PENDING,
        )
        self._entries.append(entry)
        self._notify()

        try:
            message = await self._backend.append_message(conversation_id, self.user_id, content)
        except MessagingError as exc:
            entry.status = EntryStatus.FAILED
            logger.warning("Send to conversation %s failed: %s", conversation_id, exc)
            self._notify()
            raise

        if generation == self._generation:
            self._confirm(entry, message)
        return ThreadEntry.from_message(message)

    def _confirm(self, entry: ThreadEntry, message: MessagePublic) -> None:
        already_shown = self._index_of(message.id) is not None
        position = self._index_of(entry.id)
        if position is None:
            # Fallback matching already replaced it; maybe with another send's copy
            if not already_shown:
                self._entries.append(ThreadEntry.from_message(message))
        elif already_shown:
            del self._entries[position]
        else:
            self._entries[position] = ThreadEntry.from_message(message)
        self._notify()

    def _on_insert(self, generation: int, message: MessagePublic) -> None:
        if generation != self._generation or message.conversation_id != self.conversation_id:
            return
        if self._index_of(message.id) is not None:
            return

        if message.sender_id == self.user_id:
            position = self._match_pending(message)
            if position is not None:
                self._entries[position] = ThreadEntry.from_message(message)
                self._notify()
                return

        self._entries.append(ThreadEntry.from_message(message))
        self._notify()

    def _match_pending(self, message: MessagePublic) -> int | None:
        # Content + sender + time proximity; only used until the store call
        # returns the authoritative id.
        for position, entry in enumerate(self._entries):
            if (
                entry.transient
                and entry.status is EntryStatus.PENDING
                and entry.sender_id == message.sender_id
                and entry.content == message.content
                and abs(message.created_at - entry.created_at) <= self.reconcile_window
            ):
                return position
        return None

    def _index_of(self, entry_id: int | str) -> int | None:
        for position, entry in enumerate(self._entries):
            if entry.id == entry_id:
                return position
        return None

    def _reset(self) -> None:
        self._subscription = None
        self.conversation_id = None
        self.state = ThreadState.IDLE
        self._entries = []
        self._notify()

    def _notify(self) -> None:
        for listener in self._listeners:
            listener(self)
