from __future__ import annotations

import asyncio
import inspect
import itertools
import json
import logging
from typing import Any
from urllib.parse import urlencode

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException
from pydantic import TypeAdapter

from recruit_chat.client.backend import MessagingBackend, SubscriptionHandle
from recruit_chat.core.errors import (
    MessagingError,
    ResolutionFailed,
    StoreUnavailable,
    SubscriptionError,
    ValidationError,
)
from recruit_chat.realtime.bus import (
    ConversationFilter,
    EventFilter,
    Handler,
    LiveEventBus,
    Subscription,
)
from recruit_chat.schemas.conversation import ConversationSummary
from recruit_chat.schemas.message import MessagePublic
from recruit_chat.schemas.user import UserPublic

logger = logging.getLogger(__name__)

_summaries = TypeAdapter(list[ConversationSummary])
_messages = TypeAdapter(list[MessagePublic])

_ERRORS_BY_NAME: dict[str, type[MessagingError]] = {
    cls.__name__: cls
    for cls in (ValidationError, ResolutionFailed, StoreUnavailable, SubscriptionError)
}


def error_from_response(response: httpx.Response) -> MessagingError:
    """Rebuild the server's error class from an HTTP error response."""
    try:
        body = response.json()
    except ValueError:
        body = {}
    detail = body.get("detail") if isinstance(body, dict) else None
    if not isinstance(detail, str):
        detail = f"HTTP {response.status_code}"
    error_type = (body.get("error") or {}).get("type") if isinstance(body, dict) else None
    if error_type in _ERRORS_BY_NAME:
        return _ERRORS_BY_NAME[error_type](detail)
    if response.status_code >= 500:
        return StoreUnavailable(detail)
    return ValidationError(detail)


class RemoteSubscription(SubscriptionHandle):
    def __init__(self, backend: "RemoteBackend", channel: str, subscription: Subscription) -> None:
        self._backend = backend
        self.channel = channel
        self.subscription = subscription

    @property
    def closed(self) -> bool:
        return self.subscription.closed

    async def close(self) -> None:
        if self.subscription.closed and self.channel not in self._backend._channels:
            return
        self.subscription.close()
        await self._backend._release(self.channel)


class RemoteBackend(MessagingBackend):
    """Talks to the HTTP API and the live socket of a running server.

    All live subscriptions share one websocket; each gets its own channel on
    it and a local delivery queue so handlers see events in server order.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        client: httpx.AsyncClient | None = None,
        ws_url: str | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._client = client or httpx.AsyncClient(base_url=self.base_url)
        self._ws_url = ws_url or self.base_url.replace("http", "ws", 1) + "/realtime/ws"
        self._socket: Any = None
        self._reader: asyncio.Task | None = None
        self._connect_lock = asyncio.Lock()
        self._channels: dict[str, Subscription] = {}
        self._acks: dict[str, asyncio.Future] = {}
        self._channel_ids = itertools.count(1)
        self._mirror = LiveEventBus()
        self._user: UserPublic | None = None

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"Request to {path} failed: {exc}") from exc
        if response.status_code >= 400:
            raise error_from_response(response)
        return response.json()

    async def current_user(self) -> UserPublic:
        if self._user is None:
            self._user = UserPublic.model_validate(await self._request("GET", "/users/me"))
        return self._user

    async def get_or_create_conversation(self, user_a: int, user_b: int) -> int:
        me = (await self.current_user()).id
        if me not in (user_a, user_b):
            raise ValidationError("Can only resolve conversations that include the current user")
        counterpart = user_b if user_a == me else user_a
        body = await self._request("POST", "/conversations/", json={"counterpart_id": counterpart})
        return int(body["id"])

    async def append_message(
        self, conversation_id: int, sender_id: int, content: str
    ) -> MessagePublic:
        if sender_id != (await self.current_user()).id:
            raise ValidationError("Messages can only be sent as the current user")
        body = await self._request(
            "POST", f"/conversations/{conversation_id}/messages", json={"content": content}
        )
        return MessagePublic.model_validate(body)

    async def load_history(self, conversation_id: int) -> list[MessagePublic]:
        return _messages.validate_python(
            await self._request("GET", f"/conversations/{conversation_id}/messages")
        )

    async def list_conversations(self, user_id: int) -> list[ConversationSummary]:
        if user_id != (await self.current_user()).id:
            raise ValidationError("Can only list the current user's conversations")
        return _summaries.validate_python(await self._request("GET", "/conversations/"))

    async def subscribe(self, event_filter: EventFilter, handler: Handler) -> SubscriptionHandle:
        await self._ensure_socket()
        channel = f"sub-{next(self._channel_ids)}"
        frame: dict[str, Any] = {"action": "subscribe", "channel": channel}
        if isinstance(event_filter, ConversationFilter):
            frame["conversation_id"] = event_filter.conversation_id
        else:
            frame["conversation_ids"] = sorted(event_filter.conversation_ids)

        ack = asyncio.get_running_loop().create_future()
        self._acks[channel] = ack
        subscription = self._mirror.subscribe(event_filter, self._guarded(channel, handler))
        self._channels[channel] = subscription
        try:
            await self._send(frame)
            reply = await ack
        except BaseException:
            subscription.close()
            self._channels.pop(channel, None)
            raise
        finally:
            self._acks.pop(channel, None)

        if reply.get("type") != "subscribed":
            subscription.close()
            self._channels.pop(channel, None)
            raise SubscriptionError(reply.get("detail", "Subscription rejected"))
        return RemoteSubscription(self, channel, subscription)

    def _guarded(self, channel: str, handler: Handler) -> Handler:
        async def run(message: MessagePublic) -> None:
            try:
                result = handler(message)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                # The mirror drops the subscription; the server channel goes with it
                await self._release(channel)
                raise

        return run

    async def aclose(self) -> None:
        self._mirror.close()
        self._channels.clear()
        if self._reader is not None:
            self._reader.cancel()
            self._reader = None
        if self._socket is not None:
            await self._socket.close()
            self._socket = None
        await self._client.aclose()

    async def _ensure_socket(self) -> None:
        async with self._connect_lock:
            if self._socket is not None:
                return
            url = f"{self._ws_url}?{urlencode({'token': self._token})}"
            try:
                self._socket = await websockets.connect(url)
            except (OSError, WebSocketException) as exc:
                raise SubscriptionError(f"Could not open live connection: {exc}") from exc
            self._reader = asyncio.get_running_loop().create_task(self._read_frames())

    async def _send(self, frame: dict[str, Any]) -> None:
        try:
            await self._socket.send(json.dumps(frame))
        except ConnectionClosed as exc:
            raise SubscriptionError("Live connection closed") from exc

    async def _release(self, channel: str) -> None:
        if self._channels.pop(channel, None) is None or self._socket is None:
            return
        try:
            await self._socket.send(json.dumps({"action": "unsubscribe", "channel": channel}))
        except ConnectionClosed:
            logger.debug("Live connection already closed while releasing %s", channel)

    async def _read_frames(self) -> None:
        try:
            async for raw in self._socket:
                self._dispatch(json.loads(raw))
        except ConnectionClosed:
            pass
        finally:
            error = SubscriptionError("Live connection lost")
            logger.warning("%s; closing %d subscriptions", error.detail, len(self._channels))
            for ack in self._acks.values():
                if not ack.done():
                    ack.set_exception(error)
            for subscription in self._channels.values():
                subscription.close()
            self._channels.clear()
            self._socket = None

    def _dispatch(self, frame: dict[str, Any]) -> None:
        channel = frame.get("channel")
        kind = frame.get("type")
        if kind == "insert":
            subscription = self._channels.get(channel)
            if subscription is not None:
                subscription.deliver(MessagePublic.model_validate(frame["message"]))
            return
        ack = self._acks.get(channel)
        if ack is not None and not ack.done() and kind in ("subscribed", "error"):
            ack.set_result(frame)
            return
        if kind == "error":
            logger.warning("Live socket error: %s", frame.get("detail"))
