import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from recruit_chat.client.remote import RemoteBackend, error_from_response
from recruit_chat.core.errors import (
    ResolutionFailed,
    StoreUnavailable,
    SubscriptionError,
    ValidationError,
)
from recruit_chat.realtime.bus import ConversationFilter

BASE_URL = "http://chat.test"
CREATED_AT = datetime(2024, 9, 1, 12, 0, tzinfo=timezone.utc).isoformat()

ME = {
    "id": 1,
    "email": "athlete@example.com",
    "role": "athlete",
    "first_name": "Sam",
    "last_name": "Okafor",
    "profile_photo_url": None,
    "created_at": CREATED_AT,
}


def _message(message_id: int, conversation_id: int = 5, sender_id: int = 1) -> dict:
    return {
        "id": message_id,
        "conversation_id": conversation_id,
        "sender_id": sender_id,
        "content": "hello",
        "created_at": CREATED_AT,
        "read_at": None,
    }


def _backend(handler) -> RemoteBackend:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return RemoteBackend(BASE_URL, "token-123", client=client)


def test_error_from_response_uses_error_type():
    response = httpx.Response(
        409,
        json={"detail": "busy", "error": {"type": "ResolutionFailed", "retryable": True}},
    )
    error = error_from_response(response)
    assert isinstance(error, ResolutionFailed)
    assert error.detail == "busy"


def test_error_from_response_falls_back_on_status():
    assert isinstance(error_from_response(httpx.Response(502, text="bad gateway")), StoreUnavailable)
    missing = error_from_response(httpx.Response(404, json={"detail": "Conversation not found"}))
    assert isinstance(missing, ValidationError)
    assert missing.detail == "Conversation not found"
    unparsed = error_from_response(httpx.Response(422, json={"detail": [{"msg": "field required"}]}))
    assert unparsed.detail == "HTTP 422"


def test_ws_url_is_derived_from_base_url():
    backend = RemoteBackend("https://chat.example.com/", "t")
    assert backend._ws_url == "wss://chat.example.com/realtime/ws"


@pytest.mark.anyio
async def test_remote_calls_send_bearer_token_and_parse_bodies():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        assert request.headers["Authorization"] == "Bearer token-123"
        if request.url.path == "/users/me":
            return httpx.Response(200, json=ME)
        if request.url.path == "/conversations/" and request.method == "POST":
            return httpx.Response(200, json={"id": 5})
        if request.url.path == "/conversations/5/messages" and request.method == "POST":
            return httpx.Response(200, json=_message(11))
        if request.url.path == "/conversations/5/messages":
            return httpx.Response(200, json=[_message(10, sender_id=2), _message(11)])
        return httpx.Response(404, json={"detail": "Not Found"})

    backend = _backend(handler)
    try:
        assert await backend.get_or_create_conversation(2, 1) == 5
        sent = await backend.append_message(5, 1, "hello")
        history = await backend.load_history(5)
    finally:
        await backend.aclose()

    assert sent.id == 11
    assert [message.id for message in history] == [10, 11]
    assert history[0].created_at.tzinfo is not None
    resolve = next(r for r in requests if r.method == "POST" and r.url.path == "/conversations/")
    assert json.loads(resolve.content) == {"counterpart_id": 2}
    assert sum(1 for r in requests if r.url.path == "/users/me") == 1


@pytest.mark.anyio
async def test_remote_rejects_acting_as_someone_else():
    backend = _backend(lambda request: httpx.Response(200, json=ME))
    try:
        with pytest.raises(ValidationError):
            await backend.append_message(5, 2, "spoofed")
        with pytest.raises(ValidationError):
            await backend.get_or_create_conversation(2, 3)
        with pytest.raises(ValidationError):
            await backend.list_conversations(2)
    finally:
        await backend.aclose()


@pytest.mark.anyio
async def test_remote_maps_server_errors():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            503,
            json={
                "detail": "Could not load messages",
                "error": {"type": "StoreUnavailable", "retryable": True, "status_code": 503},
            },
        )

    backend = _backend(handler)
    try:
        with pytest.raises(StoreUnavailable) as excinfo:
            await backend.load_history(5)
    finally:
        await backend.aclose()
    assert excinfo.value.retryable


@pytest.mark.anyio
async def test_remote_maps_transport_failures():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    backend = _backend(handler)
    try:
        with pytest.raises(StoreUnavailable):
            await backend.load_history(5)
    finally:
        await backend.aclose()


@pytest.mark.anyio
async def test_socket_frames_route_to_their_channel(wait_until):
    backend = _backend(lambda request: httpx.Response(404))
    seen = []
    backend._channels["sub-1"] = backend._mirror.subscribe(ConversationFilter(5), seen.append)
    ack = backend._acks["sub-2"] = _pending_future()
    try:
        backend._dispatch({"type": "insert", "channel": "sub-1", "message": _message(20)})
        backend._dispatch({"type": "insert", "channel": "sub-9", "message": _message(21)})
        backend._dispatch({"type": "error", "channel": "sub-2", "detail": "nope"})

        await wait_until(lambda: seen)
        assert [message.id for message in seen] == [20]
        assert ack.result()["type"] == "error"
    finally:
        await backend.aclose()


def _pending_future():
    return asyncio.get_running_loop().create_future()


@pytest.mark.anyio
async def test_subscribe_fails_cleanly_without_server():
    backend = RemoteBackend("http://127.0.0.1:9", "t")
    try:
        with pytest.raises(SubscriptionError):
            await backend.subscribe(ConversationFilter(5), lambda message: None)
        assert backend._channels == {}
    finally:
        await backend.aclose()


class RecordingSocket:
    def __init__(self):
        self.sent = []

    async def send(self, text):
        self.sent.append(json.loads(text))

    async def close(self):
        pass


@pytest.mark.anyio
async def test_failing_handler_releases_server_channel(wait_until):
    backend = _backend(lambda request: httpx.Response(404))
    socket = backend._socket = RecordingSocket()
    unsubscribe = {"action": "unsubscribe", "channel": "sub-1"}

    def broken(message):
        raise RuntimeError("render failed")

    try:
        subscribing = asyncio.create_task(backend.subscribe(ConversationFilter(5), broken))
        await wait_until(lambda: "sub-1" in backend._acks)
        backend._dispatch({"type": "subscribed", "channel": "sub-1", "conversation_ids": [5]})
        handle = await subscribing
        assert socket.sent[0]["action"] == "subscribe"

        backend._dispatch({"type": "insert", "channel": "sub-1", "message": _message(30)})
        await wait_until(lambda: handle.closed and unsubscribe in socket.sent)

        assert "sub-1" not in backend._channels
        await handle.close()
        assert socket.sent.count(unsubscribe) == 1
    finally:
        await backend.aclose()
