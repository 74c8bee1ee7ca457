import asyncio
import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError as PayloadValidationError
from sqlalchemy.orm import sessionmaker

from recruit_chat.api import deps
from recruit_chat.core.security import user_id_from_token
from recruit_chat.realtime.bus import (
    ConversationFilter,
    ConversationSetFilter,
    LiveEventBus,
    Subscription,
)
from recruit_chat.schemas.message import MessagePublic
from recruit_chat.schemas.realtime import RealtimeCommand
from recruit_chat.services.conversations import participant_conversation_ids

logger = logging.getLogger(__name__)

router = APIRouter()


def _allowed_ids(session_factory: sessionmaker, user_id: int, requested: set[int]) -> set[int]:
    with session_factory() as db:
        return participant_conversation_ids(db, user_id, requested)


@router.websocket("/ws")
async def live_socket(
    websocket: WebSocket,
    token: str | None = None,
    session_factory: sessionmaker = Depends(deps.get_session_factory),
) -> None:
    """Push message inserts for the conversations a client subscribes to.

    Each named channel holds at most one subscription; subscribing an existing
    channel again replaces it.
    """
    try:
        user_id = user_id_from_token(token or "")
    except ValueError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    bus: LiveEventBus = websocket.app.state.bus
    channels: dict[str, Subscription] = {}
    send_lock = asyncio.Lock()

    async def send(frame: dict) -> None:
        async with send_lock:
            await websocket.send_json(frame)

    def forwarder(channel: str):
        async def forward(message: MessagePublic) -> None:
            await send({"type": "insert", "channel": channel, "message": message.model_dump(mode="json")})

        return forward

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                command = RealtimeCommand.model_validate(json.loads(raw))
            except (json.JSONDecodeError, PayloadValidationError) as exc:
                await send({"type": "error", "detail": f"Invalid frame: {exc}"})
                continue

            previous = channels.pop(command.channel, None)
            if previous is not None:
                previous.close()

            if command.action == "unsubscribe":
                await send({"type": "unsubscribed", "channel": command.channel})
                continue

            if command.conversation_id is not None:
                requested = {command.conversation_id}
            else:
                requested = set(command.conversation_ids or [])
            allowed = await run_in_threadpool(_allowed_ids, session_factory, user_id, requested)
            if allowed != requested:
                await send(
                    {
                        "type": "error",
                        "channel": command.channel,
                        "detail": "Not a participant of every requested conversation",
                    }
                )
                continue

            event_filter = (
                ConversationFilter(command.conversation_id)
                if command.conversation_id is not None
                else ConversationSetFilter(requested)
            )
            channels[command.channel] = bus.subscribe(event_filter, forwarder(command.channel))
            await send(
                {
                    "type": "subscribed",
                    "channel": command.channel,
                    "conversation_ids": sorted(requested),
                }
            )
    except WebSocketDisconnect:
        logger.debug("Live socket for user %s disconnected", user_id)
    finally:
        for subscription in channels.values():
            subscription.close()
