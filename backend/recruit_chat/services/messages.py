from contextlib import nullcontext
from datetime import datetime
from typing import Iterable
import logging

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from recruit_chat.core.errors import StoreUnavailable, ValidationError
from recruit_chat.models.conversation import Conversation
from recruit_chat.models.message import Message
from recruit_chat.models.school_match import ATHLETE_STATUS_MESSAGED, SchoolMatch
from recruit_chat.models.user import User, UserRole
from recruit_chat.realtime.bus import LiveEventBus
from recruit_chat.schemas.message import MessagePublic

logger = logging.getLogger(__name__)


def clean_content(content: str | None) -> str:
    text = (content or "").strip()
    if not text:
        raise ValidationError("Message content cannot be empty")
    return text


def append_message(
    db: Session,
    conversation_id: int,
    sender_id: int,
    content: str,
    bus: LiveEventBus | None = None,
) -> MessagePublic:
    """Persist a message and, when ``bus`` is given, publish the committed row.

    Also bumps the conversation's ``last_message_at`` and, for a coach writing
    to an athlete, marks their matches as messaged.
    """
    text = clean_content(content)
    # Timestamp, writes, commit and publish all happen under the bus lock
    sequence = bus.sequenced() if bus is not None else nullcontext()
    try:
        with sequence:
            conversation = db.get(Conversation, conversation_id)
            if conversation is None:
                raise ValidationError("Conversation not found")
            if not conversation.has_participant(sender_id):
                raise ValidationError("Sender is not a participant of this conversation")

            message = Message(
                conversation_id=conversation_id,
                sender_id=sender_id,
                content=text,
                created_at=datetime.utcnow(),
            )
            db.add(message)
            conversation.last_message_at = message.created_at
            _mark_athlete_messaged(db, sender_id, conversation.counterpart_of(sender_id))

            db.commit()
            db.refresh(message)
            record = MessagePublic.model_validate(message)
            if bus is not None:
                bus.publish(record)
        return record
    except ValidationError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Failed to append message to conversation %s: %s", conversation_id, exc)
        raise StoreUnavailable("Could not save message") from exc


def _mark_athlete_messaged(db: Session, sender_id: int, recipient_id: int) -> None:
    roles = dict(
        db.execute(select(User.id, User.role).where(User.id.in_([sender_id, recipient_id]))).all()
    )
    if roles.get(sender_id) != UserRole.COACH.value or roles.get(recipient_id) != UserRole.ATHLETE.value:
        return
    db.execute(
        update(SchoolMatch)
        .where(SchoolMatch.player_id == recipient_id, SchoolMatch.coach_id == sender_id)
        .values(athlete_status=ATHLETE_STATUS_MESSAGED, updated_at=datetime.utcnow())
    )


def load_history(db: Session, conversation_id: int) -> list[MessagePublic]:
    """All messages of a conversation, oldest first (ties by id)."""
    try:
        rows = db.scalars(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.id.asc())
        ).all()
    except SQLAlchemyError as exc:
        logger.error("Failed to load history for conversation %s: %s", conversation_id, exc)
        raise StoreUnavailable("Could not load messages") from exc
    return [MessagePublic.model_validate(row) for row in rows]


def load_latest_per_conversation(
    db: Session, conversation_ids: Iterable[int]
) -> dict[int, MessagePublic | None]:
    ids = list(dict.fromkeys(conversation_ids))
    latest: dict[int, MessagePublic | None] = {conversation_id: None for conversation_id in ids}
    if not ids:
        return latest

    ranked = (
        select(
            Message.id.label("message_id"),
            func.row_number()
            .over(
                partition_by=Message.conversation_id,
                order_by=(Message.created_at.desc(), Message.id.desc()),
            )
            .label("rank"),
        )
        .where(Message.conversation_id.in_(ids))
        .subquery()
    )
    try:
        rows = db.scalars(
            select(Message).join(ranked, Message.id == ranked.c.message_id).where(ranked.c.rank == 1)
        ).all()
    except SQLAlchemyError as exc:
        logger.error("Failed to load latest messages: %s", exc)
        raise StoreUnavailable("Could not load latest messages") from exc

    for row in rows:
        latest[row.conversation_id] = MessagePublic.model_validate(row)
    return latest
