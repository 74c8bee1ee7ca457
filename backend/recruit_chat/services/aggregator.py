import logging

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from recruit_chat.core.errors import StoreUnavailable
from recruit_chat.models.conversation import Conversation
from recruit_chat.models.user import User, UserRole
from recruit_chat.schemas.conversation import ConversationPublic, ConversationSummary
from recruit_chat.schemas.user import CounterpartPublic
from recruit_chat.services.messages import load_latest_per_conversation

logger = logging.getLogger(__name__)


def list_conversations(db: Session, user_id: int) -> list[ConversationSummary]:
    """Every conversation ``user_id`` takes part in, most recent activity first.

    Three reads regardless of list length: the conversations, the counterpart
    profiles and the latest message per conversation. Conversations without
    messages sort last, in id order.
    """
    try:
        conversations = db.scalars(
            select(Conversation)
            .where(or_(Conversation.participant_a == user_id, Conversation.participant_b == user_id))
            .order_by(Conversation.last_message_at.desc().nulls_last(), Conversation.id.asc())
        ).all()
        if not conversations:
            return []

        counterpart_ids = {conversation.counterpart_of(user_id) for conversation in conversations}
        profiles = {
            profile.id: profile
            for profile in db.scalars(select(User).where(User.id.in_(counterpart_ids))).all()
        }
        viewer_role = db.scalar(select(User.role).where(User.id == user_id))
    except SQLAlchemyError as exc:
        logger.error("Failed to list conversations for user %s: %s", user_id, exc)
        raise StoreUnavailable("Could not load conversations") from exc

    latest = load_latest_per_conversation(db, [conversation.id for conversation in conversations])

    summaries = []
    for conversation in conversations:
        counterpart_id = conversation.counterpart_of(user_id)
        profile = profiles.get(counterpart_id)
        counterpart = (
            CounterpartPublic.model_validate(profile)
            if profile is not None
            else _placeholder_counterpart(counterpart_id, viewer_role)
        )
        summaries.append(
            ConversationSummary(
                conversation=ConversationPublic.model_validate(conversation),
                counterpart=counterpart,
                last_message=latest.get(conversation.id),
            )
        )
    return summaries


def _placeholder_counterpart(counterpart_id: int, viewer_role: str | None) -> CounterpartPublic:
    # Athletes talk to coaches and vice versa
    role = UserRole.ATHLETE if viewer_role == UserRole.COACH.value else UserRole.COACH
    return CounterpartPublic(id=counterpart_id, role=role.value)
