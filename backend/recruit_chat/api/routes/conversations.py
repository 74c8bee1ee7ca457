from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from recruit_chat.api import deps
from recruit_chat.db.session import get_db
from recruit_chat.models.conversation import Conversation
from recruit_chat.models.user import User
from recruit_chat.realtime.bus import LiveEventBus
from recruit_chat.schemas.conversation import (
    ConversationCreate,
    ConversationRef,
    ConversationSummary,
)
from recruit_chat.schemas.message import MessageCreate, MessagePublic
from recruit_chat.services import aggregator
from recruit_chat.services import conversations as conversation_service
from recruit_chat.services import messages as message_service

router = APIRouter()


def _get_conversation_or_404(db: Session, conversation_id: int, user: User) -> Conversation:
    conversation = conversation_service.get_conversation_for_participant(
        db, conversation_id, user.id
    )
    if not conversation:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Conversation not found",
        )
    return conversation


@router.get("/", response_model=list[ConversationSummary])
def list_conversations(
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_user),
) -> list[ConversationSummary]:
    return aggregator.list_conversations(db, current_user.id)


@router.post("/", response_model=ConversationRef)
def start_conversation(
    payload: ConversationCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_user),
) -> ConversationRef:
    """Return the conversation with ``counterpart_id``, creating it on first contact."""
    conversation_id = conversation_service.get_or_create_conversation(
        db, current_user.id, payload.counterpart_id
    )
    return ConversationRef(id=conversation_id)


@router.get("/{conversation_id}/messages", response_model=list[MessagePublic])
def get_messages(
    conversation_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(deps.get_current_user),
) -> list[MessagePublic]:
    _get_conversation_or_404(db, conversation_id, current_user)
    return message_service.load_history(db, conversation_id)


@router.post("/{conversation_id}/messages", response_model=MessagePublic)
def send_message(
    conversation_id: int,
    payload: MessageCreate,
    db: Session = Depends(get_db),
    bus: LiveEventBus = Depends(deps.get_event_bus),
    current_user: User = Depends(deps.get_current_user),
) -> MessagePublic:
    _get_conversation_or_404(db, conversation_id, current_user)
    return message_service.append_message(
        db, conversation_id, current_user.id, payload.content, bus=bus
    )
