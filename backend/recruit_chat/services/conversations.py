import logging

from sqlalchemy import insert as generic_insert
from sqlalchemy import or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from recruit_chat.core.errors import ResolutionFailed, ValidationError
from recruit_chat.models.conversation import Conversation
from recruit_chat.models.user import User

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def normalize_pair(user_a: int, user_b: int) -> tuple[int, int]:
    """Return the stored (participant_a, participant_b) order for an unordered pair."""
    if user_a == user_b:
        raise ValidationError("A conversation needs two different participants")
    return (user_a, user_b) if user_a < user_b else (user_b, user_a)


def get_or_create_conversation(db: Session, user_a: int, user_b: int) -> int:
    """Return the single conversation id for ``{user_a, user_b}``, creating it if absent.

    Creation is one ``INSERT ... ON CONFLICT DO NOTHING`` against the pair's
    unique key followed by a lookup, so concurrent callers converge on the row
    whichever insert wins.
    """
    participant_a, participant_b = normalize_pair(user_a, user_b)
    try:
        known = db.scalars(
            select(User.id).where(User.id.in_([participant_a, participant_b]))
        ).all()
        if len(set(known)) != 2:
            raise ResolutionFailed("Both participants must be existing users")

        existing = _find_pair(db, participant_a, participant_b)
        if existing is not None:
            return existing

        _insert_pair(db, participant_a, participant_b)
        conversation_id = _find_pair(db, participant_a, participant_b)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "Conversation resolution failed for pair (%s, %s): %s",
            participant_a,
            participant_b,
            exc,
        )
        raise ResolutionFailed("Could not resolve conversation") from exc

    if conversation_id is None:
        raise ResolutionFailed("Conversation row missing after creation")
    logger.info(
        "Resolved conversation %s for pair (%s, %s)", conversation_id, participant_a, participant_b
    )
    return conversation_id


def _find_pair(db: Session, participant_a: int, participant_b: int) -> int | None:
    return db.scalar(
        select(Conversation.id).where(
            Conversation.participant_a == participant_a,
            Conversation.participant_b == participant_b,
        )
    )


def _insert_pair(db: Session, participant_a: int, participant_b: int) -> None:
    values = {"participant_a": participant_a, "participant_b": participant_b}
    dialect_insert = _UPSERT_DIALECTS.get(db.get_bind().dialect.name)
    if dialect_insert is not None:
        statement = dialect_insert(Conversation).values(**values).on_conflict_do_nothing(
            index_elements=["participant_a", "participant_b"]
        )
        db.execute(statement)
        db.commit()
        return

    try:
        db.execute(generic_insert(Conversation).values(**values))
        db.commit()
    except IntegrityError:
        # Lost the race; the winner's row is what we return
        db.rollback()


def list_conversation_ids(db: Session, user_id: int) -> list[int]:
    return list(
        db.scalars(
            select(Conversation.id)
            .where(or_(Conversation.participant_a == user_id, Conversation.participant_b == user_id))
            .order_by(Conversation.id)
        )
    )


def get_conversation_for_participant(
    db: Session, conversation_id: int, user_id: int
) -> Conversation | None:
    conversation = db.get(Conversation, conversation_id)
    if conversation is None or not conversation.has_participant(user_id):
        return None
    return conversation


def participant_conversation_ids(
    db: Session, user_id: int, conversation_ids: set[int]
) -> set[int]:
    """Subset of ``conversation_ids`` that ``user_id`` takes part in."""
    if not conversation_ids:
        return set()
    return set(
        db.scalars(
            select(Conversation.id).where(
                Conversation.id.in_(conversation_ids),
                or_(Conversation.participant_a == user_id, Conversation.participant_b == user_id),
            )
        )
    )
