from sqlalchemy.orm import Session

from recruit_chat.db.session import SessionLocal
from recruit_chat.models.school_match import SchoolMatch
from recruit_chat.models.user import User, UserRole
from recruit_chat.services.conversations import get_or_create_conversation
from recruit_chat.services.messages import append_message


def seed_demo_data(db: Session) -> None:
    existing = db.query(User).filter(User.email == "coach@example.com").first()
    if existing:
        return
    coach = User(
        email="coach@example.com",
        role=UserRole.COACH.value,
        first_name="Dana",
        last_name="Whitfield",
    )
    athletes = [
        User(
            email="athlete1@example.com",
            role=UserRole.ATHLETE.value,
            first_name="Sam",
            last_name="Okafor",
        ),
        User(
            email="athlete2@example.com",
            role=UserRole.ATHLETE.value,
            first_name="Riley",
            last_name="Chen",
        ),
    ]
    db.add(coach)
    db.add_all(athletes)
    db.flush()

    db.add_all(
        [SchoolMatch(player_id=athlete.id, coach_id=coach.id, status="saved") for athlete in athletes]
    )
    db.commit()

    conversation_id = get_or_create_conversation(db, athletes[0].id, coach.id)
    append_message(db, conversation_id, athletes[0].id, "Hi coach, I sent over my highlight reel.")
    append_message(db, conversation_id, coach.id, "Thanks Sam, watching it this week.")
    get_or_create_conversation(db, athletes[1].id, coach.id)


if __name__ == "__main__":
    with SessionLocal() as session:
        seed_demo_data(session)
