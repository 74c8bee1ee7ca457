import threading
import time
from contextlib import contextmanager
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from recruit_chat.core.errors import ValidationError
from recruit_chat.models.conversation import Conversation
from recruit_chat.models.message import Message
from recruit_chat.models.school_match import ATHLETE_STATUS_MESSAGED, SchoolMatch
from recruit_chat.models.user import UserRole
from recruit_chat.realtime.bus import LiveEventBus
from recruit_chat.services.conversations import get_or_create_conversation
from recruit_chat.services.messages import (
    append_message,
    clean_content,
    load_history,
    load_latest_per_conversation,
)


@pytest.fixture()
def conversation_id(db, athlete, coach):
    return get_or_create_conversation(db, athlete.id, coach.id)


def test_clean_content_trims_and_rejects_blank():
    assert clean_content("  hello \n") == "hello"
    with pytest.raises(ValidationError):
        clean_content("   ")
    with pytest.raises(ValidationError):
        clean_content(None)


def test_append_message_persists_trimmed_content(db, conversation_id, athlete):
    record = append_message(db, conversation_id, athlete.id, "  Hi coach  ")

    assert record.content == "Hi coach"
    assert record.sender_id == athlete.id
    assert record.conversation_id == conversation_id
    assert record.created_at.tzinfo is not None
    assert record.read_at is None

    conversation = db.get(Conversation, conversation_id)
    db.refresh(conversation)
    assert conversation.last_message_at is not None


def test_append_message_rejects_blank_content(db, conversation_id, athlete):
    with pytest.raises(ValidationError):
        append_message(db, conversation_id, athlete.id, " \t ")
    assert load_history(db, conversation_id) == []


def test_append_message_rejects_non_participant(db, conversation_id, make_user):
    outsider = make_user(UserRole.ATHLETE)
    with pytest.raises(ValidationError):
        append_message(db, conversation_id, outsider.id, "let me in")


def test_append_message_rejects_unknown_conversation(db, athlete):
    with pytest.raises(ValidationError):
        append_message(db, 4242, athlete.id, "hello?")


def test_history_is_oldest_first_with_id_tiebreak(db, conversation_id, athlete, coach):
    same_instant = datetime(2024, 5, 1, 12, 0, 0)
    db.add_all(
        [
            Message(
                conversation_id=conversation_id,
                sender_id=coach.id,
                content="later",
                created_at=same_instant + timedelta(minutes=5),
            ),
            Message(
                conversation_id=conversation_id,
                sender_id=athlete.id,
                content="first tie",
                created_at=same_instant,
            ),
            Message(
                conversation_id=conversation_id,
                sender_id=coach.id,
                content="second tie",
                created_at=same_instant,
            ),
        ]
    )
    db.commit()

    history = load_history(db, conversation_id)

    assert [message.content for message in history] == ["first tie", "second tie", "later"]
    assert history[0].id < history[1].id


def test_history_of_rapid_appends_matches_send_order(db, conversation_id, athlete, coach):
    for index in range(5):
        sender = athlete if index % 2 == 0 else coach
        append_message(db, conversation_id, sender.id, f"message {index}")

    history = load_history(db, conversation_id)

    assert [message.content for message in history] == [f"message {i}" for i in range(5)]


def test_latest_per_conversation_includes_empty_conversations(db, athlete, coach, make_user):
    other_coach = make_user(UserRole.COACH)
    busy = get_or_create_conversation(db, athlete.id, coach.id)
    quiet = get_or_create_conversation(db, athlete.id, other_coach.id)
    append_message(db, busy, athlete.id, "one")
    last = append_message(db, busy, coach.id, "two")

    latest = load_latest_per_conversation(db, [busy, quiet])

    assert latest[busy].id == last.id
    assert latest[quiet] is None
    assert load_latest_per_conversation(db, []) == {}


def test_coach_message_marks_match_as_messaged(db, conversation_id, athlete, coach):
    match = SchoolMatch(player_id=athlete.id, coach_id=coach.id)
    db.add(match)
    db.commit()

    append_message(db, conversation_id, athlete.id, "Hello coach")
    db.refresh(match)
    assert match.athlete_status is None

    append_message(db, conversation_id, coach.id, "Hello Sam")
    db.refresh(match)
    assert match.athlete_status == ATHLETE_STATUS_MESSAGED


class SlowBus(LiveEventBus):
    """Holds the sequencing lock for a while and records publish order."""

    def __init__(self, hold: float) -> None:
        super().__init__()
        self.hold = hold
        self.entered = threading.Event()
        self.published = []

    @contextmanager
    def sequenced(self):
        with super().sequenced():
            self.entered.set()
            time.sleep(self.hold)
            yield

    def publish(self, message):
        self.published.append(message)
        return super().publish(message)


def test_concurrent_sends_wait_for_each_other_without_lock_errors(
    db, session_factory, athlete, coach, make_user
):
    other_athlete = make_user(UserRole.ATHLETE)
    other_coach = make_user(UserRole.COACH)
    coach_thread = get_or_create_conversation(db, athlete.id, coach.id)
    athlete_thread = get_or_create_conversation(db, other_athlete.id, other_coach.id)
    db.add(SchoolMatch(player_id=athlete.id, coach_id=coach.id))
    db.commit()

    bus = SlowBus(hold=0.3)
    errors = []

    def send(conversation_id, sender_id, text):
        with session_factory() as session:
            try:
                append_message(session, conversation_id, sender_id, text, bus=bus)
            except Exception as exc:
                errors.append(exc)

    first = threading.Thread(
        target=send, args=(athlete_thread, other_athlete.id, "athlete to coach")
    )
    second = threading.Thread(target=send, args=(coach_thread, coach.id, "coach to athlete"))
    started = time.monotonic()
    first.start()
    assert bus.entered.wait(2)
    second.start()
    first.join()
    second.join()
    elapsed = time.monotonic() - started

    assert errors == []
    assert elapsed < 3
    assert [message.content for message in bus.published] == [
        "athlete to coach",
        "coach to athlete",
    ]
    assert bus.published[0].created_at <= bus.published[1].created_at
    assert db.scalar(
        select(SchoolMatch.athlete_status).where(SchoolMatch.player_id == athlete.id)
    ) == ATHLETE_STATUS_MESSAGED
