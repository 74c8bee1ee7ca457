from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    UniqueConstraint,
)

from recruit_chat.db.base import Base


class Conversation(Base):
    __tablename__ = "conversations"
    # The pair is stored normalized so {a, b} and {b, a} hit the same unique key
    __table_args__ = (
        UniqueConstraint("participant_a", "participant_b", name="uq_conversations_pair"),
        CheckConstraint("participant_a < participant_b", name="ck_conversations_pair_order"),
    )

    id = Column(Integer, primary_key=True, index=True)
    participant_a = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    participant_b = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    last_message_at = Column(DateTime, nullable=True, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def counterpart_of(self, user_id: int) -> int:
        return self.participant_b if self.participant_a == user_id else self.participant_a

    def has_participant(self, user_id: int) -> bool:
        return user_id in (self.participant_a, self.participant_b)
