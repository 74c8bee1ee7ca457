from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from recruit_chat.db.base import Base

ATHLETE_STATUS_MESSAGED = "messaged"


class SchoolMatch(Base):
    """A coach/athlete pairing created by the connect flow."""

    __tablename__ = "school_matches"
    __table_args__ = (UniqueConstraint("player_id", "coach_id", name="uq_school_matches_pair"),)

    id = Column(Integer, primary_key=True, index=True)
    player_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    coach_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(32), nullable=False, default="saved")
    athlete_status = Column(String(32), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )
