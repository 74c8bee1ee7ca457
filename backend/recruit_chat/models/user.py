from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from recruit_chat.db.base import Base


class UserRole(str, PyEnum):
    ATHLETE = "athlete"
    COACH = "coach"


class User(Base):
    """Profile row owned by the identity provider; read-only to messaging."""

    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", name="uq_users_email"),)

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), nullable=False)
    # Use String for SQLite compatibility - enum values are stored as lowercase strings
    role = Column(String(16), nullable=False, default=UserRole.ATHLETE.value)
    first_name = Column(String(120), nullable=True)
    last_name = Column(String(120), nullable=True)
    profile_photo_url = Column(String(512), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
