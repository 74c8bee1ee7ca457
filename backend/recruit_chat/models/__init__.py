from recruit_chat.models.user import User, UserRole
from recruit_chat.models.conversation import Conversation
from recruit_chat.models.message import Message
from recruit_chat.models.school_match import SchoolMatch

__all__ = [
    "User",
    "UserRole",
    "Conversation",
    "Message",
    "SchoolMatch",
]
