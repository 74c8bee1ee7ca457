from datetime import datetime, timezone

from recruit_chat.schemas.conversation import ConversationSummary
from recruit_chat.schemas.user import CounterpartPublic


def format_relative_time(value: datetime, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    minutes = int((now - value).total_seconds() // 60)

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    if minutes < 1440:
        return f"{minutes // 60}h ago"
    return value.date().isoformat()


def preview_text(summary: ConversationSummary, viewer_id: int) -> str | None:
    message = summary.last_message
    if message is None:
        return None
    prefix = "You: " if message.sender_id == viewer_id else ""
    return f"{prefix}{message.content}"


def display_name(counterpart: CounterpartPublic) -> str:
    name = f"{counterpart.first_name or ''} {counterpart.last_name or ''}".strip()
    return name or counterpart.role.title()
