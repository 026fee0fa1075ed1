import logging
import re

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from healthmate.exceptions import NotFoundError, ValidationError
from healthmate.models import Chat, ChatMessage, MessageRole, MessageType, utcnow

logger = logging.getLogger(__name__)


def find_chat(db: Session, user_id: int) -> Chat | None:
    return db.query(Chat).filter(Chat.user_id == user_id).first()


def get_or_create_chat(db: Session, user_id: int) -> Chat:
    chat = find_chat(db, user_id)
    if chat:
        return chat
    chat = Chat(user_id=user_id, last_activity=utcnow(), is_active=True)
    db.add(chat)
    try:
        db.commit()
    except IntegrityError:
        # Another request created it first
        db.rollback()
        return find_chat(db, user_id)
    db.refresh(chat)
    return chat


def add_message(
    db: Session,
    user_id: int,
    role: str,
    content: str,
    report_id: str | None = None,
    message_type: str = MessageType.TEXT.value,
) -> ChatMessage:
    role = MessageRole(role).value
    message_type = MessageType(message_type).value
    if not content:
        raise ValidationError("Message content cannot be empty")

    chat = get_or_create_chat(db, user_id)
    now = utcnow()
    message = ChatMessage(
        chat_id=chat.id,
        role=role,
        content=content,
        report_id=report_id,
        message_type=message_type,
        created_at=now,
    )
    db.add(message)
    chat.last_activity = now
    db.commit()
    db.refresh(message)
    return message


def _newest_first(db: Session, chat_id: int):
    return (
        db.query(ChatMessage)
        .filter(ChatMessage.chat_id == chat_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
    )


def get_recent_messages(db: Session, user_id: int, limit: int = 50) -> list[ChatMessage]:
    """Last `limit` messages, oldest first."""
    chat = find_chat(db, user_id)
    if not chat or limit <= 0:
        return []
    newest = _newest_first(db, chat.id).limit(limit).all()
    return list(reversed(newest))


def get_history(db: Session, user_id: int, limit: int = 50, offset: int = 0) -> tuple[list[ChatMessage], int, bool]:
    """A page counted back from the newest message, returned oldest first."""
    chat = find_chat(db, user_id)
    if not chat:
        return [], 0, False
    limit = max(limit, 0)
    offset = max(offset, 0)
    total = db.query(ChatMessage).filter(ChatMessage.chat_id == chat.id).count()
    window = _newest_first(db, chat.id).offset(offset).limit(limit).all()
    return list(reversed(window)), total, offset + limit < total


def clear_history(db: Session, user_id: int) -> Chat:
    chat = find_chat(db, user_id)
    if not chat:
        raise NotFoundError("Chat not found")
    db.query(ChatMessage).filter(ChatMessage.chat_id == chat.id).delete(synchronize_session=False)
    chat.last_activity = utcnow()
    db.commit()
    db.refresh(chat)
    logger.info("Cleared chat history for user %s", user_id)
    return chat


def _compile_query(query: str) -> re.Pattern:
    try:
        return re.compile(query, re.IGNORECASE)
    except re.error:
        return re.compile(re.escape(query), re.IGNORECASE)


def search_messages(db: Session, user_id: int, query: str, limit: int = 20) -> list[ChatMessage]:
    """Case-insensitive regex search over message content, newest first."""
    query = (query or "").strip()
    if not query:
        raise ValidationError("Search query is required")
    chat = find_chat(db, user_id)
    if not chat or limit <= 0:
        return []
    pattern = _compile_query(query)
    matches = []
    for message in _newest_first(db, chat.id):
        if pattern.search(message.content or ""):
            matches.append(message)
            if len(matches) >= limit:
                break
    return matches


def get_stats(db: Session, user_id: int) -> dict:
    chat = find_chat(db, user_id)
    if not chat:
        return {
            "total_messages": 0,
            "user_messages": 0,
            "ai_messages": 0,
            "last_activity": None,
            "is_active": False,
        }
    roles = [role for (role,) in db.query(ChatMessage.role).filter(ChatMessage.chat_id == chat.id)]
    return {
        "total_messages": len(roles),
        "user_messages": roles.count(MessageRole.USER.value),
        "ai_messages": roles.count(MessageRole.ASSISTANT.value),
        "last_activity": chat.last_activity,
        "is_active": chat.is_active,
    }
