# In healthmate/models.py
import enum
import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> datetime:
    # Naive UTC; SQLite drops tzinfo anyway.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_report_id() -> str:
    return uuid.uuid4().hex


class AnalysisStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


class MessageType(str, enum.Enum):
    TEXT = "text"
    REPORT_ANALYSIS = "report_analysis"
    QUESTION = "question"
    SUMMARY = "summary"


ALLOWED_FILE_TYPES = ("image/jpeg", "image/jpg", "image/png", "application/pdf")

EMPTY_SUMMARY = {
    "english": "",
    "secondary_language": "",
    "key_findings": [],
    "abnormal_values": [],
    "recommendations": [],
    "doctor_questions": [],
}


class User(Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, default="")
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    last_login = Column(DateTime, nullable=True)
    reports = relationship("Report", back_populates="owner", cascade="all, delete-orphan")
    chat = relationship("Chat", back_populates="owner", uselist=False, cascade="all, delete-orphan")


class Report(Base):
    __tablename__ = "reports"
    id = Column(String(32), primary_key=True, default=new_report_id)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    file_name = Column(String, nullable=False)
    original_name = Column(String, nullable=False)
    file_url = Column(String, nullable=False)
    file_type = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    storage_public_id = Column(String, nullable=True)
    analysis_status = Column(String, index=True, nullable=False, default=AnalysisStatus.PENDING.value)
    analysis_error = Column(Text, nullable=True)
    ai_summary_json = Column(Text, nullable=True)  # Storing JSON as a string
    tags_json = Column(Text, nullable=False, default="[]")
    is_important = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=utcnow, index=True, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    owner = relationship("User", back_populates="reports")

    @property
    def tags(self) -> list[str]:
        return json.loads(self.tags_json or "[]")

    @tags.setter
    def tags(self, value: list[str]) -> None:
        # Unescaped so ILIKE search sees the tag text as typed
        self.tags_json = json.dumps(normalize_tags(value), ensure_ascii=False)

    @property
    def ai_summary(self) -> dict:
        summary = dict(EMPTY_SUMMARY)
        summary.update(json.loads(self.ai_summary_json or "{}"))
        return summary


class Chat(Base):
    __tablename__ = "chats"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, index=True, nullable=False)
    last_activity = Column(DateTime, default=utcnow, index=True, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    owner = relationship("User", back_populates="chat")
    messages = relationship(
        "ChatMessage",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="(ChatMessage.created_at, ChatMessage.id)",
    )


class ChatMessage(Base):
    __tablename__ = "chat_messages"
    id = Column(Integer, primary_key=True, index=True)
    chat_id = Column(Integer, ForeignKey("chats.id"), index=True, nullable=False)
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    # Plain reference: deleting a report leaves the conversation intact.
    report_id = Column(String(32), nullable=True)
    message_type = Column(String, nullable=False, default=MessageType.TEXT.value)
    created_at = Column(DateTime, default=utcnow, index=True, nullable=False)
    chat = relationship("Chat", back_populates="messages")


def normalize_tags(tags) -> list[str]:
    """Trim, drop blanks and duplicates, keep the order tags were entered in."""
    seen: list[str] = []
    for tag in tags or []:
        cleaned = str(tag).strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen
