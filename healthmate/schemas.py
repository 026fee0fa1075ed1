from datetime import datetime
from typing import Dict, Generic, List, Optional, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class Envelope(CamelModel, Generic[T]):
    success: bool = True
    message: Optional[str] = None
    data: Optional[T] = None


# --- Analysis ---
class AiSummary(CamelModel):
    english: str = ""
    secondary_language: str = ""
    key_findings: List[str] = Field(default_factory=list)
    abnormal_values: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    doctor_questions: List[str] = Field(default_factory=list)


def format_file_size(size: int) -> str:
    if not size:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


# --- Reports ---
class ReportSummary(CamelModel):
    """Short form returned right after an upload."""
    id: str
    file_name: str
    original_name: str
    file_url: str
    file_type: str
    file_size: int
    analysis_status: str
    tags: List[str] = Field(default_factory=list)
    notes: str = ""
    created_at: datetime


class ReportOut(ReportSummary):
    user_id: int
    analysis_error: Optional[str] = None
    ai_summary: AiSummary = Field(default_factory=AiSummary)
    is_important: bool = False
    updated_at: datetime

    @computed_field
    @property
    def formatted_file_size(self) -> str:
        return format_file_size(self.file_size)


class TimelineReport(CamelModel):
    id: str
    original_name: str
    file_url: str
    created_at: datetime
    analysis_status: str
    ai_summary: AiSummary = Field(default_factory=AiSummary)
    tags: List[str] = Field(default_factory=list)
    is_important: bool = False


class ReportUpdate(CamelModel):
    tags: Optional[List[str]] = None
    notes: Optional[str] = None
    is_important: Optional[bool] = None


class Pagination(CamelModel):
    current_page: int
    total_pages: int
    total_reports: int
    has_next: bool
    has_prev: bool


class UploadData(CamelModel):
    report: ReportSummary


class ReportData(CamelModel):
    report: ReportOut


class ReportListData(CamelModel):
    reports: List[ReportOut]
    pagination: Pagination


class TimelineData(CamelModel):
    timeline: Dict[str, List[TimelineReport]]


class AnalysisTaskOut(CamelModel):
    report_id: str
    state: str
    attempts: int
    queued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None


class AnalysisTaskData(CamelModel):
    analysis_status: str
    task: Optional[AnalysisTaskOut] = None


# --- Chat ---
class MessageOut(CamelModel):
    id: Optional[int] = None
    role: str
    content: str
    timestamp: datetime = Field(validation_alias=AliasChoices("timestamp", "created_at"))
    report_id: Optional[str] = None
    message_type: str = "text"


class ChatOut(CamelModel):
    id: int
    messages: List[MessageOut]
    last_activity: datetime
    is_active: bool


class ChatData(CamelModel):
    chat: ChatOut


class SendMessageRequest(CamelModel):
    message: str = ""
    report_id: Optional[str] = None


class SendMessageData(CamelModel):
    user_message: MessageOut
    ai_response: MessageOut


class HistoryData(CamelModel):
    messages: List[MessageOut]
    total_messages: int
    has_more: bool = False


class ChatStats(CamelModel):
    total_messages: int = 0
    user_messages: int = 0
    ai_messages: int = 0
    last_activity: Optional[datetime] = None
    is_active: bool = False


class SearchData(CamelModel):
    messages: List[MessageOut]
    total_results: int
    query: str = ""


# --- Auth ---
class RegisterRequest(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=6)


class LoginRequest(CamelModel):
    email: str
    password: str


class UserOut(CamelModel):
    id: int
    name: str
    email: str
    created_at: datetime
    last_login: Optional[datetime] = None


class UserData(CamelModel):
    user: UserOut


class AuthData(CamelModel):
    token: str
    token_type: str = "bearer"
    user: UserOut


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, min_length=3, max_length=255)


class ChangePasswordRequest(CamelModel):
    current_password: str
    new_password: str = Field(min_length=6)
