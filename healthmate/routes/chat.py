import logging

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from healthmate import ai_client, chats
from healthmate.auth import get_current_user
from healthmate.database import get_db
from healthmate.exceptions import ValidationError
from healthmate.models import MessageRole, Report, User
from healthmate.reports import recent_summaries
from healthmate.schemas import (
    ChatData,
    ChatOut,
    ChatStats,
    Envelope,
    HistoryData,
    MessageOut,
    SearchData,
    SendMessageData,
    SendMessageRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])

APOLOGY_MESSAGE = "I apologize, but I encountered an error processing your request. Please try again."
RECENT_MESSAGES_LIMIT = 50
CONTEXT_EXCERPT_CHARS = 200


def build_chat_context(db: Session, user_id: int, report_id: str | None) -> str:
    """Report summary text handed to Gemini alongside the user's question."""
    if report_id:
        report = db.query(Report).filter(Report.id == report_id, Report.user_id == user_id).first()
        if report and report.ai_summary["english"]:
            return f"Recent report context: {report.original_name}\nSummary: {report.ai_summary['english']}"
        return ""

    lines = []
    for report in recent_summaries(db, user_id, limit=3):
        english = report.ai_summary["english"]
        if english:
            lines.append(f"{report.original_name}: {english[:CONTEXT_EXCERPT_CHARS]}...")
    if not lines:
        return ""
    return "Recent reports context:\n" + "\n".join(lines) + "\n"


@router.get("", response_model=Envelope[ChatData])
def get_or_create_chat(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    chat = chats.get_or_create_chat(db, current_user.id)
    messages = chats.get_recent_messages(db, current_user.id, RECENT_MESSAGES_LIMIT)
    return Envelope(
        data=ChatData(
            chat=ChatOut(
                id=chat.id,
                messages=[MessageOut.model_validate(m) for m in messages],
                last_activity=chat.last_activity,
                is_active=chat.is_active,
            )
        )
    )


@router.post("/message", response_model=Envelope[SendMessageData])
async def send_message(
    body: SendMessageRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    text = (body.message or "").strip()
    if not text:
        raise ValidationError("Message cannot be empty")
    report_id = body.report_id or None

    user_message = chats.add_message(db, current_user.id, MessageRole.USER.value, text, report_id)
    context = build_chat_context(db, current_user.id, report_id)

    result = await ai_client.generate_chat_response(text, context)

    if result.success:
        reply = chats.add_message(db, current_user.id, MessageRole.ASSISTANT.value, result.response, report_id)
        return Envelope(
            data=SendMessageData(
                user_message=MessageOut.model_validate(user_message),
                ai_response=MessageOut.model_validate(reply),
            )
        )

    # Keep the thread readable even when Gemini is down
    logger.warning("Chat reply failed for user %s: %s", current_user.id, result.error)
    apology = chats.add_message(db, current_user.id, MessageRole.ASSISTANT.value, APOLOGY_MESSAGE, report_id)
    payload = Envelope(
        success=False,
        message="Error generating AI response",
        data=SendMessageData(
            user_message=MessageOut.model_validate(user_message),
            ai_response=MessageOut.model_validate(apology),
        ),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=payload.model_dump(by_alias=True, mode="json"),
    )


@router.get("/history", response_model=Envelope[HistoryData])
def get_chat_history(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    messages, total, has_more = chats.get_history(db, current_user.id, limit, offset)
    return Envelope(
        data=HistoryData(
            messages=[MessageOut.model_validate(m) for m in messages],
            total_messages=total,
            has_more=has_more,
        )
    )


@router.delete("/history", response_model=Envelope)
def clear_chat_history(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    chats.clear_history(db, current_user.id)
    return Envelope(message="Chat history cleared successfully")


@router.get("/stats", response_model=Envelope[ChatStats])
def get_chat_stats(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return Envelope(data=ChatStats(**chats.get_stats(db, current_user.id)))


@router.get("/search", response_model=Envelope[SearchData])
def search_messages(
    query: str = "",
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    matches = chats.search_messages(db, current_user.id, query, limit)
    return Envelope(
        data=SearchData(
            messages=[MessageOut.model_validate(m) for m in matches],
            total_results=len(matches),
            query=query.strip(),
        )
    )
