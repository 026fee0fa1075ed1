import json
import logging
import math
from collections import OrderedDict
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.orm import Session

from healthmate import models
from healthmate.exceptions import NotFoundError, ValidationError
from healthmate.models import AnalysisStatus, Report, normalize_tags, utcnow
from healthmate.schemas import AiSummary, ReportUpdate
from healthmate.storage import StorageProvider

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "createdAt": Report.created_at,
    "updatedAt": Report.updated_at,
    "originalName": Report.original_name,
    "fileSize": Report.file_size,
    "analysisStatus": Report.analysis_status,
}
MAX_PAGE_SIZE = 100


def parse_tags(raw: str | None) -> list[str]:
    """Comma separated form field -> tag list."""
    if not raw:
        return []
    return normalize_tags(raw.split(","))


def _escape_like(text: str) -> str:
    """Search text is literal: `%` and `_` are not wildcards."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def create_report(
    db: Session,
    *,
    user_id: int,
    file_name: str,
    original_name: str,
    file_url: str,
    file_type: str,
    file_size: int,
    storage_public_id: str | None,
    tags: list[str] | None = None,
    notes: str = "",
) -> Report:
    if file_type not in models.ALLOWED_FILE_TYPES:
        raise ValidationError("Invalid file type. Only JPEG, PNG, and PDF files are allowed.")
    report = Report(
        user_id=user_id,
        file_name=file_name,
        original_name=original_name.strip(),
        file_url=file_url,
        file_type=file_type,
        file_size=file_size,
        storage_public_id=storage_public_id,
        analysis_status=AnalysisStatus.PENDING.value,
        notes=notes or "",
    )
    report.tags = tags or []
    db.add(report)
    db.commit()
    db.refresh(report)
    return report


def get_report(db: Session, report_id: str, owner_id: int) -> Report:
    report = db.query(Report).filter(Report.id == report_id, Report.user_id == owner_id).first()
    if not report:
        raise NotFoundError("Report not found")
    return report


def list_reports(
    db: Session,
    owner_id: int,
    *,
    page: int = 1,
    limit: int = 10,
    status: str | None = None,
    search: str | None = None,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
) -> tuple[list[Report], int]:
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)

    query = db.query(Report).filter(Report.user_id == owner_id)
    if status:
        query = query.filter(Report.analysis_status == status)
    if search and search.strip():
        pattern = f"%{_escape_like(search.strip())}%"
        query = query.filter(
            or_(
                Report.original_name.ilike(pattern, escape="\\"),
                Report.tags_json.ilike(pattern, escape="\\"),
                Report.notes.ilike(pattern, escape="\\"),
            )
        )

    total = query.count()
    column = SORTABLE_FIELDS.get(sort_by, Report.created_at)
    ordering = column.asc() if sort_order == "asc" else column.desc()
    reports = query.order_by(ordering, Report.id).offset((page - 1) * limit).limit(limit).all()
    return reports, total


def pagination_meta(page: int, limit: int, total: int) -> dict:
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    total_pages = math.ceil(total / limit) if total else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total_reports": total,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


def update_report_metadata(db: Session, report_id: str, owner_id: int, changes: ReportUpdate) -> Report:
    report = get_report(db, report_id, owner_id)
    provided = changes.model_fields_set
    if "tags" in provided and changes.tags is not None:
        report.tags = changes.tags
    if "notes" in provided and changes.notes is not None:
        report.notes = changes.notes
    if "is_important" in provided and changes.is_important is not None:
        report.is_important = changes.is_important
    db.commit()
    db.refresh(report)
    return report


def delete_report(db: Session, report_id: str, owner_id: int, storage: StorageProvider) -> None:
    """Remove the record; a storage failure is logged and the row is deleted anyway."""
    report = get_report(db, report_id, owner_id)
    if report.storage_public_id:
        try:
            storage.delete(report.storage_public_id)
        except Exception as e:
            # Metadata consistency wins over storage cleanup; the file may leak.
            logger.error("Error deleting file %s from storage: %s", report.storage_public_id, e)
    db.delete(report)
    db.commit()
    logger.info("Deleted report %s for user %s", report_id, owner_id)


def reports_timeline(
    db: Session, owner_id: int, year: int | None = None, month: int | None = None
) -> "OrderedDict[str, list[Report]]":
    query = db.query(Report).filter(Report.user_id == owner_id)
    if year and month:
        if not 1 <= month <= 12:
            raise ValidationError("Month must be between 1 and 12")
        start = datetime(year, month, 1)
        end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
        query = query.filter(Report.created_at >= start, Report.created_at < end)

    timeline: "OrderedDict[str, list[Report]]" = OrderedDict()
    for report in query.order_by(Report.created_at.desc()).all():
        timeline.setdefault(report.created_at.strftime("%Y-%m-%d"), []).append(report)
    return timeline


# --- State machine writes ---
# Each transition is a conditional UPDATE so two runners cannot both claim a report.

def _transition(db: Session, report_id: str, allowed_from: list[str] | None, values: dict, exclude: str | None = None) -> bool:
    query = db.query(Report).filter(Report.id == report_id)
    if allowed_from is not None:
        query = query.filter(Report.analysis_status.in_(allowed_from))
    if exclude is not None:
        query = query.filter(Report.analysis_status != exclude)
    values = {**values, Report.updated_at: utcnow()}
    updated = query.update(values, synchronize_session=False)
    db.commit()
    return updated == 1


def mark_processing(db: Session, report_id: str) -> bool:
    return _transition(
        db,
        report_id,
        [AnalysisStatus.PENDING.value, AnalysisStatus.FAILED.value],
        {
            Report.analysis_status: AnalysisStatus.PROCESSING.value,
            Report.analysis_error: None,
            Report.ai_summary_json: None,
        },
    )


def mark_completed(db: Session, report_id: str, summary: AiSummary) -> bool:
    return _transition(
        db,
        report_id,
        [AnalysisStatus.PROCESSING.value],
        {
            Report.analysis_status: AnalysisStatus.COMPLETED.value,
            Report.analysis_error: None,
            Report.ai_summary_json: json.dumps(summary.model_dump()),
        },
    )


def mark_failed(db: Session, report_id: str, error: str) -> bool:
    return _transition(
        db,
        report_id,
        [AnalysisStatus.PENDING.value, AnalysisStatus.PROCESSING.value],
        {
            Report.analysis_status: AnalysisStatus.FAILED.value,
            Report.analysis_error: error or "Analysis failed",
            Report.ai_summary_json: None,
        },
    )


def reset_for_retry(db: Session, report_id: str) -> bool:
    return _transition(
        db,
        report_id,
        None,
        {
            Report.analysis_status: AnalysisStatus.PENDING.value,
            Report.analysis_error: None,
            Report.ai_summary_json: None,
        },
        exclude=AnalysisStatus.PROCESSING.value,
    )


def fail_stale_processing(db: Session, message: str) -> int:
    """Demote reports a previous process left in `processing`."""
    updated = (
        db.query(Report)
        .filter(Report.analysis_status == AnalysisStatus.PROCESSING.value)
        .update(
            {
                Report.analysis_status: AnalysisStatus.FAILED.value,
                Report.analysis_error: message,
                Report.ai_summary_json: None,
                Report.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return updated


def recent_summaries(db: Session, owner_id: int, limit: int = 3) -> list[Report]:
    return (
        db.query(Report)
        .filter(Report.user_id == owner_id)
        .order_by(Report.created_at.desc())
        .limit(limit)
        .all()
    )
