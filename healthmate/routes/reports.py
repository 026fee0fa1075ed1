import asyncio
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.orm import Session

from healthmate import pipeline, reports
from healthmate.auth import get_current_user
from healthmate.config import get_settings
from healthmate.database import get_db
from healthmate.dependencies import get_analysis_queue, get_storage
from healthmate.exceptions import HealthMateError, ValidationError
from healthmate.models import ALLOWED_FILE_TYPES, AnalysisStatus, User
from healthmate.pipeline import AnalysisQueue
from healthmate.schemas import (
    AnalysisTaskData,
    AnalysisTaskOut,
    Envelope,
    Pagination,
    ReportData,
    ReportListData,
    ReportOut,
    ReportSummary,
    ReportUpdate,
    TimelineData,
    TimelineReport,
    UploadData,
    format_file_size,
)
from healthmate.storage import StorageProvider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])

STATUS_VALUES = {s.value for s in AnalysisStatus}


@router.post("/upload", response_model=Envelope[UploadData], status_code=status.HTTP_201_CREATED)
async def upload_report(
    background_tasks: BackgroundTasks,
    report: UploadFile | None = File(None),
    tags: str | None = Form(None),
    notes: str | None = Form(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
    queue: AnalysisQueue = Depends(get_analysis_queue),
):
    if report is None or not report.filename:
        raise ValidationError("No file uploaded")
    content_type = (report.content_type or "").lower()
    if content_type not in ALLOWED_FILE_TYPES:
        raise ValidationError("Invalid file type. Only JPEG, PNG, and PDF files are allowed.")

    content = await report.read()
    if not content:
        raise ValidationError("Uploaded file is empty")
    max_bytes = get_settings().max_upload_bytes
    if len(content) > max_bytes:
        raise ValidationError(f"File too large. Maximum size is {format_file_size(max_bytes)}.")

    stored = None
    try:
        stored = await asyncio.to_thread(storage.upload, content, report.filename, content_type)
        record = reports.create_report(
            db,
            user_id=current_user.id,
            file_name=stored.filename,
            original_name=report.filename,
            file_url=stored.url,
            file_type=content_type,
            file_size=len(content),
            storage_public_id=stored.public_id,
            tags=reports.parse_tags(tags),
            notes=notes or "",
        )
    except Exception as e:
        logger.exception("Upload report error for user %s", current_user.id)
        db.rollback()
        if stored is not None:
            try:
                await asyncio.to_thread(storage.delete, stored.public_id)
            except Exception as delete_error:
                logger.error("Error deleting file after upload failure: %s", delete_error)
        if isinstance(e, HealthMateError) and e.status_code < 500:
            raise
        raise HealthMateError("Server error during report upload") from e

    logger.info("Report %s uploaded by user %s (%s, %d bytes)", record.id, current_user.id, content_type, len(content))
    _, schedule = queue.submit(record.id)
    if schedule:
        background_tasks.add_task(queue.run, record.id)

    return Envelope(
        message="Report uploaded successfully. AI analysis in progress.",
        data=UploadData(report=ReportSummary.model_validate(record)),
    )


@router.get("", response_model=Envelope[ReportListData])
def list_reports(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=reports.MAX_PAGE_SIZE),
    status_filter: str | None = Query(None, alias="status"),
    search: str | None = None,
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if status_filter and status_filter not in STATUS_VALUES:
        raise ValidationError(f"Invalid status '{status_filter}'")
    records, total = reports.list_reports(
        db,
        current_user.id,
        page=page,
        limit=limit,
        status=status_filter,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return Envelope(
        data=ReportListData(
            reports=[ReportOut.model_validate(r) for r in records],
            pagination=Pagination(**reports.pagination_meta(page, limit, total)),
        )
    )


@router.get("/timeline", response_model=Envelope[TimelineData])
def get_timeline(
    year: int | None = Query(None, ge=1970, le=9999),
    month: int | None = Query(None, ge=1, le=12),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    grouped = reports.reports_timeline(db, current_user.id, year, month)
    timeline = {day: [TimelineReport.model_validate(r) for r in items] for day, items in grouped.items()}
    return Envelope(data=TimelineData(timeline=timeline))


@router.get("/{report_id}", response_model=Envelope[ReportData])
def get_report(report_id: str, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    record = reports.get_report(db, report_id, current_user.id)
    return Envelope(data=ReportData(report=ReportOut.model_validate(record)))


@router.put("/{report_id}", response_model=Envelope[ReportData])
def update_report(
    report_id: str,
    body: ReportUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    record = reports.update_report_metadata(db, report_id, current_user.id, body)
    return Envelope(message="Report updated successfully", data=ReportData(report=ReportOut.model_validate(record)))


@router.delete("/{report_id}", response_model=Envelope)
def delete_report(
    report_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    reports.delete_report(db, report_id, current_user.id, storage)
    return Envelope(message="Report deleted successfully")


@router.post("/{report_id}/retry-analysis", response_model=Envelope[ReportData])
def retry_analysis(
    report_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    queue: AnalysisQueue = Depends(get_analysis_queue),
):
    record = pipeline.request_retry(db, report_id, current_user.id)
    _, schedule = queue.submit(record.id)
    if schedule:
        background_tasks.add_task(queue.run, record.id)
    return Envelope(message="Analysis retry initiated", data=ReportData(report=ReportOut.model_validate(record)))


@router.get("/{report_id}/analysis-task", response_model=Envelope[AnalysisTaskData])
def get_analysis_task(
    report_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    queue: AnalysisQueue = Depends(get_analysis_queue),
):
    record = reports.get_report(db, report_id, current_user.id)
    task = queue.get(record.id)
    return Envelope(
        data=AnalysisTaskData(
            analysis_status=record.analysis_status,
            task=AnalysisTaskOut.model_validate(task) if task else None,
        )
    )
