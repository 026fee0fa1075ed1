"""
Report analysis pipeline.

A report moves pending -> processing -> completed | failed. `processing` is
committed before Gemini is called, so a crash mid-call leaves the report
visibly in progress (and `recover_interrupted_reports` fails it on the next
start). On success the summary is committed first and only then is a
`report_analysis` note appended to the owner's chat; a failed chat append
never rolls the report back.

`AnalysisQueue` keeps an in-process record per report so each run's outcome,
attempts and timing can be inspected, and bounds every run with a timeout.
"""

import asyncio
import enum
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from healthmate import ai_client, chats, reports
from healthmate.exceptions import AnalysisInProgressError
from healthmate.models import AnalysisStatus, MessageRole, MessageType, Report, utcnow

logger = logging.getLogger(__name__)

Analyzer = Callable[[str, Optional[str]], Awaitable[ai_client.AnalysisResult]]
SessionFactory = Callable[[], Session]

INTERRUPTED_MESSAGE = "Analysis interrupted by a server restart"
MAX_TRACKED_TASKS = 1000


class TaskState(str, enum.Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


@dataclass
class PipelineOutcome:
    status: Optional[str]  # final report status, None when the run did not own the report
    error: Optional[str] = None


@dataclass
class AnalysisTask:
    report_id: str
    state: str = TaskState.QUEUED.value
    attempts: int = 0
    queued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.state not in (TaskState.QUEUED.value, TaskState.RUNNING.value)


def analysis_note(original_name: str, english: str) -> str:
    return f"New medical report analyzed: {original_name}\n\n{english}"


async def run_analysis(
    report_id: str,
    session_factory: SessionFactory,
    analyzer: Optional[Analyzer] = None,
) -> PipelineOutcome:
    """Drive one report through the state machine. Never raises for analysis errors."""
    analyze = analyzer or ai_client.analyze_report
    db = session_factory()
    try:
        report = db.get(Report, report_id)
        if report is None:
            logger.warning("Report %s no longer exists; skipping analysis", report_id)
            return PipelineOutcome(status=None)

        if not reports.mark_processing(db, report_id):
            logger.warning("Report %s is not startable (status=%s); skipping", report_id, report.analysis_status)
            return PipelineOutcome(status=None)

        report = db.get(Report, report_id)
        file_url, file_type = report.file_url, report.file_type
        user_id, original_name = report.user_id, report.original_name
        logger.info("Analyzing report %s (%s)", report_id, original_name)

        result = await analyze(file_url, file_type)

        if not result.success or result.data is None:
            error = result.error or "Analysis failed"
            reports.mark_failed(db, report_id, error)
            logger.warning("Analysis failed for report %s: %s", report_id, error)
            return PipelineOutcome(status=AnalysisStatus.FAILED.value, error=error)

        if not reports.mark_completed(db, report_id, result.data):
            # Deleted or timed out while Gemini was working
            logger.warning("Report %s left processing during analysis; result discarded", report_id)
            return PipelineOutcome(status=None)
        logger.info("Report %s analysis completed via %s", report_id, result.model or "unknown model")

        try:
            chats.add_message(
                db,
                user_id,
                MessageRole.ASSISTANT.value,
                analysis_note(original_name, result.data.english),
                report_id,
                MessageType.REPORT_ANALYSIS.value,
            )
        except Exception:
            db.rollback()
            logger.exception("Could not add analysis note to chat for report %s", report_id)

        return PipelineOutcome(status=AnalysisStatus.COMPLETED.value)
    except Exception as e:
        logger.exception("AI analysis error for report %s", report_id)
        db.rollback()
        error = str(e) or e.__class__.__name__
        reports.mark_failed(db, report_id, error)
        return PipelineOutcome(status=AnalysisStatus.FAILED.value, error=error)
    finally:
        db.close()


def request_retry(db: Session, report_id: str, owner_id: int) -> Report:
    """Reset a failed (or finished) report to pending so it can be analyzed again."""
    report = reports.get_report(db, report_id, owner_id)
    if report.analysis_status == AnalysisStatus.PROCESSING.value:
        raise AnalysisInProgressError()
    # The status may have flipped since the read above; the conditional reset decides.
    if not reports.reset_for_retry(db, report_id):
        raise AnalysisInProgressError()
    db.refresh(report)
    logger.info("Analysis retry requested for report %s", report_id)
    return report


def recover_interrupted_reports(session_factory: SessionFactory) -> int:
    db = session_factory()
    try:
        count = reports.fail_stale_processing(db, INTERRUPTED_MESSAGE)
    finally:
        db.close()
    if count:
        logger.warning("Marked %d interrupted analyses as failed", count)
    return count


class AnalysisQueue:
    """In-process registry and runner for report analyses."""

    def __init__(
        self,
        session_factory: SessionFactory | sessionmaker,
        analyzer: Optional[Analyzer] = None,
        timeout: float = 300,
    ):
        self.session_factory = session_factory
        self.analyzer = analyzer
        self.timeout = timeout
        self._tasks: "OrderedDict[str, AnalysisTask]" = OrderedDict()

    def submit(self, report_id: str) -> tuple[AnalysisTask, bool]:
        """Queue a run for the report.

        Returns the tracked task and whether the caller should schedule
        `run`. A task that is still queued or running is returned untouched
        with False: its pending run will pick up the report's current state.
        """
        existing = self._tasks.get(report_id)
        if existing is not None and not existing.done:
            return existing, False

        task = self._tasks.pop(report_id, None) or AnalysisTask(report_id=report_id)
        task.state = TaskState.QUEUED.value
        task.queued_at = utcnow()
        task.started_at = task.finished_at = None
        task.error = None
        self._tasks[report_id] = task
        self._evict()
        return task, True

    def get(self, report_id: str) -> Optional[AnalysisTask]:
        return self._tasks.get(report_id)

    def snapshot(self) -> list[AnalysisTask]:
        return list(self._tasks.values())

    def _evict(self) -> None:
        while len(self._tasks) > MAX_TRACKED_TASKS:
            oldest_done = next((key for key, task in self._tasks.items() if task.done), None)
            if oldest_done is None:
                break
            del self._tasks[oldest_done]

    async def run(self, report_id: str) -> AnalysisTask:
        task = self._tasks.get(report_id) or self.submit(report_id)[0]
        if task.state == TaskState.RUNNING.value:
            logger.info("Analysis for report %s is already running", report_id)
            return task
        task.state = TaskState.RUNNING.value
        task.attempts += 1
        task.started_at = utcnow()
        try:
            outcome = await asyncio.wait_for(
                run_analysis(report_id, self.session_factory, self.analyzer),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            message = f"Analysis timed out after {self.timeout:g}s"
            task.state = TaskState.TIMED_OUT.value
            task.error = message
            self._fail(report_id, message)
            logger.error("Report %s: %s", report_id, message)
        except Exception as e:
            task.state = TaskState.FAILED.value
            task.error = str(e) or e.__class__.__name__
            self._fail(report_id, task.error)
            logger.exception("Analysis task for report %s crashed", report_id)
        else:
            if outcome.status == AnalysisStatus.COMPLETED.value:
                task.state = TaskState.SUCCEEDED.value
            elif outcome.status == AnalysisStatus.FAILED.value:
                task.state = TaskState.FAILED.value
                task.error = outcome.error
            else:
                task.state = TaskState.SKIPPED.value
        finally:
            task.finished_at = utcnow()
        return task

    def _fail(self, report_id: str, message: str) -> None:
        db = self.session_factory()
        try:
            reports.mark_failed(db, report_id, message)
        except Exception:
            logger.exception("Could not mark report %s as failed", report_id)
        finally:
            db.close()
