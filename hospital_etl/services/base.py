"""
Base service classes providing common functionality for the ETL stages.
"""

import traceback
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy import insert
from sqlmodel import Session, select

from hospital_etl.core.config import PipelineSettings, get_settings
from hospital_etl.core.enums import JobStatus, JobType, UploadStatus
from hospital_etl.core.exceptions import DataTransformationException, NotFoundError, ServiceError
from hospital_etl.core.logging import JobLoggerAdapter, get_logger, log_execution_time
from hospital_etl.infrastructure.db.models import DataUpload, FieldMapping, Hospital, PipelineJob
from hospital_etl.infrastructure.db.table_manager import DynamicTableManager
from hospital_etl.utils.date_utils import utc_now

logger = get_logger(__name__)

JOB_ORDER = [JobType.EXTRACT, JobType.TRANSFORM, JobType.LOAD]
PREDECESSOR = {JobType.TRANSFORM: JobType.EXTRACT, JobType.LOAD: JobType.TRANSFORM}


def build_error_details(error: Exception, context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Structured failure record stored on a job."""
    return {
        "error_class": error.__class__.__name__,
        "error_message": str(error),
        "backtrace": [line.strip() for line in traceback.format_tb(error.__traceback__)[:10]],
        "context": context or {},
        "timestamp": utc_now().isoformat(),
    }


def current_jobs(db: Session, data_upload_id: Any) -> List[PipelineJob]:
    """The most recent job of each type for an upload, in pipeline order."""
    stmt = (
        select(PipelineJob)
        .where(PipelineJob.data_upload_id == data_upload_id)
        .order_by(PipelineJob.created_at.desc())
    )
    latest: Dict[JobType, PipelineJob] = {}
    for job in db.exec(stmt).all():
        latest.setdefault(JobType(job.job_type), job)
    return [latest[job_type] for job_type in JOB_ORDER if job_type in latest]


def propagate_upload_status(db: Session, job: PipelineJob) -> None:
    """Advance the parent upload after a job transition. Does not commit."""
    data_upload = db.get(DataUpload, job.data_upload_id)
    if data_upload is None:
        return

    if job.status == JobStatus.RUNNING:
        if data_upload.status == UploadStatus.PENDING:
            data_upload.status = UploadStatus.PROCESSING
            data_upload.processing_started_at = utc_now()

    elif job.status == JobStatus.COMPLETED:
        jobs = current_jobs(db, data_upload.id)
        if jobs and all(item.status == JobStatus.COMPLETED for item in jobs):
            data_upload.status = UploadStatus.COMPLETED
            data_upload.processing_completed_at = utc_now()
            data_upload.processed_rows = jobs[-1].processing_stat("processed_rows")
            data_upload.error_rows = sum(item.processing_stat("error_rows") for item in jobs)
            data_upload.error_message = None

    elif job.status == JobStatus.FAILED:
        data_upload.status = UploadStatus.FAILED
        data_upload.error_message = job.error_message

    data_upload.touch()
    db.add(data_upload)


class BaseService(ABC):
    """Base class for all services."""

    def __init__(self, db_session: Session):
        self.db = db_session
        self.logger = get_logger(self.__class__.__name__)

    def log_operation(self, operation: str, details: Optional[Dict[str, Any]] = None) -> None:
        """Log service operation."""
        log_msg = f"Service operation: {operation}"
        if details:
            log_msg += f" - Details: {details}"
        self.logger.info(log_msg)

    def handle_error(self, error: Exception, operation: str) -> None:
        """Roll back and re-raise as ServiceError."""
        error_msg = f"Error in {operation}: {str(error)}"
        self.logger.error(error_msg)
        self.db.rollback()
        raise ServiceError(error_msg) from error

    @abstractmethod
    def get_service_name(self) -> str:
        """Return the service name."""
        pass


class BaseETLService(BaseService):
    """
    Shared plumbing for the extract, transform and load stages.

    Subclasses implement `run()`, which returns the final processing stats,
    or None when the job was cancelled part way. `execute()` wraps it with
    the job lifecycle and never raises: any exception becomes a failed job.
    """

    job_type: JobType

    def __init__(self, db_session: Session, etl_job: PipelineJob, settings: Optional[PipelineSettings] = None):
        super().__init__(db_session)
        self.etl_job = etl_job
        self.settings = settings or get_settings().pipeline

        self.data_upload = self.db.get(DataUpload, etl_job.data_upload_id)
        if self.data_upload is None:
            raise NotFoundError("DataUpload", etl_job.data_upload_id)

        hospital_id = etl_job.hospital_id or self.data_upload.hospital_id
        self.hospital = self.db.get(Hospital, hospital_id) if hospital_id else None

        self.table_manager = DynamicTableManager(self.db)
        self.skipped_mappings: List[str] = []
        self.job_logger = JobLoggerAdapter(
            self.logger,
            etl_job.id,
            data_upload_id=self.data_upload.id,
            stage=self.job_type.value,
        )

    def get_service_name(self) -> str:
        return self.__class__.__name__

    @abstractmethod
    def run(self) -> Optional[Dict[str, Any]]:
        """Do the stage's work and return its final stats."""

    @log_execution_time(logger)
    def execute(self) -> PipelineJob:
        try:
            self.start_job()
            stats = self.run()
            if stats is None:
                self.job_logger.warning("Stopped: job was cancelled")
            else:
                self.complete_job(stats)
        except Exception as e:
            self.job_logger.error(f"{self.job_type.value.capitalize()} failed: {e}", exc_info=True)
            self.db.rollback()
            self.fail_job(e, self.failure_context())
        return self.etl_job

    # ------------------------------------------------------------------
    # job lifecycle
    # ------------------------------------------------------------------

    def start_job(self) -> None:
        self.etl_job.start()
        self._save_job()
        self.job_logger.info(f"Started {self.job_type.value} for upload {self.data_upload.file_name}")

    def complete_job(self, stats: Dict[str, Any]) -> None:
        self.etl_job.complete(stats)
        self._save_job()
        self.job_logger.info(f"Completed: {stats.get('processed_rows', 0)} rows processed")

    def fail_job(self, error: Exception, context: Optional[Dict[str, Any]] = None) -> None:
        self.etl_job.fail(str(error), build_error_details(error, context))
        self._save_job()

    def failure_context(self) -> Dict[str, Any]:
        return {
            "data_upload_id": str(self.data_upload.id),
            "hospital_id": str(self.data_upload.hospital_id) if self.data_upload.hospital_id else None,
            "job_type": self.job_type.value,
            "processing_stats": self.etl_job.processing_stats or {},
        }

    def update_progress(self, processed: int, total: int, extra: Optional[Dict[str, Any]] = None) -> None:
        stats = {
            "processed_rows": processed,
            "total_rows": total,
            "progress_percentage": round(processed / total * 100, 2) if total else 0,
        }
        if extra:
            stats.update(extra)
        self.etl_job.update_stats(stats)
        self.db.add(self.etl_job)
        self.db.commit()

    def is_cancelled(self) -> bool:
        """Re-read the job row; another session may have cancelled it."""
        self.db.refresh(self.etl_job)
        return self.etl_job.status == JobStatus.CANCELLED

    def _save_job(self) -> None:
        self.db.add(self.etl_job)
        propagate_upload_status(self.db, self.etl_job)
        self.db.commit()
        self.db.refresh(self.etl_job)

    # ------------------------------------------------------------------
    # data access
    # ------------------------------------------------------------------

    def get_field_mappings(self) -> List[FieldMapping]:
        """
        Active mappings for the upload in declaration order. When two
        mappings share a target field the first one wins; the others are
        recorded in `skipped_mappings`.
        """
        stmt = (
            select(FieldMapping)
            .where(
                FieldMapping.data_upload_id == self.data_upload.id,
                FieldMapping.is_active == True,  # noqa: E712
            )
            .order_by(FieldMapping.order_index, FieldMapping.created_at)
        )

        mappings: List[FieldMapping] = []
        seen = set()
        self.skipped_mappings = []
        for mapping in self.db.exec(stmt).all():
            if mapping.target_field in seen:
                self.job_logger.warning(
                    f"Mapping {mapping.source_field} -> {mapping.target_field} skipped: target already mapped"
                )
                self.skipped_mappings.append(f"{mapping.source_field}->{mapping.target_field}")
                continue
            seen.add(mapping.target_field)
            mappings.append(mapping)
        return mappings

    def predecessor_job(self) -> PipelineJob:
        """Latest completed job of the previous stage; its rows are this stage's input."""
        job_type = PREDECESSOR[self.job_type]
        stmt = (
            select(PipelineJob)
            .where(
                PipelineJob.data_upload_id == self.data_upload.id,
                PipelineJob.job_type == job_type,
                PipelineJob.status == JobStatus.COMPLETED,
            )
            .order_by(PipelineJob.completed_at.desc())
        )
        job = self.db.exec(stmt).first()
        if job is None:
            raise DataTransformationException(
                f"No completed {job_type.value} job found for this upload",
                details={"data_upload_id": str(self.data_upload.id)},
            )
        return job

    def flush_batch(self, table, records: List[Dict[str, Any]]) -> int:
        """Parameterised bulk insert of one batch, committed on its own."""
        if not records:
            return 0
        rows = [self.table_manager.coerce_record(table, record) for record in records]
        self.db.execute(insert(table), rows)
        self.db.commit()
        return len(rows)

    def reference_fields(self) -> Dict[str, Any]:
        return {
            "hospital_id": self.data_upload.hospital_id,
            "data_upload_id": self.data_upload.id,
            "etl_job_id": self.etl_job.id,
        }
