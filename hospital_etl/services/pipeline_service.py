"""
Pipeline orchestration: runs extract, transform and load for one upload,
guards against overlapping runs and aggregates job status.
"""

from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import delete, insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from hospital_etl.core.config import PipelineSettings, get_settings
from hospital_etl.core.enums import JobStatus, JobType, OverallStatus, UploadStatus
from hospital_etl.core.exceptions import (
    JobNotRestartableError,
    PipelineAlreadyRunningError,
)
from hospital_etl.infrastructure.db.models import (
    DataUpload,
    Hospital,
    PipelineJob,
    PipelineRunLock,
    build_job,
    create_pipeline_jobs,
)
from hospital_etl.infrastructure.db.table_manager import (
    DynamicTableManager,
    raw_table_name,
    staging_table_name,
)
from hospital_etl.services.base import (
    BaseService,
    current_jobs,
    propagate_upload_status,
)
from hospital_etl.services.extract_service import ExtractService
from hospital_etl.services.load_service import LoadService
from hospital_etl.services.transform_service import TransformService
from hospital_etl.utils.date_utils import format_duration, utc_now

# advisory estimate: base seconds, seconds per MB, seconds per 1000 rows
ESTIMATE_BASE_SECONDS = 30
ESTIMATE_SECONDS_PER_MB = 2
ESTIMATE_SECONDS_PER_1000_ROWS = 5


class PipelineService(BaseService):
    """Orchestrates the ETL stages for a single data upload."""

    def __init__(self, db_session: Session, data_upload: DataUpload, settings: Optional[PipelineSettings] = None):
        super().__init__(db_session)
        self.data_upload = data_upload
        self.settings = settings or get_settings().pipeline
        self.hospital = self.db.get(Hospital, data_upload.hospital_id) if data_upload.hospital_id else None
        self._lock_token = None

    def get_service_name(self) -> str:
        return "PipelineService"

    # ------------------------------------------------------------------
    # running
    # ------------------------------------------------------------------

    def start_pipeline(self) -> Dict[str, Any]:
        """
        Validate, take the run lock and execute all stages.

        Returns:
            The execute_full_pipeline result, or a rejection carrying the
            blocking prerequisite errors

        Raises:
            PipelineAlreadyRunningError: a run for this upload is in flight
        """
        errors = self.validate_prerequisites()
        if errors:
            self.logger.warning(f"Pipeline for {self.data_upload.file_name} not started: {errors}")
            return {
                "success": False,
                "message": "ETL pipeline prerequisites are not met",
                "errors": errors,
            }

        self.acquire_run_lock()
        return self.execute_full_pipeline()

    def execute_full_pipeline(self) -> Dict[str, Any]:
        self.log_operation("execute_full_pipeline", {"data_upload_id": str(self.data_upload.id)})
        jobs: List[PipelineJob] = []

        try:
            if self._lock_token is None:
                self.acquire_run_lock()

            jobs = create_pipeline_jobs(self.data_upload)
            self.db.add_all(jobs)
            self.db.commit()
            for job in jobs:
                self.db.refresh(job)

            runners = [self.execute_extract, self.execute_transform, self.execute_load]
            for job, runner in zip(jobs, runners):
                runner(job)
                if job.status != JobStatus.COMPLETED:
                    reason = job.error_message or job.status.value
                    self.logger.error(f"[ETL Pipeline] Stopped at {job.job_type.value}: {reason}")
                    self._cancel_pending(jobs)
                    return {
                        "success": False,
                        "message": f"ETL pipeline stopped at {job.job_type.value}: {reason}",
                        "jobs": [item.summary() for item in jobs],
                        "error": reason,
                    }

            self.logger.info(f"[ETL Pipeline] Full ETL pipeline completed for {self.data_upload.file_name}")
            return {
                "success": True,
                "message": "ETL pipeline completed successfully",
                "jobs": [job.summary() for job in jobs],
            }

        except Exception as e:
            self.db.rollback()
            self.logger.error(f"[ETL Pipeline] Pipeline failed: {e}", exc_info=True)
            result = {
                "success": False,
                "message": f"ETL pipeline failed: {e}",
                "error": str(e),
            }
            if jobs:
                result["jobs"] = [job.summary() for job in jobs]
            return result

        finally:
            self.release_run_lock()

    def execute_extract(self, etl_job: Optional[PipelineJob] = None) -> PipelineJob:
        etl_job = etl_job or self._create_job(JobType.EXTRACT)
        self.logger.info("[ETL Pipeline] Starting extract phase")
        return ExtractService(self.db, etl_job, self.settings).execute()

    def execute_transform(self, etl_job: Optional[PipelineJob] = None) -> PipelineJob:
        etl_job = etl_job or self._create_job(JobType.TRANSFORM)
        self.logger.info("[ETL Pipeline] Starting transform phase")
        return TransformService(self.db, etl_job, self.settings).execute()

    def execute_load(self, etl_job: Optional[PipelineJob] = None) -> PipelineJob:
        etl_job = etl_job or self._create_job(JobType.LOAD)
        self.logger.info("[ETL Pipeline] Starting load phase")
        return LoadService(self.db, etl_job, self.settings).execute()

    def retry_failed_job(self, etl_job: PipelineJob) -> PipelineJob:
        """Re-run a failed or cancelled job in place, under the run lock."""
        if not etl_job.can_restart:
            raise JobNotRestartableError(etl_job.id, JobStatus(etl_job.status).value)

        self.logger.info(f"[ETL Pipeline] Retrying job {etl_job.id} ({etl_job.job_type.value})")
        runners = {
            JobType.EXTRACT: self.execute_extract,
            JobType.TRANSFORM: self.execute_transform,
            JobType.LOAD: self.execute_load,
        }

        self.acquire_run_lock()
        try:
            return runners[JobType(etl_job.job_type)](etl_job)
        finally:
            self.release_run_lock()

    def cancel_running_jobs(self) -> Dict[str, Any]:
        """Cancel running and pending jobs; rows already written are kept."""
        self.log_operation("cancel_running_jobs", {"data_upload_id": str(self.data_upload.id)})

        stmt = select(PipelineJob).where(PipelineJob.data_upload_id == self.data_upload.id)
        jobs = [job for job in self.db.exec(stmt).all() if job.can_cancel]
        for job in jobs:
            job.cancel()
            self.db.add(job)

        self.db.execute(delete(PipelineRunLock).where(PipelineRunLock.data_upload_id == self.data_upload.id))
        self.db.commit()
        self._lock_token = None

        return {
            "success": True,
            "message": f"{len(jobs)} running jobs cancelled",
            "cancelled_jobs": len(jobs),
        }

    # ------------------------------------------------------------------
    # guards
    # ------------------------------------------------------------------

    def validate_prerequisites(self) -> List[str]:
        errors = []
        upload = self.data_upload

        if not upload.file_path or not Path(upload.file_path).exists():
            errors.append(f"Source file not found: {upload.file_path}")

        if upload.status not in (UploadStatus.COMPLETED, UploadStatus.PROCESSING):
            errors.append(
                f"Data upload must be completed or processing. Current status: {UploadStatus(upload.status).value}"
            )

        if self.hospital is None:
            errors.append("Hospital information is missing")

        return errors

    def has_running_jobs(self) -> bool:
        stmt = select(PipelineJob).where(
            PipelineJob.data_upload_id == self.data_upload.id,
            PipelineJob.status == JobStatus.RUNNING,
        )
        return self.db.exec(stmt).first() is not None

    def acquire_run_lock(self) -> None:
        """
        Insert the upload's in-flight marker. The primary key makes two
        concurrent acquisitions resolve to one winner.

        Raises:
            PipelineAlreadyRunningError: a job is running or the marker exists
        """
        if self._lock_token is not None:
            return
        if self.has_running_jobs():
            raise PipelineAlreadyRunningError(self.data_upload.id)

        cutoff = utc_now() - timedelta(minutes=self.settings.run_lock_timeout_minutes)
        stale = self.db.execute(
            delete(PipelineRunLock).where(
                PipelineRunLock.data_upload_id == self.data_upload.id,
                PipelineRunLock.acquired_at < cutoff,
            )
        )
        if stale.rowcount:
            self.logger.warning(f"Reclaimed stale run lock for upload {self.data_upload.id}")

        token = uuid4()
        try:
            self.db.execute(
                insert(PipelineRunLock).values(
                    data_upload_id=self.data_upload.id,
                    token=token,
                    acquired_at=utc_now(),
                )
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise PipelineAlreadyRunningError(self.data_upload.id)

        self._lock_token = token

    def release_run_lock(self) -> None:
        if self._lock_token is None:
            return
        self.db.execute(
            delete(PipelineRunLock).where(
                PipelineRunLock.data_upload_id == self.data_upload.id,
                PipelineRunLock.token == self._lock_token,
            )
        )
        self.db.commit()
        self._lock_token = None

    # ------------------------------------------------------------------
    # status
    # ------------------------------------------------------------------

    def get_pipeline_status(self) -> Dict[str, Any]:
        jobs = current_jobs(self.db, self.data_upload.id)
        started = [job.started_at for job in jobs if job.started_at]
        completed = [job.completed_at for job in jobs if job.completed_at]

        return {
            "data_upload_id": str(self.data_upload.id),
            "file_name": self.data_upload.file_name,
            "overall_status": self.determine_overall_status(jobs).value,
            "jobs": [job.summary() for job in jobs],
            "progress": self.calculate_overall_progress(jobs),
            "started_at": min(started).isoformat() if started else None,
            "completed_at": max(completed).isoformat() if completed else None,
            "duration": self.calculate_total_duration(jobs),
        }

    @staticmethod
    def determine_overall_status(jobs: List[PipelineJob]) -> OverallStatus:
        if not jobs:
            return OverallStatus.PENDING

        statuses = {JobStatus(job.status) for job in jobs}
        if JobStatus.FAILED in statuses:
            return OverallStatus.FAILED
        if JobStatus.RUNNING in statuses:
            return OverallStatus.RUNNING
        if JobStatus.PENDING in statuses:
            return OverallStatus.PENDING
        if statuses == {JobStatus.COMPLETED}:
            return OverallStatus.COMPLETED
        return OverallStatus.MIXED

    @staticmethod
    def calculate_overall_progress(jobs: List[PipelineJob]) -> float:
        if not jobs:
            return 0
        return round(sum(job.progress_percentage for job in jobs) / len(jobs), 1)

    @staticmethod
    def calculate_total_duration(jobs: List[PipelineJob]) -> Optional[str]:
        started = [job.started_at for job in jobs if job.started_at]
        if not started:
            return None

        still_open = any(job.started_at and not job.completed_at for job in jobs)
        completed = [job.completed_at for job in jobs if job.completed_at]
        end_time = utc_now() if still_open or not completed else max(completed)
        return format_duration((end_time - min(started)).total_seconds())

    # ------------------------------------------------------------------
    # housekeeping
    # ------------------------------------------------------------------

    def cleanup_intermediate_data(self, keep_days: Optional[int] = None) -> Dict[str, Any]:
        """Delete raw and staging rows older than keep_days for this upload's tables."""
        keep_days = self.settings.cleanup_keep_days if keep_days is None else keep_days
        cutoff = utc_now() - timedelta(days=keep_days)
        self.logger.info(f"[ETL Pipeline] Cleaning up intermediate data older than {keep_days} days")

        upload = self.data_upload
        manager = DynamicTableManager(self.db)
        deleted = {}
        try:
            for name in (
                raw_table_name(upload.hospital_id, upload.data_category),
                staging_table_name(upload.hospital_id, upload.data_category),
            ):
                deleted[name] = manager.delete_older_than(name, cutoff)
            self.db.commit()
        except SQLAlchemyError as e:
            self.handle_error(e, "cleanup_intermediate_data")

        self.logger.info(f"[ETL Pipeline] Cleanup completed: {deleted}")
        return {
            "keep_days": keep_days,
            "cutoff": cutoff.isoformat(),
            "deleted": deleted,
        }

    def estimate_processing_time(self) -> Dict[str, Any]:
        file_size_mb = self.data_upload.file_size_mb
        row_count = self.data_upload.total_rows or 0

        size_factor = file_size_mb * ESTIMATE_SECONDS_PER_MB
        row_factor = row_count // 1000 * ESTIMATE_SECONDS_PER_1000_ROWS
        estimated_seconds = ESTIMATE_BASE_SECONDS + size_factor + row_factor

        return {
            "estimated_seconds": int(estimated_seconds),
            "estimated_minutes": round(estimated_seconds / 60.0, 1),
            "factors": {
                "base_time": ESTIMATE_BASE_SECONDS,
                "file_size_impact": size_factor,
                "row_count_impact": row_factor,
            },
        }

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _create_job(self, job_type: JobType) -> PipelineJob:
        job = build_job(self.data_upload, job_type)
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        return job

    def _save(self, job: PipelineJob) -> None:
        self.db.add(job)
        propagate_upload_status(self.db, job)
        self.db.commit()
        self.db.refresh(job)

    def _cancel_pending(self, jobs: List[PipelineJob]) -> None:
        """Later stages of a stopped run will never start; close them as cancelled."""
        for job in jobs:
            if job.status == JobStatus.PENDING:
                job.cancel()
                self._save(job)
