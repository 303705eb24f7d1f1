from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field, Column, JSON

from hospital_etl.core.enums import (
    DataCategory,
    JobStatus,
    JobType,
    PipelineStage,
    STAGE_BY_JOB_TYPE,
)
from hospital_etl.infrastructure.db.models.base import BaseModelWithTimestamp
from hospital_etl.utils.date_utils import format_duration, utc_now


class PipelineJobBase(SQLModel):
    """Scalar columns of an ETL job"""
    hospital_id: Optional[UUID] = Field(default=None, foreign_key="hospitals.id", index=True)
    data_upload_id: UUID = Field(foreign_key="data_uploads.id", index=True)
    job_type: JobType = Field(index=True)
    stage: PipelineStage = Field(index=True)
    status: JobStatus = Field(default=JobStatus.PENDING, index=True)
    started_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    error_message: Optional[str] = Field(default=None)


class PipelineJob(BaseModelWithTimestamp, PipelineJobBase, table=True):
    """One stage execution (extract, transform or load) for one upload."""
    __tablename__ = "etl_jobs"

    job_config: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    error_details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    processing_stats: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    # ---- transitions ----

    def start(self) -> None:
        self.status = JobStatus.RUNNING
        self.started_at = utc_now()
        self.completed_at = None
        self.error_message = None
        self.error_details = None
        self.touch()

    def complete(self, stats: Optional[Dict[str, Any]] = None) -> None:
        self.status = JobStatus.COMPLETED
        self.completed_at = utc_now()
        if stats is not None:
            self.processing_stats = dict(stats)
        self.touch()

    def fail(self, error_message: str, error_details: Optional[Dict[str, Any]] = None) -> None:
        self.status = JobStatus.FAILED
        self.completed_at = utc_now()
        self.error_message = error_message
        self.error_details = error_details or {}
        self.touch()

    def cancel(self) -> None:
        self.status = JobStatus.CANCELLED
        self.completed_at = utc_now()
        self.touch()

    def update_stats(self, stats: Dict[str, Any]) -> None:
        # JSON columns are only flushed on reassignment
        self.processing_stats = {**(self.processing_stats or {}), **stats}
        self.touch()

    # ---- queries ----

    @property
    def can_restart(self) -> bool:
        return self.status in (JobStatus.FAILED, JobStatus.CANCELLED)

    @property
    def can_cancel(self) -> bool:
        return self.status in (JobStatus.PENDING, JobStatus.RUNNING)

    @property
    def progress_percentage(self) -> float:
        if self.status == JobStatus.COMPLETED:
            return 100.0
        total = self.processing_stat("total_rows")
        processed = self.processing_stat("processed_rows")
        if not total:
            return 0
        return round(processed / total * 100, 1)

    @property
    def duration(self) -> Optional[float]:
        """Seconds between start and completion (or now, while open)."""
        if not self.started_at:
            return None
        end_time = self.completed_at or utc_now()
        return (end_time - self.started_at).total_seconds()

    @property
    def duration_formatted(self) -> str:
        return format_duration(self.duration)

    def processing_stat(self, key: str, default: Any = 0) -> Any:
        if not self.processing_stats:
            return default
        value = self.processing_stats.get(key)
        return default if value is None else value

    def error_detail(self, key: str, default: Any = None) -> Any:
        if not self.error_details:
            return default
        return self.error_details.get(key, default)

    def summary(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "job_type": self.job_type.value,
            "stage": self.stage.value,
            "status": self.status.value,
            "progress_percentage": self.progress_percentage,
            "duration": self.duration_formatted,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "processing_stats": self.processing_stats or {},
        }


def core_table_names(data_category: Optional[DataCategory]) -> List[str]:
    if data_category is None or data_category == DataCategory.GENERAL:
        return ["core_general_data"]
    return [f"core_{data_category.value}_data"]


def build_job(data_upload, job_type: JobType) -> PipelineJob:
    """Create a pending job for one stage of an upload (not yet added to a session)."""
    job_config: Dict[str, Any]
    if job_type == JobType.EXTRACT:
        job_config = {"source_file": data_upload.file_path}
    elif job_type == JobType.TRANSFORM:
        job_config = {"apply_mappings": True, "validate_data": True}
    else:
        job_config = {"target_tables": core_table_names(data_upload.data_category)}

    return PipelineJob(
        hospital_id=data_upload.hospital_id,
        data_upload_id=data_upload.id,
        job_type=job_type,
        stage=STAGE_BY_JOB_TYPE[job_type],
        status=JobStatus.PENDING,
        job_config=job_config,
        processing_stats={},
    )


def create_pipeline_jobs(data_upload) -> List[PipelineJob]:
    """The pending extract, transform and load jobs of one pipeline run, in order."""
    return [build_job(data_upload, job_type) for job_type in (JobType.EXTRACT, JobType.TRANSFORM, JobType.LOAD)]
