"""
Database models package.
"""

from .base import BaseModel, TimestampMixin, BaseModelWithTimestamp
from .intake import Hospital, DataUpload, ALLOWED_FILE_TYPES
from .transformation import FieldMapping
from .etl_control import PipelineJob, PipelineRunLock, create_pipeline_jobs, build_job

__all__ = [
    "BaseModel",
    "BaseModelWithTimestamp",
    "TimestampMixin",

    "Hospital",
    "DataUpload",
    "ALLOWED_FILE_TYPES",

    "FieldMapping",

    "PipelineJob",
    "PipelineRunLock",
    "create_pipeline_jobs",
    "build_job",
]
