from enum import Enum


class UploadStatus(str, Enum):
    """Lifecycle of an uploaded file"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DataCategory(str, Enum):
    """Business category of an upload; selects the core table and calculators"""
    FINANCIAL = "financial"
    OPERATIONAL = "operational"
    QUALITY = "quality"
    PATIENT = "patient"
    GENERAL = "general"


class MappingType(str, Enum):
    DIRECT = "direct"
    CALCULATED = "calculated"
    LOOKUP = "lookup"
    CONDITIONAL = "conditional"


class FieldDataType(str, Enum):
    """Target data types a mapping can declare"""
    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"


class JobType(str, Enum):
    """Job types for ETL jobs."""
    EXTRACT = "extract"
    TRANSFORM = "transform"
    LOAD = "load"


class PipelineStage(str, Enum):
    """Table layer written by a job; 1:1 with JobType"""
    RAW = "raw"
    STAGING = "staging"
    CORE = "core"


class JobStatus(str, Enum):
    """Job status for ETL jobs."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OverallStatus(str, Enum):
    """Aggregate status across the jobs of one upload"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    MIXED = "mixed"


STAGE_BY_JOB_TYPE = {
    JobType.EXTRACT: PipelineStage.RAW,
    JobType.TRANSFORM: PipelineStage.STAGING,
    JobType.LOAD: PipelineStage.CORE,
}
