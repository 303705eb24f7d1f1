from .pipeline_jobs import (
    PipelineJob,
    build_job,
    core_table_names,
    create_pipeline_jobs,
)
from .run_locks import PipelineRunLock

__all__ = [
    "PipelineJob",
    "PipelineRunLock",
    "build_job",
    "core_table_names",
    "create_pipeline_jobs",
]
