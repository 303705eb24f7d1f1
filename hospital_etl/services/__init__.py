"""
Services module for the hospital ETL pipeline.
Contains the stage services and the pipeline orchestrator.
"""

from .base import BaseService, BaseETLService
from .extract_service import ExtractService
from .transform_service import TransformService
from .load_service import LoadService
from .pipeline_service import PipelineService

__all__ = [
    "BaseService",
    "BaseETLService",
    "ExtractService",
    "TransformService",
    "LoadService",
    "PipelineService",
]
