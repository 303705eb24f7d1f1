from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field, Column, JSON

from hospital_etl.core.enums import DataCategory, UploadStatus
from hospital_etl.infrastructure.db.models.base import BaseModelWithTimestamp

ALLOWED_FILE_TYPES = [
    "text/csv",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
]


class DataUploadBase(SQLModel):
    hospital_id: Optional[UUID] = Field(default=None, foreign_key="hospitals.id", index=True)
    file_name: str = Field(max_length=255, description="Original name of the uploaded file")
    file_path: str = Field(max_length=500, description="Path where the file is stored")
    file_type: str = Field(max_length=150, description="Declared MIME type")
    file_size: int = Field(default=0, ge=0, description="Size of the file in bytes")
    data_category: Optional[DataCategory] = Field(default=None, index=True)


class DataUpload(BaseModelWithTimestamp, DataUploadBase, table=True):
    """
    An ingested file. Written by the intake side; the pipeline only advances
    status, row counts and processing timestamps.
    """
    __tablename__ = "data_uploads"

    status: UploadStatus = Field(default=UploadStatus.PENDING, index=True)

    total_rows: Optional[int] = Field(default=None)
    processed_rows: Optional[int] = Field(default=None)
    error_rows: Optional[int] = Field(default=None)

    processing_started_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    processing_completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    error_message: Optional[str] = Field(default=None)

    validation_errors: Optional[List[Any]] = Field(default=None, sa_column=Column(JSON))
    # preview metadata: {"headers": [...], "preview": [...], "total_rows": n}
    original_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    @property
    def category_key(self) -> str:
        return self.data_category.value if self.data_category else DataCategory.GENERAL.value

    @property
    def file_extension(self) -> str:
        return Path(self.file_name or "").suffix.lower()

    @property
    def file_size_mb(self) -> float:
        if not self.file_size:
            return 0
        return round(self.file_size / (1024 * 1024), 2)

    @property
    def headers(self) -> List[str]:
        return list((self.original_data or {}).get("headers") or [])
