from typing import Any, Dict, Optional
from uuid import UUID

from sqlmodel import SQLModel, Field, Column, JSON

from hospital_etl.core.enums import FieldDataType, MappingType
from hospital_etl.infrastructure.db.models.base import BaseModelWithTimestamp


class FieldMappingBase(SQLModel):
    """Base model for field mappings."""
    hospital_id: Optional[UUID] = Field(default=None, foreign_key="hospitals.id", index=True)
    data_upload_id: UUID = Field(foreign_key="data_uploads.id", index=True)
    source_field: str = Field(max_length=100, description="Column name in the uploaded file")
    target_field: str = Field(max_length=100, description="Column name in staging/core tables")
    mapping_type: MappingType = Field(default=MappingType.DIRECT)
    data_type: FieldDataType = Field(default=FieldDataType.STRING)
    is_required: bool = Field(default=False, description="Whether the field is required")
    is_active: bool = Field(default=True, index=True)
    description: Optional[str] = Field(default=None, max_length=255)
    order_index: int = Field(default=0)


class FieldMapping(BaseModelWithTimestamp, FieldMappingBase, table=True):
    """Field mapping model for database storage."""
    __tablename__ = "field_mappings"

    # calculated: {"formula": "multiply_by_2"}
    # lookup: {"lookup_table": {"M": "male"}}
    # conditional: {"conditions": [{"operator": ..., "operand": ..., "result": ...}]}
    transformation_rules: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    validation_rules: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
