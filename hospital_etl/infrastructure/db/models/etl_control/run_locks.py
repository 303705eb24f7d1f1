from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from hospital_etl.utils.date_utils import utc_now


class PipelineRunLock(SQLModel, table=True):
    """
    In-flight marker for a pipeline run. The primary key on data_upload_id
    makes acquisition a single atomic insert.
    """
    __tablename__ = "pipeline_run_locks"

    data_upload_id: UUID = Field(foreign_key="data_uploads.id", primary_key=True)
    token: UUID = Field(default_factory=uuid4, nullable=False)
    acquired_at: datetime = Field(default_factory=utc_now, sa_type=DateTime, nullable=False)
