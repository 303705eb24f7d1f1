from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field

from hospital_etl.utils.date_utils import utc_now


class BaseModel(SQLModel):
    """
    Base model with common fields for all database models.
    """

    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        index=True,
        nullable=False,
        description="Unique identifier"
    )


class TimestampMixin(SQLModel):
    """
    Mixin for models that need timestamp fields.
    """

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_type=DateTime,
        nullable=False,
        description="Record creation timestamp"
    )

    updated_at: Optional[datetime] = Field(
        default=None,
        sa_type=DateTime,
        description="Record last update timestamp"
    )

    def touch(self) -> None:
        self.updated_at = utc_now()


class BaseModelWithTimestamp(BaseModel, TimestampMixin):
    """
    Base model with ID and timestamp fields.
    """
    pass
