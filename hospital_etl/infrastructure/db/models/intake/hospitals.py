from sqlmodel import SQLModel, Field

from hospital_etl.infrastructure.db.models.base import BaseModelWithTimestamp


class HospitalBase(SQLModel):
    name: str = Field(max_length=200, description="Hospital display name")
    code: str = Field(max_length=50, index=True, unique=True, description="Short hospital code")
    is_active: bool = Field(default=True)


class Hospital(BaseModelWithTimestamp, HospitalBase, table=True):
    """Hospital owning uploads, mappings and the per-hospital raw/staging tables."""
    __tablename__ = "hospitals"

