"""Tests for the pipeline models' column types and job transitions."""

import pytest
from sqlalchemy import DateTime

from hospital_etl.core.enums import JobStatus, JobType
from hospital_etl.infrastructure.db.models import DataUpload, PipelineJob, PipelineRunLock, build_job


@pytest.mark.parametrize("model,column", [
    (PipelineJob, "started_at"),
    (PipelineJob, "completed_at"),
    (PipelineJob, "created_at"),
    (PipelineJob, "updated_at"),
    (DataUpload, "processing_started_at"),
    (DataUpload, "processing_completed_at"),
    (PipelineRunLock, "acquired_at"),
])
def test_timestamps_are_stored_naive(model, column):
    column_type = model.__table__.c[column].type

    assert type(column_type) is DateTime
    assert column_type.timezone is False


def test_job_timestamps_round_trip(session, make_upload):
    upload = make_upload()
    job = build_job(upload, JobType.EXTRACT)
    job.start()
    session.add(job)
    session.commit()
    session.expire_all()

    stored = session.get(PipelineJob, job.id)

    assert stored.status == JobStatus.RUNNING
    assert stored.started_at.tzinfo is None
    assert stored.created_at.tzinfo is None
