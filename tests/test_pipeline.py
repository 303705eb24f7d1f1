"""Tests for the orchestrator: full runs, run guard, retry, cancel and status."""

from datetime import timedelta
from pathlib import Path

import pytest
from sqlmodel import select

from hospital_etl.core.enums import JobStatus, JobType, OverallStatus, UploadStatus
from hospital_etl.core.exceptions import JobNotRestartableError, PipelineAlreadyRunningError
from hospital_etl.infrastructure.db.models import PipelineJob, PipelineRunLock, build_job, create_pipeline_jobs
from hospital_etl.infrastructure.db.table_manager import raw_table_name, staging_table_name
from hospital_etl.services import PipelineService
from hospital_etl.utils.date_utils import utc_now


def _jobs(session, upload):
    return session.exec(select(PipelineJob).where(PipelineJob.data_upload_id == upload.id)).all()


def _job_of_type(session, upload, job_type):
    return next(job for job in _jobs(session, upload) if job.job_type == job_type)


def _status_jobs(*statuses):
    return [PipelineJob(status=status) for status in statuses]


def test_full_pipeline_completes(session, make_upload, financial_mappings, settings):
    upload = make_upload()
    financial_mappings(upload)

    result = PipelineService(session, upload, settings).start_pipeline()

    assert result["success"] is True
    assert result["message"] == "ETL pipeline completed successfully"
    assert [job["status"] for job in result["jobs"]] == ["completed", "completed", "completed"]
    assert upload.status == UploadStatus.COMPLETED
    assert upload.processed_rows == 5
    assert session.exec(select(PipelineRunLock)).all() == []

    status = PipelineService(session, upload, settings).get_pipeline_status()
    assert status["overall_status"] == "completed"
    assert status["progress"] == 100.0
    assert status["completed_at"] is not None


def test_prerequisites_block_start(session, make_upload, settings):
    upload = make_upload(status=UploadStatus.PENDING)
    Path(upload.file_path).unlink()

    result = PipelineService(session, upload, settings).start_pipeline()

    assert result["success"] is False
    assert result["message"] == "ETL pipeline prerequisites are not met"
    assert f"Source file not found: {upload.file_path}" in result["errors"]
    assert "Data upload must be completed or processing. Current status: pending" in result["errors"]
    assert _jobs(session, upload) == []


def test_pipeline_stops_at_failed_stage(session, make_upload, settings):
    """With no mappings, extract completes, transform fails and load is cancelled unrun."""
    upload = make_upload()

    result = PipelineService(session, upload, settings).start_pipeline()

    assert result["success"] is False
    assert result["error"] == "No active field mappings found. Please configure field mappings first."
    assert result["message"] == f"ETL pipeline stopped at transform: {result['error']}"
    assert [job["status"] for job in result["jobs"]] == ["completed", "failed", "cancelled"]
    transform_job = _job_of_type(session, upload, JobType.TRANSFORM)
    assert transform_job.error_detail("error_class") == "MappingNotFoundError"
    load_job = _job_of_type(session, upload, JobType.LOAD)
    assert load_job.started_at is None
    assert load_job.status == JobStatus.CANCELLED
    assert upload.status == UploadStatus.FAILED
    assert session.exec(select(PipelineRunLock)).all() == []


def test_running_job_rejects_second_run(session, make_upload, financial_mappings, settings):
    upload = make_upload()
    financial_mappings(upload)
    job = build_job(upload, JobType.EXTRACT)
    job.start()
    session.add(job)
    session.commit()

    with pytest.raises(PipelineAlreadyRunningError) as exc_info:
        PipelineService(session, upload, settings).start_pipeline()

    assert exc_info.value.status_code == 409
    assert len(_jobs(session, upload)) == 1


def test_held_lock_rejects_second_run(session, make_upload, financial_mappings, settings):
    upload = make_upload()
    financial_mappings(upload)
    session.add(PipelineRunLock(data_upload_id=upload.id))
    session.commit()

    with pytest.raises(PipelineAlreadyRunningError):
        PipelineService(session, upload, settings).start_pipeline()

    assert _jobs(session, upload) == []


def test_stale_lock_is_reclaimed(session, make_upload, financial_mappings, settings):
    upload = make_upload()
    financial_mappings(upload)
    session.add(PipelineRunLock(data_upload_id=upload.id, acquired_at=utc_now() - timedelta(hours=3)))
    session.commit()

    result = PipelineService(session, upload, settings).start_pipeline()

    assert result["success"] is True
    assert session.exec(select(PipelineRunLock)).all() == []


@pytest.mark.parametrize("statuses,expected", [
    ([], OverallStatus.PENDING),
    ([JobStatus.COMPLETED, JobStatus.COMPLETED, JobStatus.FAILED], OverallStatus.FAILED),
    ([JobStatus.COMPLETED, JobStatus.RUNNING, JobStatus.PENDING], OverallStatus.RUNNING),
    ([JobStatus.COMPLETED, JobStatus.COMPLETED, JobStatus.COMPLETED], OverallStatus.COMPLETED),
    ([JobStatus.PENDING, JobStatus.PENDING, JobStatus.PENDING], OverallStatus.PENDING),
    ([JobStatus.COMPLETED, JobStatus.CANCELLED, JobStatus.CANCELLED], OverallStatus.MIXED),
])
def test_overall_status(statuses, expected):
    assert PipelineService.determine_overall_status(_status_jobs(*statuses)) == expected


def test_overall_progress_is_mean_of_jobs():
    jobs = [
        PipelineJob(status=JobStatus.COMPLETED),
        PipelineJob(status=JobStatus.RUNNING, processing_stats={"total_rows": 200, "processed_rows": 50}),
        PipelineJob(status=JobStatus.PENDING),
    ]

    assert PipelineService.calculate_overall_progress(jobs) == 41.7
    assert PipelineService.calculate_overall_progress([]) == 0


def test_total_duration():
    start = utc_now() - timedelta(minutes=10)
    jobs = [
        PipelineJob(status=JobStatus.COMPLETED, started_at=start, completed_at=start + timedelta(minutes=1)),
        PipelineJob(status=JobStatus.COMPLETED, started_at=start + timedelta(minutes=1),
                    completed_at=start + timedelta(minutes=2, seconds=5)),
    ]

    assert PipelineService.calculate_total_duration(jobs) == "2m 5s"
    assert PipelineService.calculate_total_duration([PipelineJob(status=JobStatus.PENDING)]) is None


def test_retry_failed_transform(session, make_upload, make_mapping, settings):
    upload = make_upload()
    PipelineService(session, upload, settings).start_pipeline()
    transform_job = _job_of_type(session, upload, JobType.TRANSFORM)
    assert transform_job.status == JobStatus.FAILED

    make_mapping(upload, "department")
    job = PipelineService(session, upload, settings).retry_failed_job(transform_job)

    assert job.id == transform_job.id
    assert job.status == JobStatus.COMPLETED
    assert job.error_message is None
    assert session.exec(select(PipelineRunLock)).all() == []


def test_retry_completed_job_is_rejected(session, make_upload, financial_mappings, settings):
    upload = make_upload()
    financial_mappings(upload)
    PipelineService(session, upload, settings).start_pipeline()

    with pytest.raises(JobNotRestartableError) as exc_info:
        PipelineService(session, upload, settings).retry_failed_job(_job_of_type(session, upload, JobType.LOAD))

    assert exc_info.value.status_code == 409


def test_cancel_running_jobs(session, make_upload, settings):
    upload = make_upload()
    session.add_all(create_pipeline_jobs(upload))
    session.add(PipelineRunLock(data_upload_id=upload.id))
    session.commit()

    result = PipelineService(session, upload, settings).cancel_running_jobs()

    assert result["cancelled_jobs"] == 3
    assert result["message"] == "3 running jobs cancelled"
    assert {job.status for job in _jobs(session, upload)} == {JobStatus.CANCELLED}
    assert session.exec(select(PipelineRunLock)).all() == []


def test_estimate_processing_time(session, make_upload, settings):
    upload = make_upload()
    upload.file_size = 2 * 1024 * 1024
    upload.total_rows = 2500

    estimate = PipelineService(session, upload, settings).estimate_processing_time()

    assert estimate["estimated_seconds"] == 44
    assert estimate["estimated_minutes"] == 0.7
    assert estimate["factors"]["row_count_impact"] == 10


def test_cleanup_removes_old_intermediate_rows(session, make_upload, run_stage, settings):
    upload = make_upload()
    run_stage(upload, JobType.EXTRACT)

    result = PipelineService(session, upload, settings).cleanup_intermediate_data(keep_days=0)

    assert result["keep_days"] == 0
    assert result["deleted"][raw_table_name(upload.hospital_id, upload.data_category)] == 5
    assert result["deleted"][staging_table_name(upload.hospital_id, upload.data_category)] == 0


def test_cleanup_keeps_recent_rows(session, make_upload, run_stage, settings):
    upload = make_upload()
    run_stage(upload, JobType.EXTRACT)

    result = PipelineService(session, upload, settings).cleanup_intermediate_data()

    assert result["keep_days"] == 7
    assert result["deleted"][raw_table_name(upload.hospital_id, upload.data_category)] == 0
