"""Tests for the load stage: valid staging rows into the core tables."""

from datetime import date

from sqlalchemy import select

from hospital_etl.core.enums import DataCategory, FieldDataType, JobStatus, JobType
from hospital_etl.infrastructure.db.table_manager import DynamicTableManager
from hospital_etl.services import LoadService


def _core_rows(session, name="core_financial_data"):
    table = DynamicTableManager(session).get_table(name)
    return session.execute(select(table).order_by(table.c.source_reference)).mappings().all()


def _run_through_transform(upload, run_stage):
    run_stage(upload, JobType.EXTRACT)
    return run_stage(upload, JobType.TRANSFORM)


def test_load_moves_only_valid_rows(make_upload, financial_mappings, run_stage, session):
    upload = make_upload(rows=[
        ["Cardiology", "2024-08-15", 1234.5678, 1000, 1200],
        ["Oncology", "2024-01-02", "", 50, 60],
        ["Surgery", "2024-11-03", 300, 200, 250],
    ])
    financial_mappings(upload)
    _run_through_transform(upload, run_stage)

    job = run_stage(upload, JobType.LOAD)

    assert job.status == JobStatus.COMPLETED
    rows = _core_rows(session)
    assert [row["department"] for row in rows] == ["Cardiology", "Surgery"]

    stats = job.processing_stats
    assert stats["total_rows"] == 2
    assert stats["processed_rows"] == 2
    assert stats["excluded_rows"] == 1
    assert stats["error_rows"] == 0
    assert stats["success_rate"] == 100.0
    assert stats["core_tables"] == ["core_financial_data"]


def test_load_enriches_financial_rows(make_upload, financial_mappings, run_stage, session):
    upload = make_upload(rows=[["Cardiology", "2024-08-15", 1234.5678, 1000, 1200]])
    financial_mappings(upload)
    transform_job = _run_through_transform(upload, run_stage)

    job = run_stage(upload, JobType.LOAD)

    row = _core_rows(session)[0]
    assert row["date"] == date(2024, 8, 15)
    assert row["fiscal_year"] == 2024
    assert row["fiscal_quarter"] == 3
    assert row["fiscal_month"] == 8
    assert float(row["revenue_normalized"]) == 1234.57
    assert row["data_category"] == "financial"
    assert row["etl_job_id"] == job.id
    assert row["data_upload_id"] == upload.id
    assert job.processing_stats["source_job_id"] == str(transform_job.id)


def test_load_marks_upload_completed(make_upload, financial_mappings, run_stage, session):
    upload = make_upload()
    financial_mappings(upload)
    _run_through_transform(upload, run_stage)

    run_stage(upload, JobType.LOAD)
    session.refresh(upload)

    assert upload.processed_rows == 5
    assert upload.error_rows == 0
    assert upload.processing_completed_at is not None


def test_load_with_no_valid_rows_completes_empty(make_upload, financial_mappings, run_stage, session):
    upload = make_upload(rows=[["Cardiology", "2024-01-01", "", 1, 1]])
    financial_mappings(upload)
    _run_through_transform(upload, run_stage)

    job = run_stage(upload, JobType.LOAD)

    assert job.status == JobStatus.COMPLETED
    assert job.processing_stats["total_rows"] == 0
    assert job.processing_stats["success_rate"] == 100
    assert _core_rows(session) == []


def test_load_without_transform_fails(make_upload, financial_mappings, run_stage):
    upload = make_upload()
    financial_mappings(upload)
    run_stage(upload, JobType.EXTRACT)

    job = run_stage(upload, JobType.LOAD)

    assert job.status == JobStatus.FAILED
    assert job.error_message == "No completed transform job found for this upload"


def test_mapped_field_missing_from_category_is_added(make_upload, make_mapping, run_stage, session):
    upload = make_upload(
        header=["ward_code", "bed_count", "occupied_beds"],
        rows=[["W1", 200, 150]],
        category=DataCategory.OPERATIONAL,
    )
    make_mapping(upload, "ward_code")
    make_mapping(upload, "bed_count", data_type=FieldDataType.INTEGER)
    make_mapping(upload, "occupied_beds", data_type=FieldDataType.INTEGER)
    _run_through_transform(upload, run_stage)

    job = run_stage(upload, JobType.LOAD)

    assert job.status == JobStatus.COMPLETED
    row = _core_rows(session, "core_operational_data")[0]
    assert row["ward_code"] == "W1"
    assert float(row["occupancy_rate"]) == 75.0


def test_retry_load_replaces_rows(make_upload, financial_mappings, run_stage, session, settings):
    upload = make_upload()
    financial_mappings(upload)
    _run_through_transform(upload, run_stage)
    job = run_stage(upload, JobType.LOAD)

    LoadService(session, job, settings).execute()

    assert job.status == JobStatus.COMPLETED
    assert len(_core_rows(session)) == 5
