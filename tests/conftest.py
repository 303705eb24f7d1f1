"""Shared fixtures: an in-memory SQLite database and upload/mapping factories."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, create_engine  # noqa: E402

from hospital_etl.core.config import PipelineSettings  # noqa: E402
from hospital_etl.core.database import init_db  # noqa: E402
from hospital_etl.core.enums import DataCategory, FieldDataType, JobType, MappingType, UploadStatus  # noqa: E402
from hospital_etl.infrastructure.db.models import DataUpload, FieldMapping, Hospital, build_job  # noqa: E402
from hospital_etl.services import ExtractService, LoadService, TransformService  # noqa: E402

FINANCIAL_HEADER = ["department", "date", "revenue", "cost", "budget"]


def write_csv(path, header, rows):
    lines = [",".join(header)] + [",".join(str(value) for value in row) for row in rows]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def financial_rows(count):
    return [
        ["Cardiology", f"2024-01-{(i % 28) + 1:02d}", 100 + i, 80, 90]
        for i in range(count)
    ]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def settings():
    return PipelineSettings()


@pytest.fixture
def hospital(session):
    hospital = Hospital(name="Seoul General", code="SGH")
    session.add(hospital)
    session.commit()
    session.refresh(hospital)
    return hospital


@pytest.fixture
def make_upload(session, hospital, tmp_path):
    """Factory: write a CSV under tmp_path and register it as an upload."""

    def _make_upload(rows=None, header=FINANCIAL_HEADER, category=DataCategory.FINANCIAL,
                     file_type="text/csv", status=UploadStatus.COMPLETED, raw_lines=None,
                     file_name="upload.csv"):
        path = tmp_path / file_name
        if raw_lines is not None:
            path.write_text("\n".join(raw_lines) + "\n", encoding="utf-8")
        else:
            write_csv(path, header, financial_rows(5) if rows is None else rows)

        upload = DataUpload(
            hospital_id=hospital.id,
            file_name=file_name,
            file_path=str(path),
            file_type=file_type,
            file_size=path.stat().st_size,
            data_category=category,
            status=status,
        )
        session.add(upload)
        session.commit()
        session.refresh(upload)
        return upload

    return _make_upload


@pytest.fixture
def make_mapping(session):
    """Factory: add an active mapping to an upload."""

    def _make_mapping(upload, source_field, target_field=None, data_type=FieldDataType.STRING,
                      mapping_type=MappingType.DIRECT, is_required=False, order_index=0,
                      transformation_rules=None, validation_rules=None, is_active=True):
        mapping = FieldMapping(
            hospital_id=upload.hospital_id,
            data_upload_id=upload.id,
            source_field=source_field,
            target_field=target_field or source_field,
            mapping_type=mapping_type,
            data_type=data_type,
            is_required=is_required,
            is_active=is_active,
            order_index=order_index,
            transformation_rules=transformation_rules,
            validation_rules=validation_rules,
        )
        session.add(mapping)
        session.commit()
        session.refresh(mapping)
        return mapping

    return _make_mapping


@pytest.fixture
def financial_mappings(make_mapping):
    """The standard financial mapping set: revenue is required."""

    def _financial_mappings(upload):
        return [
            make_mapping(upload, "department", order_index=0),
            make_mapping(upload, "date", data_type=FieldDataType.DATE, order_index=1),
            make_mapping(upload, "revenue", data_type=FieldDataType.DECIMAL, is_required=True, order_index=2),
            make_mapping(upload, "cost", data_type=FieldDataType.DECIMAL, order_index=3),
            make_mapping(upload, "budget", data_type=FieldDataType.DECIMAL, order_index=4),
        ]

    return _financial_mappings


@pytest.fixture
def run_stage(session, settings):
    """Factory: create a job of the given type for an upload and execute its stage."""

    services = {
        JobType.EXTRACT: ExtractService,
        JobType.TRANSFORM: TransformService,
        JobType.LOAD: LoadService,
    }

    def _run_stage(upload, job_type, stage_settings=None):
        job = build_job(upload, job_type)
        session.add(job)
        session.commit()
        session.refresh(job)
        return services[job_type](session, job, stage_settings or settings).execute()

    return _run_stage
