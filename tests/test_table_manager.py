"""Tests for runtime table creation and schema migration."""

from uuid import uuid4

import pytest
from sqlalchemy import inspect

from hospital_etl.core.enums import DataCategory, FieldDataType
from hospital_etl.core.exceptions import ValidationException
from hospital_etl.infrastructure.db import table_manager
from hospital_etl.infrastructure.db.models import FieldMapping
from hospital_etl.infrastructure.db.table_manager import (
    DynamicTableManager,
    core_table_name,
    raw_table_name,
    staging_table_name,
)
from hospital_etl.utils.date_utils import utc_now


def _make_mapping(target, data_type=FieldDataType.STRING):
    return FieldMapping(data_upload_id=uuid4(), source_field=target, target_field=target, data_type=data_type)


def _columns(session, name):
    return {column["name"]: column for column in inspect(session.connection()).get_columns(name)}


def test_table_names_are_deterministic():
    hospital_id = uuid4()

    assert raw_table_name(hospital_id, DataCategory.FINANCIAL) == f"raw_financial_{hospital_id.hex}"
    assert staging_table_name(hospital_id, None) == f"staging_general_{hospital_id.hex}"
    assert core_table_name(DataCategory.PATIENT) == "core_patient_data"
    assert core_table_name(None) == "core_general_data"
    assert raw_table_name(uuid4(), "financial") != raw_table_name(hospital_id, "financial")


def test_ensure_raw_table_is_idempotent(session):
    """Calling ensure twice creates exactly one table and does not raise."""
    name = raw_table_name(uuid4(), DataCategory.FINANCIAL)

    DynamicTableManager(session).ensure_raw_table(name)
    DynamicTableManager(session).ensure_raw_table(name)

    table_names = inspect(session.connection()).get_table_names()
    assert table_names.count(name) == 1
    assert {"hospital_id", "data_upload_id", "etl_job_id", "row_number", "source_data", "extracted_at"} <= set(
        _columns(session, name)
    )


def test_staging_table_gets_mapped_and_derived_columns(session):
    name = staging_table_name(uuid4(), DataCategory.FINANCIAL)
    mappings = [_make_mapping("revenue", FieldDataType.DECIMAL), _make_mapping("cost", FieldDataType.DECIMAL)]

    DynamicTableManager(session).ensure_staging_table(name, mappings, DataCategory.FINANCIAL)

    columns = _columns(session, name)
    assert {"revenue", "cost", "profit", "profit_margin", "validation_errors", "is_valid"} <= set(columns)


def test_new_mapping_adds_missing_column(session):
    name = staging_table_name(uuid4(), DataCategory.GENERAL)
    manager = DynamicTableManager(session)

    manager.ensure_staging_table(name, [_make_mapping("name")])
    assert "ward" not in _columns(session, name)

    table = manager.ensure_staging_table(name, [_make_mapping("name"), _make_mapping("ward")])

    assert "ward" in _columns(session, name)
    assert "ward" in table.c


def test_core_table_has_category_columns_and_extra_mappings(session):
    manager = DynamicTableManager(session)
    table = manager.ensure_core_table(
        "core_operational_data", DataCategory.OPERATIONAL, [_make_mapping("ward_code")]
    )

    for column in ("bed_count", "occupancy_rate", "efficiency_score", "department", "date",
                   "source_reference", "data_category", "ward_code", "created_at"):
        assert column in table.c


def test_duplicate_target_first_declaration_wins():
    columns = DynamicTableManager.mapping_columns(
        [_make_mapping("revenue", FieldDataType.DECIMAL), _make_mapping("revenue", FieldDataType.STRING)]
    )
    assert len(columns) == 1
    assert columns[0][0] == "revenue"


@pytest.mark.parametrize("target", ["drop table;", "1abc", "source_data", ""])
def test_invalid_or_reserved_target_rejected(session, target):
    name = staging_table_name(uuid4(), DataCategory.GENERAL)
    with pytest.raises(ValidationException):
        DynamicTableManager(session).ensure_staging_table(name, [_make_mapping(target)])


def test_delete_older_than_missing_table_is_zero(session):
    assert DynamicTableManager(session).delete_older_than("raw_general_missing", utc_now()) == 0


def test_coerce_record_fills_every_column(session):
    """Rows with different keys come out with one shared key set for a batch insert."""
    name = staging_table_name(uuid4(), DataCategory.GENERAL)
    table = DynamicTableManager(session).ensure_staging_table(
        name, [_make_mapping("name"), _make_mapping("beds", FieldDataType.INTEGER)]
    )

    complete = DynamicTableManager.coerce_record(table, {"name": "ICU", "beds": "12", "validation_errors": None})
    partial = DynamicTableManager.coerce_record(table, {"name": "ER", "unknown": 1, "id": 99})

    assert set(complete) == set(partial)
    assert "id" not in partial
    assert "unknown" not in partial
    assert complete["beds"] == 12
    assert partial["beds"] is None


def test_column_added_by_another_worker_is_tolerated(session, monkeypatch):
    """A column that appears between inspection and ALTER does not fail the ensure."""
    name = staging_table_name(uuid4(), DataCategory.GENERAL)
    mappings = [_make_mapping("name"), _make_mapping("ward")]
    DynamicTableManager(session).ensure_staging_table(name, mappings)

    real_inspect = table_manager.inspect
    stale_reads = []

    class _StaleInspector:
        def __init__(self, inspector):
            self.inspector = inspector

        def get_columns(self, table_name, **kwargs):
            columns = self.inspector.get_columns(table_name, **kwargs)
            if not stale_reads:
                stale_reads.append(table_name)
                return [column for column in columns if column["name"] != "ward"]
            return columns

        def __getattr__(self, attr):
            return getattr(self.inspector, attr)

    monkeypatch.setattr(table_manager, "inspect", lambda conn: _StaleInspector(real_inspect(conn)))

    table = DynamicTableManager(session).ensure_staging_table(name, mappings)

    assert stale_reads == [name]
    assert "ward" in table.c
    assert list(_columns(session, name)).count("ward") == 1
