"""
Runtime-managed raw, staging and core tables.

Raw and staging tables are per hospital and category; core tables are per
category and shared across hospitals. Every `ensure_*` call is idempotent:
tables and indexes are created with IF NOT EXISTS and an existing table is
diffed against the desired column set, missing columns being added through
Alembic operations.
"""
import hashlib
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from uuid import UUID

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    Uuid,
    delete,
    inspect,
)
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.schema import CreateIndex, CreateTable
from sqlalchemy.types import TypeEngine
from sqlmodel import Session

from hospital_etl.core.enums import DataCategory, FieldDataType, PipelineStage
from hospital_etl.core.exceptions import DatabaseError, ValidationException
from hospital_etl.core.logging import get_logger
from hospital_etl.transformers.categories import COMMON_CORE_COLUMNS, ColumnDef, get_category_strategy
from hospital_etl.transformers.value_transformer import coerce_for_storage

logger = get_logger(__name__)

TYPE_BY_DATA_TYPE: Dict[FieldDataType, TypeEngine] = {
    FieldDataType.STRING: String(),
    FieldDataType.INTEGER: Integer(),
    FieldDataType.DECIMAL: Numeric(15, 2, asdecimal=False),
    FieldDataType.BOOLEAN: Boolean(),
    FieldDataType.DATE: Date(),
    FieldDataType.DATETIME: DateTime(),
}

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

REF_COLUMNS: List[ColumnDef] = [
    ("hospital_id", Uuid()),
    ("data_upload_id", Uuid()),
    ("etl_job_id", Uuid()),
]

RAW_COLUMNS: List[ColumnDef] = REF_COLUMNS + [
    ("row_number", Integer()),
    ("source_data", JSON()),
    ("extracted_at", DateTime()),
    ("created_at", DateTime()),
]

STAGING_ENVELOPE: List[ColumnDef] = REF_COLUMNS + [
    ("row_number", Integer()),
    ("source_data", JSON()),
    ("validation_errors", JSON()),
    ("is_valid", Boolean()),
    ("created_at", DateTime()),
    ("updated_at", DateTime()),
]

CORE_ENVELOPE: List[ColumnDef] = REF_COLUMNS + [
    ("source_reference", Integer()),
    ("data_category", String(30)),
]

TIMESTAMP_COLUMNS: List[ColumnDef] = [
    ("created_at", DateTime()),
    ("updated_at", DateTime()),
]

INDEXES_BY_STAGE: Dict[PipelineStage, List[Tuple[str, ...]]] = {
    PipelineStage.RAW: [("hospital_id", "data_upload_id"), ("etl_job_id",), ("row_number",)],
    PipelineStage.STAGING: [("hospital_id", "data_upload_id"), ("etl_job_id", "is_valid")],
    PipelineStage.CORE: [("hospital_id", "data_category"), ("data_upload_id",), ("etl_job_id",), ("date",)],
}


def column_type_for(data_type: Any) -> TypeEngine:
    """Storage type for a mapping's declared data type; unknown types are stored as text."""
    try:
        return TYPE_BY_DATA_TYPE[FieldDataType(data_type)]
    except ValueError:
        return Text()


def data_type_for_column(column_type: TypeEngine) -> Optional[FieldDataType]:
    """Inverse of column_type_for, used to coerce values before insert. None means pass through."""
    if isinstance(column_type, (JSON, Uuid)):
        return None
    if isinstance(column_type, Boolean):
        return FieldDataType.BOOLEAN
    if isinstance(column_type, Integer):
        return FieldDataType.INTEGER
    if isinstance(column_type, (Numeric, Float)):
        return FieldDataType.DECIMAL
    if isinstance(column_type, DateTime):
        return FieldDataType.DATETIME
    if isinstance(column_type, Date):
        return FieldDataType.DATE
    return FieldDataType.STRING


def hospital_key(hospital_id: Any) -> str:
    if isinstance(hospital_id, UUID):
        return hospital_id.hex
    return re.sub(r"[^a-z0-9]+", "_", str(hospital_id).lower()).strip("_")


def category_key(category: Any) -> str:
    if isinstance(category, DataCategory):
        return category.value
    return category or DataCategory.GENERAL.value


def raw_table_name(hospital_id: Any, category: Any = None) -> str:
    return f"raw_{category_key(category)}_{hospital_key(hospital_id)}"


def staging_table_name(hospital_id: Any, category: Any = None) -> str:
    return f"staging_{category_key(category)}_{hospital_key(hospital_id)}"


def core_table_name(category: Any = None) -> str:
    return get_category_strategy(category_key(category)).core_table_name


def _index_name(table_name: str, columns: Sequence[str]) -> str:
    digest = hashlib.md5(table_name.encode("utf-8")).hexdigest()[:12]
    return f"ix_{digest}_{'_'.join(columns)}"[:63]


class DynamicTableManager:
    """
    Creates and migrates the runtime tables on the session's connection.

    Tables are cached in a registry keyed by (hospital_id, category, stage);
    core tables use hospital_id None.
    """

    def __init__(self, db_session: Session):
        self.db = db_session
        self.registry: Dict[Tuple[Optional[str], str, str], Table] = {}

    # ------------------------------------------------------------------
    # public API
    # ------------------------------------------------------------------

    def ensure_raw_table(self, name: str, hospital_id: Any = None, category: Any = None) -> Table:
        key = (self._registry_hospital(hospital_id, name), category_key(category), PipelineStage.RAW.value)
        return self._ensure(key, name, RAW_COLUMNS, INDEXES_BY_STAGE[PipelineStage.RAW])

    def ensure_staging_table(self, name: str, mappings: Iterable, category: Any = None,
                             hospital_id: Any = None) -> Table:
        """Staging DDL is the envelope plus one typed column per mapping and the category's derived columns."""
        strategy = get_category_strategy(category_key(category))
        columns = list(STAGING_ENVELOPE)
        reserved = {column_name for column_name, _ in columns} | {"id"}

        mapped = self.mapping_columns(mappings, reserved)
        columns.extend(mapped)

        mapped_names = {column_name for column_name, _ in mapped}
        columns.extend(
            (column_name, column_type) for column_name, column_type in strategy.derived_columns
            if column_name not in mapped_names
        )

        key = (self._registry_hospital(hospital_id, name), strategy.name, PipelineStage.STAGING.value)
        return self._ensure(key, name, columns, INDEXES_BY_STAGE[PipelineStage.STAGING])

    def ensure_core_table(self, name: str, category: Any = None, mappings: Iterable = ()) -> Table:
        """Core DDL is the envelope, common and category columns, plus any mapped field the category lacks."""
        if category is None:
            match = re.match(r"^core_(\w+)_data$", name)
            category = match.group(1) if match else None
        strategy = get_category_strategy(category_key(category))

        columns = list(CORE_ENVELOPE) + list(COMMON_CORE_COLUMNS) + list(strategy.core_columns)
        known = {column_name for column_name, _ in columns}
        reserved = {column_name for column_name, _ in CORE_ENVELOPE} | {"id", "created_at", "updated_at"}

        extra = [
            (column_name, column_type)
            for column_name, column_type in self.mapping_columns(mappings, reserved)
            if column_name not in known
        ]
        columns.extend(extra)
        columns.extend(TIMESTAMP_COLUMNS)

        key = (None, strategy.name, PipelineStage.CORE.value)
        return self._ensure(key, name, columns, INDEXES_BY_STAGE[PipelineStage.CORE])

    def get_table(self, name: str) -> Optional[Table]:
        """Reflect an existing table, or None when it does not exist."""
        conn = self.db.connection()
        if not inspect(conn).has_table(name):
            return None
        for table in self.registry.values():
            if table.name == name:
                return table

        reflected = Table(name, MetaData(), autoload_with=conn)
        # reference columns reflect as plain CHAR on some dialects
        overrides = [Column(column_name, column_type) for column_name, column_type in REF_COLUMNS
                     if column_name in reflected.c]
        if not overrides:
            return reflected
        return Table(name, MetaData(), *overrides, autoload_with=conn)

    def delete_older_than(self, name: str, cutoff: datetime) -> int:
        """Delete rows created before cutoff; returns the number of rows removed (0 when the table is absent)."""
        table = self.get_table(name)
        if table is None:
            return 0
        result = self.db.execute(delete(table).where(table.c.created_at < cutoff))
        return result.rowcount or 0

    def delete_rows_for_job(self, name: str, etl_job_id: Any) -> int:
        """Remove what an earlier attempt of the same job wrote, so a retry starts clean."""
        table = self.get_table(name)
        if table is None or "etl_job_id" not in table.c:
            return 0
        result = self.db.execute(delete(table).where(table.c.etl_job_id == etl_job_id))
        return result.rowcount or 0

    @staticmethod
    def mapping_columns(mappings: Iterable, reserved: Iterable[str] = ()) -> List[ColumnDef]:
        """(target_field, column type) for each mapping; first declaration of a target field wins."""
        reserved = set(reserved)
        columns: List[ColumnDef] = []
        seen = set()

        for mapping in mappings:
            target = mapping.target_field
            if not target or not IDENTIFIER_PATTERN.match(target):
                raise ValidationException(
                    message=f"Invalid target field name: '{target}'",
                    field="target_field",
                    value=target,
                )
            if target in reserved:
                raise ValidationException(
                    message=f"Target field '{target}' collides with a reserved column",
                    field="target_field",
                    value=target,
                )
            if target in seen:
                continue
            seen.add(target)
            columns.append((target, column_type_for(mapping.data_type)))

        return columns

    @staticmethod
    def coerce_record(table: Table, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Map a record onto every non-id column of the table, converting each
        value to what its column stores. Absent keys become None so all rows
        of a batch insert share one parameter set; unknown keys are dropped.
        """
        row = {}
        for column in table.columns:
            if column.name == "id":
                continue
            value = record.get(column.name)
            data_type = data_type_for_column(column.type)
            row[column.name] = value if value is None or data_type is None else coerce_for_storage(value, data_type)
        return row

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------

    @staticmethod
    def _registry_hospital(hospital_id: Any, name: str) -> str:
        return hospital_key(hospital_id) if hospital_id is not None else name

    def _ensure(self, key, name: str, columns: List[ColumnDef], index_columns: List[Tuple[str, ...]]) -> Table:
        if not IDENTIFIER_PATTERN.match(name):
            raise ValidationException(message=f"Invalid table name: '{name}'", field="table_name", value=name)

        cached = self.registry.get(key)
        if cached is not None and cached.name == name and all(column_name in cached.c for column_name, _ in columns):
            return cached

        conn = self.db.connection()
        desired = self._build_table(name, columns, index_columns)

        try:
            if not inspect(conn).has_table(name):
                conn.execute(CreateTable(desired, if_not_exists=True))
                logger.info(f"Created table: {name}")
            else:
                self._add_missing_columns(conn, name, desired)

            for index in desired.indexes:
                conn.execute(CreateIndex(index, if_not_exists=True))

            table = self._reflect(conn, name, columns)
        except SQLAlchemyError as e:
            raise DatabaseError(f"Could not prepare table {name}: {e}", operation="ensure_table") from e

        self.registry[key] = table
        return table

    @staticmethod
    def _build_table(name: str, columns: List[ColumnDef], index_columns: List[Tuple[str, ...]]) -> Table:
        table = Table(
            name,
            MetaData(),
            Column("id", Integer, primary_key=True, autoincrement=True),
            *[Column(column_name, column_type, nullable=True) for column_name, column_type in columns],
        )
        for index_cols in index_columns:
            if all(column_name in table.c for column_name in index_cols):
                Index(_index_name(name, index_cols), *[table.c[column_name] for column_name in index_cols])
        return table

    @staticmethod
    def _add_missing_columns(conn, name: str, desired: Table) -> None:
        existing = {column["name"] for column in inspect(conn).get_columns(name)}
        missing = [column for column in desired.columns if column.name not in existing]
        if not missing:
            return

        operations = Operations(MigrationContext.configure(conn))
        for column in missing:
            # another worker may add the same column between inspection and ALTER
            try:
                with conn.begin_nested():
                    operations.add_column(name, Column(column.name, column.type, nullable=True))
            except DBAPIError:
                current = {col["name"] for col in inspect(conn).get_columns(name)}
                if column.name not in current:
                    raise
                logger.info(f"Column {column.name} already added to {name}")
                continue
            logger.info(f"Added column {column.name} to {name}")

    @staticmethod
    def _reflect(conn, name: str, columns: List[ColumnDef]) -> Table:
        # explicit columns override reflected ones so JSON, Uuid and
        # float-returning Numeric behave the same on every dialect
        overrides = [Column(column_name, column_type) for column_name, column_type in columns]
        return Table(name, MetaData(), *overrides, autoload_with=conn)
